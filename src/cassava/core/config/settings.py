"""Application settings loaded from environment variables."""

from __future__ import annotations

from typing import Literal

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Cassava analysis engine configuration."""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    # Server
    # Loopback by default; the service surface has no auth layer of its own
    # beyond the backend session.
    cassava_host: str = "127.0.0.1"
    cassava_port: int = 8010
    cassava_log_level: str = "info"
    cassava_allow_insecure_bind: bool = False

    # Inference
    classifier_strategy: Literal["remote", "on_device", "mock"] = "remote"
    classifier_api_url: str = "http://127.0.0.1:8000"
    classifier_api_key: str = ""
    classifier_timeout_seconds: float = 30.0
    onnx_model_path: str = "~/.cassava/models/cassava.onnx"
    onnx_labels_path: str = "~/.cassava/models/labels.json"

    # Remote backend (Supabase)
    supabase_mode: Literal["cloud", "self-hosted"] = "cloud"
    supabase_url: str = ""
    supabase_anon_key: str = ""
    supabase_self_hosted_url: str = ""
    supabase_self_hosted_anon_key: str = ""
    supabase_bucket: str = "cassava-images"
    supabase_table: str = "cassava_analyses"

    # Local fallback store
    offline_db_path: str = "~/.cassava/cassava_offline.db"

    # Connectivity
    connectivity_probe_timeout_seconds: float = 3.0
    cassava_force_offline: bool = False

    def active_supabase(self) -> tuple[str, str, str]:
        """Return ``(url, anon_key, mode)`` for the backend in use.

        Self-hosted mode falls back to the cloud pair when its URL or key
        is missing.
        """
        if (
            self.supabase_mode == "self-hosted"
            and self.supabase_self_hosted_url
            and self.supabase_self_hosted_anon_key
        ):
            return (
                self.supabase_self_hosted_url,
                self.supabase_self_hosted_anon_key,
                "self-hosted",
            )
        return self.supabase_url, self.supabase_anon_key, "cloud"


def get_settings() -> Settings:
    """Create and return a Settings instance."""
    return Settings()
