"""Remote HTTP classifier (FastAPI inference service)."""

from __future__ import annotations

import asyncio
import logging
import mimetypes
import time
from pathlib import Path
from typing import Any

import httpx

from cassava.core.errors import InferenceError, MalformedResponseError
from cassava.core.inference.catalog import DiseaseCatalog
from cassava.core.inference.provider import BackendHealth, Diagnosis, build_diagnosis

logger = logging.getLogger(__name__)

_LABEL_KEYS = ("disease", "label", "predicted_class", "class")


class RemoteClassifier:
    """Classifies images by uploading them to the inference service.

    ``POST {base_url}/predict`` with a multipart ``file`` field; the JSON
    answer must carry a label and a confidence.
    """

    strategy = "remote"
    supports_offline = False

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = 30.0,
        *,
        catalog: DiseaseCatalog | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout
        self._catalog = catalog
        self._client = client
        self._owns_client = client is None

    def _headers(self) -> dict[str, str]:
        if self._api_key:
            return {"Authorization": f"Bearer {self._api_key}"}
        return {}

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def initialize(self) -> None:
        self._http()

    def is_ready(self) -> bool:
        return True

    async def classify(self, image_ref: str) -> Diagnosis:
        try:
            image_bytes = await asyncio.to_thread(Path(image_ref).expanduser().read_bytes)
        except OSError as exc:
            raise InferenceError(f"Cannot read image {image_ref}: {exc}") from exc

        filename = Path(image_ref).name or "leaf.jpg"
        content_type = mimetypes.guess_type(filename)[0] or "image/jpeg"

        start = time.monotonic()
        try:
            response = await self._http().post(
                f"{self.base_url}/predict",
                files={"file": (filename, image_bytes, content_type)},
                headers=self._headers(),
            )
        except httpx.TimeoutException as exc:
            raise InferenceError(f"Classifier timed out after {self._timeout}s") from exc
        except httpx.HTTPError as exc:
            raise InferenceError(f"Classifier unreachable: {exc}") from exc
        elapsed_ms = (time.monotonic() - start) * 1000

        if response.status_code < 200 or response.status_code >= 300:
            detail = _error_detail(response)
            raise InferenceError(
                f"Classifier returned HTTP {response.status_code}: {detail}",
                status_code=response.status_code,
                detail=detail,
            )

        try:
            body: Any = response.json()
        except ValueError as exc:
            raise MalformedResponseError("Classifier returned non-JSON body") from exc
        if not isinstance(body, dict):
            raise MalformedResponseError(
                f"Expected JSON object from classifier, got {type(body).__name__}"
            )

        label = next((body[k] for k in _LABEL_KEYS if body.get(k)), None)
        diagnosis = build_diagnosis(
            label,
            body.get("confidence"),
            catalog=self._catalog,
            severity=body.get("severity"),
            treatment=body.get("treatment"),
            recommendations=body.get("recommendations"),
            model_version=str(body.get("model_version") or ""),
            backend_timestamp=body.get("timestamp"),
        )
        logger.info(
            "Remote classification: label=%s, confidence=%.3f, latency=%.0fms",
            diagnosis.label,
            diagnosis.confidence,
            elapsed_ms,
        )
        return diagnosis

    async def health_check(self) -> BackendHealth:
        start = time.monotonic()
        try:
            response = await self._http().get(f"{self.base_url}/health", headers=self._headers())
        except httpx.HTTPError as exc:
            return BackendHealth(status="offline", detail=str(exc))
        latency_ms = (time.monotonic() - start) * 1000
        if response.is_success:
            return BackendHealth(status="online", latency_ms=round(latency_ms, 1))
        return BackendHealth(status="offline", detail=f"HTTP {response.status_code}")

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


def _error_detail(response: httpx.Response) -> str:
    """Pull FastAPI's ``detail`` (or raw text) out of an error response."""
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or response.reason_phrase
    if isinstance(body, dict) and body.get("detail") is not None:
        detail = body["detail"]
        return detail if isinstance(detail, str) else str(detail)
    return str(body)[:200]
