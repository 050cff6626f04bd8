"""Classifier protocol: the uniform interface to one inference strategy."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from cassava.core.errors import MalformedResponseError
from cassava.core.inference.catalog import DiseaseCatalog, get_default_catalog
from cassava.core.inference.severity import derive_severity, normalize_confidence
from cassava.core.storage.models import Severity

if TYPE_CHECKING:
    from cassava.core.config.settings import Settings


@dataclass
class Diagnosis:
    """Result of classifying one leaf image."""

    label: str
    confidence: float
    severity: Severity
    treatment: str
    recommendations: list[str] = field(default_factory=list)
    model_version: str = ""
    backend_timestamp: str | None = None


@dataclass
class BackendHealth:
    """Reachability of the classifier's own backend."""

    status: str  # 'online' | 'offline'
    latency_ms: float | None = None
    detail: str | None = None


@runtime_checkable
class Classifier(Protocol):
    """One inference strategy (remote HTTP, on-device model, or mock)."""

    strategy: str
    supports_offline: bool

    async def initialize(self) -> None: ...

    def is_ready(self) -> bool: ...

    async def classify(self, image_ref: str) -> Diagnosis: ...

    async def health_check(self) -> BackendHealth: ...

    async def aclose(self) -> None: ...


def build_diagnosis(
    label: Any,
    confidence: Any,
    *,
    catalog: DiseaseCatalog | None = None,
    severity: Any = None,
    treatment: Any = None,
    recommendations: Any = None,
    model_version: str = "",
    backend_timestamp: str | None = None,
) -> Diagnosis:
    """Turn a raw label/confidence pair into a full Diagnosis.

    Backend-supplied severity, treatment and recommendations win; anything
    missing comes from the catalog and the severity policy. Recommendations
    must be a list and treatment a string; other shapes are ignored.

    Raises:
        MalformedResponseError: If the label is empty or the confidence is bad.
    """
    if not isinstance(label, str) or not label.strip():
        raise MalformedResponseError(f"Missing or empty label: {label!r}")
    score = normalize_confidence(confidence)

    entry = (catalog or get_default_catalog()).lookup(label.strip())
    parsed_severity = Severity.parse(severity)
    if not isinstance(recommendations, list) or not recommendations:
        recommendations = entry.recommendations
    if not isinstance(treatment, str):
        treatment = None
    return Diagnosis(
        label=entry.name,
        confidence=score,
        severity=parsed_severity or derive_severity(entry.name, score),
        treatment=treatment or entry.treatment,
        recommendations=[str(r) for r in recommendations],
        model_version=model_version,
        backend_timestamp=backend_timestamp,
    )


def create_classifier(
    settings: Settings,
    catalog: DiseaseCatalog | None = None,
) -> Classifier:
    """Factory function to create the configured classifier.

    Args:
        settings: Application settings; ``classifier_strategy`` picks
            "remote", "on_device", or "mock".
        catalog: Disease catalog override (defaults to the packaged one).
    """
    strategy = settings.classifier_strategy
    if strategy == "remote":
        from cassava.core.inference.providers.remote import RemoteClassifier

        return RemoteClassifier(
            base_url=settings.classifier_api_url,
            api_key=settings.classifier_api_key,
            timeout=settings.classifier_timeout_seconds,
            catalog=catalog,
        )
    elif strategy == "on_device":
        from cassava.core.inference.providers.on_device import OnDeviceClassifier

        return OnDeviceClassifier(
            model_path=settings.onnx_model_path,
            labels_path=settings.onnx_labels_path,
            catalog=catalog,
        )
    elif strategy == "mock":
        from cassava.core.inference.providers.mock import MockClassifier

        return MockClassifier(catalog=catalog)
    else:
        raise ValueError(f"Unknown classifier strategy: {strategy}")
