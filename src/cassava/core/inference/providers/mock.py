"""Mock classifier for testing."""

from __future__ import annotations

from cassava.core.errors import InferenceError
from cassava.core.inference.catalog import DiseaseCatalog
from cassava.core.inference.provider import BackendHealth, Diagnosis, build_diagnosis


class MockClassifier:
    """Mock classifier for testing; returns a canned diagnosis."""

    strategy = "mock"

    def __init__(
        self,
        catalog: DiseaseCatalog | None = None,
        label: str = "Cassava Mosaic Disease",
        confidence: float = 0.92,
        supports_offline: bool = True,
    ) -> None:
        self._catalog = catalog
        self.label = label
        self.confidence = confidence
        self.supports_offline = supports_offline
        self.fail_with: InferenceError | None = None
        self.ready = False
        self.closed = False
        self.call_count: int = 0
        self.last_image_ref: str = ""

    async def initialize(self) -> None:
        self.ready = True

    def is_ready(self) -> bool:
        return self.ready

    async def classify(self, image_ref: str) -> Diagnosis:
        self.call_count += 1
        self.last_image_ref = image_ref
        if self.fail_with is not None:
            raise self.fail_with
        return build_diagnosis(
            self.label,
            self.confidence,
            catalog=self._catalog,
            model_version="mock",
        )

    async def health_check(self) -> BackendHealth:
        return BackendHealth(status="online", latency_ms=0.0)

    async def aclose(self) -> None:
        self.closed = True
