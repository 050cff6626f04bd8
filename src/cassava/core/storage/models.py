"""Data models for the analysis persistence layer."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

FAILURE_LABEL = "Analysis Failed"


class Severity(str, Enum):
    LOW = "low"
    MODERATE = "moderate"
    HIGH = "high"

    @classmethod
    def parse(cls, value: Any) -> Severity | None:
        """Map backend spellings ('Low', 'Modérée', 'medium', ...) onto the enum."""
        if value is None or value == "":
            return None
        if isinstance(value, Severity):
            return value
        text = str(value).strip().lower()
        aliases = {
            "low": cls.LOW,
            "faible": cls.LOW,
            "moderate": cls.MODERATE,
            "medium": cls.MODERATE,
            "modérée": cls.MODERATE,
            "moderee": cls.MODERATE,
            "high": cls.HIGH,
            "élevée": cls.HIGH,
            "elevee": cls.HIGH,
        }
        return aliases.get(text)


@dataclass
class AnalysisRecord:
    """One leaf diagnosis, local or remote.

    ``synced`` is True only when the canonical copy lives in the remote store;
    a local row with ``synced=True`` is an exact mirror of the remote row.
    """

    id: str
    user_id: str
    image_ref: str  # local path/URI or remote public URL
    disease_label: str
    confidence_score: float
    severity_level: Severity | None = None
    treatment_text: str = ""
    recommendations: list[str] = field(default_factory=list)
    analysis_metadata: dict[str, Any] = field(default_factory=dict)
    created_at: str = ""  # ISO 8601
    synced: bool = False

    @property
    def is_failure(self) -> bool:
        return self.disease_label == FAILURE_LABEL

    def user_visible_fields(self) -> dict[str, Any]:
        """Fields a user sees in the history view."""
        return {
            "disease_label": self.disease_label,
            "confidence_score": self.confidence_score,
            "severity_level": self.severity_level.value if self.severity_level else None,
            "treatment_text": self.treatment_text,
            "recommendations": list(self.recommendations),
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "image_ref": self.image_ref,
            **self.user_visible_fields(),
            "analysis_metadata": dict(self.analysis_metadata),
            "created_at": self.created_at,
            "synced": self.synced,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AnalysisRecord:
        """Inverse of ``to_dict`` (used for sync queue payloads)."""
        return cls(
            id=data["id"],
            user_id=data["user_id"],
            image_ref=data.get("image_ref", ""),
            disease_label=data["disease_label"],
            confidence_score=float(data["confidence_score"]),
            severity_level=Severity.parse(data.get("severity_level")),
            treatment_text=data.get("treatment_text") or "",
            recommendations=list(data.get("recommendations") or []),
            analysis_metadata=dict(data.get("analysis_metadata") or {}),
            created_at=data.get("created_at", ""),
            synced=bool(data.get("synced", False)),
        )

    # ------------------------------------------------------------------
    # Local schema
    # ------------------------------------------------------------------

    def to_row(self) -> tuple[Any, ...]:
        """Column values in ``analyses`` table order."""
        return (
            self.id,
            self.user_id,
            self.image_ref,
            self.disease_label,
            self.confidence_score,
            self.severity_level.value if self.severity_level else None,
            self.treatment_text,
            json.dumps(self.recommendations, separators=(",", ":")),
            json.dumps(self.analysis_metadata, separators=(",", ":")),
            self.created_at,
            1 if self.synced else 0,
        )

    @classmethod
    def from_row(cls, row: Any) -> AnalysisRecord:
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            image_ref=row["image_uri"],
            disease_label=row["disease_detected"],
            confidence_score=row["confidence_score"],
            severity_level=Severity.parse(row["severity_level"]),
            treatment_text=row["treatment_recommendation"] or "",
            recommendations=json.loads(row["recommendations"] or "[]"),
            analysis_metadata=json.loads(row["analysis_metadata"] or "{}"),
            created_at=row["created_at"],
            synced=bool(row["synced"]),
        )

    # ------------------------------------------------------------------
    # Remote schema (cassava_analyses table)
    # ------------------------------------------------------------------

    def to_remote_payload(self) -> dict[str, Any]:
        """Insert payload for the remote table. ``user_id`` is set by the client."""
        return {
            "image_url": self.image_ref,
            "disease_detected": self.disease_label,
            "confidence_score": self.confidence_score,
            "severity_level": self.severity_level.value if self.severity_level else None,
            "treatment_recommendation": self.treatment_text,
            "recommendations": list(self.recommendations),
            "analysis_metadata": dict(self.analysis_metadata),
            "created_at": self.created_at,
        }

    @classmethod
    def from_remote(cls, row: dict[str, Any]) -> AnalysisRecord:
        return cls(
            id=str(row["id"]),
            user_id=str(row.get("user_id") or ""),
            image_ref=row.get("image_url") or "",
            disease_label=row.get("disease_detected") or "",
            confidence_score=float(row.get("confidence_score") or 0.0),
            severity_level=Severity.parse(row.get("severity_level")),
            treatment_text=row.get("treatment_recommendation") or "",
            recommendations=list(row.get("recommendations") or []),
            analysis_metadata=dict(row.get("analysis_metadata") or {}),
            created_at=row.get("created_at") or "",
            synced=True,
        )


@dataclass
class AnalysisResult:
    """A record as handed to callers, tagged with where it lives."""

    record: AnalysisRecord
    is_offline: bool

    @property
    def id(self) -> str:
        return self.record.id

    def to_dict(self) -> dict[str, Any]:
        return {**self.record.to_dict(), "is_offline": self.is_offline}


@dataclass
class SyncQueueEntry:
    """Durable marker that local data is not yet reflected remotely.

    ``entry_type`` is ``"analysis"`` (payload is the full record at enqueue
    time) or ``"deletion"`` (payload carries the remote id to delete).
    """

    id: int
    entry_type: str
    record_id: str
    payload: dict[str, Any]
    enqueued_at: str
    attempts: int = 0
    last_error: str | None = None

    @classmethod
    def from_row(cls, row: Any) -> SyncQueueEntry:
        return cls(
            id=row["id"],
            entry_type=row["entry_type"],
            record_id=row["record_id"],
            payload=json.loads(row["payload_json"] or "{}"),
            enqueued_at=row["enqueued_at"],
            attempts=row["attempts"],
            last_error=row["last_error"],
        )


@dataclass
class SyncReport:
    """Outcome of one queue drain."""

    attempted: int = 0
    synced: int = 0
    failed: int = 0
    remaining: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "attempted": self.attempted,
            "synced": self.synced,
            "failed": self.failed,
            "remaining": self.remaining,
        }
