"""Disease catalog: display names, treatments and recommendations per label.

Loaded from YAML (``diseases.yaml`` next to this module by default).
Classifier labels are matched against names, codes and aliases after
normalization, so ``"CMD"``, ``"Cassava_Mosaic"`` and
``"Cassava Mosaic Disease"`` all resolve to the same entry.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CATALOG_PATH = Path(__file__).resolve().parent / "diseases.yaml"

_GENERIC_TREATMENT = "Consult an agricultural extension expert before treating the crop."
_GENERIC_RECOMMENDATIONS = ["Consult an agricultural extension expert"]


def _normalize(label: str) -> str:
    return re.sub(r"[^a-z0-9]+", " ", label.lower()).strip()


@dataclass
class DiseaseEntry:
    code: str
    name: str
    treatment: str
    recommendations: list[str] = field(default_factory=list)
    aliases: list[str] = field(default_factory=list)
    healthy: bool = False
    known: bool = True


class DiseaseCatalog:
    """Lookup table from classifier labels to catalog entries."""

    def __init__(self, entries: list[DiseaseEntry], unknown: DiseaseEntry) -> None:
        self._entries = list(entries)
        self._unknown = unknown
        self._index: dict[str, DiseaseEntry] = {}
        for entry in self._entries:
            for key in (entry.code, entry.name, *entry.aliases):
                self._index[_normalize(key)] = entry

    @property
    def entries(self) -> list[DiseaseEntry]:
        return list(self._entries)

    def lookup(self, label: str) -> DiseaseEntry:
        """Return the entry for ``label``, or the generic unknown entry.

        The unknown entry keeps the original label as its name.
        """
        entry = self._index.get(_normalize(label or ""))
        if entry is not None:
            return entry
        logger.info("Label %r not in disease catalog; using generic advice", label)
        return DiseaseEntry(
            code="UNKNOWN",
            name=label,
            treatment=self._unknown.treatment,
            recommendations=list(self._unknown.recommendations),
            known=False,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "diseases": [
                {
                    "code": e.code,
                    "name": e.name,
                    "healthy": e.healthy,
                    "treatment": e.treatment,
                    "recommendations": list(e.recommendations),
                }
                for e in self._entries
            ],
        }


def load_catalog(path: str | Path | None = None) -> DiseaseCatalog:
    """Parse a catalog YAML file into a DiseaseCatalog."""
    path = Path(path) if path is not None else DEFAULT_CATALOG_PATH
    with open(path, encoding="utf-8") as f:
        data: dict[str, Any] = yaml.safe_load(f) or {}

    entries = [
        DiseaseEntry(
            code=item["code"],
            name=item["name"],
            treatment=str(item.get("treatment", "")).strip(),
            recommendations=list(item.get("recommendations", [])),
            aliases=[str(a) for a in item.get("aliases", [])],
            healthy=bool(item.get("healthy", False)),
        )
        for item in data.get("diseases", [])
    ]

    unknown_data = data.get("unknown", {})
    unknown = DiseaseEntry(
        code="UNKNOWN",
        name="Unknown",
        treatment=str(unknown_data.get("treatment", _GENERIC_TREATMENT)).strip(),
        recommendations=list(unknown_data.get("recommendations", _GENERIC_RECOMMENDATIONS)),
        known=False,
    )
    logger.debug("Loaded %d disease entries from %s", len(entries), path)
    return DiseaseCatalog(entries, unknown)


@lru_cache(maxsize=1)
def get_default_catalog() -> DiseaseCatalog:
    """The packaged catalog, parsed once per process."""
    return load_catalog()
