"""Tests for the disease catalog and diagnosis building."""

from __future__ import annotations

import pytest

from cassava.core.errors import MalformedResponseError
from cassava.core.inference.catalog import get_default_catalog, load_catalog
from cassava.core.inference.provider import build_diagnosis
from cassava.core.storage.models import Severity


@pytest.fixture
def catalog():
    return get_default_catalog()


class TestLookup:
    @pytest.mark.parametrize(
        "label", ["CMD", "cmd", "Cassava_Mosaic", "cassava mosaic disease", "Cassava Mosaic Disease (CMD)"]
    )
    def test_aliases_resolve_to_canonical_name(self, catalog, label):
        entry = catalog.lookup(label)
        assert entry.name == "Cassava Mosaic Disease"
        assert entry.known

    def test_all_five_classes_present(self, catalog):
        codes = {e.code for e in catalog.entries}
        assert codes == {"CBB", "CBSD", "CGM", "CMD", "HEALTHY"}

    def test_unknown_label_gets_generic_advice(self, catalog):
        entry = catalog.lookup("Leaf Rust")
        assert entry.known is False
        assert entry.name == "Leaf Rust"
        assert "extension" in entry.treatment.lower()
        assert entry.recommendations

    def test_healthy_flag(self, catalog):
        assert catalog.lookup("healthy").healthy is True

    def test_custom_catalog_file(self, tmp_path):
        path = tmp_path / "catalog.yaml"
        path.write_text(
            "diseases:\n"
            "  - code: XYZ\n"
            "    name: Test Disease\n"
            "    aliases: [xyz-1]\n"
            "    treatment: Do something.\n"
            "    recommendations: [one, two]\n",
            encoding="utf-8",
        )
        custom = load_catalog(path)
        assert custom.lookup("XYZ 1").name == "Test Disease"
        assert custom.lookup("other").recommendations  # default unknown advice

    def test_to_dict(self, catalog):
        data = catalog.to_dict()
        assert len(data["diseases"]) == 5
        assert {"code", "name", "healthy", "treatment", "recommendations"} <= set(data["diseases"][0])


class TestBuildDiagnosis:
    def test_enriches_from_catalog(self, catalog):
        diagnosis = build_diagnosis("cbsd", "91%", catalog=catalog)
        assert diagnosis.label == "Cassava Brown Streak Disease"
        assert diagnosis.confidence == pytest.approx(0.91)
        assert diagnosis.severity == Severity.HIGH
        assert diagnosis.recommendations

    def test_backend_fields_take_precedence(self, catalog):
        diagnosis = build_diagnosis(
            "CMD",
            0.7,
            catalog=catalog,
            severity="Élevée",
            treatment="Backend treatment",
            recommendations=["Backend advice"],
        )
        assert diagnosis.severity == Severity.HIGH
        assert diagnosis.treatment == "Backend treatment"
        assert diagnosis.recommendations == ["Backend advice"]

    def test_unparseable_backend_severity_is_derived(self, catalog):
        diagnosis = build_diagnosis("CMD", 0.7, catalog=catalog, severity="???")
        assert diagnosis.severity == Severity.MODERATE

    @pytest.mark.parametrize("label", [None, "", "   ", 42])
    def test_missing_label_is_malformed(self, catalog, label):
        with pytest.raises(MalformedResponseError):
            build_diagnosis(label, 0.9, catalog=catalog)

    def test_out_of_range_confidence_is_malformed(self, catalog):
        with pytest.raises(MalformedResponseError):
            build_diagnosis("CMD", 1.5, catalog=catalog)
