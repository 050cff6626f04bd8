"""Tests for confidence normalization and severity derivation."""

from __future__ import annotations

import pytest

from cassava.core.errors import MalformedResponseError
from cassava.core.inference.severity import derive_severity, normalize_confidence
from cassava.core.storage.models import Severity


class TestNormalizeConfidence:
    @pytest.mark.parametrize(
        "value, expected",
        [
            (0.0, 0.0),
            (1, 1.0),
            (0.875, 0.875),
            ("0.42", 0.42),
            ("92.5%", 0.925),
            ("85%", 0.85),
            (" 100 % ", 1.0),
        ],
    )
    def test_accepted_forms(self, value, expected):
        assert normalize_confidence(value) == pytest.approx(expected)

    @pytest.mark.parametrize(
        "value",
        [None, True, "", "high", "-5%", "150%", 1.2, -0.01, float("nan"), [0.5], {"v": 1}],
    )
    def test_rejected_forms(self, value):
        with pytest.raises(MalformedResponseError):
            normalize_confidence(value)


class TestDeriveSeverity:
    def test_boundaries_are_exclusive(self):
        assert derive_severity("Cassava Mosaic Disease", 0.6) == Severity.LOW
        assert derive_severity("Cassava Mosaic Disease", 0.61) == Severity.MODERATE
        assert derive_severity("Cassava Mosaic Disease", 0.8) == Severity.MODERATE
        assert derive_severity("Cassava Mosaic Disease", 0.81) == Severity.HIGH

    def test_low_confidence_disease_is_low(self):
        assert derive_severity("Cassava Brown Streak Disease", 0.3) == Severity.LOW

    def test_healthy_always_low(self):
        assert derive_severity("Healthy", 0.99) == Severity.LOW
        assert derive_severity("cassava_HEALTHY", 0.95) == Severity.LOW


class TestSeverityParse:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("Faible", Severity.LOW),
            ("Modérée", Severity.MODERATE),
            ("medium", Severity.MODERATE),
            ("Élevée", Severity.HIGH),
            ("HIGH", Severity.HIGH),
            (Severity.LOW, Severity.LOW),
            (None, None),
            ("", None),
            ("catastrophic", None),
        ],
    )
    def test_backend_spellings(self, raw, expected):
        assert Severity.parse(raw) == expected
