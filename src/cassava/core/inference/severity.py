"""Confidence normalization and severity derivation for classifier output."""

from __future__ import annotations

import math
import re
from typing import Any

from cassava.core.errors import MalformedResponseError
from cassava.core.storage.models import Severity

HIGH_THRESHOLD = 0.8
MODERATE_THRESHOLD = 0.6

_PERCENT_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*%\s*$")


def normalize_confidence(value: Any) -> float:
    """Return a confidence in [0, 1].

    Accepts a float/int already in [0, 1], a numeric string in that range,
    or a percentage string such as ``"92.5%"``.

    Raises:
        MalformedResponseError: For missing, non-numeric or out-of-range values.
    """
    if value is None or isinstance(value, bool):
        raise MalformedResponseError(f"Missing or invalid confidence: {value!r}")

    if isinstance(value, str):
        match = _PERCENT_RE.match(value)
        if match:
            result = float(match.group(1)) / 100.0
        else:
            try:
                result = float(value.strip())
            except ValueError:
                raise MalformedResponseError(f"Unparseable confidence: {value!r}") from None
    elif isinstance(value, (int, float)):
        result = float(value)
    else:
        raise MalformedResponseError(f"Unsupported confidence type: {type(value).__name__}")

    if math.isnan(result) or not 0.0 <= result <= 1.0:
        raise MalformedResponseError(f"Confidence out of range [0, 1]: {value!r}")
    return result


def is_healthy_label(label: str) -> bool:
    return "healthy" in label.lower()


def derive_severity(label: str, confidence: float) -> Severity:
    """Severity when the backend does not supply one.

    Healthy labels are always low. Otherwise strictly above 0.8 is high,
    strictly above 0.6 is moderate, anything else low.
    """
    if is_healthy_label(label):
        return Severity.LOW
    if confidence > HIGH_THRESHOLD:
        return Severity.HIGH
    if confidence > MODERATE_THRESHOLD:
        return Severity.MODERATE
    return Severity.LOW
