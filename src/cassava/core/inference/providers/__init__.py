"""Classifier implementations."""

from cassava.core.inference.providers.mock import MockClassifier
from cassava.core.inference.providers.on_device import OnDeviceClassifier
from cassava.core.inference.providers.remote import RemoteClassifier

__all__ = ["MockClassifier", "OnDeviceClassifier", "RemoteClassifier"]
