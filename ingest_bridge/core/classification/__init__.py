"""Clasificación de payloads - Detección de formato y extracción de campos."""

from .classifier import classify
from .extractors import UNKNOWN_DEVICE, extract_device_id, extract_timestamp, infer_level

__all__ = [
    "classify",
    "UNKNOWN_DEVICE",
    "extract_device_id",
    "extract_timestamp",
    "infer_level",
]
