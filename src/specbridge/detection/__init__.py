"""
Detection Module
================

Periodic PPE violation detection.

Components:
    - ViolationCategory / ViolationClassification: Detector output
    - OpenRouterInferenceClient: Remote vision model backend
    - ViolationDetector: Single-flight periodic loop

Design Philosophy:
    The vision model is a pluggable black box. The detector reasons over
    four booleans, never over pixels.
"""

from specbridge.detection.classification import (
    Observation,
    ViolationCategory,
    ViolationClassification,
    categorize,
    classify,
    indeterminate,
)
from specbridge.detection.inference import (
    DETECTION_PROMPT,
    InferenceClient,
    InferenceError,
    OpenRouterInferenceClient,
    classify_response,
    parse_observation,
)
from specbridge.detection.detector import DetectorState, ViolationDetector

__all__ = [
    "Observation",
    "ViolationCategory",
    "ViolationClassification",
    "categorize",
    "classify",
    "indeterminate",
    "DETECTION_PROMPT",
    "InferenceClient",
    "InferenceError",
    "OpenRouterInferenceClient",
    "classify_response",
    "parse_observation",
    "DetectorState",
    "ViolationDetector",
]
