"""
Violation Classification
========================

Maps the four visibility booleans returned by the vision model onto a
violation category.

Rules:
    footwear violation  <=>  feet visible AND NOT shoes visible
    handwear violation  <=>  hands visible AND NOT gloves visible

    both violations     -> BOTH
    one violation       -> FOOTWEAR or HANDWEAR
    none                -> COMPLIANT (also when nothing is visible)
    unparseable / error -> INDETERMINATE

Enum values double as the relay's wire category.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class ViolationCategory(str, Enum):
    """
    Outcome of one detector tick.

    Attributes:
        COMPLIANT: Nothing violating (or nothing to check)
        FOOTWEAR: Wearer's feet visible without shoes
        HANDWEAR: Wearer's hands visible without gloves
        BOTH: Footwear and handwear violations together
        INDETERMINATE: Inference failed or could not be parsed
    """

    COMPLIANT = "safe"
    FOOTWEAR = "shoes"
    HANDWEAR = "gloves"
    BOTH = "both"
    INDETERMINATE = "error"


@dataclass(frozen=True, slots=True)
class Observation:
    """What the vision model reported for one frame."""

    feet_visible: bool
    shoes_visible: bool
    hands_visible: bool
    gloves_visible: bool

    @property
    def footwear_violation(self) -> bool:
        return self.feet_visible and not self.shoes_visible

    @property
    def handwear_violation(self) -> bool:
        return self.hands_visible and not self.gloves_visible

    @property
    def anything_visible(self) -> bool:
        return self.feet_visible or self.hands_visible


@dataclass(frozen=True)
class ViolationClassification:
    """
    Classification produced once per completed detector tick.

    Attributes:
        category: Derived violation category
        evidence: Raw model text or error description (diagnostics only)
        observation: Parsed booleans, None when INDETERMINATE
        created_at: UNIX timestamp of creation
    """

    category: ViolationCategory
    evidence: str = ""
    observation: Optional[Observation] = None
    created_at: float = field(default_factory=time.time)

    @property
    def footwear(self) -> bool:
        return self.category in (ViolationCategory.FOOTWEAR, ViolationCategory.BOTH)

    @property
    def handwear(self) -> bool:
        return self.category in (ViolationCategory.HANDWEAR, ViolationCategory.BOTH)

    @property
    def is_violation(self) -> bool:
        return self.footwear or self.handwear

    def __repr__(self) -> str:
        return f"ViolationClassification({self.category.value})"


def categorize(observation: Observation) -> ViolationCategory:
    """Pure mapping from the four booleans to a category."""
    footwear = observation.footwear_violation
    handwear = observation.handwear_violation

    if footwear and handwear:
        return ViolationCategory.BOTH
    if footwear:
        return ViolationCategory.FOOTWEAR
    if handwear:
        return ViolationCategory.HANDWEAR
    return ViolationCategory.COMPLIANT


def classify(observation: Observation, evidence: str = "") -> ViolationClassification:
    """Build a classification from a parsed observation."""
    return ViolationClassification(
        category=categorize(observation),
        evidence=evidence,
        observation=observation,
    )


def indeterminate(evidence: str) -> ViolationClassification:
    """Classification for failed or unparseable inference."""
    return ViolationClassification(
        category=ViolationCategory.INDETERMINATE,
        evidence=evidence,
    )
