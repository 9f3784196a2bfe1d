"""
Alert State Machine
===================

Debounced raise/clear decisions over detector classifications.

Per alert category (FOOTWEAR, HANDWEAR) the machine keeps an AlertState:
`active` and `last_raised_at`.

Transition Rules:
    Violation for a category:
        inactive                        -> raise (active, stamp time)
        active, cooldown elapsed        -> raise again (re-alert)
        active, within cooldown         -> suppress (no event)

    COMPLIANT, nothing visible, or INDETERMINATE:
        any category active             -> all inactive, one CLEAR event
        none active                     -> nothing

    reset(): all inactive, no event (stream stop)

Cooldowns run on a monotonic clock. Event timestamps are wall-clock UNIX
milliseconds.

Occlusion is treated as compliant: a frame where the wearer's feet and
hands are out of view clears active alerts.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from specbridge.detection.classification import ViolationCategory, ViolationClassification


logger = logging.getLogger(__name__)


class AlertCategory(str, Enum):
    """Independently debounced alert categories."""

    FOOTWEAR = "shoes"
    HANDWEAR = "gloves"


class AlertEventKind(str, Enum):
    RAISE = "raise"
    CLEAR = "clear"


ALERT_MESSAGES: Dict[ViolationCategory, str] = {
    ViolationCategory.FOOTWEAR: "Shoes required!",
    ViolationCategory.HANDWEAR: "Gloves required!",
    ViolationCategory.BOTH: "Shoes and gloves required!",
}


@dataclass
class AlertState:
    """Debounce state of one category."""

    active: bool = False
    last_raised_at: Optional[float] = None

    def cooldown_elapsed(self, now: float, cooldown: float) -> bool:
        return self.last_raised_at is None or now - self.last_raised_at >= cooldown


@dataclass(frozen=True)
class AlertEvent:
    """
    One logical alert dispatched to every fanout channel.

    Attributes:
        kind: RAISE or CLEAR
        categories: Categories raised by this event (empty for CLEAR)
        wire_category: Category reported to the relay ("shoes", "gloves", "both")
        message: Human-readable alert text
        timestamp: UNIX milliseconds
    """

    kind: AlertEventKind
    categories: Tuple[AlertCategory, ...] = ()
    wire_category: str = ""
    message: str = ""
    timestamp: int = field(default_factory=lambda: int(time.time() * 1000))

    def __repr__(self) -> str:
        names = ",".join(c.value for c in self.categories)
        return f"AlertEvent({self.kind.value}, [{names}])"


class AlertStateMachine:
    """
    Per-category cooldown/hysteresis over classifications.

    Only the detector loop drives this machine, so it needs no locking.

    Attributes:
        cooldown: Seconds before an active category may raise again
        clock: Monotonic time source for cooldowns
        raised_count: RAISE events emitted
        suppressed_count: Violations swallowed by cooldown
        cleared_count: CLEAR events emitted
    """

    def __init__(
        self,
        cooldown: float = 10.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.cooldown = cooldown
        self.clock = clock
        self._states: Dict[AlertCategory, AlertState] = {}
        self.raised_count: int = 0
        self.suppressed_count: int = 0
        self.cleared_count: int = 0
        logger.info(f"AlertStateMachine initialized: cooldown={cooldown}s")

    def state(self, category: AlertCategory) -> AlertState:
        """State of a category, created on first use."""
        if category not in self._states:
            self._states[category] = AlertState()
        return self._states[category]

    @property
    def any_active(self) -> bool:
        return any(state.active for state in self._states.values())

    def active_categories(self) -> List[AlertCategory]:
        return [c for c, s in self._states.items() if s.active]

    def process(
        self,
        classification: ViolationClassification,
        now: Optional[float] = None,
    ) -> List[AlertEvent]:
        """
        Apply one classification.

        Args:
            classification: Detector output for one tick
            now: Current reading of the cooldown clock (defaults to clock())

        Returns:
            Events to fan out (empty, one RAISE, or one CLEAR)
        """
        if now is None:
            now = self.clock()

        if not classification.is_violation:
            return self._clear()

        violating = []
        if classification.footwear:
            violating.append(AlertCategory.FOOTWEAR)
        if classification.handwear:
            violating.append(AlertCategory.HANDWEAR)

        raised = []
        for category in violating:
            state = self.state(category)
            if not state.active or state.cooldown_elapsed(now, self.cooldown):
                state.active = True
                state.last_raised_at = now
                raised.append(category)
            else:
                self.suppressed_count += 1
                logger.debug(f"{category.value} alert on cooldown, suppressed")

        if not raised:
            return []

        self.raised_count += 1
        event = AlertEvent(
            kind=AlertEventKind.RAISE,
            categories=tuple(raised),
            wire_category=classification.category.value,
            message=ALERT_MESSAGES[classification.category],
        )
        logger.info(f"Alert raised: {event.wire_category} ({event.message})")
        return [event]

    def reset(self) -> None:
        """Set every category inactive without emitting anything."""
        for state in self._states.values():
            state.active = False
        logger.info("AlertStateMachine reset")

    def _clear(self) -> List[AlertEvent]:
        if not self.any_active:
            return []

        for state in self._states.values():
            state.active = False

        self.cleared_count += 1
        logger.info("Alerts cleared")
        return [AlertEvent(kind=AlertEventKind.CLEAR)]

    def snapshot(self) -> Dict[str, dict]:
        return {
            category.value: {
                "active": state.active,
                "last_raised_at": state.last_raised_at,
            }
            for category, state in self._states.items()
        }
