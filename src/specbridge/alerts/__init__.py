"""
Alerts Module
=============

Debounced multi-channel PPE alerts.

Components:
    - AlertStateMachine: per-category cooldown and clear transitions
    - AlertFanout: independent delivery to every channel
    - NetworkAlertChannel: relay violation side channel
    - LocalFeedback: wearer-side audio/haptic output
"""

from specbridge.alerts.state_machine import (
    ALERT_MESSAGES,
    AlertCategory,
    AlertEvent,
    AlertEventKind,
    AlertState,
    AlertStateMachine,
)
from specbridge.alerts.feedback import (
    CommandFeedbackDevice,
    FeedbackDevice,
    FeedbackError,
    LocalFeedback,
    LoggingFeedbackDevice,
    create_feedback_device,
)
from specbridge.alerts.fanout import AlertChannel, AlertFanout, NetworkAlertChannel

__all__ = [
    "ALERT_MESSAGES",
    "AlertCategory",
    "AlertEvent",
    "AlertEventKind",
    "AlertState",
    "AlertStateMachine",
    "AlertChannel",
    "AlertFanout",
    "NetworkAlertChannel",
    "CommandFeedbackDevice",
    "FeedbackDevice",
    "FeedbackError",
    "LocalFeedback",
    "LoggingFeedbackDevice",
    "create_feedback_device",
]
