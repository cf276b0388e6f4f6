from .character import CharacterRecord
from .step import (
    LogEntry,
    Notification,
    Step,
    StepStatus,
    StepUpdateResult,
    SubscriptionOptions,
    TaskLogLevel,
)

__all__ = [
    "CharacterRecord",
    "LogEntry",
    "Notification",
    "Step",
    "StepStatus",
    "StepUpdateResult",
    "SubscriptionOptions",
    "TaskLogLevel",
]
