"""Session manager, process monitor and the value types they share."""
from .errors import CaffeinatorError, SpawnFailure, ProcessNotFound
from .events import Event, EventBus, EventType
from .models import (
    Duration,
    SleepMode,
    StatusSnapshot,
    TimerPreset,
    DeveloperPreset,
    WatchedProcessEntry,
    RunningProcess,
    DEVELOPER_PRESETS,
    parse_duration,
)
from .process_watch import ProcessWatchMonitor
from .processes import ProcessSource, PsutilProcessSource
from .session import SessionManager

__all__ = [
    "CaffeinatorError",
    "SpawnFailure",
    "ProcessNotFound",
    "Event",
    "EventBus",
    "EventType",
    "Duration",
    "SleepMode",
    "StatusSnapshot",
    "TimerPreset",
    "DeveloperPreset",
    "WatchedProcessEntry",
    "RunningProcess",
    "DEVELOPER_PRESETS",
    "parse_duration",
    "ProcessWatchMonitor",
    "ProcessSource",
    "PsutilProcessSource",
    "SessionManager",
]
