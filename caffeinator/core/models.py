"""Value types shared by the session manager, process monitor and front ends."""
import re
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional


class SleepMode(Enum):
    """Sleep-prevention capability backed by a caffeinate flag."""

    DISPLAY = "display"
    IDLE = "idle"
    SYSTEM = "system"
    DISK = "disk"

    @property
    def flag(self) -> str:
        return _MODE_FLAGS[self]

    @property
    def label(self) -> str:
        return self.value.capitalize()

    @property
    def description(self) -> str:
        return _MODE_DESCRIPTIONS[self]

    @classmethod
    def from_flag(cls, flag: str) -> "SleepMode":
        for mode, mode_flag in _MODE_FLAGS.items():
            if mode_flag == flag:
                return mode
        raise ValueError(f"Unknown caffeinate flag: {flag}")

    @classmethod
    def parse_set(cls, values: Iterable[str]) -> frozenset:
        """Build a mode set from names ('idle') or flags ('-i')."""
        modes = set()
        for value in values:
            if value.startswith("-"):
                modes.add(cls.from_flag(value))
            else:
                modes.add(cls(value.lower()))
        return frozenset(modes)


_MODE_FLAGS = {
    SleepMode.DISPLAY: "-d",
    SleepMode.IDLE: "-i",
    SleepMode.SYSTEM: "-s",
    SleepMode.DISK: "-m",
}

_MODE_DESCRIPTIONS = {
    SleepMode.DISPLAY: "Prevent display from sleeping",
    SleepMode.IDLE: "Prevent system from idle sleeping",
    SleepMode.SYSTEM: "Prevent system sleep (AC power only)",
    SleepMode.DISK: "Prevent disk from idle sleeping",
}


def sorted_modes(modes: Iterable[SleepMode]) -> list[SleepMode]:
    """Modes in a stable order (the order caffeinate flags are passed)."""
    order = list(SleepMode)
    return sorted(set(modes), key=order.index)


# ==================== DURATIONS ====================

def format_seconds(seconds: int) -> str:
    """Long form: '2 hours', '1h 30m', '45 minutes'."""
    hours = seconds // 3600
    minutes = (seconds % 3600) // 60
    if hours > 0 and minutes > 0:
        return f"{hours}h {minutes}m"
    if hours > 0:
        return f"{hours} hour{'s' if hours > 1 else ''}"
    if minutes > 0:
        return f"{minutes} minute{'s' if minutes > 1 else ''}"
    return f"{seconds} second{'s' if seconds != 1 else ''}"


def format_seconds_short(seconds: int) -> str:
    """Short form for compact UIs: '2h', '1h30m', '45m'."""
    hours = seconds // 3600
    minutes = (seconds % 3600) // 60
    if hours > 0 and minutes > 0:
        return f"{hours}h{minutes}m"
    if hours > 0:
        return f"{hours}h"
    if minutes > 0:
        return f"{minutes}m"
    return f"{seconds}s"


@dataclass(frozen=True)
class Duration:
    """Either a fixed span in seconds or indefinite (seconds is None)."""

    seconds: Optional[int] = None

    def __post_init__(self):
        if self.seconds is not None and self.seconds <= 0:
            raise ValueError(f"Fixed duration must be positive, got {self.seconds}")

    @classmethod
    def fixed(cls, seconds: int) -> "Duration":
        return cls(seconds=int(seconds))

    @classmethod
    def minutes(cls, minutes: int) -> "Duration":
        return cls(seconds=int(minutes) * 60)

    @classmethod
    def indefinite(cls) -> "Duration":
        return cls(seconds=None)

    @property
    def is_indefinite(self) -> bool:
        return self.seconds is None

    @property
    def id(self) -> str:
        """Stable identifier used when persisting a default duration."""
        if self.seconds is None:
            return "indefinite"
        for preset_id, seconds in _PRESET_IDS.items():
            if seconds == self.seconds:
                return preset_id
        return f"custom-{self.seconds}"

    @classmethod
    def from_id(cls, duration_id: str) -> Optional["Duration"]:
        if duration_id == "indefinite":
            return cls.indefinite()
        if duration_id in _PRESET_IDS:
            return cls.fixed(_PRESET_IDS[duration_id])
        if duration_id.startswith("custom-"):
            try:
                return cls.fixed(int(duration_id[len("custom-"):]))
            except ValueError:
                return None
        return None

    @property
    def display_name(self) -> str:
        if self.seconds is None:
            return "Indefinitely"
        return format_seconds(self.seconds)

    @property
    def short_name(self) -> str:
        if self.seconds is None:
            return "∞"
        return format_seconds_short(self.seconds)

    @classmethod
    def presets(cls) -> list["Duration"]:
        return [cls.fixed(seconds) for seconds in _PRESET_IDS.values()] + [cls.indefinite()]


_PRESET_IDS = {
    "30m": 30 * 60,
    "1h": 60 * 60,
    "2h": 2 * 60 * 60,
    "4h": 4 * 60 * 60,
}

_COMBINED_DURATION = re.compile(r"^(\d+)h(\d+)m$")
_SINGLE_DURATION = re.compile(r"^(\d+)([hms]?)$")
_UNIT_SECONDS = {"h": 3600, "m": 60, "s": 1, "": 60}


def parse_duration(text: str) -> Duration:
    """Parse '90' (minutes), '2h', '30m', '45s' or '1h30m'.

    Raises ValueError for anything else, including zero.
    """
    value = text.strip().lower()

    match = _COMBINED_DURATION.match(value)
    if match:
        seconds = int(match.group(1)) * 3600 + int(match.group(2)) * 60
        return Duration.fixed(seconds)

    match = _SINGLE_DURATION.match(value)
    if match:
        return Duration.fixed(int(match.group(1)) * _UNIT_SECONDS[match.group(2)])

    raise ValueError(f"Invalid duration: {text!r}")


# ==================== PRESETS ====================

@dataclass
class TimerPreset:
    """A user-editable timer shortcut. minutes == 0 means indefinite."""
    name: str
    minutes: int
    is_default: bool = False
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @property
    def duration(self) -> Duration:
        if self.minutes == 0:
            return Duration.indefinite()
        return Duration.minutes(self.minutes)

    @property
    def display_name(self) -> str:
        if self.minutes == 0:
            return "Indefinite"
        return format_seconds(self.minutes * 60)

    @property
    def short_name(self) -> str:
        return self.duration.short_name

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "minutes": self.minutes,
            "is_default": self.is_default,
            "display_name": self.display_name,
        }


def default_timer_presets() -> list[TimerPreset]:
    return [
        TimerPreset(name="30 minutes", minutes=30, is_default=True),
        TimerPreset(name="1 hour", minutes=60, is_default=True),
        TimerPreset(name="2 hours", minutes=120, is_default=True),
        TimerPreset(name="4 hours", minutes=240, is_default=True),
        TimerPreset(name="Indefinite", minutes=0, is_default=True),
    ]


@dataclass(frozen=True)
class DeveloperPreset:
    """Pre-configured duration and modes for a common developer workflow."""
    id: str
    name: str
    duration: Duration
    modes: frozenset
    description: str

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "duration_seconds": self.duration.seconds,
            "modes": [m.value for m in sorted_modes(self.modes)],
            "description": self.description,
        }


DEVELOPER_PRESETS = [
    DeveloperPreset("docker", "Docker Build", Duration.fixed(4 * 3600),
                    frozenset({SleepMode.IDLE, SleepMode.DISK}), "Container builds & pulls"),
    DeveloperPreset("xcode", "Xcode Build", Duration.fixed(2 * 3600),
                    frozenset({SleepMode.IDLE, SleepMode.DISK}), "iOS/macOS compilation"),
    DeveloperPreset("npm", "npm/pnpm Install", Duration.fixed(3600),
                    frozenset({SleepMode.IDLE}), "Package installation"),
    DeveloperPreset("deploy", "Deployment", Duration.indefinite(),
                    frozenset({SleepMode.IDLE, SleepMode.SYSTEM}), "CI/CD & deployments"),
    DeveloperPreset("presentation", "Presentation", Duration.indefinite(),
                    frozenset({SleepMode.DISPLAY, SleepMode.IDLE}), "Meetings & demos"),
    DeveloperPreset("ml", "ML Training", Duration.indefinite(),
                    frozenset({SleepMode.IDLE, SleepMode.SYSTEM, SleepMode.DISK}),
                    "Long-running computations"),
]


# ==================== PROCESSES ====================

@dataclass
class WatchedProcessEntry:
    """An application the user may bind a session to."""
    name: str
    bundle_identifier: Optional[str] = None
    is_built_in: bool = False
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def matches(self, process: "RunningProcess") -> bool:
        if self.bundle_identifier and process.bundle_identifier:
            if self.bundle_identifier.lower() == process.bundle_identifier.lower():
                return True
        return self.name.lower() in (process.name.lower(), process.display_name.lower())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "bundle_identifier": self.bundle_identifier,
            "is_built_in": self.is_built_in,
        }


_BUILT_IN_WATCH_LIST = [
    # IDEs & editors
    ("Xcode", "com.apple.dt.Xcode"),
    ("Visual Studio Code", "com.microsoft.VSCode"),
    ("Cursor", "com.todesktop.230313mzl4w4u92"),
    ("Zed", "dev.zed.Zed"),
    # JetBrains
    ("IntelliJ IDEA", "com.jetbrains.intellij"),
    ("WebStorm", "com.jetbrains.WebStorm"),
    ("PyCharm", "com.jetbrains.pycharm"),
    ("GoLand", "com.jetbrains.goland"),
    ("CLion", "com.jetbrains.CLion"),
    ("RubyMine", "com.jetbrains.rubymine"),
    ("DataGrip", "com.jetbrains.datagrip"),
    # Terminals
    ("Terminal", "com.apple.Terminal"),
    ("iTerm2", "com.googlecode.iterm2"),
    ("Warp", "dev.warp.Warp-Stable"),
    ("Alacritty", "org.alacritty"),
    ("Kitty", "net.kovidgoyal.kitty"),
    # Containers
    ("Docker", "com.docker.docker"),
    ("Podman", "com.redhat.podman-desktop"),
    # Virtual machines
    ("Parallels Desktop", "com.parallels.desktop.console"),
    ("VMware Fusion", "com.vmware.fusion"),
    ("UTM", "com.utmapp.UTM"),
    ("VirtualBox", "org.virtualbox.app.VirtualBox"),
    # Design
    ("Figma", "com.figma.Desktop"),
    ("Sketch", "com.bohemiancoding.sketch3"),
    # Video / streaming
    ("OBS", "com.obsproject.obs-studio"),
    ("Zoom", "us.zoom.xos"),
]


def built_in_watch_list() -> list[WatchedProcessEntry]:
    """Seed entries, rebuilt at every startup and never persisted."""
    return [
        WatchedProcessEntry(name=name, bundle_identifier=bundle_id, is_built_in=True,
                            id=f"builtin-{bundle_id.lower()}")
        for name, bundle_id in _BUILT_IN_WATCH_LIST
    ]


@dataclass(frozen=True)
class RunningProcess:
    """A live OS process as reported by the process source."""
    pid: int
    name: str
    bundle_identifier: Optional[str] = None
    app_name: Optional[str] = None
    started_at: Optional[float] = None

    @property
    def display_name(self) -> str:
        return self.app_name or self.name

    @property
    def app_key(self) -> str:
        """Identifies the application a process belongs to."""
        return (self.bundle_identifier or self.display_name).lower()

    def to_dict(self) -> dict:
        return {
            "pid": self.pid,
            "name": self.name,
            "display_name": self.display_name,
            "bundle_identifier": self.bundle_identifier,
        }


# ==================== STATUS ====================

@dataclass(frozen=True)
class StatusSnapshot:
    """Immutable point-in-time view of the session."""
    is_active: bool = False
    modes: frozenset = frozenset()
    remaining_seconds: Optional[int] = None
    total_seconds: Optional[int] = None
    watched_process: Optional[str] = None
    session_id: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "is_active": self.is_active,
            "mode": [m.value for m in sorted_modes(self.modes)] if self.modes else None,
            "remaining_seconds": self.remaining_seconds,
            "total_seconds": self.total_seconds,
            "watched_process": self.watched_process,
        }


INACTIVE = StatusSnapshot()
