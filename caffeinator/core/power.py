"""Current power settings and active assertions, read from `pmset`."""
import re
import subprocess
from dataclasses import dataclass, field
from typing import Optional

from .errors import CaffeinatorError


@dataclass
class PowerProfile:
    """Power source, sleep timers (minutes) and assertions held system-wide."""
    source: str = "Unknown"
    display_sleep: Optional[int] = None
    disk_sleep: Optional[int] = None
    system_sleep: Optional[int] = None
    assertions: list = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "source": self.source,
            "display_sleep": self.display_sleep,
            "disk_sleep": self.disk_sleep,
            "system_sleep": self.system_sleep,
            "assertions": self.assertions,
        }


def parse_power_source(output: str) -> str:
    if "AC Power" in output:
        return "AC Power"
    if "Battery Power" in output:
        return "Battery"
    return "Unknown"


def parse_pmset_value(output: str, key: str) -> Optional[int]:
    """Read one numeric setting from `pmset -g`, e.g. ' displaysleep   10'."""
    for line in output.splitlines():
        parts = line.split()
        if len(parts) >= 2 and parts[0] == key:
            try:
                return int(parts[1])
            except ValueError:
                return None
    return None


_ASSERTION_LINE = re.compile(
    r"^\s*pid\s+(?P<pid>\d+)\((?P<process>[^)]*)\):\s*\[[^\]]*\]\s*\S+\s+(?P<type>\S+)"
)


def parse_assertions(output: str) -> list[str]:
    """Extract 'Type: PID n (process)' lines from `pmset -g assertions`."""
    assertions = []
    in_listed = False

    for line in output.splitlines():
        if "Listed by owning process" in line:
            in_listed = True
            continue
        if not in_listed:
            continue
        if line.strip() and not line.startswith(" ") and not line.startswith("\t"):
            # Next section header
            break

        match = _ASSERTION_LINE.match(line)
        if match:
            assertions.append(
                f"{match.group('type')}: PID {match.group('pid')} ({match.group('process')})"
            )

    return assertions


def _run_pmset(*args: str) -> str:
    try:
        result = subprocess.run(
            ["pmset", *args],
            capture_output=True,
            text=True,
            timeout=5,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        raise CaffeinatorError(f"Failed to run pmset: {e}") from e
    return result.stdout


def get_power_profile() -> PowerProfile:
    settings = _run_pmset("-g")
    assertions = _run_pmset("-g", "assertions")

    return PowerProfile(
        source=parse_power_source(settings),
        display_sleep=parse_pmset_value(settings, "displaysleep"),
        disk_sleep=parse_pmset_value(settings, "disksleep"),
        system_sleep=parse_pmset_value(settings, "sleep"),
        assertions=parse_assertions(assertions),
    )
