"""Tests for pmset output parsing."""
from unittest.mock import patch

import pytest

from caffeinator.core import power
from caffeinator.core.errors import CaffeinatorError


PMSET_SETTINGS = """\
System-wide power settings:
Currently in use:
 standby              1
 Sleep On Power Button 1
 hibernatefile        /var/vm/sleepimage
 displaysleep         10
 disksleep            10
 sleep                1 (sleep prevented by caffeinate)
Now drawing from 'AC Power'
"""

PMSET_ASSERTIONS = """\
2024-05-01 10:00:00 +0200
Assertion status system-wide:
   BackgroundTask                 0
   PreventUserIdleSystemSleep     1
Listed by owning process:
   pid 123(caffeinate): [0x0000abcd00019a01] 00:00:05 PreventUserIdleSystemSleep named: "caffeinate command-line tool"
\tDetails: caffeinate asserting forever
   pid 456(coreaudiod): [0x0000abcd00019a02] 01:02:03 PreventUserIdleSleep named: "com.apple.audio.context"
Kernel Assertions: 0x4=USB
   id=500  level=255 0x4=USB mod=1/1/70, 10:00 AM description=com.apple.usb owner=AppleUSB
"""


class TestParsers:

    def test_power_source(self):
        assert power.parse_power_source(PMSET_SETTINGS) == "AC Power"
        assert power.parse_power_source("Now drawing from 'Battery Power'") == "Battery"
        assert power.parse_power_source("") == "Unknown"

    def test_pmset_values(self):
        assert power.parse_pmset_value(PMSET_SETTINGS, "displaysleep") == 10
        assert power.parse_pmset_value(PMSET_SETTINGS, "sleep") == 1
        assert power.parse_pmset_value(PMSET_SETTINGS, "hibernatefile") is None
        assert power.parse_pmset_value(PMSET_SETTINGS, "womp") is None

    def test_assertions(self):
        assert power.parse_assertions(PMSET_ASSERTIONS) == [
            "PreventUserIdleSystemSleep: PID 123 (caffeinate)",
            "PreventUserIdleSleep: PID 456 (coreaudiod)",
        ]

    def test_no_assertions_section(self):
        assert power.parse_assertions("Assertion status system-wide:\n") == []


class TestPowerProfile:

    def test_profile_from_pmset(self):
        outputs = {("-g",): PMSET_SETTINGS, ("-g", "assertions"): PMSET_ASSERTIONS}

        with patch.object(power, "_run_pmset", side_effect=lambda *args: outputs[args]):
            profile = power.get_power_profile()

        assert profile.to_dict() == {
            "source": "AC Power",
            "display_sleep": 10,
            "disk_sleep": 10,
            "system_sleep": 1,
            "assertions": [
                "PreventUserIdleSystemSleep: PID 123 (caffeinate)",
                "PreventUserIdleSleep: PID 456 (coreaudiod)",
            ],
        }

    def test_missing_pmset(self):
        with patch.object(power.subprocess, "run", side_effect=FileNotFoundError("pmset")):
            with pytest.raises(CaffeinatorError, match="Failed to run pmset"):
                power.get_power_profile()
