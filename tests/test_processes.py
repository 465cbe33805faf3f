"""Tests for the psutil-backed process source and pgrep-style helpers."""
import plistlib
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import psutil

from caffeinator.core import processes
from caffeinator.core.models import RunningProcess
from caffeinator.core.processes import PsutilProcessSource, app_bundle_info


def fake_proc(pid, name):
    return SimpleNamespace(info={"pid": pid, "name": name})


PROCESS_TABLE = [
    fake_proc(10, "caffeinate"),
    fake_proc(11, "Caffeinate"),
    fake_proc(12, "make"),
    fake_proc(13, "cmake"),
    fake_proc(14, None),
]


class TestAppBundleInfo:

    def test_reads_info_plist(self, tmp_path):
        contents = tmp_path / "Tool.app" / "Contents"
        contents.mkdir(parents=True)
        with open(contents / "Info.plist", "wb") as f:
            plistlib.dump({"CFBundleName": "My Tool", "CFBundleIdentifier": "com.example.tool"}, f)

        exe = str(contents / "MacOS" / "tool")

        assert app_bundle_info(exe) == ("My Tool", "com.example.tool")

    def test_nested_helper_reports_its_own_bundle(self, tmp_path):
        outer = tmp_path / "Visual Studio Code.app" / "Contents"
        helper = outer / "Frameworks" / "Code Helper (Renderer).app" / "Contents"
        helper.mkdir(parents=True)
        with open(outer / "Info.plist", "wb") as f:
            plistlib.dump({"CFBundleName": "Code", "CFBundleIdentifier": "com.microsoft.VSCode"}, f)
        with open(helper / "Info.plist", "wb") as f:
            plistlib.dump({"CFBundleName": "Code Helper (Renderer)",
                           "CFBundleIdentifier": "com.microsoft.VSCode.helper.Renderer"}, f)

        main_info = app_bundle_info(str(outer / "MacOS" / "Electron"))
        helper_info = app_bundle_info(str(helper / "MacOS" / "Code Helper (Renderer)"))

        assert main_info == ("Code", "com.microsoft.VSCode")
        assert helper_info == ("Code Helper (Renderer)", "com.microsoft.VSCode.helper.Renderer")

    def test_missing_plist_uses_bundle_name(self, tmp_path):
        exe = str(tmp_path / "Ghost.app" / "Contents" / "MacOS" / "ghost")

        assert app_bundle_info(exe) == ("Ghost", None)

    def test_plain_executable(self):
        assert app_bundle_info("/usr/bin/make") == (None, None)
        assert app_bundle_info("") == (None, None)


class TestPsutilProcessSource:

    def test_refresh_notifies_launches_and_terminations(self):
        old = RunningProcess(pid=1, name="old")
        kept = RunningProcess(pid=2, name="kept")
        new = RunningProcess(pid=3, name="new")
        source = PsutilProcessSource()
        source._known = {(1, 100.0): old, (2, 100.0): kept}

        launched, terminated = [], []
        source.subscribe(launched.append, terminated.append)

        with patch.object(source, "_snapshot", return_value={(2, 100.0): kept, (3, 200.0): new}):
            source.refresh()

        assert launched == [new]
        assert terminated == [old]
        assert sorted(p.pid for p in source.running()) == [2, 3]

    def test_reused_pid_is_a_new_process(self):
        before = RunningProcess(pid=5, name="first")
        after = RunningProcess(pid=5, name="second")
        source = PsutilProcessSource()
        source._known = {(5, 100.0): before}

        launched, terminated = [], []
        source.subscribe(launched.append, terminated.append)

        with patch.object(source, "_snapshot", return_value={(5, 300.0): after}):
            source.refresh()

        assert terminated == [before]
        assert launched == [after]

    def test_unsubscribe(self):
        source = PsutilProcessSource()
        launched = []
        source.subscribe(launched.append, launched.append)
        source.unsubscribe(launched.append, launched.append)

        with patch.object(source, "_snapshot", return_value={(9, 1.0): RunningProcess(pid=9, name="x")}):
            source.refresh()

        assert launched == []


class TestHelpers:

    def test_find_pids_exact(self):
        with patch.object(processes.psutil, "process_iter", return_value=PROCESS_TABLE):
            assert processes.find_pids("caffeinate") == [10]

    def test_find_pids_ignore_case(self):
        with patch.object(processes.psutil, "process_iter", return_value=PROCESS_TABLE):
            assert processes.find_pids("caffeinate", ignore_case=True) == [10, 11]

    def test_find_process_by_name_prefers_exact_match(self):
        with patch.object(processes.psutil, "process_iter", return_value=PROCESS_TABLE):
            assert processes.find_process_by_name("make") == 12
            assert processes.find_process_by_name("MAK") == 12
            assert processes.find_process_by_name("docker") is None

    def test_terminate_all(self):
        survivor = MagicMock(pid=10)
        vanished = MagicMock(pid=11)

        def make_process(pid):
            if pid == 11:
                raise psutil.NoSuchProcess(pid)
            return survivor

        with patch.object(processes, "find_pids", return_value=[10, 11]), \
                patch.object(processes.psutil, "Process", side_effect=make_process), \
                patch.object(processes.psutil, "wait_procs", return_value=([], [survivor])):
            stopped = processes.terminate_all("caffeinate")

        assert stopped == [10]
        survivor.terminate.assert_called_once()
        survivor.kill.assert_called_once()
        vanished.terminate.assert_not_called()
