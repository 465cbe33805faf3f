"""Process table access: running applications and launch/exit notifications."""
import logging
import plistlib
import threading
from abc import ABC, abstractmethod
from functools import lru_cache
from pathlib import Path
from typing import Callable, Optional

import psutil

from .models import RunningProcess


logger = logging.getLogger(__name__)

ProcessCallback = Callable[[RunningProcess], None]


class ProcessSource(ABC):
    """Pushes process launch and termination notifications to subscribers."""

    def __init__(self):
        self._launch_handlers: list[ProcessCallback] = []
        self._terminate_handlers: list[ProcessCallback] = []

    @abstractmethod
    def running(self) -> list[RunningProcess]:
        """Return every process currently running."""
        pass

    def subscribe(self, on_launch: ProcessCallback, on_terminate: ProcessCallback):
        self._launch_handlers.append(on_launch)
        self._terminate_handlers.append(on_terminate)

    def unsubscribe(self, on_launch: ProcessCallback, on_terminate: ProcessCallback):
        if on_launch in self._launch_handlers:
            self._launch_handlers.remove(on_launch)
        if on_terminate in self._terminate_handlers:
            self._terminate_handlers.remove(on_terminate)

    def start(self):
        pass

    def stop(self):
        pass

    def _notify_launch(self, process: RunningProcess):
        for handler in list(self._launch_handlers):
            handler(process)

    def _notify_terminate(self, process: RunningProcess):
        for handler in list(self._terminate_handlers):
            handler(process)


@lru_cache(maxsize=512)
def app_bundle_info(exe_path: str) -> tuple[Optional[str], Optional[str]]:
    """Return (app name, bundle identifier) for an executable inside a .app.

    '/Applications/Xcode.app/Contents/MacOS/Xcode' -> ('Xcode', 'com.apple.dt.Xcode')

    The innermost bundle wins, so helpers nested under an app's Frameworks
    (e.g. 'Code Helper (Renderer).app') report their own identity.
    """
    if not exe_path or ".app/" not in exe_path:
        return None, None

    app_dir = Path(exe_path[:exe_path.rindex(".app/") + len(".app")])
    app_name = app_dir.stem
    info_plist = app_dir / "Contents" / "Info.plist"

    try:
        with open(info_plist, "rb") as f:
            info = plistlib.load(f)
    except (OSError, plistlib.InvalidFileException, ValueError):
        return app_name, None

    return info.get("CFBundleName") or app_name, info.get("CFBundleIdentifier")


def describe_process(proc: psutil.Process) -> Optional[RunningProcess]:
    """Snapshot a psutil process, or None if it vanished or is off limits."""
    try:
        with proc.oneshot():
            name = proc.name()
            started_at = proc.create_time()
            try:
                exe = proc.exe()
            except (psutil.AccessDenied, psutil.ZombieProcess):
                exe = ""
    except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
        return None

    app_name, bundle_id = app_bundle_info(exe)
    return RunningProcess(
        pid=proc.pid,
        name=name,
        bundle_identifier=bundle_id,
        app_name=app_name,
        started_at=started_at,
    )


class PsutilProcessSource(ProcessSource):
    """Process source backed by psutil.

    A background thread diffs process snapshots every `interval` seconds and
    pushes launch/terminate notifications to subscribers.
    """

    def __init__(self, interval: float = 1.0):
        super().__init__()
        self.interval = interval
        self._known: dict[tuple[int, float], RunningProcess] = {}
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def running(self) -> list[RunningProcess]:
        with self._lock:
            if self._known:
                return list(self._known.values())
        return list(self._snapshot().values())

    def start(self):
        if self._thread and self._thread.is_alive():
            return
        with self._lock:
            self._known = self._snapshot()
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="process-source", daemon=True)
        self._thread.start()
        logger.debug("Process source started (%d processes)", len(self._known))

    def stop(self):
        self._stop.set()
        if self._thread and self._thread is not threading.current_thread():
            self._thread.join(timeout=self.interval * 2)
        self._thread = None

    def _run(self):
        while not self._stop.wait(self.interval):
            try:
                self.refresh()
            except Exception:
                logger.exception("Process scan failed")

    def refresh(self):
        """Take one snapshot and notify about the differences."""
        current = self._snapshot()
        with self._lock:
            previous = self._known
            self._known = current

        for key in previous.keys() - current.keys():
            self._notify_terminate(previous[key])
        for key in current.keys() - previous.keys():
            self._notify_launch(current[key])

    def _snapshot(self) -> dict[tuple[int, float], RunningProcess]:
        snapshot = {}
        for proc in psutil.process_iter():
            try:
                key = (proc.pid, proc.create_time())
            except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
                continue
            described = describe_process(proc)
            if described:
                snapshot[key] = described
        return snapshot


# ==================== PGREP-STYLE HELPERS ====================

def find_pids(name: str, exact: bool = True, ignore_case: bool = False) -> list[int]:
    """PIDs of processes whose name matches, like `pgrep [-i] [-x] name`."""
    needle = name.lower() if ignore_case else name
    pids = []
    for proc in psutil.process_iter(["pid", "name"]):
        proc_name = proc.info["name"] or ""
        if ignore_case:
            proc_name = proc_name.lower()
        if (proc_name == needle) if exact else (needle in proc_name):
            pids.append(proc.info["pid"])
    return sorted(pids)


def find_process_by_name(name: str) -> Optional[int]:
    """First PID matching `name` exactly (case-insensitive), else partially."""
    pids = find_pids(name, exact=True, ignore_case=True)
    if not pids:
        pids = find_pids(name, exact=False, ignore_case=True)
    return pids[0] if pids else None


def terminate_all(name: str, timeout: float = 3.0) -> list[int]:
    """Terminate every process named exactly `name`, like `pkill -x name`.

    Returns the PIDs that were signalled.
    """
    procs = []
    for pid in find_pids(name, exact=True):
        try:
            proc = psutil.Process(pid)
            proc.terminate()
            procs.append(proc)
        except psutil.NoSuchProcess:
            continue
        except psutil.AccessDenied:
            logger.warning("Not allowed to stop %s (PID %s)", name, pid)

    _, alive = psutil.wait_procs(procs, timeout=timeout)
    for proc in alive:
        try:
            proc.kill()
        except psutil.NoSuchProcess:
            pass

    return [proc.pid for proc in procs]


def pid_exists(pid: int) -> bool:
    return psutil.pid_exists(pid)
