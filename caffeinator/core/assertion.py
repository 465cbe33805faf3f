"""Backing process that holds the OS sleep assertion (macOS caffeinate)."""
import logging
import subprocess
import threading
from typing import Callable, Iterable, Optional

from .errors import SpawnFailure
from .models import SleepMode, sorted_modes


logger = logging.getLogger(__name__)

CAFFEINATE_PATH = "/usr/bin/caffeinate"


def build_arguments(
    modes: Iterable[SleepMode],
    seconds: Optional[int] = None,
    watch_pid: Optional[int] = None,
) -> list[str]:
    """Build caffeinate arguments.

    Flags:
    -d: Prevent display sleep
    -i: Prevent system idle sleep
    -m: Prevent disk sleep
    -s: Prevent system sleep (on AC power)
    -t: Release the assertion after N seconds
    -w: Release the assertion when PID exits
    """
    args = [mode.flag for mode in sorted_modes(modes)]
    if seconds is not None:
        args += ["-t", str(seconds)]
    if watch_pid is not None:
        args += ["-w", str(watch_pid)]
    return args


class AssertionProcess:
    """A running caffeinate child. Terminating it releases the assertion."""

    def __init__(self, process: subprocess.Popen, argv: list[str]):
        self.process = process
        self.argv = argv
        self._exit_thread: Optional[threading.Thread] = None

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def is_alive(self) -> bool:
        return self.process.poll() is None

    @property
    def returncode(self) -> Optional[int]:
        return self.process.returncode

    def on_exit(self, callback: Callable[["AssertionProcess"], None]):
        """Call `callback(self)` from a daemon thread once the child exits.

        The thread also reaps the child, so a terminated caffeinate never
        lingers as a zombie.
        """
        def _wait():
            self.process.wait()
            logger.debug("caffeinate %s exited with %s", self.pid, self.process.returncode)
            callback(self)

        self._exit_thread = threading.Thread(
            target=_wait,
            name=f"caffeinate-{self.pid}",
            daemon=True,
        )
        self._exit_thread.start()

    def terminate(self):
        """Ask the child to exit without waiting for it.

        A child that is already gone counts as stopped.
        """
        if not self.is_alive:
            return
        try:
            self.process.terminate()
        except ProcessLookupError:
            logger.debug("caffeinate %s already exited", self.pid)

    def wait(self, timeout: Optional[float] = None) -> Optional[int]:
        return self.process.wait(timeout=timeout)

    def __repr__(self):
        return f"AssertionProcess(pid={self.pid}, argv={self.argv!r})"


def spawn_assertion(
    modes: Iterable[SleepMode],
    seconds: Optional[int] = None,
    watch_pid: Optional[int] = None,
    executable: str = CAFFEINATE_PATH,
    popen: Callable[..., subprocess.Popen] = subprocess.Popen,
) -> AssertionProcess:
    """Start caffeinate holding `modes`, optionally self-terminating.

    Raises:
        SpawnFailure: the binary is missing or cannot be executed.
    """
    argv = [executable] + build_arguments(modes, seconds=seconds, watch_pid=watch_pid)
    try:
        process = popen(
            argv,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
        )
    except OSError as e:
        # FileNotFoundError on non-macOS systems, PermissionError if not executable
        raise SpawnFailure(f"Failed to start caffeinate: {e}") from e

    logger.info("Started caffeinate (PID %s): %s", process.pid, " ".join(argv[1:]))
    return AssertionProcess(process, argv)
