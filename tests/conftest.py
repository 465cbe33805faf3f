"""Shared fixtures: fake caffeinate children, a manual clock and a fake process table."""
import itertools
import subprocess
import threading
import time

import pytest

from caffeinator.core.assertion import spawn_assertion
from caffeinator.core.events import EventBus
from caffeinator.core.models import RunningProcess
from caffeinator.core.process_watch import ProcessWatchMonitor
from caffeinator.core.processes import ProcessSource
from caffeinator.core.session import SessionManager


_pids = itertools.count(40000)


class FakePopen:
    """Stands in for subprocess.Popen: 'runs' until terminated or exit() is called."""

    def __init__(self, argv, **kwargs):
        self.args = argv
        self.pid = next(_pids)
        self.returncode = None
        self.terminate_calls = 0
        self._exited = threading.Event()

    def poll(self):
        return self.returncode

    def wait(self, timeout=None):
        if not self._exited.wait(timeout):
            raise subprocess.TimeoutExpired(self.args, timeout)
        return self.returncode

    def terminate(self):
        self.terminate_calls += 1
        self.exit(-15)

    def kill(self):
        self.exit(-9)

    def exit(self, code=0):
        if self.returncode is None:
            self.returncode = code
        self._exited.set()


class ManualClock:
    """Wall clock that only moves when told to."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeProcessSource(ProcessSource):
    """In-memory process table; launch/terminate push notifications synchronously."""

    def __init__(self, processes=()):
        super().__init__()
        self.processes = {p.pid: p for p in processes}
        self.started = False

    def running(self):
        return list(self.processes.values())

    def start(self):
        self.started = True

    def stop(self):
        self.started = False

    def launch(self, process: RunningProcess):
        self.processes[process.pid] = process
        self._notify_launch(process)

    def terminate(self, pid: int):
        process = self.processes.pop(pid)
        self._notify_terminate(process)


def wait_until(predicate, timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def settle(processes):
    """Wait for every exit-watcher thread to finish delivering its callback."""
    for process in processes:
        thread = process._exit_thread
        if thread is not None:
            thread.join(timeout=2.0)


DOCKER = RunningProcess(pid=501, name="com.docker.backend", bundle_identifier="com.docker.docker", app_name="Docker")
XCODE = RunningProcess(pid=502, name="Xcode", bundle_identifier="com.apple.dt.Xcode", app_name="Xcode")
ZOOM = RunningProcess(pid=503, name="zoom.us", bundle_identifier="us.zoom.xos", app_name="zoom.us")
SAFARI = RunningProcess(pid=504, name="Safari", bundle_identifier="com.apple.Safari", app_name="Safari")


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def events():
    return EventBus()


@pytest.fixture
def recorded(events):
    """Every event published on the bus, in order."""
    received = []
    events.subscribe_all(received.append)
    return received


@pytest.fixture
def spawned():
    """AssertionProcess objects created through the `spawner` fixture."""
    return []


@pytest.fixture
def spawner(spawned):
    def _spawn(modes, seconds=None, watch_pid=None):
        process = spawn_assertion(modes, seconds=seconds, watch_pid=watch_pid, popen=FakePopen)
        spawned.append(process)
        return process
    return _spawn


@pytest.fixture
def source():
    return FakeProcessSource([XCODE, ZOOM, SAFARI])


@pytest.fixture
def monitor(source, events):
    monitor = ProcessWatchMonitor(source, events)
    monitor.start()
    yield monitor
    monitor.stop()


@pytest.fixture
def manager(spawner, events, monitor, clock, spawned):
    manager = SessionManager(
        spawner=spawner,
        events=events,
        monitor=monitor,
        clock=clock,
        tick_interval=None,
    )
    yield manager
    manager.shutdown()
    settle(spawned)
