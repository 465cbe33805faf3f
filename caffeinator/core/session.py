"""Sleep-assertion session manager.

Owns at most one caffeinate child at a time, runs the countdown for fixed
durations, and reacts to the child exiting or the watched process exiting.
Every mutation (commands, ticks, child-exit callbacks, monitor notifications)
goes through one re-entrant lock, and events are published while it is held
so subscribers observe snapshots in order.
"""
import itertools
import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

from .assertion import AssertionProcess, spawn_assertion
from .errors import ProcessNotFound
from .events import Event, EventBus, EventType
from .models import INACTIVE, Duration, RunningProcess, SleepMode, StatusSnapshot, sorted_modes
from .process_watch import ProcessWatchMonitor


logger = logging.getLogger(__name__)

DEFAULT_TICK_INTERVAL = 1.0


@dataclass
class Session:
    """The single active session. Replaced, never reused, on reactivation."""
    session_id: int
    modes: frozenset
    duration: Duration
    process: AssertionProcess
    started_at: float
    ends_at: Optional[float] = None
    watched_process: Optional[RunningProcess] = None


class Ticker:
    """Calls `callback` every `interval` seconds on a daemon thread until stopped."""

    def __init__(self, interval: float, callback: Callable[[], object]):
        self.interval = interval
        self.callback = callback
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._run, name="session-ticker", daemon=True)

    def start(self):
        self._thread.start()

    def stop(self):
        # May be called from the ticker thread itself when a tick expires the session
        self._stop.set()

    @property
    def is_running(self) -> bool:
        return self._thread.is_alive() and not self._stop.is_set()

    def _run(self):
        while not self._stop.wait(self.interval):
            try:
                self.callback()
            except Exception:
                logger.exception("Session tick failed")


class SessionManager:
    """Start, stop and observe the sleep-assertion session."""

    def __init__(
        self,
        spawner: Callable[..., AssertionProcess] = spawn_assertion,
        events: Optional[EventBus] = None,
        monitor: Optional[ProcessWatchMonitor] = None,
        clock: Callable[[], float] = time.time,
        tick_interval: Optional[float] = DEFAULT_TICK_INTERVAL,
    ):
        """
        Args:
            spawner: Starts the backing process; called as
                spawner(modes, seconds=None). Raises SpawnFailure.
            events: Bus for lifecycle events. Defaults to the monitor's bus,
                or a new one.
            monitor: Process-watch monitor used by activate_for_process.
            clock: Wall-clock source in seconds.
            tick_interval: Countdown cadence in seconds. None disables the
                background ticker; callers then drive tick() themselves.
        """
        if events is None:
            events = monitor.events if monitor is not None else EventBus()
        self.events = events
        self.monitor = monitor
        self.spawner = spawner
        self.clock = clock
        self.tick_interval = tick_interval

        self._lock = threading.RLock()
        self._session: Optional[Session] = None
        self._ticker: Optional[Ticker] = None
        self._session_ids = itertools.count(1)

        self._unsubscribe = self.events.subscribe(
            EventType.PROCESS_WATCHED_TERMINATED,
            self._handle_watched_terminated,
        )

    # ==================== COMMANDS ====================

    def activate(self, duration: Duration, modes: Iterable[SleepMode]) -> StatusSnapshot:
        """Replace any current session with a new one holding `modes`.

        An empty mode set is ignored and the unchanged status is returned.

        Raises:
            SpawnFailure: caffeinate could not be started. The manager is
                left inactive.
        """
        modes = frozenset(modes)
        if not modes:
            logger.debug("activate called without modes, ignoring")
            return self.status()

        with self._lock:
            self._teardown()
            process = self.spawner(modes, seconds=duration.seconds)
            now = self.clock()
            session = Session(
                session_id=next(self._session_ids),
                modes=modes,
                duration=duration,
                process=process,
                started_at=now,
                ends_at=now + duration.seconds if duration.seconds is not None else None,
            )
            self._session = session
            process.on_exit(self._handle_process_exit)
            if session.ends_at is not None:
                self._start_ticker()

            logger.info(
                "Session %d active for %s (%s)",
                session.session_id,
                duration.display_name.lower(),
                ", ".join(m.label for m in sorted_modes(modes)),
            )
            return self._publish(EventType.SESSION_ACTIVATED)

    def activate_for_process(self, modes: Iterable[SleepMode], process_name: str) -> StatusSnapshot:
        """Keep awake until the named watch-listed process exits.

        Raises:
            ProcessNotFound: `process_name` is not a running watched process.
                Any current session is left untouched, unless the process
                exits while the new session is being set up; the manager is
                then left inactive.
            SpawnFailure: caffeinate could not be started.
        """
        modes = frozenset(modes)
        if not modes:
            logger.debug("activate_for_process called without modes, ignoring")
            return self.status()

        target = self.monitor.find_running(process_name) if self.monitor is not None else None
        if target is None:
            raise ProcessNotFound(process_name)

        with self._lock:
            self._teardown()
            process = self.spawner(modes)
            if not self.monitor.watch(target):
                # Exited between lookup and binding; its termination was already handled
                process.on_exit(self._handle_process_exit)
                process.terminate()
                raise ProcessNotFound(process_name)

            session = Session(
                session_id=next(self._session_ids),
                modes=modes,
                duration=Duration.indefinite(),
                process=process,
                started_at=self.clock(),
                watched_process=target,
            )
            self._session = session
            process.on_exit(self._handle_process_exit)

            logger.info(
                "Session %d active until %s (PID %s) exits",
                session.session_id, target.display_name, target.pid,
            )
            return self._publish(EventType.SESSION_ACTIVATED)

    def deactivate(self) -> StatusSnapshot:
        """Stop the current session. Calling it while inactive is a no-op."""
        with self._lock:
            session = self._end_session()
            if session is None:
                return INACTIVE
            logger.info("Session %d deactivated", session.session_id)
            return self._publish(EventType.SESSION_DEACTIVATED, session_id=session.session_id)

    def toggle(self, duration: Duration, modes: Iterable[SleepMode]) -> StatusSnapshot:
        with self._lock:
            if self._session is not None:
                return self.deactivate()
            return self.activate(duration, modes)

    def status(self) -> StatusSnapshot:
        """Current snapshot; remaining time is recomputed on every call."""
        with self._lock:
            return self._snapshot()

    @property
    def is_active(self) -> bool:
        return self.status().is_active

    @property
    def process(self) -> Optional[AssertionProcess]:
        with self._lock:
            return self._session.process if self._session else None

    def tick(self) -> StatusSnapshot:
        """Advance the countdown: expire the session once its end time is reached."""
        with self._lock:
            session = self._session
            if session is None or session.ends_at is None:
                return self._snapshot()

            if self.clock() < session.ends_at:
                return self._publish(EventType.SESSION_STATUS)

            self._end_session()
            logger.info("Session %d expired", session.session_id)
            return self._publish(
                EventType.SESSION_EXPIRED,
                session_id=session.session_id,
                reason="timer",
            )

    def shutdown(self):
        """Deactivate and stop listening to the monitor."""
        self.deactivate()
        self._unsubscribe()

    # ==================== CALLBACKS ====================

    def _handle_process_exit(self, process: AssertionProcess):
        """Backing process exited for any reason (kill, -t timeout, crash)."""
        with self._lock:
            session = self._session
            if session is None or session.process is not process:
                # Torn down already, or replaced by a newer session
                return

            self._end_session()
            logger.info(
                "caffeinate for session %d exited (code %s)",
                session.session_id, process.returncode,
            )
            self._publish(
                EventType.SESSION_EXPIRED,
                session_id=session.session_id,
                reason="process_exit",
            )

    def _handle_watched_terminated(self, event: Event):
        pid = event.payload.get("pid")
        with self._lock:
            session = self._session
            if session is None or session.watched_process is None:
                return
            if session.watched_process.pid != pid:
                return

            self._end_session()
            logger.info(
                "Session %d ended: %s exited",
                session.session_id, session.watched_process.display_name,
            )
            self._publish(
                EventType.SESSION_ENDED,
                session_id=session.session_id,
                process_name=event.payload.get("process_name"),
            )

    # ==================== INTERNALS ====================

    def _teardown(self):
        """Deactivate-then-activate: end the previous session before a new one."""
        if self._session is not None:
            self.deactivate()

    def _end_session(self) -> Optional[Session]:
        """Reset to inactive and release the backing process. Lock must be held."""
        session = self._session
        if session is None:
            return None

        self._session = None
        if self._ticker is not None:
            self._ticker.stop()
            self._ticker = None
        session.process.terminate()
        if session.watched_process is not None and self.monitor is not None:
            self.monitor.stop_watching()
        return session

    def _start_ticker(self):
        if self.tick_interval is None:
            return
        if self._ticker is not None:
            self._ticker.stop()
        self._ticker = Ticker(self.tick_interval, self.tick)
        self._ticker.start()

    def _snapshot(self) -> StatusSnapshot:
        session = self._session
        if session is None:
            return INACTIVE

        remaining = None
        if session.ends_at is not None:
            remaining = max(0, math.ceil(session.ends_at - self.clock()))

        return StatusSnapshot(
            is_active=True,
            modes=session.modes,
            remaining_seconds=remaining,
            total_seconds=session.duration.seconds,
            watched_process=session.watched_process.display_name if session.watched_process else None,
            session_id=session.session_id,
        )

    def _publish(self, event_type: str, **payload) -> StatusSnapshot:
        """Publish a lifecycle event followed by the resulting status."""
        snapshot = self._snapshot()
        if event_type != EventType.SESSION_STATUS:
            payload.setdefault("session_id", snapshot.session_id)
            self.events.publish(event_type, status=snapshot.to_dict(), **payload)
        self.events.publish(EventType.SESSION_STATUS, status=snapshot.to_dict())
        return snapshot
