"""Watch list management and watched-process termination notifications."""
import logging
import threading
from typing import Optional

from .events import EventBus, EventType
from .models import RunningProcess, WatchedProcessEntry, built_in_watch_list
from .processes import ProcessSource


logger = logging.getLogger(__name__)


class ProcessWatchMonitor:
    """Track which watch-listed applications are running.

    The monitor never scans the process table itself: it recomputes its view
    when the source pushes a launch or termination. When the process bound via
    `watch()` terminates, a single PROCESS_WATCHED_TERMINATED event is
    published with its pid and display name.
    """

    def __init__(self, source: ProcessSource, events: EventBus, store=None):
        self.source = source
        self.events = events
        self.store = store
        self._lock = threading.RLock()
        self._running: list[RunningProcess] = []
        self._watched: Optional[RunningProcess] = None
        self._started = False

        self.watch_list: list[WatchedProcessEntry] = built_in_watch_list()
        if store is not None:
            self.watch_list.extend(store.load_watch_entries())

    # ==================== LIFECYCLE ====================

    def start(self):
        if self._started:
            return
        self.source.subscribe(self._handle_launch, self._handle_terminate)
        self.source.start()
        self._started = True
        self.refresh()

    def stop(self):
        self.stop_watching()
        if self._started:
            self.source.unsubscribe(self._handle_launch, self._handle_terminate)
            self.source.stop()
            self._started = False

    # ==================== RUNNING PROCESSES ====================

    def refresh(self):
        """Recompute the running watched processes from the source.

        Each application is listed once: when several processes share a bundle
        (or, without one, a display name) the earliest started one stands for it.
        """
        running = self.source.running()
        with self._lock:
            apps: dict[str, RunningProcess] = {}
            for process in running:
                if not any(entry.matches(process) for entry in self.watch_list):
                    continue
                current = apps.get(process.app_key)
                if current is None or _launch_order(process) < _launch_order(current):
                    apps[process.app_key] = process

            matches = sorted(apps.values(), key=lambda p: (p.display_name.lower(), p.pid))
            changed = matches != self._running
            self._running = matches

        if changed:
            self.events.publish(
                EventType.PROCESS_LIST_CHANGED,
                processes=[p.to_dict() for p in matches],
            )

    def running_watched(self) -> list[RunningProcess]:
        with self._lock:
            return list(self._running)

    def find_running(self, query: str) -> Optional[RunningProcess]:
        """Resolve a name, display name or bundle identifier (case-insensitive)."""
        needle = query.strip().lower()
        if not needle:
            return None
        for process in self.running_watched():
            candidates = [process.name, process.display_name, process.bundle_identifier or ""]
            if needle in (c.lower() for c in candidates):
                return process
        return None

    # ==================== WATCHING ====================

    @property
    def watched(self) -> Optional[RunningProcess]:
        with self._lock:
            return self._watched

    def watch(self, process: RunningProcess) -> bool:
        """Bind `process` as the watched process, replacing any previous one.

        Returns False, leaving nothing bound, if `process` is no longer among
        the running watched processes. A termination already handled would
        otherwise never be reported for it.
        """
        self.stop_watching()
        with self._lock:
            if not any(p.pid == process.pid for p in self._running):
                logger.info("%s (PID %s) is no longer running", process.display_name, process.pid)
                return False
            self._watched = process
        logger.info("Watching %s (PID %s)", process.display_name, process.pid)
        return True

    def stop_watching(self):
        with self._lock:
            if self._watched is not None:
                logger.debug("Stopped watching %s", self._watched.display_name)
            self._watched = None

    def _handle_launch(self, process: RunningProcess):
        self.refresh()

    def _handle_terminate(self, process: RunningProcess):
        self.refresh()

        with self._lock:
            watched = self._watched
            if watched is None or watched.pid != process.pid:
                return
            self._watched = None

        # Published outside the lock: subscribers take the session lock
        logger.info("Watched process %s (PID %s) terminated", watched.display_name, watched.pid)
        self.events.publish(
            EventType.PROCESS_WATCHED_TERMINATED,
            pid=watched.pid,
            process_name=watched.display_name,
        )

    # ==================== WATCH LIST ====================

    @property
    def built_in_entries(self) -> list[WatchedProcessEntry]:
        return [e for e in self.watch_list if e.is_built_in]

    @property
    def custom_entries(self) -> list[WatchedProcessEntry]:
        return [e for e in self.watch_list if not e.is_built_in]

    def add_to_list(self, name: str, identifier: Optional[str] = None) -> Optional[WatchedProcessEntry]:
        """Add a custom entry. Returns None for blank names and duplicates."""
        trimmed_name = name.strip()
        if not trimmed_name:
            return None
        trimmed_id = identifier.strip() if identifier else None
        trimmed_id = trimmed_id or None

        with self._lock:
            for entry in self.watch_list:
                if entry.name.lower() == trimmed_name.lower():
                    return None
                if trimmed_id and entry.bundle_identifier \
                        and entry.bundle_identifier.lower() == trimmed_id.lower():
                    return None

            entry = WatchedProcessEntry(name=trimmed_name, bundle_identifier=trimmed_id)
            self.watch_list.append(entry)
            self._save()

        logger.info("Added %s to watch list", trimmed_name)
        self.refresh()
        return entry

    def remove_from_list(self, entry: WatchedProcessEntry) -> bool:
        """Remove a custom entry. Built-in entries are never removed."""
        if entry.is_built_in:
            return False

        with self._lock:
            before = len(self.watch_list)
            self.watch_list = [e for e in self.watch_list if e.id != entry.id]
            removed = len(self.watch_list) != before
            if removed:
                self._save()

        if removed:
            self.refresh()
        return removed

    def get_entry(self, entry_id: str) -> Optional[WatchedProcessEntry]:
        with self._lock:
            for entry in self.watch_list:
                if entry.id == entry_id:
                    return entry
        return None

    def _save(self):
        if self.store is not None:
            self.store.save_watch_entries(self.custom_entries)


def _launch_order(process: RunningProcess) -> tuple:
    return (process.started_at or 0.0, process.pid)
