"""Polling client for front ends that observe the bridge over HTTP.

Polls GET /api/status on a fixed interval and again whenever the UI regains
the foreground. When a poll shows an active session with no time left, it
deactivates explicitly and re-fetches instead of waiting for the server's
own tick, so visible expiry latency is bounded by the poll interval.
"""
import logging
import threading
from typing import Callable, Optional

import httpx


logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 1.0

INACTIVE_STATUS = {
    "is_active": False,
    "mode": None,
    "remaining_seconds": None,
    "total_seconds": None,
    "watched_process": None,
}


def _activate_body(duration_seconds: Optional[int], modes: Optional[list[str]], indefinite: bool) -> dict:
    return {"duration_seconds": duration_seconds, "modes": modes, "indefinite": indefinite}


def format_tray_time(seconds: int) -> str:
    """'1:05' above an hour, '12m' below."""
    hours = seconds // 3600
    minutes = (seconds % 3600) // 60
    if hours > 0:
        return f"{hours}:{minutes:02d}"
    return f"{minutes}m"


def format_tray_title(status: dict) -> str:
    """Menu bar title for a status: countdown, '∞' or empty when inactive."""
    if not status.get("is_active"):
        return ""
    remaining = status.get("remaining_seconds")
    if remaining is None:
        return "∞"
    return format_tray_time(remaining)


class StatusPoller:
    """Keep a local copy of the bridge's status eventually consistent."""

    def __init__(
        self,
        client: httpx.Client,
        interval: float = DEFAULT_POLL_INTERVAL,
        on_status: Optional[Callable[[dict], None]] = None,
    ):
        self.client = client
        self.interval = interval
        self.on_status = on_status
        self.status: dict = dict(INACTIVE_STATUS)
        self.error: Optional[str] = None

        self._state = threading.Lock()
        self._in_flight = False
        self._repoll = False
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def fetch(self, repoll: bool = False) -> Optional[dict]:
        """Poll the bridge.

        Returns None if the request failed, or if another poll is in flight.
        With `repoll`, a poll already in flight polls once more when it
        finishes, so the refresh is deferred rather than dropped.
        """
        # Prevent concurrent fetches
        with self._state:
            if self._in_flight:
                if repoll:
                    self._repoll = True
                return None
            self._in_flight = True

        try:
            while True:
                status = self._fetch_once()
                with self._state:
                    if not self._repoll:
                        self._in_flight = False
                        return status
                    self._repoll = False
        except BaseException:
            with self._state:
                self._in_flight = False
                self._repoll = False
            raise

    def on_foreground(self) -> Optional[dict]:
        """Refresh when the UI becomes visible again."""
        return self.fetch(repoll=True)

    def _fetch_once(self) -> Optional[dict]:
        try:
            status = self._get_status()

            # Auto-deactivate when timer expires
            if status.get("is_active") and status.get("remaining_seconds") == 0:
                logger.debug("Poll observed expired session, deactivating")
                self._post("/api/deactivate")
                status = self._get_status()

            self._update(status)
            self.error = None
            return status
        except httpx.HTTPError as e:
            self.error = str(e)
            logger.warning("Status poll failed: %s", e)
            return None

    # ==================== COMMANDS ====================

    def activate(
        self,
        duration_seconds: Optional[int] = None,
        modes: Optional[list[str]] = None,
        indefinite: bool = False,
    ) -> dict:
        """Start a session. Omitted duration and modes use the saved defaults."""
        return self._command("/api/activate", _activate_body(duration_seconds, modes, indefinite))

    def deactivate(self) -> dict:
        return self._command("/api/deactivate")

    def toggle(
        self,
        duration_seconds: Optional[int] = None,
        modes: Optional[list[str]] = None,
        indefinite: bool = False,
    ) -> dict:
        return self._command("/api/toggle", _activate_body(duration_seconds, modes, indefinite))

    def _command(self, path: str, body: Optional[dict] = None) -> dict:
        """Send a command and adopt the returned snapshot.

        Raises httpx.HTTPStatusError with the server's error detail, e.g.
        when caffeinate could not be started.
        """
        status = self._post(path, body)
        self._update(status)
        self.error = None
        return status

    # ==================== BACKGROUND LOOP ====================

    def start(self):
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="status-poller", daemon=True)
        self._thread.start()

    def stop(self):
        self._stop.set()
        if self._thread and self._thread is not threading.current_thread():
            self._thread.join(timeout=self.interval * 2)
        self._thread = None

    def _run(self):
        self.fetch()
        while not self._stop.wait(self.interval):
            self.fetch()

    # ==================== HELPERS ====================

    def _get_status(self) -> dict:
        response = self.client.get("/api/status")
        response.raise_for_status()
        return response.json()

    def _post(self, path: str, body: Optional[dict] = None) -> dict:
        if body is None:
            response = self.client.post(path)
        else:
            response = self.client.post(path, json=body)
        response.raise_for_status()
        return response.json()

    def _update(self, status: dict):
        self.status = status
        if self.on_status is not None:
            self.on_status(status)

    @property
    def tray_title(self) -> str:
        return format_tray_title(self.status)
