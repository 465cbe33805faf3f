"""Tests for the polling status client."""
import httpx
import pytest
from fastapi.testclient import TestClient

from caffeinator.core.models import Duration, SleepMode
from caffeinator.web import StatusPoller, create_app
from caffeinator.web.poller import INACTIVE_STATUS, format_tray_title

from .conftest import wait_until


IDLE = frozenset({SleepMode.IDLE})


@pytest.fixture
def client(manager, monitor):
    with TestClient(create_app(manager, monitor)) as client:
        yield client


@pytest.fixture
def poller(client):
    return StatusPoller(client, interval=0.01)


def mock_client(handler):
    return httpx.Client(transport=httpx.MockTransport(handler), base_url="http://bridge")


class TestFetch:

    def test_fetch_reflects_server_status(self, poller, manager):
        manager.activate(Duration.minutes(30), IDLE)

        status = poller.fetch()

        assert status["is_active"] is True
        assert status["remaining_seconds"] == 1800
        assert poller.status == status
        assert poller.error is None

    def test_expired_session_is_deactivated(self, poller, manager, clock):
        manager.activate(Duration.fixed(60), IDLE)
        clock.advance(60)
        assert manager.status().remaining_seconds == 0

        status = poller.fetch()

        assert status == INACTIVE_STATUS
        assert not manager.is_active

    def test_concurrent_fetch_is_skipped(self, poller):
        poller._in_flight = True
        assert poller.fetch() is None
        assert poller._repoll is False

        poller._in_flight = False
        assert poller.fetch() is not None

    def test_foreground_during_poll_repolls_when_done(self):
        responses = [
            dict(INACTIVE_STATUS),
            {**INACTIVE_STATUS, "is_active": True, "mode": ["idle"]},
        ]
        requests = []

        def handler(request):
            requests.append(request.url.path)
            if len(requests) == 1:
                # UI regains the foreground while this poll is in flight
                assert poller.on_foreground() is None
            return httpx.Response(200, json=responses[len(requests) - 1])

        poller = StatusPoller(mock_client(handler))

        status = poller.fetch()

        assert requests == ["/api/status", "/api/status"]
        assert status["is_active"] is True
        assert poller.status["is_active"] is True

    def test_failing_callback_releases_poll(self, client):
        poller = StatusPoller(client, on_status=lambda status: 1 / 0)

        with pytest.raises(ZeroDivisionError):
            poller.fetch()

        poller.on_status = None
        assert poller.fetch() is not None

    def test_on_foreground_refreshes(self, poller, manager):
        poller.fetch()
        manager.activate(Duration.indefinite(), IDLE)

        status = poller.on_foreground()

        assert status["is_active"] is True
        assert poller.tray_title == "∞"

    def test_on_status_callback(self, client):
        seen = []
        poller = StatusPoller(client, on_status=seen.append)

        poller.fetch()

        assert seen == [INACTIVE_STATUS]

    def test_server_error_is_recorded(self):
        poller = StatusPoller(mock_client(lambda request: httpx.Response(500)))

        assert poller.fetch() is None
        assert poller.error is not None
        assert poller.status == INACTIVE_STATUS

    def test_connection_error_is_recorded(self):
        def refuse(request):
            raise httpx.ConnectError("Connection refused", request=request)

        poller = StatusPoller(mock_client(refuse))

        assert poller.fetch() is None
        assert "Connection refused" in poller.error


class TestCommands:

    def test_activate_and_deactivate(self, poller, manager):
        status = poller.activate(1800, ["display"])

        assert status["mode"] == ["display"]
        assert manager.is_active
        assert poller.tray_title == "30m"

        assert poller.deactivate()["is_active"] is False
        assert poller.tray_title == ""

    def test_toggle(self, poller, manager):
        poller.toggle(None)
        assert manager.is_active

        poller.toggle(None)
        assert not manager.is_active

    def test_command_error_raises(self, poller):
        with pytest.raises(httpx.HTTPStatusError):
            poller.activate(None, ["hibernate"])


class TestBackgroundLoop:

    def test_loop_polls_until_stopped(self, client, manager):
        seen = []
        poller = StatusPoller(client, interval=0.01, on_status=seen.append)
        manager.activate(Duration.minutes(5), IDLE)

        poller.start()
        try:
            assert wait_until(lambda: len(seen) >= 2)
        finally:
            poller.stop()

        assert seen[-1]["is_active"] is True


class TestTrayTitle:

    @pytest.mark.parametrize("status,title", [
        (INACTIVE_STATUS, ""),
        ({"is_active": True, "remaining_seconds": None}, "∞"),
        ({"is_active": True, "remaining_seconds": 3900}, "1:05"),
        ({"is_active": True, "remaining_seconds": 720}, "12m"),
        ({"is_active": True, "remaining_seconds": 30}, "0m"),
    ])
    def test_titles(self, status, title):
        assert format_tray_title(status) == title
