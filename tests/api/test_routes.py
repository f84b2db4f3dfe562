import pytest
from fastapi.testclient import TestClient
from unittest.mock import MagicMock, patch

from app.main import app
from app.api.routes import get_prefs
from app.core.state_machine import ProtocolStateMachine
from app.moat.errors import ProtocolError
from app.moat.models import BridgeSet, Challenge
from app.moat.sink import MemorySink
from app.settings import settings

client = TestClient(app)


class StubClient:
    def __init__(self):
        self.fetches = [Challenge("tok-1", b"\xff\xd8jpeg-1"), Challenge("tok-2", b"\xff\xd8jpeg-2")]
        self.check = BridgeSet.from_lines(["bridge1 1.2.3.4:443"])
        self.submitted = []

    def fetch_captcha(self):
        return self.fetches.pop(0)

    def submit_solution(self, token, solution):
        self.submitted.append((token, solution))
        if isinstance(self.check, Exception):
            raise self.check
        return self.check

    def close(self):
        pass


@pytest.fixture
def attempt():
    network = MagicMock()
    prefs = MagicMock()
    stub = StubClient()
    built = []

    def factory():
        sink = MemorySink()
        machine = ProtocolStateMachine(network, sink, prefs, client_factory=lambda ep: stub)
        built.append(machine)
        return machine, sink

    original = app.state.attempt_factory
    app.state.attempt_factory = factory
    app.state.moat_attempt = None
    yield {"network": network, "prefs": prefs, "stub": stub, "built": built}
    app.state.attempt_factory = original
    app.state.moat_attempt = None
    app.dependency_overrides = {}


@pytest.fixture(autouse=True)
def no_api_key():
    with patch.object(settings, "API_KEY", ""):
        yield


def test_health():
    assert client.get("/health").json() == {"status": "ok"}


def test_full_flow(attempt):
    r = client.post("/network/status", json={"status": "OFF"})
    assert r.status_code == 200
    assert r.json()["state"] == "AWAITING_NETWORK"
    attempt["network"].start_network.assert_called_once()

    r = client.post("/network/status", json={"status": "ON", "proxyHost": "127.0.0.1", "proxyPort": 9050})
    body = r.json()
    assert body["state"] == "CAPTCHA_DISPLAYED"
    assert body["networkStatus"] == "ON"
    assert body["proxy"] == "socks5://127.0.0.1:9050"

    r = client.get("/moat/captcha")
    assert r.status_code == 200
    assert r.headers["content-type"] == "image/jpeg"
    assert r.content == b"\xff\xd8jpeg-1"

    r = client.post("/moat/solution", json={"solution": "answer"})
    assert r.json()["state"] == "DONE"
    assert r.json()["bridges"] == ["bridge1 1.2.3.4:443"]
    assert attempt["stub"].submitted == [("tok-1", "answer")]
    attempt["prefs"].save_bridge_set.assert_called_once()

    assert client.get("/moat/captcha").status_code == 404


def test_wrong_solution_is_reported_in_snapshot(attempt):
    attempt["stub"].check = ProtocolError("HTTP 400 Bad Request", "wrong solution")
    client.post("/network/status", json={"status": "ON"})

    r = client.post("/moat/solution", json={"solution": "nope"})

    assert r.status_code == 200
    assert r.json()["state"] == "FAILED"
    assert r.json()["error"] == "wrong solution"


def test_refresh_uses_new_challenge(attempt):
    client.post("/network/status", json={"status": "ON"})

    r = client.post("/moat/refresh")
    assert r.json()["state"] == "CAPTCHA_DISPLAYED"
    assert client.get("/moat/captcha").content == b"\xff\xd8jpeg-2"

    client.post("/moat/solution", json={"solution": "x"})
    assert attempt["stub"].submitted == [("tok-2", "x")]


def test_refresh_before_network_is_conflict(attempt):
    r = client.post("/moat/refresh")
    assert r.status_code == 409


def test_solution_without_captcha_is_conflict(attempt):
    r = client.post("/moat/solution", json={"solution": "x"})
    assert r.status_code == 409


def test_state_and_missing_captcha(attempt):
    r = client.get("/moat/state")
    assert r.json()["state"] == "IDLE"
    assert client.get("/moat/captcha").status_code == 404


def test_new_attempt_detaches_previous(attempt):
    client.get("/moat/state")
    first = attempt["built"][0]

    r = client.post("/moat/attempts")

    assert r.json()["state"] == "IDLE"
    assert len(attempt["built"]) == 2
    attempt["network"].poll_status.assert_called_once()
    # the old attempt no longer reacts to status
    first.on_status_changed("ON")
    assert first.state == "IDLE"


def test_reset(attempt):
    attempt["stub"].fetches.insert(0, Challenge("tok-0", b"x"))
    client.post("/network/status", json={"status": "ON"})

    r = client.post("/moat/reset")

    assert r.json()["state"] == "CAPTCHA_DISPLAYED"


def test_bridge_prefs(attempt):
    prefs = MagicMock()
    prefs.get_bridges_list.return_value = "bridge1 1.2.3.4:443\nbridge2 5.6.7.8:443\n"
    prefs.bridges_enabled.return_value = True
    app.dependency_overrides[get_prefs] = lambda: prefs

    r = client.get("/prefs/bridges")

    assert r.json() == {"bridges": ["bridge1 1.2.3.4:443", "bridge2 5.6.7.8:443"], "enabled": True}


def test_api_key_enforced(attempt):
    with patch.object(settings, "API_KEY", "secret"):
        assert client.get("/moat/state").status_code == 401
        assert client.get("/moat/state", headers={"x-api-key": "secret"}).status_code == 200
