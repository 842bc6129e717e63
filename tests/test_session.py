import threading
import time

import pytest
import requests

from conftest import ORIGIN, json_response
from src.broker.session import CredentialHandle, SessionManager, _Snapshot
from src.broker.settings import ClientSettings
from src.domain.errors import IntegrationFault, SessionFailed
from src.domain.models import AuthStatus, Credential, SessionState

TOKEN_URL = f"{ORIGIN}oauth2/token/"


def _token(access: str = "access-1", refresh: str = "refresh-1", expires_in: int = 3600):
    return json_response(
        {"access_token": access, "refresh_token": refresh, "expires_in": expires_in, "token_type": "Bearer"}
    )


class FakeClock:
    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _wait_for(predicate, timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return predicate()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def manager(transport, settings, clock):
    m = SessionManager(transport, settings, clock=clock, device_token="device-1")
    yield m
    m.stop(timeout=1.0)


def test_invalid_credentials(manager, fake_http):
    fake_http.add("POST", TOKEN_URL, json_response({"detail": "Unable to log in"}, status=400))

    outcome = manager.authenticate("alice", "wrong")

    assert outcome.status is AuthStatus.INVALID
    assert outcome.credential is None
    assert manager.state is SessionState.INVALID
    assert manager.current_credential() is None
    assert not manager.renewal_running


def test_mfa_required(manager, fake_http):
    fake_http.add("POST", TOKEN_URL, json_response({"mfa_required": True, "mfa_type": "sms"}))

    outcome = manager.authenticate("alice", "pw")

    assert outcome.status is AuthStatus.MFA_REQUIRED
    assert outcome.credential is None
    assert manager.state is SessionState.MFA_REQUIRED


def test_login_request_body(manager, fake_http):
    fake_http.add("POST", TOKEN_URL, _token())

    manager.authenticate("alice", "pw", mfa_code="123456")

    call = fake_http.calls[0]
    assert "Authorization" not in call["headers"]
    assert call["json"] == {
        "username": "alice",
        "password": "pw",
        "grant_type": "password",
        "scope": "internal",
        "client_id": manager.settings.client_id,
        "expires_in": 3600,
        "device_token": "device-1",
        "mfa_code": "123456",
    }


def test_success_starts_renewal_and_attaches_token(manager, transport, fake_http, clock):
    fake_http.add("POST", TOKEN_URL, _token())
    fake_http.add("GET", f"{ORIGIN}user/", json_response({}))

    outcome = manager.authenticate("alice", "pw")

    assert outcome.ok
    assert outcome.credential.access_token == "access-1"
    assert outcome.credential.expires_at == clock.now + 3600
    assert manager.state is SessionState.AUTHENTICATED
    assert manager.renewal_running

    transport.get(f"{ORIGIN}user/")
    assert fake_http.calls[-1]["headers"]["Authorization"] == "Bearer access-1"


def test_unexpected_login_status_raises(manager, fake_http):
    fake_http.add("POST", TOKEN_URL, json_response({}, status=503))

    with pytest.raises(IntegrationFault) as info:
        manager.authenticate("alice", "pw")
    assert info.value.status == 503
    assert manager.state is SessionState.UNAUTHENTICATED


def test_network_error_during_login_is_an_error_outcome(manager, fake_http):
    fake_http.add("POST", TOKEN_URL, requests.Timeout("slow"))

    outcome = manager.authenticate("alice", "pw")

    assert outcome.status is AuthStatus.ERROR
    assert manager.state is SessionState.UNAUTHENTICATED


def test_renewal_fires_inside_threshold(manager, fake_http, clock):
    fake_http.add("POST", TOKEN_URL, _token(), _token(access="access-2", refresh="refresh-2"))
    manager.authenticate("alice", "pw")

    # 40s left on the token, inside the 60s threshold.
    clock.now += 3560

    assert _wait_for(lambda: manager.current_credential().access_token == "access-2")
    refresh_body = fake_http.calls_to("POST", TOKEN_URL)[1]["json"]
    assert refresh_body["grant_type"] == "refresh_token"
    assert refresh_body["refresh_token"] == "refresh-1"
    assert refresh_body["device_token"] == "device-1"
    assert manager.current_credential().issued_at == clock.now
    assert manager.state is SessionState.AUTHENTICATED


def test_no_renewal_outside_threshold(manager, fake_http, clock):
    fake_http.add("POST", TOKEN_URL, _token())
    manager.authenticate("alice", "pw")

    clock.now += 3000
    time.sleep(0.1)

    assert len(fake_http.calls_to("POST", TOKEN_URL)) == 1


def test_failed_renewal_is_fatal(manager, transport, fake_http, clock):
    fake_http.add("POST", TOKEN_URL, _token(), json_response({"detail": "expired"}, status=401))
    manager.authenticate("alice", "pw")

    clock.now += 3590

    assert manager.wait_until_failed(timeout=2.0)
    assert manager.state is SessionState.FAILED
    assert isinstance(manager.failure, IntegrationFault)
    with pytest.raises(SessionFailed):
        manager.current_credential()
    # Dependent calls fail loudly instead of going out with a stale token.
    with pytest.raises(SessionFailed):
        transport.get(f"{ORIGIN}user/")
    with pytest.raises(SessionFailed):
        manager.authenticate("alice", "pw")


def test_authenticate_twice_is_rejected(manager, fake_http):
    fake_http.add("POST", TOKEN_URL, _token())
    manager.authenticate("alice", "pw")

    with pytest.raises(RuntimeError):
        manager.authenticate("alice", "pw")


def test_existing_token_has_no_renewal(transport, settings, fake_http):
    fake_http.add("GET", f"{ORIGIN}user/", json_response({}))

    m = SessionManager.from_existing_token("tok", transport, settings)

    assert m.state is SessionState.AUTHENTICATED
    assert not m.renewal_running
    assert m.current_credential().time_left(time.time()) is None
    transport.get(f"{ORIGIN}user/")
    assert fake_http.calls[0]["headers"]["Authorization"] == "Bearer tok"
    with pytest.raises(SessionFailed):
        m.refresh()


def test_existing_token_must_be_non_empty(transport):
    with pytest.raises(ValueError):
        SessionManager.from_existing_token("  ", transport)


def test_stop_closes_session(manager, fake_http):
    fake_http.add("POST", TOKEN_URL, _token())
    manager.authenticate("alice", "pw")

    manager.stop(timeout=1.0)
    manager.stop(timeout=1.0)

    assert manager.state is SessionState.CLOSED
    assert not manager.renewal_running
    assert not manager.wait_until_failed(timeout=0)
    with pytest.raises(SessionFailed, match="closed"):
        manager.current_credential()


def test_swap_if_only_writes_from_expected_state():
    handle = CredentialHandle(_Snapshot(SessionState.CLOSED))
    renewed = _Snapshot(SessionState.AUTHENTICATED, credential=Credential(access_token="late"))

    assert handle.swap_if(SessionState.AUTHENTICATED, renewed) is False
    assert handle.read().state is SessionState.CLOSED
    assert handle.swap_if((SessionState.AUTHENTICATED, SessionState.CLOSED), renewed) is True
    assert handle.read().credential.access_token == "late"


def test_refresh_landing_after_stop_keeps_session_closed(manager, fake_http, clock):
    def close_then_renew(method, url, **kwargs):
        manager.stop()
        return _token(access="access-2", refresh="refresh-2")

    fake_http.add("POST", TOKEN_URL, _token(), close_then_renew)
    manager.authenticate("alice", "pw")

    clock.now += 3590

    assert _wait_for(lambda: not manager.renewal_running)
    assert len(fake_http.calls_to("POST", TOKEN_URL)) == 2
    assert manager.state is SessionState.CLOSED
    assert not manager.wait_until_failed(timeout=0)
    with pytest.raises(SessionFailed, match="closed"):
        manager.current_credential()


def test_refresh_failure_after_stop_does_not_mark_failed(manager, fake_http, clock):
    def close_then_reject(method, url, **kwargs):
        manager.stop()
        return json_response({"detail": "expired"}, status=401)

    fake_http.add("POST", TOKEN_URL, _token(), close_then_reject)
    manager.authenticate("alice", "pw")

    clock.now += 3590

    assert _wait_for(lambda: not manager.renewal_running)
    assert manager.state is SessionState.CLOSED
    assert manager.failure is None
    assert not manager.wait_until_failed(timeout=0)


def test_direct_refresh_after_stop_raises(manager, fake_http):
    def close_then_renew(method, url, **kwargs):
        manager.stop()
        return _token(access="access-2")

    fake_http.add("POST", TOKEN_URL, _token(), close_then_renew)
    manager.authenticate("alice", "pw")

    with pytest.raises(SessionFailed, match="during refresh"):
        manager.refresh()
    assert manager.state is SessionState.CLOSED


def test_stop_during_login_keeps_session_closed(manager, fake_http):
    def close_then_grant(method, url, **kwargs):
        manager.stop()
        return _token()

    fake_http.add("POST", TOKEN_URL, close_then_grant)

    with pytest.raises(SessionFailed, match="during login"):
        manager.authenticate("alice", "pw")
    assert manager.state is SessionState.CLOSED
    assert not manager.renewal_running


def test_short_lived_tokens_renew_once_per_poll(transport, fake_http, clock):
    # The server grants 30s tokens, already inside the 60s threshold.
    fake_http.add("POST", TOKEN_URL, _token(expires_in=30))
    m = SessionManager(transport, ClientSettings(renewal_poll_seconds=0.05), clock=clock)
    try:
        m.authenticate("alice", "pw")
        time.sleep(0.3)
    finally:
        m.stop(timeout=1.0)

    assert 2 <= len(fake_http.calls_to("POST", TOKEN_URL)) <= 12


class SteppingClock:
    """Every read jumps far enough ahead that the current token is always due for renewal."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._now = 0.0

    def __call__(self) -> float:
        with self._lock:
            self._now += 5_000.0
            return self._now


def test_readers_never_see_a_torn_credential(transport, fake_http):
    grants = [_token(access=f"access-{1000 + i}", expires_in=1000 + i) for i in range(400)]
    fake_http.add("POST", TOKEN_URL, *grants)
    m = SessionManager(transport, ClientSettings(renewal_poll_seconds=0.001), clock=SteppingClock())

    done = threading.Event()
    reads: list[int] = []
    torn: list[tuple[str, int | None]] = []

    def reader() -> None:
        while not done.is_set():
            cred = m.current_credential()
            if cred is None:
                continue
            reads.append(1)
            if cred.access_token != f"access-{cred.expires_in}":
                torn.append((cred.access_token, cred.expires_in))

    m.authenticate("alice", "pw")
    worker = threading.Thread(target=reader)
    worker.start()
    try:
        assert _wait_for(lambda: len(fake_http.calls_to("POST", TOKEN_URL)) >= 50, timeout=5.0)
    finally:
        done.set()
        worker.join(timeout=2.0)
        m.stop(timeout=1.0)

    assert reads
    assert torn == []


def test_stop_before_login_leaves_session_usable(manager, fake_http):
    manager.stop()

    assert manager.state is SessionState.UNAUTHENTICATED
    assert manager.current_credential() is None

    fake_http.add("POST", TOKEN_URL, _token())
    assert manager.authenticate("alice", "pw").ok
