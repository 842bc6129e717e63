from __future__ import annotations

import logging
import threading
import time
import uuid
from dataclasses import dataclass
from typing import Callable

from src.broker.routes import ApiRoutes
from src.broker.settings import ClientSettings
from src.domain.errors import IntegrationFault, NetworkFault, SessionFailed
from src.domain.models import AuthOutcome, Credential, SessionState
from src.ports.broker import TransportPort

logger = logging.getLogger(__name__)

_CAN_AUTHENTICATE = (SessionState.UNAUTHENTICATED, SessionState.INVALID, SessionState.MFA_REQUIRED)
_CAN_CLOSE = (SessionState.AUTHENTICATING, SessionState.AUTHENTICATED)


@dataclass(frozen=True)
class _Snapshot:
    state: SessionState
    credential: Credential | None = None
    failure: BaseException | None = None


class CredentialHandle:
    """
    Single-writer / multi-reader cell holding the session snapshot.

    The snapshot (state + credential + failure) is replaced as one immutable record,
    so readers always see a consistent pairing of token and expiry.
    """

    def __init__(self, snapshot: _Snapshot) -> None:
        self._lock = threading.Lock()
        self._snapshot = snapshot

    def read(self) -> _Snapshot:
        with self._lock:
            return self._snapshot

    def swap(self, snapshot: _Snapshot) -> _Snapshot:
        with self._lock:
            previous = self._snapshot
            self._snapshot = snapshot
            return previous

    def swap_if(self, expected: SessionState | tuple[SessionState, ...], snapshot: _Snapshot) -> bool:
        """Replace the snapshot only while its state is `expected`; the check and write share the lock."""
        allowed = expected if isinstance(expected, tuple) else (expected,)
        with self._lock:
            if self._snapshot.state not in allowed:
                return False
            self._snapshot = snapshot
            return True


class SessionManager:
    """
    Owns the credential lifecycle.

    Unauthenticated -> Authenticating -> {Invalid | MfaRequired | Authenticated}.
    Authenticated renews in the background and moves to Failed on an unrecoverable
    refresh error; stop() moves Authenticating or Authenticated to Closed. Failed and
    Closed are terminal: transitions after a network call are compare-and-swap on the
    state, so a late refresh or login never reopens them. While Failed or Closed,
    asking for the credential raises SessionFailed, so dependent calls fail loudly
    instead of going out with a stale token.
    """

    def __init__(
        self,
        transport: TransportPort,
        settings: ClientSettings | None = None,
        *,
        clock: Callable[[], float] = time.time,
        device_token: str | None = None,
    ) -> None:
        self.transport = transport
        self.settings = settings or ClientSettings()
        self.routes = ApiRoutes(self.settings.origin)
        self.clock = clock
        self.device_token = device_token or str(uuid.uuid4())

        self._handle = CredentialHandle(_Snapshot(SessionState.UNAUTHENTICATED))
        self._thread: threading.Thread | None = None
        self._stop_evt = threading.Event()
        self._failed_evt = threading.Event()

        self.transport.attach_credentials(self.current_credential)

    @classmethod
    def from_existing_token(
        cls,
        token: str,
        transport: TransportPort,
        settings: ClientSettings | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> "SessionManager":
        """Wrap a caller-owned access token. No exchange is made and no renewal runs."""
        if not token or not str(token).strip():
            raise ValueError("token must be a non-empty string")
        manager = cls(transport, settings, clock=clock)
        credential = Credential(access_token=str(token).strip(), issued_at=clock())
        manager._handle.swap(_Snapshot(SessionState.AUTHENTICATED, credential=credential))
        return manager

    # ----- Observability -----

    @property
    def state(self) -> SessionState:
        return self._handle.read().state

    @property
    def failure(self) -> BaseException | None:
        return self._handle.read().failure

    @property
    def renewal_running(self) -> bool:
        return bool(self._thread and self._thread.is_alive())

    def wait_until_failed(self, timeout: float | None = None) -> bool:
        """Block until the renewal task fails; returns False on timeout."""
        return self._failed_evt.wait(timeout=timeout)

    def current_credential(self) -> Credential | None:
        """
        Latest credential snapshot, or None when not authenticated.

        Callers should take one snapshot per request and not hold on to it.
        Raises SessionFailed once the session is Failed or Closed.
        """
        snap = self._handle.read()
        if snap.state is SessionState.FAILED:
            raise SessionFailed("Session renewal failed; re-authenticate") from snap.failure
        if snap.state is SessionState.CLOSED:
            raise SessionFailed("Session is closed")
        if snap.state is SessionState.AUTHENTICATED:
            return snap.credential
        return None

    # ----- Authentication -----

    def authenticate(self, username: str, password: str, mfa_code: str | None = None) -> AuthOutcome:
        """
        Run one password (and optional MFA) exchange.

        Returns an AuthOutcome for invalid credentials, MFA-required, transport errors
        and success. An HTTP status outside 200/400 raises IntegrationFault.
        """
        if not self._handle.swap_if(_CAN_AUTHENTICATE, _Snapshot(SessionState.AUTHENTICATING)):
            state = self.state
            if state in (SessionState.FAILED, SessionState.CLOSED):
                raise SessionFailed(f"Session is {state.value}; create a new one")
            raise RuntimeError(f"Cannot authenticate a session in state {state.value}")

        body: dict[str, object] = {
            "username": username,
            "password": password,
            "grant_type": "password",
            "scope": self.settings.scope,
            "client_id": self.settings.client_id,
            "expires_in": self.settings.expires_in,
            "device_token": self.device_token,
        }
        if mfa_code:
            body["mfa_code"] = mfa_code

        try:
            response = self.transport.post(self.routes.oauth_token, body, authenticated=False)
        except NetworkFault as exc:
            self._settle_login(_Snapshot(SessionState.UNAUTHENTICATED))
            logger.warning("Authentication request failed: %s", exc)
            return AuthOutcome.error(str(exc))

        if response.status == 400:
            self._settle_login(_Snapshot(SessionState.INVALID))
            logger.warning("Authentication rejected: invalid credentials")
            return AuthOutcome.invalid()

        if response.status != 200:
            self._settle_login(_Snapshot(SessionState.UNAUTHENTICATED))
            raise IntegrationFault(
                f"Unexpected response when logging in: HTTP {response.status}",
                status=response.status,
                body=response.text[:500],
            )

        try:
            payload = response.json()
            if isinstance(payload, dict) and payload.get("mfa_required"):
                self._settle_login(_Snapshot(SessionState.MFA_REQUIRED))
                logger.warning("Authentication requires an MFA code")
                return AuthOutcome.mfa_required()
            credential = Credential.from_token_payload(payload, issued_at=self.clock())
        except IntegrationFault:
            self._settle_login(_Snapshot(SessionState.UNAUTHENTICATED))
            raise

        self._settle_login(_Snapshot(SessionState.AUTHENTICATED, credential=credential))
        logger.info("Authenticated; token expires in %ss", credential.expires_in)
        self._start_renewal()
        return AuthOutcome.success(credential)

    def _settle_login(self, snapshot: _Snapshot) -> None:
        # stop() may have closed the session while the exchange was in flight.
        if not self._handle.swap_if(SessionState.AUTHENTICATING, snapshot):
            raise SessionFailed(f"Session became {self.state.value} during login")

    # ----- Renewal -----

    def refresh(self) -> Credential:
        """Exchange the refresh token for a new credential and swap it in."""
        snap = self._handle.read()
        if snap.state is not SessionState.AUTHENTICATED or snap.credential is None:
            raise SessionFailed(f"Cannot refresh a session in state {snap.state.value}")
        if not snap.credential.refresh_token:
            raise SessionFailed("Session was built from a bare token and cannot be refreshed")

        body = {
            "grant_type": "refresh_token",
            "refresh_token": snap.credential.refresh_token,
            "scope": self.settings.scope,
            "client_id": self.settings.client_id,
            "expires_in": self.settings.expires_in,
            "device_token": self.device_token,
        }
        response = self.transport.post(self.routes.oauth_token, body, authenticated=False)
        if response.status != 200:
            raise IntegrationFault(
                f"Error refreshing token: HTTP {response.status}",
                status=response.status,
                body=response.text[:500],
            )
        credential = Credential.from_token_payload(response.json(), issued_at=self.clock())

        if not self._handle.swap_if(SessionState.AUTHENTICATED, _Snapshot(SessionState.AUTHENTICATED, credential)):
            # Closed or failed while the refresh was in flight; do not resurrect the session.
            raise SessionFailed(f"Session became {self.state.value} during refresh")
        logger.info("Access token renewed; expires in %ss", credential.expires_in)
        return credential

    def _start_renewal(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop_evt.clear()
        self._thread = threading.Thread(target=self._renewal_loop, name="credential-renewal", daemon=True)
        self._thread.start()

    def _renewal_loop(self) -> None:
        threshold = float(self.settings.renewal_threshold_seconds)
        poll = float(self.settings.renewal_poll_seconds)
        while not self._stop_evt.is_set():
            snap = self._handle.read()
            if snap.state is not SessionState.AUTHENTICATED or snap.credential is None:
                return
            time_left = snap.credential.time_left(self.clock())
            if time_left is None:
                return
            if time_left <= threshold:
                try:
                    self.refresh()
                except Exception as exc:  # noqa: BLE001
                    self._fail(exc)
                    return
            # At most one refresh per poll interval, even if the server hands out short-lived tokens.
            self._stop_evt.wait(poll)

    def _fail(self, exc: BaseException) -> None:
        snap = self._handle.read()
        failed = _Snapshot(SessionState.FAILED, credential=snap.credential, failure=exc)
        if not self._handle.swap_if(SessionState.AUTHENTICATED, failed):
            logger.info("Renewal stopped with the session already %s", self.state.value)
            return
        self._failed_evt.set()
        logger.error("Session renewal failed; session is no longer valid: %s", exc)

    def stop(self, timeout: float = 5.0) -> None:
        """
        Stop the renewal task and close the session. Safe to call more than once.

        A session that never held a credential is left as it is, so an unauthenticated
        client keeps serving public calls after close().
        """
        self._stop_evt.set()
        self._handle.swap_if(_CAN_CLOSE, _Snapshot(SessionState.CLOSED))
        if self._thread and self._thread is not threading.current_thread():
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                logger.warning("Renewal task did not stop within %ss", timeout)
        logger.info("Session stopped (%s)", self.state.value)
