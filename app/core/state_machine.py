import threading
from typing import Any, Callable, Dict, Optional, Tuple

from redis.exceptions import RedisError

from app.moat.client import MoatClient
from app.moat.errors import BusyError, ProtocolError, StateError
from app.moat.models import BridgeSet, Challenge, NetworkStatus, ProxyEndpoint, StatusNotification
from app.moat.network import NetworkControl
from app.moat.sink import ResultSink
from app.moat.transport import ProxyTransport
from app.observability.logging import log
from app.store.prefs import PreferenceStore

# Moat attempt states

# Nothing reported by the network controller yet
IDLE = "IDLE"

# Tor was asked to start (or status was polled); waiting for ON
AWAITING_NETWORK = "AWAITING_NETWORK"

# SOCKS endpoint known, transport built; a captcha fetch follows immediately
READY = "READY"

CAPTCHA_LOADING = "CAPTCHA_LOADING"

# A challenge is live and waiting for the user's answer
CAPTCHA_DISPLAYED = "CAPTCHA_DISPLAYED"

SOLUTION_SUBMITTING = "SOLUTION_SUBMITTING"

# Terminal for the attempt
DONE = "DONE"
FAILED = "FAILED"

WAITING_STATES = (IDLE, AWAITING_NETWORK)

ClientFactory = Callable[[ProxyEndpoint], MoatClient]


class ProtocolStateMachine:
    """
    One bridge request attempt.

    Owns the current state, the live challenge and the moat client. At most one
    fetch/check is in flight; a second user action while one runs raises
    BusyError. Moat calls and sink callbacks run outside the lock.
    """

    def __init__(
        self,
        network: NetworkControl,
        sink: Optional[ResultSink] = None,
        prefs: Optional[PreferenceStore] = None,
        *,
        base_url: Optional[str] = None,
        client_factory: Optional[ClientFactory] = None,
    ):
        self._network = network
        self._sink = sink or ResultSink()
        self._prefs = prefs
        self._base_url = base_url
        self._client_factory = client_factory or self._default_client

        self._lock = threading.Lock()
        self._state = IDLE
        self._network_status: Optional[NetworkStatus] = None
        self._endpoint: Optional[ProxyEndpoint] = None
        self._client: Optional[MoatClient] = None
        self._challenge: Optional[Challenge] = None
        self._busy = False
        self._detached = False
        self._error: Optional[str] = None
        self._bridges: Optional[BridgeSet] = None

    def _default_client(self, endpoint: ProxyEndpoint) -> MoatClient:
        return MoatClient(ProxyTransport(endpoint), base_url=self._base_url)

    @property
    def state(self) -> str:
        return self._state

    @property
    def network_status(self) -> Optional[NetworkStatus]:
        return self._network_status

    # ------------------------------------------------------------------
    # Network-controller side
    # ------------------------------------------------------------------
    def start(self) -> None:
        """Ask the controller to re-broadcast status; the reply drives everything else."""
        if self._detached:
            return
        self._network.poll_status()

    def on_status_changed(self, status: Any, host: Optional[str] = None, port: Optional[int] = None) -> None:
        note = StatusNotification.from_raw(status, host, port)

        with self._lock:
            if self._detached:
                return
            self._network_status = note.status
            state = self._state

            if note.status is NetworkStatus.ON:
                if state not in WAITING_STATES:
                    # duplicate delivery; transport already built
                    return
                self._endpoint = note.endpoint
                # a client left over from an earlier ON (reset while offline)
                self._close_client()
                self._client = self._client_factory(note.endpoint)
                self._set_state(READY)
                action = "ready"
            elif note.status is NetworkStatus.OFF and state == IDLE:
                self._set_state(AWAITING_NETWORK)
                action = "start"
            else:
                if state == IDLE:
                    self._set_state(AWAITING_NETWORK)
                action = "poll"

        log(event="moat_network_status", status=note.status.value, state=state, action=action,
            proxy=note.endpoint.url if note.status is NetworkStatus.ON else None)

        if action == "start":
            self._network.start_network()
        elif action == "poll":
            self._network.poll_status()
        else:
            try:
                if self._prefs is not None:
                    # tor needs the meek "moat" bridge to reach the distributor
                    self._prefs.use_moat_bridge()
                self._network.reload_configuration()
            except RedisError as e:
                self._fail_preparation(ProtocolError(f"could not prepare tor for moat: {e}"))
                return
            try:
                self._fetch()
            except StateError as e:
                log(event="moat_auto_fetch_skipped", reason=str(e))

    # ------------------------------------------------------------------
    # User side
    # ------------------------------------------------------------------
    def refresh(self) -> None:
        """New captcha, discarding any live one. Only while tor is ON."""
        self._fetch()

    def submit_solution(self, solution: str) -> None:
        with self._lock:
            if self._busy:
                raise BusyError("a moat request is already in flight")
            if self._state != CAPTCHA_DISPLAYED or self._challenge is None:
                raise StateError(f"no captcha to answer in state {self._state}")
            client = self._client
            token = self._challenge.challenge_token
            # consumed whatever the outcome
            self._challenge = None
            self._busy = True
            self._set_state(SOLUTION_SUBMITTING)

        bridges, error = self._perform(lambda: client.submit_solution(token, solution))

        with self._lock:
            self._busy = False
            if self._detached:
                self._finish_detached()
                return
            # written under the lock so detach() cannot land between check and write
            if error is None and self._prefs is not None:
                try:
                    self._prefs.save_bridge_set(bridges)
                except RedisError as e:
                    error = ProtocolError(f"could not store bridges: {e}")
            if error is not None:
                message = self._fail(error)
            else:
                self._bridges = bridges
                self._set_state(DONE)

        if error is not None:
            self._sink.failed(message)
        else:
            self._sink.bridges_obtained(bridges.lines, enable_bridges=True)

    def reset(self) -> None:
        """Start over within this attempt: fetch again if online, else wait for the network."""
        with self._lock:
            if self._detached:
                raise StateError("attempt is detached")
            if self._busy:
                raise BusyError("a moat request is already in flight")
            self._challenge = None
            self._error = None
            self._bridges = None
            online = self._network_status is NetworkStatus.ON and self._client is not None
            self._set_state(READY if online else IDLE)

        if online:
            self._fetch()
        else:
            self._network.poll_status()

    def detach(self) -> None:
        """Hosting context is gone. Late responses are dropped, the transport closed."""
        with self._lock:
            self._detached = True
            self._challenge = None
            if not self._busy:
                self._close_client()
        log(event="moat_attempt_detached", state=self._state)

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "state": self._state,
                "networkStatus": self._network_status.value if self._network_status else None,
                "proxy": self._endpoint.url if self._endpoint else None,
                "hasChallenge": self._challenge is not None,
                "busy": self._busy,
                "error": self._error,
                "bridges": list(self._bridges.lines) if self._bridges is not None else None,
            }

    # ------------------------------------------------------------------
    # internals
    # ------------------------------------------------------------------
    def _fetch(self) -> None:
        with self._lock:
            if self._detached:
                raise StateError("attempt is detached")
            if self._network_status is not NetworkStatus.ON or self._client is None:
                raise StateError("network is not ready")
            if self._busy:
                raise BusyError("a moat request is already in flight")
            client = self._client
            self._challenge = None
            self._error = None
            self._bridges = None
            if self._state != READY:
                self._set_state(READY)
            self._busy = True
            self._set_state(CAPTCHA_LOADING)

        challenge, error = self._perform(client.fetch_captcha)

        with self._lock:
            self._busy = False
            if self._detached:
                self._finish_detached()
                return
            if error is not None:
                message = self._fail(error)
            else:
                self._challenge = challenge
                self._set_state(CAPTCHA_DISPLAYED)

        if error is not None:
            self._sink.failed(message)
        else:
            self._sink.challenge_ready(challenge.image)

    def _perform(self, call: Callable[[], Any]) -> Tuple[Any, Optional[ProtocolError]]:
        try:
            return call(), None
        except ProtocolError as e:
            return None, e
        except Exception as e:
            with self._lock:
                self._busy = False
                if self._detached:
                    self._close_client()
                else:
                    self._error = str(e) or type(e).__name__
                    self._set_state(FAILED)
            log(event="moat_call_crashed", errorType=type(e).__name__, error=str(e)[:500])
            raise

    def _fail(self, error: ProtocolError) -> str:
        # lock held
        self._error = error.message
        self._set_state(FAILED)
        return error.message

    def _fail_preparation(self, error: ProtocolError) -> None:
        """
        The network came up but tor could not be pointed at the moat bridge.
        The client is dropped so reset() waits for a fresh ON and redoes the setup.
        """
        with self._lock:
            if self._detached or self._busy or self._state != READY:
                log(event="moat_prepare_failed_ignored", state=self._state, error=error.message)
                return
            self._close_client()
            message = self._fail(error)
        self._sink.failed(message)

    def _finish_detached(self) -> None:
        # lock held
        self._busy = False
        self._close_client()
        log(event="moat_response_discarded", state=self._state)

    def _close_client(self) -> None:
        if self._client is not None:
            try:
                self._client.close()
            finally:
                self._client = None

    def _set_state(self, new_state: str) -> None:
        # lock held
        if new_state == self._state:
            return
        log(event="moat_state_changed", fromState=self._state, toState=new_state)
        self._state = new_state
