"""Drive a Wi-Fi connection attempt to a terminal outcome."""

from __future__ import annotations

import logging
import threading
import time
from enum import Enum
from typing import Callable, Sequence

from .backend import NetworkBackend, NetworkContext
from .convergence import StatusConvergenceDetector
from .error_queue import DiagnosticQueue, record_event
from .errors import (
    ErrorKind,
    InvalidInputError,
    NetworkError,
    WiFiError,
    classify_failure,
    describe_error,
)
from .models import (
    ConnectionOutcome,
    ConnectionStatus,
    NetworkIdentity,
    OutcomeKind,
    WiFiNetwork,
)
from .sanitizer import escape_for_shell, validate_identity, validate_password


logger = logging.getLogger(__name__)


class OrchestratorState(str, Enum):
    IDLE = "idle"
    ATTEMPTING = "attempting"
    CONNECTED = "connected"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


_OUTCOME_STATES = {
    OutcomeKind.CONNECTED: OrchestratorState.CONNECTED,
    OutcomeKind.FAILED: OrchestratorState.FAILED,
    OutcomeKind.TIMED_OUT: OrchestratorState.TIMED_OUT,
    OutcomeKind.CANCELLED: OrchestratorState.CANCELLED,
}


def _zero(buffer: bytearray | None) -> None:
    if buffer is None:
        return
    for index in range(len(buffer)):
        buffer[index] = 0


class ConnectionAttempt:
    """Handle for one in-flight connection attempt.

    The credential lives in a mutable buffer so that it can be overwritten
    once the activation command has been issued or the attempt concludes.
    """

    def __init__(
        self,
        identity: NetworkIdentity,
        credential: bytearray | None = None,
        *,
        use_saved_profile: bool = False,
        interface: str | None = None,
    ) -> None:
        self.identity = identity
        self.use_saved_profile = use_saved_profile
        self.interface = interface
        self.started_at = time.monotonic()
        self._credential = credential
        self._credential_lock = threading.Lock()
        self._cancel_event = threading.Event()
        self._done = threading.Event()
        self._outcome: ConnectionOutcome | None = None
        self._finished_at: float | None = None
        self._thread: threading.Thread | None = None

    # ------------------------------ properties -----------------------------
    @property
    def ssid(self) -> str:
        return self.identity.name

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    @property
    def done(self) -> bool:
        return self._done.is_set()

    @property
    def outcome(self) -> ConnectionOutcome | None:
        return self._outcome

    @property
    def credential_cleared(self) -> bool:
        with self._credential_lock:
            return self._credential is None

    @property
    def elapsed(self) -> float:
        end = self._finished_at if self._finished_at is not None else time.monotonic()
        return max(0.0, end - self.started_at)

    # ------------------------------ operations -----------------------------
    def cancel(self) -> None:
        self._cancel_event.set()

    def wait(self, timeout: float | None = None) -> ConnectionOutcome | None:
        """Block until the attempt finishes; ``None`` if ``timeout`` elapses."""

        if not self._done.wait(timeout):
            return None
        return self._outcome

    def to_dict(self) -> dict[str, object | None]:
        outcome = self._outcome
        return {
            "ssid": self.ssid,
            "state": outcome.kind.value if outcome else OrchestratorState.ATTEMPTING.value,
            "elapsed": round(self.elapsed, 3),
            "saved_profile": self.use_saved_profile,
            "outcome": outcome.to_dict() if outcome else None,
        }

    # ------------------------------- internal ------------------------------
    def _take_credential(self) -> bytearray | None:
        with self._credential_lock:
            return self._credential

    def _clear_credential(self) -> None:
        with self._credential_lock:
            _zero(self._credential)
            self._credential = None

    def _sleep_or_cancel(self, interval: float) -> bool:
        return self._cancel_event.wait(interval)

    def _finish(self, outcome: ConnectionOutcome) -> None:
        self._clear_credential()
        self._outcome = outcome
        self._finished_at = time.monotonic()
        self._done.set()


class _CommandHandle:
    """Result holder for the activation command running beside the poll loop."""

    def __init__(self) -> None:
        self.finished = threading.Event()
        self.error: WiFiError | None = None


class ConnectionOrchestrator:
    """Run connection attempts off the caller's thread so they can be cancelled.

    A single worker thread is spawned per attempt. The activation command is
    issued from a helper thread while the worker polls the convergence
    detector, so a cancellation is observed within one polling interval even
    when the external command itself is still blocked.
    """

    def __init__(
        self,
        context: NetworkContext,
        *,
        interface: str | None = None,
        poll_interval: float | None = None,
        max_polls: int | None = None,
        require_ip: bool | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        settings = context.settings
        self._context = context
        self._interface = interface or settings.interface
        self._poll_interval = max(0.001, poll_interval if poll_interval is not None else settings.poll_interval)
        self._max_polls = max(1, max_polls if max_polls is not None else settings.max_polls)
        self._require_ip = settings.require_ip if require_ip is None else require_ip
        self._open_fast_path = settings.open_network_fast_path
        self._settle_delay = settings.settle_delay
        self._sleep = sleep
        self._lock = threading.Lock()
        self._attempt: ConnectionAttempt | None = None

    # ------------------------------ properties -----------------------------
    @property
    def queue(self) -> DiagnosticQueue:
        return self._context.queue

    @property
    def current_attempt(self) -> ConnectionAttempt | None:
        with self._lock:
            return self._attempt

    @property
    def state(self) -> OrchestratorState:
        attempt = self.current_attempt
        if attempt is None:
            return OrchestratorState.IDLE
        outcome = attempt.outcome
        if outcome is None:
            return OrchestratorState.ATTEMPTING
        return _OUTCOME_STATES[outcome.kind]

    def _backend(self) -> NetworkBackend:
        return self._context.backend

    def _resolve_interface(self, interface: str | None = None) -> str | None:
        return interface or self._interface or self._context.default_interface()

    def _detector(self, backend: NetworkBackend, interface: str | None) -> StatusConvergenceDetector:
        return StatusConvergenceDetector(backend, self._context.iw, interface=interface)

    # ------------------------------ operations -----------------------------
    def scan(self, *, rescan: bool = True) -> Sequence[WiFiNetwork]:
        backend = self._backend()
        interface = self._interface
        if rescan:
            backend.rescan(interface)
        return backend.scan_networks(interface)

    def status(self, interface: str | None = None) -> ConnectionStatus:
        backend = self._backend()
        device = self._resolve_interface(interface)
        return self._detector(backend, device).snapshot(device)

    def connect(
        self,
        identity: NetworkIdentity | str,
        credential: str | bytes | bytearray | None = None,
        *,
        security: str | None = None,
        interface: str | None = None,
    ) -> ConnectionAttempt:
        """Start a connection attempt and return its handle immediately."""

        if isinstance(identity, NetworkIdentity):
            target = identity
            if security is not None:
                target = NetworkIdentity(identity.name, security)
        else:
            if security is None:
                security = "WPA2" if credential else ""
            target = NetworkIdentity(identity, security)
        try:
            validate_identity(target.name)
        except InvalidInputError as exc:
            self._record_event("connect_rejected", str(exc), error=True)
            raise

        buffer: bytearray | None
        if credential is None or credential == "" or credential == b"":
            buffer = None
        elif isinstance(credential, str):
            buffer = bytearray(credential.encode("utf-8"))
        else:
            buffer = bytearray(credential)

        try:
            backend = self._backend()
            saved = target.name in backend.list_saved_profiles()
            if not saved and not target.is_open:
                secret = buffer.decode("utf-8") if buffer is not None else None
                validate_password(secret, target.security)
        except WiFiError as exc:
            _zero(buffer)
            self._record_event(
                "connect_rejected",
                f"Connection to {target.name} rejected: {exc}",
                error=True,
            )
            raise
        except UnicodeDecodeError as exc:
            _zero(buffer)
            raise InvalidInputError("Password must be valid UTF-8 text") from exc

        if saved or target.is_open:
            # Neither path transmits a credential.
            _zero(buffer)
            buffer = None

        attempt = ConnectionAttempt(
            target,
            buffer,
            use_saved_profile=saved,
            interface=self._resolve_interface(interface),
        )
        with self._lock:
            previous = self._attempt
            self._attempt = attempt
        if previous is not None and not previous.done:
            logger.info(
                "Connection attempt to %s superseded by %s", previous.ssid, target.name
            )
        self._record_event(
            "connect_attempt",
            f"Attempting to connect to {target.name}.",
            metadata={
                "saved_profile": saved,
                "secured": not target.is_open,
                "interface": attempt.interface,
            },
        )
        thread = threading.Thread(
            target=self._run_attempt,
            args=(attempt, backend),
            name="wifi-connect-attempt",
            daemon=True,
        )
        attempt._thread = thread
        thread.start()
        return attempt

    def cancel(self) -> bool:
        """Request cancellation of the in-flight attempt, if any."""

        attempt = self.current_attempt
        if attempt is None or attempt.done:
            return False
        attempt.cancel()
        self._record_event("connect_cancel", f"Cancelling connection to {attempt.ssid}.")
        return True

    def wait(self, timeout: float | None = None) -> ConnectionOutcome | None:
        attempt = self.current_attempt
        if attempt is None:
            return None
        return attempt.wait(timeout)

    def connect_and_wait(
        self,
        identity: NetworkIdentity | str,
        credential: str | bytes | bytearray | None = None,
        *,
        security: str | None = None,
        interface: str | None = None,
        timeout: float | None = None,
    ) -> ConnectionOutcome | None:
        """Start an attempt and block until it finishes or ``timeout`` elapses."""

        attempt = self.connect(identity, credential, security=security, interface=interface)
        return attempt.wait(timeout)

    def disconnect(self, interface: str | None = None) -> bool:
        """Tear down the station connection and confirm nothing is associated.

        Returns ``True`` only when neither the control plane nor the kernel
        reports an association afterwards.
        """

        self.cancel()
        backend = self._backend()
        device = self._resolve_interface(interface)
        detector = self._detector(backend, device)
        status = backend.query_connection_status()
        if status.connected and status.profile:
            backend.deactivate_profile(status.profile)
        if device:
            try:
                backend.disconnect(device)
            except NetworkError as exc:
                logger.debug("Device disconnect for %s reported: %s", device, exc)
        self._settle()
        if not self._still_associated(detector, device):
            self._record_event("disconnect", "Disconnected from Wi-Fi.")
            return True
        if not device:
            self._record_event("disconnect_error", "Association persists after disconnect.", error=True)
            return False

        self._record_event(
            "disconnect_reset",
            f"Interface {device} is still associated; resetting device management.",
            warning=True,
        )
        backend.set_device_managed(device, False)
        self._settle()
        backend.set_device_managed(device, True)
        self._settle()
        if self._still_associated(detector, device):
            self._record_event(
                "disconnect_error",
                f"Interface {device} remains associated after reset.",
                error=True,
            )
            return False
        self._record_event("disconnect", "Disconnected from Wi-Fi after device reset.")
        return True

    # ------------------------------- recovery ------------------------------
    def is_wifi_enabled(self) -> bool:
        try:
            return self._backend().radio_enabled()
        except WiFiError as exc:
            logger.debug("Unable to query Wi-Fi radio: %s", exc)
            return False

    def auto_enable_wifi(self) -> bool:
        try:
            self._backend().enable_radio()
        except WiFiError as exc:
            self._record_event("radio_error", f"Unable to enable Wi-Fi radio: {exc}", error=True)
            return False
        self._settle()
        return self.is_wifi_enabled()

    def is_control_plane_running(self) -> bool:
        try:
            return self._backend().service_running()
        except WiFiError:
            return False

    # ------------------------------- internal ------------------------------
    def _settle(self) -> None:
        if self._settle_delay > 0:
            self._sleep(self._settle_delay)

    @staticmethod
    def _still_associated(detector: StatusConvergenceDetector, device: str | None) -> bool:
        result = detector.classify(device, require_ip=False)
        return result.connected or detector.kernel_associated(device)

    def _requires_ip(self, identity: NetworkIdentity) -> bool:
        if not self._require_ip:
            return False
        if identity.is_open and self._open_fast_path:
            return False
        return True

    def _issue_command(self, attempt: ConnectionAttempt, backend: NetworkBackend) -> _CommandHandle:
        handle = _CommandHandle()
        identity = attempt.identity

        def _command() -> None:
            try:
                if attempt.use_saved_profile:
                    backend.activate_profile(identity.name, attempt.interface)
                elif identity.is_open:
                    backend.connect_open(identity.name, attempt.interface)
                else:
                    credential = attempt._take_credential()
                    if credential is None:
                        raise InvalidInputError("A password is required for secured networks")
                    logger.debug(
                        "Creating profile for %s",
                        escape_for_shell(identity.name) or "<unprintable>",
                    )
                    backend.connect_secured(
                        identity.name,
                        credential,
                        attempt.interface,
                        security=identity.security,
                    )
            except WiFiError as exc:
                handle.error = exc
            finally:
                attempt._clear_credential()
                handle.finished.set()

        thread = threading.Thread(target=_command, name="wifi-connect-command", daemon=True)
        thread.start()
        return handle

    def _poll(self, attempt: ConnectionAttempt, backend: NetworkBackend) -> ConnectionOutcome:
        identity = attempt.identity
        if attempt.cancelled:
            return ConnectionOutcome.cancelled(identity.name)
        handle = self._issue_command(attempt, backend)
        detector = self._detector(backend, attempt.interface)
        require_ip = self._requires_ip(identity)
        seen_activating = False

        for _ in range(self._max_polls):
            if attempt.cancelled:
                return ConnectionOutcome.cancelled(identity.name)
            if handle.finished.is_set() and handle.error is not None:
                return self._failure(identity.name, handle.error)
            result = detector.classify(attempt.interface, require_ip=require_ip)
            if result.matches(identity.name):
                return ConnectionOutcome.connected(result.identity or identity.name, result.ip_address)
            state = detector.profile_state(identity.name)
            if state == "activating":
                seen_activating = True
            elif state in {"deactivated", "failed"} and seen_activating and handle.finished.is_set():
                return ConnectionOutcome.failed(
                    ErrorKind.UNKNOWN,
                    f"Activation of {identity.name} failed",
                    identity.name,
                )
            if attempt._sleep_or_cancel(self._poll_interval):
                return ConnectionOutcome.cancelled(identity.name)

        if handle.finished.is_set() and handle.error is not None:
            return self._failure(identity.name, handle.error)
        return ConnectionOutcome.timed_out(identity.name)

    @staticmethod
    def _failure(ssid: str, error: WiFiError) -> ConnectionOutcome:
        message = str(error).strip() or "Connection failed"
        if isinstance(error, NetworkError):
            kind = error.kind
        else:
            kind = classify_failure(message)
        return ConnectionOutcome.failed(kind, message, ssid)

    def _run_attempt(self, attempt: ConnectionAttempt, backend: NetworkBackend) -> None:
        try:
            outcome = self._poll(attempt, backend)
        except WiFiError as exc:
            outcome = self._failure(attempt.ssid, exc)
        # Waiters must find the diagnostic queued once the outcome is visible.
        self._report(attempt, outcome)
        attempt._finish(outcome)

    def _report(self, attempt: ConnectionAttempt, outcome: ConnectionOutcome) -> None:
        metadata = {"elapsed": round(attempt.elapsed, 3), "outcome": outcome.kind.value}
        if outcome.kind is OutcomeKind.CONNECTED:
            self._record_event(
                "connect_success",
                f"Connected to {outcome.identity}.",
                metadata={**metadata, "ip_address": outcome.ip_address},
            )
        elif outcome.kind is OutcomeKind.CANCELLED:
            self._record_event(
                "connect_cancelled",
                f"Connection to {attempt.ssid} cancelled.",
                metadata=metadata,
                warning=True,
            )
        elif outcome.kind is OutcomeKind.TIMED_OUT:
            self._record_event(
                "connect_timeout",
                f"Connection to {attempt.ssid} timed out.",
                metadata=metadata,
                error=True,
            )
        else:
            info = describe_error(outcome.error_kind or ErrorKind.UNKNOWN)
            self._record_event(
                "connect_error",
                f"Connection to {attempt.ssid} failed: {info.message}: {outcome.message}",
                metadata={**metadata, "error_kind": info.kind.value},
                error=True,
            )

    def _record_event(
        self,
        event: str,
        message: str,
        *,
        error: bool = False,
        warning: bool = False,
        metadata: dict[str, object | None] | None = None,
    ) -> None:
        record_event(
            self._context.queue,
            logger,
            event,
            message,
            error=error,
            warning=warning,
            metadata=metadata,
        )


__all__ = ["ConnectionAttempt", "ConnectionOrchestrator", "OrchestratorState"]
