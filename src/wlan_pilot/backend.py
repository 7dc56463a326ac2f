"""Capability interface for network control planes and backend selection."""

from __future__ import annotations

import logging
import threading
from typing import Callable, Iterable, Sequence

from .config import Settings
from .error_queue import DiagnosticQueue
from .errors import ControlPlaneUnavailableError, WiFiError
from .execution import CommandRunner
from .iw import IwTool
from .models import (
    ConnectionStatus,
    HotspotClient,
    HotspotConfig,
    HotspotState,
    WiFiNetwork,
)


logger = logging.getLogger(__name__)


class NetworkBackend:
    """Abstract interface for the operations a control plane must provide.

    Callers depend only on this interface. Profile names and SSIDs passed in
    have already been validated by the caller.
    """

    name = "abstract"

    # ------------------------------ discovery ------------------------------
    def is_available(self) -> bool:  # pragma: no cover - interface only
        raise NotImplementedError

    def scan_networks(self, interface: str | None = None) -> Sequence[WiFiNetwork]:  # pragma: no cover - interface only
        raise NotImplementedError

    def rescan(self, interface: str | None = None) -> None:  # pragma: no cover - interface only
        raise NotImplementedError

    # ------------------------------ station --------------------------------
    def connect_open(self, ssid: str, interface: str | None = None) -> None:  # pragma: no cover - interface only
        raise NotImplementedError

    def connect_secured(
        self,
        ssid: str,
        credential: bytearray,
        interface: str | None = None,
        *,
        security: str = "",
    ) -> None:  # pragma: no cover - interface only
        raise NotImplementedError

    def activate_profile(self, profile: str, interface: str | None = None) -> None:  # pragma: no cover - interface only
        raise NotImplementedError

    def deactivate_profile(self, profile: str) -> None:  # pragma: no cover - interface only
        raise NotImplementedError

    def disconnect(self, interface: str | None = None) -> None:  # pragma: no cover - interface only
        raise NotImplementedError

    def query_connection_status(self) -> ConnectionStatus:  # pragma: no cover - interface only
        raise NotImplementedError

    def query_active_ssid(self) -> str | None:  # pragma: no cover - interface only
        raise NotImplementedError

    def query_ip_address(self, interface: str | None = None) -> str | None:  # pragma: no cover - interface only
        raise NotImplementedError

    def list_saved_profiles(self) -> set[str]:  # pragma: no cover - interface only
        raise NotImplementedError

    def profile_state(self, profile: str) -> str | None:  # pragma: no cover - interface only
        raise NotImplementedError

    # ------------------------------ hotspots -------------------------------
    def create_hotspot(self, config: HotspotConfig) -> None:  # pragma: no cover - interface only
        raise NotImplementedError

    def modify_hotspot(self, config: HotspotConfig) -> None:  # pragma: no cover - interface only
        raise NotImplementedError

    def start_hotspot(self, name: str) -> None:  # pragma: no cover - interface only
        raise NotImplementedError

    def stop_hotspot(self, name: str) -> None:  # pragma: no cover - interface only
        raise NotImplementedError

    def delete_hotspot(self, name: str) -> None:  # pragma: no cover - interface only
        raise NotImplementedError

    def query_hotspot_status(self, name: str) -> HotspotState:  # pragma: no cover - interface only
        raise NotImplementedError

    def list_active_hotspots(self) -> list[str]:  # pragma: no cover - interface only
        raise NotImplementedError

    def list_hotspot_clients(self, name: str) -> list[HotspotClient]:  # pragma: no cover - interface only
        raise NotImplementedError

    def list_ap_profiles(self) -> list[str]:  # pragma: no cover - interface only
        raise NotImplementedError

    def profile_exists(self, profile: str) -> bool:  # pragma: no cover - interface only
        raise NotImplementedError

    def profile_mode(self, profile: str) -> str | None:  # pragma: no cover - interface only
        raise NotImplementedError

    # ------------------------------ devices --------------------------------
    def check_ap_mode_support(self, interface: str) -> bool:  # pragma: no cover - interface only
        raise NotImplementedError

    def list_wifi_interfaces(self) -> list[str]:  # pragma: no cover - interface only
        raise NotImplementedError

    def set_device_managed(self, interface: str, managed: bool) -> None:  # pragma: no cover - interface only
        raise NotImplementedError

    def radio_enabled(self) -> bool:  # pragma: no cover - interface only
        raise NotImplementedError

    def enable_radio(self) -> None:  # pragma: no cover - interface only
        raise NotImplementedError

    def service_running(self) -> bool:
        """Return whether the control plane daemon is up (optional hook)."""

        return self.is_available()


def select_backend(candidates: Iterable[NetworkBackend]) -> NetworkBackend | None:
    """Return the first candidate whose :meth:`is_available` probe succeeds."""

    for candidate in candidates:
        try:
            available = candidate.is_available()
        except WiFiError as exc:
            logger.warning("Backend %s probe failed: %s", candidate.name, exc)
            continue
        if available:
            logger.info("Selected network backend %s", candidate.name)
            return candidate
        logger.debug("Network backend %s unavailable", candidate.name)
    return None


BackendFactory = Callable[["NetworkContext"], Sequence[NetworkBackend]]


def _default_backends(context: "NetworkContext") -> Sequence[NetworkBackend]:
    from .nmcli import NMCLIBackend

    return [NMCLIBackend(context.runner, iw=context.iw, interface=context.settings.interface)]


class NetworkContext:
    """Explicit bundle of the collaborators shared by the orchestration layer.

    The backend is chosen lazily on first use by probing the candidates in
    preference order and then memoized for the lifetime of the context.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        runner: CommandRunner | None = None,
        iw: IwTool | None = None,
        queue: DiagnosticQueue | None = None,
        backends: Sequence[NetworkBackend] | BackendFactory | None = None,
    ) -> None:
        self.settings = settings or Settings()
        self.runner = runner or CommandRunner(
            timeout=self.settings.command_timeout,
            output_limit=self.settings.output_limit,
        )
        self.iw = iw or IwTool(self.runner)
        if queue is None:
            queue = DiagnosticQueue(self.settings.queue_capacity)
            queue.init()
        self.queue = queue
        self._backends = backends
        self._backend: NetworkBackend | None = None
        self._selected = False
        self._lock = threading.Lock()

    def _candidates(self) -> Sequence[NetworkBackend]:
        if self._backends is None:
            return _default_backends(self)
        if callable(self._backends):
            return self._backends(self)
        return self._backends

    @property
    def backend(self) -> NetworkBackend:
        """The selected backend; raises when no control plane is usable."""

        with self._lock:
            if not self._selected:
                self._backend = select_backend(self._candidates())
                self._selected = True
            backend = self._backend
        if backend is None:
            raise ControlPlaneUnavailableError("No network control plane is available")
        return backend

    @property
    def has_backend(self) -> bool:
        try:
            self.backend
        except ControlPlaneUnavailableError:
            return False
        return True

    def default_interface(self) -> str | None:
        if self.settings.interface:
            return self.settings.interface
        try:
            interfaces = self.backend.list_wifi_interfaces()
        except WiFiError as exc:
            logger.debug("Unable to list Wi-Fi interfaces: %s", exc)
            interfaces = []
        if interfaces:
            return interfaces[0]
        kernel = self.iw.list_interfaces()
        return kernel[0] if kernel else None


__all__ = ["NetworkBackend", "NetworkContext", "select_backend"]
