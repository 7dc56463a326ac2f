"""Aggregate the lagging connection signals into a single classification."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from .backend import NetworkBackend
from .errors import WiFiError
from .iw import IwTool
from .models import ConnectionStatus


logger = logging.getLogger(__name__)


class ConvergenceKind(str, Enum):
    CONNECTED = "connected"
    NOT_CONNECTED = "not_connected"
    INDETERMINATE = "indeterminate"


@dataclass(frozen=True, slots=True)
class Convergence:
    """Result of one classification pass."""

    kind: ConvergenceKind
    identity: str | None = None
    ip_address: str | None = None
    profile: str | None = None
    reason: str | None = None

    @property
    def connected(self) -> bool:
        return self.kind is ConvergenceKind.CONNECTED

    def matches(self, identity: str) -> bool:
        return self.connected and identity in {self.identity, self.profile}

    def to_dict(self) -> dict[str, object | None]:
        return {
            "kind": self.kind.value,
            "ssid": self.identity,
            "ip_address": self.ip_address,
            "profile": self.profile,
            "reason": self.reason,
        }


class StatusConvergenceDetector:
    """Classify the current connection from several independent sources.

    The control plane's active-connection listing is the primary signal. The
    visible-network listing recovers the exact SSID because the profile name
    may differ from it, and the kernel association reported by ``iw`` covers
    the window where the control plane reports nothing but the radio is still
    associated. Each call is a single instantaneous read; callers poll.
    """

    def __init__(self, backend: NetworkBackend, iw: IwTool, *, interface: str | None = None) -> None:
        self._backend = backend
        self._iw = iw
        self._interface = interface

    def classify(self, interface: str | None = None, *, require_ip: bool = True) -> Convergence:
        try:
            status = self._backend.query_connection_status()
        except WiFiError as exc:
            logger.debug("Connection status query failed: %s", exc)
            return Convergence(ConvergenceKind.INDETERMINATE, reason=str(exc))

        if status.connected:
            try:
                ssid = self._backend.query_active_ssid()
            except WiFiError as exc:
                logger.debug("Active SSID query failed: %s", exc)
                ssid = None
            identity = ssid or status.profile
            if require_ip and not status.ip_address:
                return Convergence(
                    ConvergenceKind.INDETERMINATE,
                    identity=identity,
                    profile=status.profile,
                    reason="Associated, waiting for an IP address",
                )
            return Convergence(
                ConvergenceKind.CONNECTED,
                identity=identity,
                ip_address=status.ip_address,
                profile=status.profile,
            )

        device = interface or status.interface or self._interface
        if device:
            link = self._iw.link_info(device)
            if link.get("connected"):
                ssid = link.get("ssid")
                return Convergence(
                    ConvergenceKind.INDETERMINATE,
                    identity=ssid if isinstance(ssid, str) else None,
                    reason="Kernel reports an association the control plane does not",
                )
        return Convergence(ConvergenceKind.NOT_CONNECTED)

    def kernel_associated(self, interface: str | None = None) -> bool:
        device = interface or self._interface
        if not device:
            return False
        return self._iw.is_associated(device)

    def profile_state(self, profile: str) -> str | None:
        try:
            return self._backend.profile_state(profile)
        except WiFiError as exc:
            logger.debug("Profile state query for %s failed: %s", profile, exc)
            return None

    def snapshot(self, interface: str | None = None) -> ConnectionStatus:
        """Return a :class:`ConnectionStatus` built from one classification."""

        result = self.classify(interface, require_ip=False)
        return ConnectionStatus(
            connected=result.connected,
            ssid=result.identity if result.connected else None,
            profile=result.profile,
            ip_address=result.ip_address,
            interface=interface or self._interface,
        )


__all__ = ["Convergence", "ConvergenceKind", "StatusConvergenceDetector"]
