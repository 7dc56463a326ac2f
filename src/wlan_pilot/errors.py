"""Error taxonomy and failure classification for Wi-Fi operations."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ErrorKind(str, Enum):
    """Best-effort category for a control plane failure."""

    AUTH_FAILED = "auth_failed"
    NETWORK_UNAVAILABLE = "network_unavailable"
    TIMEOUT = "timeout"
    WIFI_DISABLED = "wifi_disabled"
    PERMISSION_DENIED = "permission_denied"
    DHCP_TIMEOUT = "dhcp_timeout"
    CONTROL_PLANE_UNAVAILABLE = "control_plane_unavailable"
    UNKNOWN = "unknown"


class WiFiError(RuntimeError):
    """Raised when Wi-Fi operations fail."""


class InvalidInputError(WiFiError, ValueError):
    """Raised when caller supplied data is malformed or unsafe."""


class ControlPlaneUnavailableError(WiFiError):
    """Raised when no network control plane can be used."""


class NotFoundError(WiFiError, LookupError):
    """Raised when a named hotspot or profile does not exist."""


class PermissionDeniedError(WiFiError):
    """Raised when an operation needs more privilege than we have."""


class CommandSpawnError(WiFiError):
    """Raised when an external program could not be started at all."""


class CommandTimeoutError(WiFiError):
    """Raised when an external program exceeded its time allowance."""


class NetworkError(WiFiError):
    """An external command failed; carries the raw diagnostic text."""

    def __init__(self, message: str, *, kind: ErrorKind | None = None, detail: str | None = None) -> None:
        super().__init__(message)
        self.detail = detail if detail is not None else message
        self.kind = kind if kind is not None else classify_failure(self.detail)


_CLASSIFIERS: tuple[tuple[ErrorKind, tuple[str, ...]], ...] = (
    (
        ErrorKind.AUTH_FAILED,
        ("authentication", "invalid key", "wrong password", "secrets were required", "psk"),
    ),
    (ErrorKind.NETWORK_UNAVAILABLE, ("no network", "not found", "unavailable")),
    (ErrorKind.TIMEOUT, ("timeout", "timed out")),
    (ErrorKind.PERMISSION_DENIED, ("permission denied", "not authorized", "not authorised")),
)


def classify_failure(message: str | None) -> ErrorKind:
    """Map control plane diagnostic text onto an :class:`ErrorKind`.

    Matching is case-insensitive and the first matching rule wins. Text that
    matches nothing degrades to ``UNKNOWN``; this never raises.
    """

    if not isinstance(message, str) or not message.strip():
        return ErrorKind.UNKNOWN
    lowered = message.lower()
    for kind, tokens in _CLASSIFIERS:
        if any(token in lowered for token in tokens):
            return kind
    if "wifi" in lowered and ("disabled" in lowered or "off" in lowered):
        return ErrorKind.WIFI_DISABLED
    if "networkmanager" in lowered or "nm-" in lowered:
        return ErrorKind.CONTROL_PLANE_UNAVAILABLE
    if "dhcp" in lowered or "ip address" in lowered:
        return ErrorKind.DHCP_TIMEOUT
    return ErrorKind.UNKNOWN


@dataclass(frozen=True, slots=True)
class ErrorInfo:
    """Operator-facing explanation of an :class:`ErrorKind`."""

    kind: ErrorKind
    message: str
    suggestion: str
    can_retry: bool
    auto_fixable: bool

    def to_dict(self) -> dict[str, object]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "suggestion": self.suggestion,
            "can_retry": self.can_retry,
            "auto_fixable": self.auto_fixable,
        }


_ERROR_INFO: dict[ErrorKind, tuple[str, str, bool, bool]] = {
    ErrorKind.AUTH_FAILED: (
        "Authentication failed",
        "Check the password and try again.",
        True,
        False,
    ),
    ErrorKind.NETWORK_UNAVAILABLE: (
        "Network not found",
        "Move closer to the access point or rescan for networks.",
        True,
        False,
    ),
    ErrorKind.TIMEOUT: (
        "Connection timed out",
        "The network may be congested; try again in a moment.",
        True,
        False,
    ),
    ErrorKind.WIFI_DISABLED: (
        "Wi-Fi radio is disabled",
        "Enable the radio with `nmcli radio wifi on`.",
        True,
        True,
    ),
    ErrorKind.PERMISSION_DENIED: (
        "Permission denied",
        "Run with sufficient privileges to manage networking.",
        False,
        False,
    ),
    ErrorKind.DHCP_TIMEOUT: (
        "No IP address was assigned",
        "The DHCP server did not answer; reconnect or check the router.",
        True,
        False,
    ),
    ErrorKind.CONTROL_PLANE_UNAVAILABLE: (
        "NetworkManager is not available",
        "Start NetworkManager with `systemctl start NetworkManager`.",
        True,
        False,
    ),
    ErrorKind.UNKNOWN: (
        "Unknown error",
        "Inspect the diagnostic output for details.",
        True,
        False,
    ),
}


def describe_error(kind: ErrorKind) -> ErrorInfo:
    """Return the operator guidance for ``kind``."""

    message, suggestion, can_retry, auto_fixable = _ERROR_INFO.get(
        kind, _ERROR_INFO[ErrorKind.UNKNOWN]
    )
    return ErrorInfo(
        kind=kind,
        message=message,
        suggestion=suggestion,
        can_retry=can_retry,
        auto_fixable=auto_fixable,
    )


__all__ = [
    "ErrorKind",
    "WiFiError",
    "InvalidInputError",
    "ControlPlaneUnavailableError",
    "NotFoundError",
    "PermissionDeniedError",
    "CommandSpawnError",
    "CommandTimeoutError",
    "NetworkError",
    "classify_failure",
    "ErrorInfo",
    "describe_error",
]
