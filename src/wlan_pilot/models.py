"""Data structures shared by the connection and hotspot layers."""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Mapping

from .errors import ErrorKind
from .sanitizer import network_requires_password


def channel_from_frequency(freq_mhz: float | None) -> int | None:
    """Best-effort conversion from MHz to Wi-Fi channel numbers."""

    if freq_mhz is None or freq_mhz <= 0:
        return None
    # 2.4 GHz channels use a 5 MHz spacing starting at 2412 MHz; 14 is special.
    if freq_mhz == 2484:
        return 14
    if 2400 <= freq_mhz <= 2500:
        channel = int(round((freq_mhz - 2407) / 5))
        if 1 <= channel <= 13:
            return channel
        return None
    if 4900 <= freq_mhz <= 5900:
        channel = int(round((freq_mhz - 5000) / 5))
        if channel > 0:
            return channel
        return None
    return None


# ------------------------------- connection --------------------------------
@dataclass(frozen=True, slots=True)
class NetworkIdentity:
    """A network name plus its security descriptor (empty means open)."""

    name: str
    security: str = ""

    @property
    def is_open(self) -> bool:
        return not network_requires_password(self.security)

    def to_dict(self) -> dict[str, object]:
        return {"ssid": self.name, "security": self.security, "open": self.is_open}


@dataclass(frozen=True, slots=True)
class WiFiNetwork:
    """Represents a Wi-Fi network discovered during a scan."""

    ssid: str
    signal: int | None = None
    security: str = ""
    frequency: float | None = None
    channel: int | None = None
    bssid: str | None = None
    known: bool = False
    active: bool = False
    hidden: bool = False

    @property
    def identity(self) -> NetworkIdentity:
        return NetworkIdentity(self.ssid, self.security)

    def to_dict(self) -> dict[str, object | None]:
        return {
            "ssid": self.ssid,
            "signal": self.signal,
            "security": self.security,
            "frequency": self.frequency,
            "channel": self.channel,
            "bssid": self.bssid,
            "known": self.known,
            "active": self.active,
            "hidden": self.hidden,
            "requires_password": network_requires_password(self.security),
        }


@dataclass(slots=True)
class ConnectionStatus:
    """Point-in-time view of the station connection."""

    connected: bool
    ssid: str | None = None
    profile: str | None = None
    ip_address: str | None = None
    interface: str | None = None

    def to_dict(self) -> dict[str, object | None]:
        return {
            "connected": self.connected,
            "ssid": self.ssid,
            "profile": self.profile,
            "ip_address": self.ip_address,
            "interface": self.interface,
        }


class OutcomeKind(str, Enum):
    CONNECTED = "connected"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


@dataclass(frozen=True, slots=True)
class ConnectionOutcome:
    """Terminal result of a single connection attempt."""

    kind: OutcomeKind
    identity: str | None = None
    ip_address: str | None = None
    error_kind: ErrorKind | None = None
    message: str | None = None

    @classmethod
    def connected(cls, identity: str, ip_address: str | None = None) -> "ConnectionOutcome":
        return cls(OutcomeKind.CONNECTED, identity=identity, ip_address=ip_address)

    @classmethod
    def failed(cls, error_kind: ErrorKind, message: str, identity: str | None = None) -> "ConnectionOutcome":
        return cls(OutcomeKind.FAILED, identity=identity, error_kind=error_kind, message=message)

    @classmethod
    def timed_out(cls, identity: str | None = None) -> "ConnectionOutcome":
        return cls(
            OutcomeKind.TIMED_OUT,
            identity=identity,
            error_kind=ErrorKind.TIMEOUT,
            message="Connection attempt timed out",
        )

    @classmethod
    def cancelled(cls, identity: str | None = None) -> "ConnectionOutcome":
        return cls(OutcomeKind.CANCELLED, identity=identity, message="Connection attempt cancelled")

    @property
    def succeeded(self) -> bool:
        return self.kind is OutcomeKind.CONNECTED

    def to_dict(self) -> dict[str, object | None]:
        return {
            "outcome": self.kind.value,
            "ssid": self.identity,
            "ip_address": self.ip_address,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "message": self.message,
        }


# -------------------------------- hotspots ---------------------------------
class SecurityType(str, Enum):
    NONE = "none"
    WEP = "wep"
    WPA = "wpa"
    WPA2 = "wpa2"
    WPA3 = "wpa3"
    WPA_WPA2 = "wpa/wpa2"
    ENTERPRISE = "enterprise"

    @classmethod
    def parse(cls, value: object) -> "SecurityType":
        if isinstance(value, SecurityType):
            return value
        text = str(value or "").strip().lower()
        if text in {"", "open"}:
            return cls.NONE
        for member in cls:
            if member.value == text or member.name.lower() == text:
                return member
        raise ValueError(f"Unknown security type: {value!r}")


class ShareMethod(str, Enum):
    NONE = "none"
    NAT = "nat"
    BRIDGE = "bridge"

    @classmethod
    def parse(cls, value: object) -> "ShareMethod":
        if isinstance(value, ShareMethod):
            return value
        text = str(value or "").strip().lower()
        for member in cls:
            if member.value == text:
                return member
        raise ValueError(f"Unknown share method: {value!r}")


class Band(str, Enum):
    """Radio band expressed the way nmcli's ``802-11-wireless.band`` expects."""

    BG = "bg"
    A = "a"

    @classmethod
    def parse(cls, value: object) -> "Band":
        if isinstance(value, Band):
            return value
        text = str(value or "").strip().lower()
        if text in {"a", "5", "5ghz", "5g"}:
            return cls.A
        if text in {"", "bg", "2.4", "2.4ghz", "2g"}:
            return cls.BG
        raise ValueError(f"Unknown band: {value!r}")


DEFAULT_WIFI_INTERFACE = "wlan0"
DEFAULT_INTERNET_INTERFACE = "eth0"
DEFAULT_CHANNEL = 6

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _parse_bool(value: object) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in _TRUE_VALUES


@dataclass(slots=True)
class HotspotConfig:
    """Desired state of one hotspot, keyed by ``name``."""

    name: str
    ssid: str
    password: str = ""
    security: SecurityType = SecurityType.WPA2
    wifi_interface: str = DEFAULT_WIFI_INTERFACE
    internet_interface: str | None = DEFAULT_INTERNET_INTERFACE
    gateway: str | None = None
    channel: int = DEFAULT_CHANNEL
    band: Band = Band.BG
    hidden: bool = False
    client_isolation: bool = False
    mac_filtering: bool = False
    share_method: ShareMethod = ShareMethod.NAT
    owned: bool = True

    @property
    def is_5ghz(self) -> bool:
        return self.band is Band.A

    @property
    def subnet(self) -> str | None:
        """The /24 network served by ``gateway``, e.g. ``192.168.12.0/24``."""

        if not self.gateway:
            return None
        try:
            network = ipaddress.ip_network(f"{self.gateway}/24", strict=False)
        except ValueError:
            return None
        return str(network)

    def copy(self, **changes: object) -> "HotspotConfig":
        return replace(self, **changes)

    def to_dict(self, *, include_password: bool = False) -> dict[str, object | None]:
        payload: dict[str, object | None] = {
            "name": self.name,
            "ssid": self.ssid,
            "security": self.security.value,
            "wifi_interface": self.wifi_interface,
            "internet_interface": self.internet_interface,
            "gateway": self.gateway,
            "channel": self.channel,
            "band": self.band.value,
            "hidden": self.hidden,
            "client_isolation": self.client_isolation,
            "mac_filtering": self.mac_filtering,
            "share_method": self.share_method.value,
            "owned": self.owned,
        }
        if include_password:
            payload["password"] = self.password
        return payload

    def to_record(self) -> dict[str, str]:
        """Flat ``key -> text`` mapping used for the persisted record."""

        record = {
            "name": self.name,
            "ssid": self.ssid,
            "password": self.password,
            "security_type": self.security.value,
            "wifi_interface": self.wifi_interface,
            "internet_interface": self.internet_interface or "",
            "channel": str(self.channel),
            "is_5ghz": "1" if self.is_5ghz else "0",
            "hidden": "1" if self.hidden else "0",
            "client_isolation": "1" if self.client_isolation else "0",
            "mac_filtering": "1" if self.mac_filtering else "0",
            "share_method": self.share_method.value,
        }
        if self.gateway:
            record["gateway_ip"] = self.gateway
        return record

    @classmethod
    def from_record(cls, record: Mapping[str, str]) -> "HotspotConfig":
        """Build a config from a persisted record.

        Missing keys fall back to defaults; a missing ``gateway_ip`` stays
        unset so that it can be backfilled on the next start.
        """

        name = record.get("name", "").strip()
        if not name:
            raise ValueError("Hotspot record has no name")
        try:
            channel = int(record.get("channel", DEFAULT_CHANNEL) or DEFAULT_CHANNEL)
        except ValueError:
            channel = DEFAULT_CHANNEL
        internet = record.get("internet_interface", DEFAULT_INTERNET_INTERFACE).strip()
        gateway = record.get("gateway_ip", "").strip() or None
        return cls(
            name=name,
            ssid=record.get("ssid", "").strip() or name,
            password=record.get("password", ""),
            security=SecurityType.parse(record.get("security_type", SecurityType.WPA2.value)),
            wifi_interface=record.get("wifi_interface", "").strip() or DEFAULT_WIFI_INTERFACE,
            internet_interface=internet or None,
            gateway=gateway,
            channel=channel,
            band=Band.A if _parse_bool(record.get("is_5ghz", "0")) else Band.BG,
            hidden=_parse_bool(record.get("hidden", "0")),
            client_isolation=_parse_bool(record.get("client_isolation", "0")),
            mac_filtering=_parse_bool(record.get("mac_filtering", "0")),
            share_method=ShareMethod.parse(record.get("share_method", ShareMethod.NAT.value)),
        )


class HotspotState(str, Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    ACTIVE = "active"
    STOPPING = "stopping"
    ERROR = "error"


@dataclass(slots=True)
class HotspotClient:
    """A station associated with a running hotspot."""

    mac_address: str
    ip_address: str | None = None
    hostname: str | None = None
    signal_dbm: int | None = None

    def to_dict(self) -> dict[str, object | None]:
        return {
            "mac_address": self.mac_address,
            "ip_address": self.ip_address,
            "hostname": self.hostname,
            "signal_dbm": self.signal_dbm,
        }


@dataclass(slots=True)
class HotspotStatus:
    """Recomputed view of a hotspot's lifecycle state."""

    name: str
    state: HotspotState
    message: str = ""
    client_count: int = 0
    interface: str | None = None
    gateway: str | None = None

    @property
    def active(self) -> bool:
        return self.state is HotspotState.ACTIVE

    def to_dict(self) -> dict[str, object | None]:
        return {
            "name": self.name,
            "state": self.state.value,
            "message": self.message,
            "client_count": self.client_count,
            "interface": self.interface,
            "gateway": self.gateway,
        }


@dataclass(slots=True)
class InterfaceInfo:
    """Capabilities of a wireless interface as reported by the kernel."""

    name: str
    wiphy: int | None = None
    supports_ap: bool = False
    supports_5ghz: bool = False
    connected: bool = False
    extra: dict[str, object] = field(default_factory=dict)

    def to_dict(self) -> dict[str, object | None]:
        payload: dict[str, object | None] = {
            "name": self.name,
            "wiphy": self.wiphy,
            "supports_ap": self.supports_ap,
            "supports_5ghz": self.supports_5ghz,
            "connected": self.connected,
        }
        payload.update(self.extra)
        return payload


__all__ = [
    "channel_from_frequency",
    "NetworkIdentity",
    "WiFiNetwork",
    "ConnectionStatus",
    "OutcomeKind",
    "ConnectionOutcome",
    "SecurityType",
    "ShareMethod",
    "Band",
    "DEFAULT_WIFI_INTERFACE",
    "DEFAULT_INTERNET_INTERFACE",
    "DEFAULT_CHANNEL",
    "HotspotConfig",
    "HotspotState",
    "HotspotClient",
    "HotspotStatus",
    "InterfaceInfo",
]
