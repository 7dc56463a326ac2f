"""Hotspot configuration store and lifecycle management."""

from __future__ import annotations

import ipaddress
import logging
import os
import threading
import time
from pathlib import Path
from typing import Callable, Iterable, Mapping

from .backend import NetworkBackend, NetworkContext
from .error_queue import record_event
from .errors import (
    InvalidInputError,
    NetworkError,
    NotFoundError,
    WiFiError,
)
from .models import (
    Band,
    DEFAULT_CHANNEL,
    HotspotClient,
    HotspotConfig,
    HotspotState,
    HotspotStatus,
    SecurityType,
    ShareMethod,
)
from .nat import NatRuleReconciler
from .sanitizer import (
    MAX_SSID_BYTES,
    WPA_PASSWORD_MAX,
    WPA_PASSWORD_MIN,
    is_valid_config_name,
    is_valid_interface_name,
    sanitize_token,
    validate_interface_name,
)


logger = logging.getLogger(__name__)

DEFAULT_HOTSPOT_NAME = "wlan_pilot_hotspot"
RECORD_SUFFIX = ".conf"
MAX_CHANNEL = 165
MAX_24GHZ_CHANNEL = 14


# ------------------------------- gateway --------------------------------
def choose_gateway(host_addresses: Iterable[str]) -> str:
    """Pick a hotspot gateway that does not clash with the host's subnets.

    Hosts on a ``10.x.y.z`` network get ``10.42.0.1`` (``10.43.0.1`` when the
    host already uses third octet 42 or sits inside ``10.42.0.0/24``); every
    other host gets ``192.168.12.1`` (``192.168.13.1`` when it is already on
    ``192.168.12.0/24``).
    """

    addresses: list[ipaddress.IPv4Address] = []
    for raw in host_addresses:
        try:
            address = ipaddress.ip_interface(raw.strip()).ip
        except ValueError:
            continue
        if isinstance(address, ipaddress.IPv4Address):
            addresses.append(address)

    def _in(network: str) -> bool:
        subnet = ipaddress.ip_network(network)
        return any(address in subnet for address in addresses)

    if _in("10.0.0.0/8"):
        clash = any(
            address in ipaddress.ip_network("10.0.0.0/8") and address.packed[2] == 42
            for address in addresses
        ) or _in("10.42.0.0/24")
        return "10.43.0.1" if clash else "10.42.0.1"
    return "192.168.13.1" if _in("192.168.12.0/24") else "192.168.12.1"


def parse_host_addresses(output: str) -> list[str]:
    """Extract IPv4 addresses from ``ip -4 -o addr show`` output."""

    addresses: list[str] = []
    for line in output.splitlines():
        parts = line.split()
        if "inet" not in parts:
            continue
        index = parts.index("inet")
        if index + 1 < len(parts):
            addresses.append(parts[index + 1].split("/")[0])
    return addresses


def parse_default_route_interface(output: str) -> str | None:
    """Return the device of the first ``default`` route in ``ip route`` output."""

    for line in output.splitlines():
        parts = line.split()
        if not parts or parts[0] != "default":
            continue
        if "dev" in parts:
            index = parts.index("dev")
            if index + 1 < len(parts):
                return parts[index + 1]
    return None


# -------------------------------- store ---------------------------------
class HotspotStore:
    """Persist one flat ``key=value`` record per hotspot configuration."""

    def __init__(self, directory: Path | str) -> None:
        self._directory = Path(directory)
        self._lock = threading.Lock()

    @property
    def directory(self) -> Path:
        return self._directory

    def _path(self, name: str) -> Path:
        if not is_valid_config_name(name) or name in {".", ".."}:
            raise InvalidInputError(f"Invalid hotspot name: {name!r}")
        return self._directory / f"{name}{RECORD_SUFFIX}"

    @staticmethod
    def parse_record(text: str) -> dict[str, str]:
        record: dict[str, str] = {}
        for line in text.splitlines():
            if not line.strip() or line.lstrip().startswith("#") or "=" not in line:
                continue
            key, value = line.split("=", 1)
            record[key.strip()] = value.rstrip("\r")
        return record

    @staticmethod
    def format_record(record: Mapping[str, str]) -> str:
        lines = []
        for key, value in record.items():
            if "\n" in value or "\r" in value:
                raise InvalidInputError(f"Hotspot field {key} must not contain line breaks")
            lines.append(f"{key}={value}")
        return "\n".join(lines) + "\n"

    def load_all(self) -> dict[str, HotspotConfig]:
        configs: dict[str, HotspotConfig] = {}
        if not self._directory.is_dir():
            return configs
        with self._lock:
            paths = sorted(self._directory.glob(f"*{RECORD_SUFFIX}"))
            for path in paths:
                try:
                    config = HotspotConfig.from_record(
                        self.parse_record(path.read_text(encoding="utf-8"))
                    )
                except (OSError, ValueError) as exc:
                    logger.warning("Unable to load hotspot record %s: %s", path.name, exc)
                    continue
                configs[config.name] = config
        return configs

    def save(self, config: HotspotConfig) -> None:
        path = self._path(config.name)
        text = self.format_record(config.to_record())
        with self._lock:
            self._directory.mkdir(parents=True, exist_ok=True)
            tmp_path = path.with_suffix(path.suffix + ".tmp")
            fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(text)
            os.replace(tmp_path, path)

    def remove(self, name: str) -> bool:
        path = self._path(name)
        with self._lock:
            try:
                path.unlink()
            except FileNotFoundError:
                return False
        return True


# ------------------------------- manager --------------------------------
class HotspotManager:
    """Create, start, stop and delete hotspots on top of the control plane.

    Configurations authored here are "owned" and persisted through the
    :class:`HotspotStore`. AP-mode profiles created elsewhere are listed
    alongside them and can be started, stopped and deleted, but carry no
    persisted record.
    """

    def __init__(
        self,
        context: NetworkContext,
        *,
        store: HotspotStore | None = None,
        nat: NatRuleReconciler | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._context = context
        self._store = store or HotspotStore(context.settings.hotspot_dir)
        self._nat = nat or NatRuleReconciler(context.runner)
        self._sleep = sleep
        self._settle_delay = context.settings.settle_delay
        self._lock = threading.RLock()
        self._configs: dict[str, HotspotConfig] = self._store.load_all()
        self._errors: dict[str, str] = {}
        self._nat_bindings: dict[str, tuple[str, str, str]] = {}

    # ------------------------------- helpers -------------------------------
    def _backend(self) -> NetworkBackend:
        return self._context.backend

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

    def _settle(self) -> None:
        if self._settle_delay > 0:
            self._sleep(self._settle_delay)

    def _host_addresses(self) -> list[str]:
        try:
            output = self._context.runner.run("ip", ["-4", "-o", "addr", "show", "scope", "global"])
        except WiFiError as exc:
            logger.debug("Unable to list host addresses: %s", exc)
            return []
        return parse_host_addresses(output)

    def detect_gateway(self) -> str:
        return choose_gateway(self._host_addresses())

    def default_route_interface(self) -> str | None:
        try:
            output = self._context.runner.run("ip", ["route", "show", "default"])
        except WiFiError as exc:
            logger.debug("Unable to read the default route: %s", exc)
            return None
        return parse_default_route_interface(output)

    def default_config(self, name: str = DEFAULT_HOTSPOT_NAME) -> HotspotConfig:
        """Return a template configuration with the stock defaults."""

        return HotspotConfig(
            name=name,
            ssid=name,
            security=SecurityType.WPA2,
            wifi_interface=self._context.settings.interface or "wlan0",
            gateway="192.168.12.1",
            channel=DEFAULT_CHANNEL,
            share_method=ShareMethod.NAT,
        )

    # ------------------------------ validation -----------------------------
    @staticmethod
    def validation_errors(config: HotspotConfig) -> list[str]:
        errors: list[str] = []
        if not config.name:
            errors.append("Hotspot name is required")
        elif not is_valid_config_name(config.name):
            errors.append("Hotspot name must be 1-64 characters of letters, digits, '.', '_' or '-'")
        ssid_bytes = config.ssid.encode("utf-8", errors="replace") if config.ssid else b""
        if not ssid_bytes:
            errors.append("SSID is required")
        elif len(ssid_bytes) > MAX_SSID_BYTES:
            errors.append(f"SSID must be at most {MAX_SSID_BYTES} bytes")
        elif b"\x00" in ssid_bytes:
            errors.append("SSID must not contain NUL characters")
        if config.security is not SecurityType.NONE:
            if not WPA_PASSWORD_MIN <= len(config.password) <= WPA_PASSWORD_MAX:
                errors.append(
                    f"Password must be {WPA_PASSWORD_MIN}-{WPA_PASSWORD_MAX} characters"
                )
        if config.security is SecurityType.ENTERPRISE:
            errors.append("Enterprise security is not supported for hotspots")
        if not config.wifi_interface:
            errors.append("Wi-Fi interface is required")
        elif not is_valid_interface_name(config.wifi_interface):
            errors.append(f"Invalid Wi-Fi interface name: {config.wifi_interface!r}")
        if config.internet_interface and not is_valid_interface_name(config.internet_interface):
            errors.append(f"Invalid internet interface name: {config.internet_interface!r}")
        if not 0 <= config.channel <= MAX_CHANNEL:
            errors.append(f"Channel must be between 0 and {MAX_CHANNEL}")
        elif config.channel and (config.channel > MAX_24GHZ_CHANNEL) != config.is_5ghz:
            radio = "5 GHz" if config.is_5ghz else "2.4 GHz"
            errors.append(f"Channel {config.channel} is not a {radio} channel")
        if config.gateway:
            try:
                ipaddress.IPv4Address(config.gateway)
            except ValueError:
                errors.append(f"Invalid gateway address: {config.gateway!r}")
        return errors

    def validate(self, config: HotspotConfig) -> None:
        """Raise :class:`InvalidInputError` listing every problem in ``config``."""

        errors = self.validation_errors(config)
        if errors:
            raise InvalidInputError("; ".join(errors))

    # ------------------------------ registry -------------------------------
    def get(self, name: str) -> HotspotConfig:
        with self._lock:
            config = self._configs.get(name)
        if config is None:
            raise NotFoundError(f"Unknown hotspot: {name}")
        return config.copy()

    def _external_profiles(self) -> list[str]:
        try:
            return list(self._backend().list_ap_profiles())
        except WiFiError as exc:
            self._record_event(
                "hotspot_discovery_error",
                f"Unable to list control plane hotspots: {exc}",
                warning=True,
            )
            return []

    def list(self) -> list[HotspotConfig]:
        """Owned configurations followed by external AP-mode profiles."""

        with self._lock:
            owned = [self._configs[name].copy() for name in sorted(self._configs)]
        known = {config.name for config in owned}
        external = [
            HotspotConfig(
                name=profile,
                ssid=profile,
                security=SecurityType.NONE,
                internet_interface=None,
                share_method=ShareMethod.NONE,
                owned=False,
            )
            for profile in self._external_profiles()
            if profile not in known
        ]
        return owned + external

    def _is_external(self, name: str) -> bool:
        return name in self._external_profiles()

    # ------------------------------ operations -----------------------------
    def create(self, config: HotspotConfig) -> HotspotConfig:
        self.validate(config)
        with self._lock:
            if config.name in self._configs:
                raise InvalidInputError(f"Hotspot {config.name} already exists")
        if config.is_5ghz and self._context.iw.available():
            if not self._context.iw.supports_5ghz(config.wifi_interface):
                raise InvalidInputError(
                    f"Interface {config.wifi_interface} does not support 5 GHz operation"
                )
        stored = config.copy(owned=True)
        with self._lock:
            if stored.name in self._configs:
                raise InvalidInputError(f"Hotspot {stored.name} already exists")
            self._store.save(stored)
            self._configs[stored.name] = stored
        self._record_event(
            "hotspot_create",
            f"Created hotspot {stored.name} ({stored.ssid}).",
            metadata={"interface": stored.wifi_interface, "security": stored.security.value},
        )
        return stored.copy()

    def update(self, config: HotspotConfig) -> HotspotConfig:
        """Replace an owned configuration; the gateway is kept when unset."""

        current = self.get(config.name)
        updated = config.copy(owned=True, gateway=config.gateway or current.gateway)
        self.validate(updated)
        with self._lock:
            self._store.save(updated)
            self._configs[updated.name] = updated
        backend = self._backend()
        if updated.gateway and backend.profile_exists(updated.name):
            backend.modify_hotspot(updated)
        self._record_event("hotspot_update", f"Updated hotspot {updated.name}.")
        return updated.copy()

    def _backfill_gateway(self, config: HotspotConfig) -> HotspotConfig:
        if config.gateway:
            return config
        gateway = self.detect_gateway()
        updated = config.copy(gateway=gateway)
        with self._lock:
            self._store.save(updated)
            self._configs[updated.name] = updated
        self._record_event(
            "hotspot_gateway",
            f"Assigned gateway {gateway} to hotspot {config.name}.",
            metadata={"gateway": gateway},
        )
        return updated

    def start(self, name: str) -> HotspotStatus:
        backend = self._backend()
        with self._lock:
            owned = name in self._configs
        if not owned:
            if not self._is_external(name):
                raise NotFoundError(f"Unknown hotspot: {name}")
            backend.start_hotspot(name)
            self._record_event("hotspot_start", f"Started external hotspot {name}.")
            return self.status(name)

        config = self._backfill_gateway(self.get(name))
        self.validate(config)
        self._errors.pop(name, None)
        self._record_event(
            "hotspot_starting",
            f"Starting hotspot {name} on {config.wifi_interface}.",
            metadata={"gateway": config.gateway, "band": config.band.value},
        )
        try:
            try:
                backend.disconnect(config.wifi_interface)
            except NetworkError as exc:
                logger.debug("Disconnect before hotspot start reported: %s", exc)
            if backend.profile_exists(name):
                backend.modify_hotspot(config)
            else:
                backend.create_hotspot(config)
            backend.start_hotspot(name)
        except WiFiError as exc:
            self._errors[name] = str(exc)
            self._record_event(
                "hotspot_error",
                f"Unable to start hotspot {name}: {exc}",
                error=True,
            )
            raise

        message = ""
        if config.share_method is ShareMethod.NAT:
            message = self._share_internet(config)
        self._settle()
        status = self.status(name)
        if message and not status.message:
            status.message = message
        self._record_event("hotspot_start", f"Hotspot {name} started.", metadata={"state": status.state.value})
        return status

    def _share_internet(self, config: HotspotConfig) -> str:
        internet = config.internet_interface or self.default_route_interface()
        subnet = config.subnet
        if not internet or internet == config.wifi_interface or not subnet:
            self._record_event(
                "hotspot_nat_skipped",
                f"No upstream interface for hotspot {config.name}; sharing disabled.",
                warning=True,
            )
            return "Active without internet sharing"
        try:
            self._nat.setup(config.wifi_interface, internet, subnet)
        except WiFiError as exc:
            self._record_event(
                "hotspot_nat_error",
                f"Internet sharing for {config.name} failed: {exc}",
                error=True,
            )
            return "Active without internet sharing"
        with self._lock:
            self._nat_bindings[config.name] = (config.wifi_interface, internet, subnet)
        return ""

    def _release_nat(self, name: str) -> None:
        with self._lock:
            binding = self._nat_bindings.pop(name, None)
            config = self._configs.get(name)
        if binding is None and config is not None and config.share_method is ShareMethod.NAT:
            subnet = config.subnet
            if subnet:
                binding = (
                    config.wifi_interface,
                    config.internet_interface or self.default_route_interface() or "",
                    subnet,
                )
        if binding is None:
            return
        hotspot_iface, internet, subnet = binding
        try:
            self._nat.cleanup(hotspot_iface, subnet, internet or None)
        except WiFiError as exc:
            self._record_event(
                "hotspot_nat_error",
                f"Unable to remove sharing rules for {name}: {exc}",
                warning=True,
            )

    def stop(self, name: str) -> HotspotStatus:
        with self._lock:
            owned = name in self._configs
        if not owned and not self._is_external(name):
            raise NotFoundError(f"Unknown hotspot: {name}")
        backend = self._backend()
        try:
            backend.stop_hotspot(name)
        except WiFiError as exc:
            self._errors[name] = str(exc)
            self._record_event("hotspot_error", f"Unable to stop hotspot {name}: {exc}", error=True)
            raise
        self._release_nat(name)
        self._errors.pop(name, None)
        self._record_event("hotspot_stop", f"Hotspot {name} stopped.")
        return self.status(name)

    def stop_all(self) -> list[str]:
        """Stop every active hotspot and return the names that were stopped."""

        stopped: list[str] = []
        for name in self._backend().list_active_hotspots():
            try:
                self._backend().stop_hotspot(name)
            except WiFiError as exc:
                self._record_event("hotspot_error", f"Unable to stop hotspot {name}: {exc}", error=True)
                continue
            self._release_nat(name)
            stopped.append(name)
        if stopped:
            self._record_event("hotspot_stop", f"Stopped hotspots: {', '.join(stopped)}.")
        return stopped

    def delete(self, name: str) -> None:
        with self._lock:
            owned = name in self._configs
        if not owned and not self._is_external(name):
            raise NotFoundError(f"Unknown hotspot: {name}")
        backend = self._backend()
        try:
            backend.stop_hotspot(name)
        except WiFiError as exc:
            logger.debug("Stopping %s before delete reported: %s", name, exc)
        self._release_nat(name)
        if owned:
            with self._lock:
                self._configs.pop(name, None)
                self._errors.pop(name, None)
                self._store.remove(name)
        try:
            backend.delete_hotspot(name)
        except WiFiError as exc:
            if owned:
                self._record_event(
                    "hotspot_delete_error",
                    f"Removed hotspot {name} but its control plane profile remains: {exc}",
                    warning=True,
                )
            else:
                self._record_event(
                    "hotspot_delete_error",
                    f"Unable to remove external hotspot profile {name}: {exc}",
                    warning=True,
                )
        self._record_event("hotspot_delete", f"Deleted hotspot {name}.")

    def status(self, name: str) -> HotspotStatus:
        with self._lock:
            config = self._configs.get(name)
            error = self._errors.get(name)
        interface = config.wifi_interface if config else None
        gateway = config.gateway if config else None
        try:
            state = self._backend().query_hotspot_status(name)
        except WiFiError as exc:
            return HotspotStatus(name, HotspotState.ERROR, str(exc), interface=interface, gateway=gateway)
        if error and state is HotspotState.STOPPED:
            return HotspotStatus(name, HotspotState.ERROR, error, interface=interface, gateway=gateway)
        clients = self.clients(name) if state is HotspotState.ACTIVE else []
        return HotspotStatus(
            name,
            state,
            "" if state is not HotspotState.STOPPED else "Not running",
            client_count=len(clients),
            interface=interface,
            gateway=gateway,
        )

    def clients(self, name: str) -> list[HotspotClient]:
        try:
            return list(self._backend().list_hotspot_clients(name))
        except WiFiError as exc:
            logger.debug("Unable to list clients of %s: %s", name, exc)
            return []

    def quick_start(
        self,
        ssid: str,
        password: str | None = None,
        *,
        name: str | None = None,
        wifi_interface: str | None = None,
        internet_interface: str | None = None,
        band: Band | str = Band.BG,
    ) -> HotspotStatus:
        """Create or refresh a hotspot for ``ssid`` and start it in one call."""

        hotspot_name = name or sanitize_token(ssid)[:64] or DEFAULT_HOTSPOT_NAME
        base = self.default_config(hotspot_name)
        if wifi_interface:
            validate_interface_name(wifi_interface)
        selected_band = Band.parse(band)
        config = base.copy(
            ssid=ssid,
            password=password or "",
            security=SecurityType.WPA2 if password else SecurityType.NONE,
            wifi_interface=wifi_interface or base.wifi_interface,
            internet_interface=internet_interface,
            gateway=None,
            band=selected_band,
            # The default channel is a 2.4 GHz one; let the driver pick on 5 GHz.
            channel=0 if selected_band is Band.A else base.channel,
        )
        with self._lock:
            exists = hotspot_name in self._configs
        if exists:
            self.update(config)
        else:
            self.create(config)
        return self.start(hotspot_name)


__all__ = [
    "DEFAULT_HOTSPOT_NAME",
    "HotspotManager",
    "HotspotStore",
    "choose_gateway",
    "parse_default_route_interface",
    "parse_host_addresses",
]
