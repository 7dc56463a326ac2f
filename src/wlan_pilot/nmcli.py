"""NetworkManager backend driven through ``nmcli``."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Sequence

from .backend import NetworkBackend
from .errors import (
    CommandSpawnError,
    ControlPlaneUnavailableError,
    InvalidInputError,
    NetworkError,
    PermissionDeniedError,
    WiFiError,
)
from .execution import CommandRunner
from .iw import IwTool
from .models import (
    ConnectionStatus,
    HotspotClient,
    HotspotConfig,
    HotspotState,
    SecurityType,
    WiFiNetwork,
    channel_from_frequency,
)


logger = logging.getLogger(__name__)

WIFI_CONNECTION_TYPE = "802-11-wireless"
DEFAULT_LEASES_DIR = Path("/var/lib/NetworkManager")

_HOTSPOT_STATES = {
    "activated": HotspotState.ACTIVE,
    "activating": HotspotState.STARTING,
    "deactivating": HotspotState.STOPPING,
}


def split_terse_fields(line: str) -> list[str]:
    """Split one line of ``nmcli -t`` output on unescaped colons.

    nmcli escapes literal colons and backslashes with a backslash, which
    matters for BSSIDs and for SSIDs that contain a colon.
    """

    fields: list[str] = []
    current: list[str] = []
    escaped = False
    for char in line:
        if escaped:
            current.append(char)
            escaped = False
        elif char == "\\":
            escaped = True
        elif char == ":":
            fields.append("".join(current))
            current = []
        else:
            current.append(char)
    fields.append("".join(current))
    return fields


def _is_not_authorized(message: str) -> bool:
    lowered = message.lower()
    return "not authorized" in lowered or "not authorised" in lowered


class NMCLIBackend(NetworkBackend):
    """Interact with NetworkManager via nmcli commands."""

    name = "networkmanager"

    def __init__(
        self,
        runner: CommandRunner | None = None,
        *,
        iw: IwTool | None = None,
        interface: str | None = None,
        program: str = "nmcli",
        leases_dir: Path | str = DEFAULT_LEASES_DIR,
    ) -> None:
        self._runner = runner or CommandRunner(timeout=30.0)
        self._iw = iw or IwTool(self._runner)
        self._preferred_interface = interface
        self._detected_interface: str | None = None
        self._program = program
        self._leases_dir = Path(leases_dir)

    # ------------------------------- helpers -------------------------------
    def _run(self, args: Sequence[str]) -> str:
        try:
            return self._runner.run(self._program, list(args))
        except CommandSpawnError as exc:
            raise ControlPlaneUnavailableError("nmcli command unavailable") from exc

    def _rows(self, args: Sequence[str], width: int) -> Iterable[list[str]]:
        output = self._run(args)
        for line in output.splitlines():
            if not line.strip():
                continue
            fields = split_terse_fields(line)
            while len(fields) < width:
                fields.append("")
            yield [field.strip() for field in fields[:width]]

    def _get_property(self, profile: str, prop: str) -> str | None:
        output = self._run(["-t", "-f", prop, "connection", "show", profile])
        prefix = f"{prop}:"
        for line in output.splitlines():
            if line.startswith(prefix):
                value = line[len(prefix):].strip()
                return value or None
        return None

    @staticmethod
    def _is_missing_connection_error(message: str | None) -> bool:
        if not message:
            return False
        normalized = message.strip().lower()
        for token in (
            "unknown connection",
            "no such connection",
            "not find connection",
            "cannot find connection",
            "does not exist",
            "not exist",
            "not an active connection",
            "no active connection",
        ):
            if token in normalized:
                return True
        return False

    @staticmethod
    def _is_missing_security_setting_error(message: str | None) -> bool:
        if not message:
            return False
        normalized = message.strip().lower()
        if "802-11-wireless-security" in normalized and (
            "missing" in normalized or "invalid <setting>" in normalized
        ):
            return True
        return any(
            token in normalized
            for token in (
                "no such property",
                "property not found",
                "unknown property",
                "property does not exist",
                "setting not found",
            )
        )

    def _detect_interface(self) -> str:
        if self._preferred_interface:
            return self._preferred_interface
        if self._detected_interface:
            return self._detected_interface
        for device, dev_type, state in self._rows(
            ["-t", "-f", "DEVICE,TYPE,STATE", "device"], 3
        ):
            if dev_type == "wifi" and state != "unavailable":
                self._detected_interface = device
                return device
        raise WiFiError("No Wi-Fi interface detected")

    def _interface(self, interface: str | None) -> str:
        return interface or self._detect_interface()

    # ------------------------------ discovery ------------------------------
    def is_available(self) -> bool:
        if not self._runner.exists(self._program):
            return False
        try:
            result = self._runner.execute(self._program, ["-t", "-f", "RUNNING", "general"])
        except WiFiError:
            return False
        return result.ok and "running" in result.output.lower()

    def service_running(self) -> bool:
        try:
            result = self._runner.execute(
                "systemctl", ["is-active", "--quiet", "NetworkManager"]
            )
        except CommandSpawnError:
            return self.is_available()
        return result.ok

    def rescan(self, interface: str | None = None) -> None:
        args = ["device", "wifi", "rescan"]
        if interface or self._preferred_interface:
            args.extend(["ifname", self._interface(interface)])
        try:
            self._run(args)
        except NetworkError as exc:
            if _is_not_authorized(str(exc)):
                raise PermissionDeniedError(
                    "Unable to rescan Wi-Fi networks: not authorized to control networking"
                ) from exc
            # Drivers refuse to rescan while already scanning or in AP mode;
            # the cached list is still worth returning.
            logger.debug("Wi-Fi rescan refused: %s", exc)

    def scan_networks(self, interface: str | None = None) -> Sequence[WiFiNetwork]:
        args = ["-t", "-f", "IN-USE,BSSID,SSID,SIGNAL,SECURITY,FREQ", "device", "wifi", "list"]
        if interface or self._preferred_interface:
            args.extend(["ifname", self._interface(interface)])
        saved = self.list_saved_profiles()
        best: dict[str, WiFiNetwork] = {}
        hidden: list[WiFiNetwork] = []
        for in_use, bssid, ssid, signal_raw, security_raw, freq_raw in self._rows(args, 6):
            signal = None
            if signal_raw:
                try:
                    signal = int(float(signal_raw))
                except ValueError:
                    signal = None
            frequency = None
            if freq_raw:
                try:
                    frequency = float(freq_raw.split()[0])
                except ValueError:
                    frequency = None
            security = "" if security_raw in {"", "--"} else security_raw
            network = WiFiNetwork(
                ssid=ssid,
                signal=signal,
                security=security,
                frequency=frequency,
                channel=channel_from_frequency(frequency),
                bssid=bssid.lower() or None,
                known=bool(ssid) and ssid in saved,
                active=in_use in {"*", "yes"},
                hidden=not ssid,
            )
            if network.hidden:
                hidden.append(network)
                continue
            current = best.get(ssid)
            if current is None or network.active or (
                not current.active and (network.signal or 0) > (current.signal or 0)
            ):
                best[ssid] = network
        networks = list(best.values()) + hidden
        networks.sort(key=lambda item: (not item.active, -(item.signal or 0)))
        return networks

    # ------------------------------ station --------------------------------
    def connect_open(self, ssid: str, interface: str | None = None) -> None:
        args = ["device", "wifi", "connect", ssid]
        if interface or self._preferred_interface:
            args.extend(["ifname", self._interface(interface)])
        self._run(args)

    def connect_secured(
        self,
        ssid: str,
        credential: bytearray,
        interface: str | None = None,
        *,
        security: str = "",
    ) -> None:
        """Create a profile holding the credential, then activate it.

        A profile whose activation fails is removed again so the next attempt
        does not silently reuse a wrong password.
        """

        upper = security.upper()
        secret = credential.decode("utf-8")
        args = ["connection", "add", "type", "wifi", "con-name", ssid, "ssid", ssid]
        if interface or self._preferred_interface:
            args.extend(["ifname", self._interface(interface)])
        if "WEP" in upper:
            args.extend(["wifi-sec.key-mgmt", "none", "wifi-sec.wep-key0", secret])
        elif "SAE" in upper and "WPA2" not in upper:
            args.extend(["wifi-sec.key-mgmt", "sae", "wifi-sec.psk", secret])
        else:
            args.extend(["wifi-sec.key-mgmt", "wpa-psk", "wifi-sec.psk", secret])
        self._run(args)
        up_args = ["connection", "up", ssid]
        try:
            self._run(up_args)
        except NetworkError:
            try:
                self._run(["connection", "delete", ssid])
            except WiFiError as cleanup_exc:
                logger.debug("Unable to remove failed profile %s: %s", ssid, cleanup_exc)
            raise

    def activate_profile(self, profile: str, interface: str | None = None) -> None:
        args = ["connection", "up", profile]
        if interface or self._preferred_interface:
            args.extend(["ifname", self._interface(interface)])
        self._run(args)

    def deactivate_profile(self, profile: str) -> None:
        try:
            self._run(["connection", "down", profile])
        except NetworkError as exc:
            if self._is_missing_connection_error(str(exc)):
                logger.debug("Profile %s already inactive: %s", profile, exc)
                return
            raise

    def disconnect(self, interface: str | None = None) -> None:
        try:
            self._run(["device", "disconnect", self._interface(interface)])
        except NetworkError as exc:
            message = str(exc).strip()
            lowered = message.lower()
            if _is_not_authorized(message):
                raise PermissionDeniedError(
                    "Unable to disconnect from Wi-Fi: not authorized to control networking"
                ) from exc
            if "is not active" in lowered or "already disconnected" in lowered or "not connected" in lowered:
                return
            raise

    def _active_wifi_connections(self) -> list[tuple[str, str]]:
        connections: list[tuple[str, str]] = []
        for name, conn_type, device in self._rows(
            ["-t", "-f", "NAME,TYPE,DEVICE", "connection", "show", "--active"], 3
        ):
            if conn_type == WIFI_CONNECTION_TYPE and name:
                connections.append((name, device))
        return connections

    def query_connection_status(self) -> ConnectionStatus:
        wanted = self._preferred_interface
        for name, device in self._active_wifi_connections():
            if wanted and device and device != wanted:
                continue
            return ConnectionStatus(
                connected=True,
                profile=name,
                interface=device or wanted,
                ip_address=self.query_ip_address(device or wanted),
            )
        return ConnectionStatus(connected=False, interface=wanted)

    def query_active_ssid(self) -> str | None:
        for active, ssid in self._rows(["-t", "-f", "ACTIVE,SSID", "device", "wifi", "list"], 2):
            if active == "yes" and ssid:
                return ssid
        return None

    def query_ip_address(self, interface: str | None = None) -> str | None:
        try:
            device = self._interface(interface)
        except WiFiError:
            return None
        output = self._run(["-t", "-f", "IP4.ADDRESS", "device", "show", device])
        for line in output.splitlines():
            if not line.startswith("IP4.ADDRESS"):
                continue
            value = line.split(":", 1)[1].strip() if ":" in line else ""
            if value:
                return value.split("/")[0].strip() or None
        return None

    def list_saved_profiles(self) -> set[str]:
        try:
            rows = list(self._rows(["-t", "-f", "NAME,TYPE", "connection", "show"], 2))
        except NetworkError:
            return set()
        return {name for name, conn_type in rows if conn_type == WIFI_CONNECTION_TYPE and name}

    def profile_state(self, profile: str) -> str | None:
        """Return the activation state of ``profile``.

        Profiles that are not in the active list are reported as
        ``"deactivated"``.
        """

        for name, state in self._rows(
            ["-t", "-f", "NAME,STATE", "connection", "show", "--active"], 2
        ):
            if name == profile:
                return state.lower() or None
        return "deactivated"

    # ------------------------------ hotspots -------------------------------
    @staticmethod
    def _security_properties(config: HotspotConfig) -> list[str]:
        security = config.security
        if security is SecurityType.NONE:
            return []
        if security is SecurityType.ENTERPRISE:
            raise InvalidInputError("Enterprise security is not supported for hotspots")
        if security is SecurityType.WEP:
            return [
                "wifi-sec.key-mgmt", "none",
                "wifi-sec.wep-key-type", "1",
                "wifi-sec.wep-key0", config.password,
            ]
        if security is SecurityType.WPA3:
            return ["wifi-sec.key-mgmt", "sae", "wifi-sec.psk", config.password]
        properties = ["wifi-sec.key-mgmt", "wpa-psk", "wifi-sec.psk", config.password]
        if security is SecurityType.WPA:
            properties.extend(["wifi-sec.proto", "wpa"])
        elif security is SecurityType.WPA2:
            properties.extend(["wifi-sec.proto", "rsn"])
        return properties

    def _hotspot_properties(self, config: HotspotConfig) -> list[str]:
        if not config.gateway:
            raise InvalidInputError(f"Hotspot {config.name} has no gateway address")
        properties = [
            "802-11-wireless.mode", "ap",
            "802-11-wireless.band", config.band.value,
            "ipv4.method", "shared",
            "ipv4.addresses", f"{config.gateway}/24",
            "ipv6.method", "ignore",
            "802-11-wireless.hidden", "yes" if config.hidden else "no",
        ]
        if config.channel > 0:
            properties.extend(["802-11-wireless.channel", str(config.channel)])
        if config.client_isolation:
            properties.extend(["802-11-wireless.ap-isolation", "1"])
        return properties

    def create_hotspot(self, config: HotspotConfig) -> None:
        args = [
            "connection", "add",
            "type", "wifi",
            "ifname", config.wifi_interface,
            "con-name", config.name,
            "autoconnect", "no",
            "ssid", config.ssid,
        ]
        args.extend(self._hotspot_properties(config))
        args.extend(self._security_properties(config))
        self._run(args)

    def modify_hotspot(self, config: HotspotConfig) -> None:
        if config.security is SecurityType.NONE:
            try:
                self._run(["connection", "modify", config.name, "-802-11-wireless-security"])
            except NetworkError as exc:
                if not self._is_missing_security_setting_error(str(exc)):
                    raise
                logger.debug("Hotspot %s already open: %s", config.name, exc)
        args = [
            "connection", "modify", config.name,
            "connection.interface-name", config.wifi_interface,
            "connection.autoconnect", "no",
            "802-11-wireless.ssid", config.ssid,
        ]
        args.extend(self._hotspot_properties(config))
        args.extend(self._security_properties(config))
        self._run(args)

    def start_hotspot(self, name: str) -> None:
        self._run(["connection", "up", name])

    def stop_hotspot(self, name: str) -> None:
        self.deactivate_profile(name)

    def delete_hotspot(self, name: str) -> None:
        self.stop_hotspot(name)
        try:
            self._run(["connection", "delete", name])
        except NetworkError as exc:
            if self._is_missing_connection_error(str(exc)):
                logger.info("Requested removal of unknown connection \"%s\": %s", name, exc)
                return
            raise

    def query_hotspot_status(self, name: str) -> HotspotState:
        state = self.profile_state(name) or ""
        return _HOTSPOT_STATES.get(state, HotspotState.STOPPED)

    def profile_mode(self, profile: str) -> str | None:
        try:
            mode = self._get_property(profile, "802-11-wireless.mode")
        except NetworkError as exc:
            logger.debug("Unable to read mode of %s: %s", profile, exc)
            return None
        return mode.lower() if mode else None

    def list_active_hotspots(self) -> list[str]:
        return [
            name for name, _device in self._active_wifi_connections()
            if self.profile_mode(name) == "ap"
        ]

    def list_ap_profiles(self) -> list[str]:
        profiles = sorted(self.list_saved_profiles())
        return [name for name in profiles if self.profile_mode(name) == "ap"]

    def profile_exists(self, profile: str) -> bool:
        for (name,) in self._rows(["-t", "-f", "NAME", "connection", "show"], 1):
            if name == profile:
                return True
        return False

    def _read_leases(self, interface: str) -> dict[str, tuple[str | None, str | None]]:
        path = self._leases_dir / f"dnsmasq-{interface}.leases"
        leases: dict[str, tuple[str | None, str | None]] = {}
        try:
            text = path.read_text()
        except OSError:
            return leases
        for line in text.splitlines():
            parts = line.split()
            if len(parts) < 4:
                continue
            hostname = None if parts[3] == "*" else parts[3]
            leases[parts[1].lower()] = (parts[2], hostname)
        return leases

    def list_hotspot_clients(self, name: str) -> list[HotspotClient]:
        try:
            interface = self._get_property(name, "connection.interface-name")
        except NetworkError as exc:
            logger.debug("Unable to resolve interface of %s: %s", name, exc)
            return []
        if not interface:
            return []
        leases = self._read_leases(interface)
        clients: list[HotspotClient] = []
        for mac in self._iw.station_macs(interface):
            ip_address, hostname = leases.get(mac, (None, None))
            clients.append(HotspotClient(mac_address=mac, ip_address=ip_address, hostname=hostname))
        return clients

    # ------------------------------ devices --------------------------------
    def list_wifi_interfaces(self) -> list[str]:
        return [
            device
            for device, dev_type in self._rows(["-t", "-f", "DEVICE,TYPE", "device", "status"], 2)
            if dev_type == "wifi" and device
        ]

    def check_ap_mode_support(self, interface: str) -> bool:
        if interface not in self.list_wifi_interfaces():
            return False
        if not self._iw.available():
            # Without iw we cannot inspect the radio; most NetworkManager
            # managed adapters support AP mode.
            return True
        return self._iw.supports_ap_mode(interface)

    def set_device_managed(self, interface: str, managed: bool) -> None:
        self._run(["device", "set", interface, "managed", "yes" if managed else "no"])

    def radio_enabled(self) -> bool:
        output = self._run(["radio", "wifi"])
        return output.strip().lower().startswith("enabled")

    def enable_radio(self) -> None:
        self._run(["radio", "wifi", "on"])


__all__ = ["NMCLIBackend", "WIFI_CONNECTION_TYPE", "split_terse_fields"]
