from __future__ import annotations

import threading
from pathlib import Path
from typing import Callable, Sequence

import pytest

from wlan_pilot.backend import NetworkBackend, NetworkContext
from wlan_pilot.config import Settings
from wlan_pilot.errors import NetworkError, WiFiError
from wlan_pilot.execution import CommandResult, CommandRunner
from wlan_pilot.iw import IwTool
from wlan_pilot.models import (
    ConnectionStatus,
    HotspotClient,
    HotspotConfig,
    HotspotState,
    WiFiNetwork,
)


# A response is a CommandResult, plain stdout text, an exception to raise or
# a callable that receives the argv and returns one of those.
Response = object


class FakeRunner(CommandRunner):
    """Record argv lists and answer from a table instead of spawning programs."""

    def __init__(
        self,
        responses: dict[tuple[str, ...], Response] | None = None,
        *,
        programs: Sequence[str] = ("nmcli", "iw", "iptables", "ip", "sysctl", "systemctl"),
    ) -> None:
        super().__init__(timeout=1.0)
        self.calls: list[list[str]] = []
        self.responses: dict[tuple[str, ...], Response] = dict(responses or {})
        self.programs = set(programs)

    def handle(self, args: list[str]) -> Response | None:
        return self.responses.get(tuple(args))

    def execute(self, program: str, argv: Sequence[str] = ()) -> CommandResult:
        args = [program, *argv]
        self.calls.append(args)
        response = self.handle(args)
        while callable(response):
            response = response(args)
        if response is None:
            return CommandResult(0, "")
        if isinstance(response, BaseException):
            raise response
        if isinstance(response, str):
            return CommandResult(0, response)
        return response

    def exists(self, program: str) -> bool:  # type: ignore[override]
        return program in self.programs

    def calls_for(self, program: str) -> list[list[str]]:
        return [call for call in self.calls if call[0] == program]


class FakeIptables(FakeRunner):
    """Keep an in-memory rule table so -C/-A/-D behave like the real filter."""

    def __init__(self, **kwargs: object) -> None:
        super().__init__(**kwargs)  # type: ignore[arg-type]
        self.rules: list[tuple[str, ...]] = []
        self.fail_append: set[str] = set()

    def handle(self, args: list[str]) -> Response | None:
        explicit = super().handle(args)
        if explicit is not None or args[0] != "iptables":
            return explicit
        table, action, chain, spec = args[2], args[3], args[4], tuple(args[5:])
        key = (table, chain, *spec)
        if action == "-C":
            return CommandResult(0 if key in self.rules else 1, "")
        if action == "-A":
            if any(token in spec for token in self.fail_append):
                return CommandResult(1, "iptables: No chain/target/match by that name.")
            self.rules.append(key)
            return CommandResult(0, "")
        if action == "-D":
            if key in self.rules:
                self.rules.remove(key)
                return CommandResult(0, "")
            return CommandResult(1, "iptables: Bad rule (does a matching rule exist in that chain?).")
        return None


class FakeIw(IwTool):
    def __init__(self) -> None:
        super().__init__(FakeRunner(programs=("iw",)))
        self.associated: set[str] = set()
        self.ssids: dict[str, str] = {}
        self.supports_5g = True
        self.supports_ap = True
        self.stations: dict[str, list[str]] = {}

    def available(self) -> bool:
        return True

    def list_interfaces(self) -> list[str]:
        return ["wlan0"]

    def wiphy_index(self, interface: str) -> int | None:
        return 0

    def link_info(self, interface: str) -> dict[str, object]:
        if interface not in self.associated:
            return {"connected": False}
        return {"connected": True, "ssid": self.ssids.get(interface, "")}

    def supports_ap_mode(self, interface: str) -> bool:
        return self.supports_ap

    def supports_5ghz(self, interface: str) -> bool:
        return self.supports_5g

    def station_macs(self, interface: str) -> list[str]:
        return list(self.stations.get(interface, []))


class FakeBackend(NetworkBackend):
    """Scripted control plane shared by the orchestration tests."""

    name = "fake"

    def __init__(self) -> None:
        self.available = True
        self.commands: list[tuple[object, ...]] = []
        self.networks: list[WiFiNetwork] = []
        self.saved_profiles: set[str] = set()
        self.interfaces = ["wlan0"]
        self.radio = True
        self.ip_address: str | None = "192.168.1.50"
        # Connection simulation.
        self.converge_after: int | None = 3
        self.connect_error: WiFiError | None = None
        self.block_command: threading.Event | None = None
        self.seen_credentials: list[bytes] = []
        self.credential_buffers: list[bytearray] = []
        self.active_profile: str | None = None
        self.pending: str | None = None
        self.queries_since_command = 0
        self.profile_states: dict[str, str] = {}
        self.on_unmanage: Callable[[str], None] | None = None
        self.deactivate_clears = True
        # Hotspot simulation.
        self.profiles: dict[str, str] = {}
        self.hotspot_configs: dict[str, HotspotConfig] = {}
        self.active_hotspots: set[str] = set()
        self.clients: dict[str, list[HotspotClient]] = {}
        self.start_error: WiFiError | None = None
        self.delete_error: WiFiError | None = None
        self.lock = threading.Lock()

    # ------------------------------ discovery ------------------------------
    def is_available(self) -> bool:
        return self.available

    def scan_networks(self, interface: str | None = None) -> list[WiFiNetwork]:
        return list(self.networks)

    def rescan(self, interface: str | None = None) -> None:
        self.commands.append(("rescan", interface))

    # ------------------------------ station --------------------------------
    def _begin(self, profile: str) -> None:
        if self.block_command is not None:
            self.block_command.wait(5)
        if self.connect_error is not None:
            raise self.connect_error
        with self.lock:
            self.pending = profile
            self.queries_since_command = 0

    def connect_open(self, ssid: str, interface: str | None = None) -> None:
        self.commands.append(("connect_open", ssid, interface))
        self._begin(ssid)

    def connect_secured(
        self,
        ssid: str,
        credential: bytearray,
        interface: str | None = None,
        *,
        security: str = "",
    ) -> None:
        self.commands.append(("connect_secured", ssid, interface, security))
        self.seen_credentials.append(bytes(credential))
        self.credential_buffers.append(credential)
        self._begin(ssid)

    def activate_profile(self, profile: str, interface: str | None = None) -> None:
        self.commands.append(("activate_profile", profile, interface))
        self._begin(profile)

    def deactivate_profile(self, profile: str) -> None:
        self.commands.append(("deactivate_profile", profile))
        if self.deactivate_clears and self.active_profile == profile:
            self.active_profile = None

    def disconnect(self, interface: str | None = None) -> None:
        self.commands.append(("disconnect", interface))
        if self.deactivate_clears:
            self.active_profile = None

    def query_connection_status(self) -> ConnectionStatus:
        with self.lock:
            if self.pending is not None:
                self.queries_since_command += 1
                if self.converge_after is not None and self.queries_since_command >= self.converge_after:
                    self.active_profile = self.pending
                    self.pending = None
            profile = self.active_profile
        if profile is None:
            return ConnectionStatus(connected=False, interface="wlan0")
        return ConnectionStatus(
            connected=True,
            profile=profile,
            ip_address=self.ip_address,
            interface="wlan0",
        )

    def query_active_ssid(self) -> str | None:
        return self.active_profile

    def query_ip_address(self, interface: str | None = None) -> str | None:
        return self.ip_address if self.active_profile else None

    def list_saved_profiles(self) -> set[str]:
        return set(self.saved_profiles)

    def profile_state(self, profile: str) -> str | None:
        if profile == self.active_profile:
            return "activated"
        return self.profile_states.get(profile, "deactivated")

    # ------------------------------ hotspots -------------------------------
    def create_hotspot(self, config: HotspotConfig) -> None:
        self.commands.append(("create_hotspot", config.name))
        self.profiles[config.name] = "ap"
        self.hotspot_configs[config.name] = config

    def modify_hotspot(self, config: HotspotConfig) -> None:
        self.commands.append(("modify_hotspot", config.name))
        self.hotspot_configs[config.name] = config

    def start_hotspot(self, name: str) -> None:
        self.commands.append(("start_hotspot", name))
        if self.start_error is not None:
            raise self.start_error
        if name not in self.profiles:
            raise NetworkError(f"Error: unknown connection '{name}'.")
        self.active_hotspots.add(name)

    def stop_hotspot(self, name: str) -> None:
        self.commands.append(("stop_hotspot", name))
        self.active_hotspots.discard(name)

    def delete_hotspot(self, name: str) -> None:
        self.commands.append(("delete_hotspot", name))
        if self.delete_error is not None:
            raise self.delete_error
        self.active_hotspots.discard(name)
        self.profiles.pop(name, None)
        self.hotspot_configs.pop(name, None)

    def query_hotspot_status(self, name: str) -> HotspotState:
        return HotspotState.ACTIVE if name in self.active_hotspots else HotspotState.STOPPED

    def list_active_hotspots(self) -> list[str]:
        return sorted(self.active_hotspots)

    def list_hotspot_clients(self, name: str) -> list[HotspotClient]:
        return list(self.clients.get(name, []))

    def list_ap_profiles(self) -> list[str]:
        return sorted(name for name, mode in self.profiles.items() if mode == "ap")

    def profile_exists(self, profile: str) -> bool:
        return profile in self.profiles

    def profile_mode(self, profile: str) -> str | None:
        return self.profiles.get(profile)

    # ------------------------------ devices --------------------------------
    def check_ap_mode_support(self, interface: str) -> bool:
        return interface in self.interfaces

    def list_wifi_interfaces(self) -> list[str]:
        return list(self.interfaces)

    def set_device_managed(self, interface: str, managed: bool) -> None:
        self.commands.append(("set_device_managed", interface, managed))
        if not managed and self.on_unmanage is not None:
            self.on_unmanage(interface)

    def radio_enabled(self) -> bool:
        return self.radio

    def enable_radio(self) -> None:
        self.commands.append(("enable_radio",))
        self.radio = True


@pytest.fixture
def fake_backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def fake_iw() -> FakeIw:
    return FakeIw()


@pytest.fixture
def fake_runner() -> FakeIptables:
    return FakeIptables()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        interface="wlan0",
        hotspot_dir=tmp_path / "hotspots",
        poll_interval=0.01,
        max_polls=200,
        settle_delay=0.0,
    )


@pytest.fixture
def context(
    settings: Settings,
    fake_backend: FakeBackend,
    fake_iw: FakeIw,
    fake_runner: FakeIptables,
) -> NetworkContext:
    return NetworkContext(settings, runner=fake_runner, iw=fake_iw, backends=[fake_backend])
