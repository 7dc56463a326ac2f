"""Configuration loading for wlan-pilot."""
from __future__ import annotations

import json
import math
import os
from dataclasses import dataclass, asdict, replace
from pathlib import Path
from typing import Any, Mapping

from .sanitizer import is_valid_interface_name


DEFAULT_CONFIG_PATH = Path("data/wlan_pilot.json")
DEFAULT_HOTSPOT_DIR = Path("data/hotspots")

# (poll interval in seconds, maximum polls) per deployment profile.
DEPLOYMENT_PROFILES: dict[str, tuple[float, int]] = {
    "standard": (0.1, 150),
    "low-power": (1.0, 13),
}
DEFAULT_PROFILE = "standard"


@dataclass(frozen=True, slots=True)
class Settings:
    """Runtime tuning for the orchestration layer."""

    interface: str | None = None
    hotspot_dir: Path = DEFAULT_HOTSPOT_DIR
    profile: str = DEFAULT_PROFILE
    poll_interval: float = DEPLOYMENT_PROFILES[DEFAULT_PROFILE][0]
    max_polls: int = DEPLOYMENT_PROFILES[DEFAULT_PROFILE][1]
    settle_delay: float = 1.5
    command_timeout: float | None = 30.0
    output_limit: int = 65536
    require_ip: bool = True
    open_network_fast_path: bool = True
    queue_capacity: int = 32

    def __post_init__(self) -> None:
        if self.interface is not None and not is_valid_interface_name(self.interface):
            raise ValueError(f"Invalid interface name: {self.interface!r}")
        if self.profile not in DEPLOYMENT_PROFILES:
            raise ValueError(
                "Deployment profile must be one of: " + ", ".join(sorted(DEPLOYMENT_PROFILES))
            )
        try:
            poll_interval = float(self.poll_interval)
            settle_delay = float(self.settle_delay)
            max_polls = int(self.max_polls)
            output_limit = int(self.output_limit)
            queue_capacity = int(self.queue_capacity)
        except (TypeError, ValueError) as exc:
            raise ValueError("Numeric settings must be numbers") from exc
        if not math.isfinite(poll_interval) or poll_interval <= 0:
            raise ValueError("Poll interval must be a positive number of seconds")
        if not math.isfinite(settle_delay) or settle_delay < 0:
            raise ValueError("Settle delay must not be negative")
        if max_polls < 1:
            raise ValueError("Maximum polls must be at least 1")
        if output_limit < 256:
            raise ValueError("Output limit must be at least 256 bytes")
        if queue_capacity < 1:
            raise ValueError("Queue capacity must be at least 1")
        timeout = self.command_timeout
        if timeout is not None:
            timeout = float(timeout)
            if not math.isfinite(timeout) or timeout <= 0:
                raise ValueError("Command timeout must be positive when set")
        object.__setattr__(self, "hotspot_dir", Path(self.hotspot_dir))
        object.__setattr__(self, "poll_interval", poll_interval)
        object.__setattr__(self, "settle_delay", settle_delay)
        object.__setattr__(self, "max_polls", max_polls)
        object.__setattr__(self, "output_limit", output_limit)
        object.__setattr__(self, "queue_capacity", queue_capacity)
        object.__setattr__(self, "command_timeout", timeout)

    @property
    def attempt_ceiling(self) -> float:
        """Worst-case duration of a connection attempt in seconds."""

        return self.poll_interval * self.max_polls

    def with_profile(self, profile: str) -> "Settings":
        """Return a copy using the polling cadence of ``profile``."""

        if profile not in DEPLOYMENT_PROFILES:
            raise ValueError(f"Unknown deployment profile: {profile!r}")
        interval, polls = DEPLOYMENT_PROFILES[profile]
        return replace(self, profile=profile, poll_interval=interval, max_polls=polls)

    def to_dict(self) -> dict[str, object]:
        payload = asdict(self)
        payload["hotspot_dir"] = str(self.hotspot_dir)
        return payload


def _parse_bool(value: Any, *, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
    return default


def _settings_from_mapping(payload: Mapping[str, Any]) -> Settings:
    profile = payload.get("profile", DEFAULT_PROFILE)
    if not isinstance(profile, str) or profile not in DEPLOYMENT_PROFILES:
        raise ValueError(f"Unknown deployment profile: {profile!r}")
    interval, polls = DEPLOYMENT_PROFILES[profile]
    defaults = Settings()
    interface = payload.get("interface")
    if isinstance(interface, str):
        interface = interface.strip() or None
    elif interface is not None:
        raise ValueError("Interface must be a string")
    return Settings(
        interface=interface,
        hotspot_dir=Path(payload.get("hotspot_dir", defaults.hotspot_dir)),
        profile=profile,
        poll_interval=payload.get("poll_interval", interval),
        max_polls=payload.get("max_polls", polls),
        settle_delay=payload.get("settle_delay", defaults.settle_delay),
        command_timeout=payload.get("command_timeout", defaults.command_timeout),
        output_limit=payload.get("output_limit", defaults.output_limit),
        require_ip=_parse_bool(payload.get("require_ip"), default=defaults.require_ip),
        open_network_fast_path=_parse_bool(
            payload.get("open_network_fast_path"), default=defaults.open_network_fast_path
        ),
        queue_capacity=payload.get("queue_capacity", defaults.queue_capacity),
    )


def _apply_environment(settings: Settings, env: Mapping[str, str]) -> Settings:
    changes: dict[str, Any] = {}
    profile = env.get("WLAN_PILOT_PROFILE")
    if profile:
        settings = settings.with_profile(profile.strip())
    interface = env.get("WLAN_PILOT_INTERFACE")
    if interface:
        changes["interface"] = interface.strip()
    hotspot_dir = env.get("WLAN_PILOT_HOTSPOT_DIR")
    if hotspot_dir:
        changes["hotspot_dir"] = Path(hotspot_dir)
    timeout = env.get("WLAN_PILOT_COMMAND_TIMEOUT")
    if timeout:
        try:
            changes["command_timeout"] = float(timeout)
        except ValueError as exc:
            raise ValueError("WLAN_PILOT_COMMAND_TIMEOUT must be numeric") from exc
    if not changes:
        return settings
    return replace(settings, **changes)


def load_settings(
    path: Path | str | None = None,
    *,
    env: Mapping[str, str] | None = None,
) -> Settings:
    """Load :class:`Settings` from JSON and apply ``WLAN_PILOT_*`` overrides.

    A missing file yields the defaults. Malformed content raises
    ``RuntimeError`` so that startup fails loudly.
    """

    environ = os.environ if env is None else env
    if path is None:
        path = environ.get("WLAN_PILOT_CONFIG") or DEFAULT_CONFIG_PATH
    config_path = Path(path)
    if config_path.exists():
        try:
            payload = json.loads(config_path.read_text())
            if not isinstance(payload, dict):
                raise ValueError("Configuration file must contain a JSON object")
            settings = _settings_from_mapping(payload)
        except (OSError, ValueError) as exc:
            raise RuntimeError(f"Failed to load configuration: {exc}") from exc
    else:
        settings = Settings()
    try:
        return _apply_environment(settings, environ)
    except ValueError as exc:
        raise RuntimeError(f"Failed to load configuration: {exc}") from exc


__all__ = [
    "DEFAULT_CONFIG_PATH",
    "DEFAULT_HOTSPOT_DIR",
    "DEPLOYMENT_PROFILES",
    "Settings",
    "load_settings",
]
