import json
from pathlib import Path

import pytest

from wlan_pilot.config import DEPLOYMENT_PROFILES, Settings, load_settings


def test_missing_file_yields_defaults(tmp_path: Path) -> None:
    settings = load_settings(tmp_path / "absent.json", env={})
    assert settings == Settings()
    assert settings.poll_interval == pytest.approx(0.1)
    assert settings.max_polls == 150
    assert settings.attempt_ceiling == pytest.approx(15.0)


def test_low_power_profile_changes_cadence(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text(json.dumps({"profile": "low-power", "interface": "wlan1"}))
    settings = load_settings(config_path, env={})
    assert settings.profile == "low-power"
    assert (settings.poll_interval, settings.max_polls) == DEPLOYMENT_PROFILES["low-power"]
    assert settings.interface == "wlan1"


def test_explicit_values_override_profile(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text(
        json.dumps(
            {
                "poll_interval": 0.25,
                "max_polls": 40,
                "open_network_fast_path": "no",
                "hotspot_dir": str(tmp_path / "records"),
            }
        )
    )
    settings = load_settings(config_path, env={})
    assert settings.poll_interval == pytest.approx(0.25)
    assert settings.max_polls == 40
    assert settings.open_network_fast_path is False
    assert settings.hotspot_dir == tmp_path / "records"


def test_environment_overrides(tmp_path: Path) -> None:
    env = {
        "WLAN_PILOT_INTERFACE": "wlp3s0",
        "WLAN_PILOT_HOTSPOT_DIR": str(tmp_path),
        "WLAN_PILOT_PROFILE": "low-power",
        "WLAN_PILOT_COMMAND_TIMEOUT": "12",
    }
    settings = load_settings(tmp_path / "absent.json", env=env)
    assert settings.interface == "wlp3s0"
    assert settings.hotspot_dir == tmp_path
    assert settings.max_polls == 13
    assert settings.command_timeout == pytest.approx(12.0)


def test_config_path_from_environment(tmp_path: Path) -> None:
    config_path = tmp_path / "custom.json"
    config_path.write_text(json.dumps({"queue_capacity": 8}))
    settings = load_settings(env={"WLAN_PILOT_CONFIG": str(config_path)})
    assert settings.queue_capacity == 8


@pytest.mark.parametrize(
    "payload",
    [
        "not json",
        json.dumps([1, 2, 3]),
        json.dumps({"profile": "turbo"}),
        json.dumps({"interface": "eth0; rm -rf /"}),
        json.dumps({"poll_interval": 0}),
        json.dumps({"max_polls": 0}),
    ],
)
def test_invalid_configuration_fails_loudly(tmp_path: Path, payload: str) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text(payload)
    with pytest.raises(RuntimeError, match="Failed to load configuration"):
        load_settings(config_path, env={})


def test_invalid_environment_fails_loudly(tmp_path: Path) -> None:
    with pytest.raises(RuntimeError):
        load_settings(tmp_path / "absent.json", env={"WLAN_PILOT_COMMAND_TIMEOUT": "soon"})


def test_settings_validation() -> None:
    with pytest.raises(ValueError):
        Settings(settle_delay=-1)
    with pytest.raises(ValueError):
        Settings(command_timeout=0)
    assert Settings(command_timeout=None).command_timeout is None
    assert Settings().with_profile("low-power").poll_interval == pytest.approx(1.0)
    assert Settings().to_dict()["hotspot_dir"] == "data/hotspots"
