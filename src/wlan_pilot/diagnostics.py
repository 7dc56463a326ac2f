"""Command-line helpers for wlan-pilot diagnostics."""
from __future__ import annotations

import argparse
import json
import sys
from typing import Sequence

from .backend import NetworkContext
from .errors import WiFiError
from .version import APP_VERSION

NMCLI_INSTALL_HINT = (
    "Install NetworkManager (`sudo apt install network-manager`) and start it with "
    "`sudo systemctl enable --now NetworkManager`."
)

RADIO_HINT = "Enable the Wi-Fi radio with `nmcli radio wifi on`."


def build_parser() -> argparse.ArgumentParser:
    """Return the argument parser for the diagnostics CLI."""

    parser = argparse.ArgumentParser(
        prog="python -m wlan_pilot.diagnostics",
        description="wlan-pilot diagnostics helpers",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Emit results as JSON for scripting.",
    )
    return parser


def diagnose_control_plane(context: NetworkContext) -> dict[str, object]:
    """Report which backend is selected and whether its daemon and radio are up."""

    if not context.has_backend:
        return {
            "backend": None,
            "running": False,
            "radio_enabled": False,
            "hints": [NMCLI_INSTALL_HINT],
        }
    backend = context.backend
    hints: list[str] = []
    try:
        running = backend.service_running()
    except WiFiError:
        running = False
    try:
        radio = backend.radio_enabled()
    except WiFiError:
        radio = False
    if not running:
        hints.append(NMCLI_INSTALL_HINT)
    if not radio:
        hints.append(RADIO_HINT)
    return {"backend": backend.name, "running": running, "radio_enabled": radio, "hints": hints}


def collect_interfaces(context: NetworkContext) -> list[dict[str, object | None]]:
    names: list[str] = []
    if context.has_backend:
        try:
            names = list(context.backend.list_wifi_interfaces())
        except WiFiError:
            names = []
    if not names:
        names = context.iw.list_interfaces()
    return [context.iw.interface_info(name).to_dict() for name in names]


def collect_diagnostics(context: NetworkContext | None = None) -> dict[str, object]:
    """Collect diagnostics payload used by the CLI."""

    context = context or NetworkContext()
    pending = [entry.to_dict() for entry in context.queue.drain()]
    return {
        "version": APP_VERSION,
        "control_plane": diagnose_control_plane(context),
        "interfaces": collect_interfaces(context),
        "pending_diagnostics": pending,
    }


def run(argv: Sequence[str] | None = None) -> int:
    """Execute the diagnostics CLI with *argv* arguments."""

    parser = build_parser()
    args = parser.parse_args(argv)

    payload = collect_diagnostics()
    control_plane = payload.get("control_plane", {})
    interfaces = payload.get("interfaces", [])
    pending = payload.get("pending_diagnostics", [])

    if not isinstance(control_plane, dict):
        control_plane = {}
    if not isinstance(interfaces, list):
        interfaces = []
    if not isinstance(pending, list):
        pending = []

    if args.json:
        json.dump(payload, sys.stdout)
        sys.stdout.write("\n")
        return 0

    print(f"wlan-pilot diagnostics (version {APP_VERSION})")
    backend = control_plane.get("backend")
    if backend:
        print(f"Control plane: {backend}")
        print(f" - Service running: {'yes' if control_plane.get('running') else 'no'}")
        print(f" - Wi-Fi radio: {'enabled' if control_plane.get('radio_enabled') else 'disabled'}")
    else:
        print("Control plane: unavailable")
    hints = control_plane.get("hints") or []
    if hints:
        print("Hints:")
        for hint in hints:
            print(f" * {hint}")

    if interfaces:
        print("Wi-Fi interfaces:")
        for entry in interfaces:
            if not isinstance(entry, dict):
                continue
            features = []
            if entry.get("supports_ap"):
                features.append("AP")
            if entry.get("supports_5ghz"):
                features.append("5 GHz")
            summary = ", ".join(features) if features else "station only"
            state = "connected" if entry.get("connected") else "idle"
            print(f" - {entry.get('name')}: {summary} ({state})")
    else:
        print("No Wi-Fi interfaces were detected.")

    if pending:
        print("Pending diagnostics:")
        for entry in pending:
            if isinstance(entry, dict):
                print(f" - [{entry.get('severity')}] {entry.get('message')}")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point used by `python -m wlan_pilot.diagnostics`."""

    return run(argv)


__all__ = [
    "build_parser",
    "diagnose_control_plane",
    "collect_interfaces",
    "collect_diagnostics",
    "run",
    "main",
]


if __name__ == "__main__":  # pragma: no cover - module behaviour
    sys.exit(main())
