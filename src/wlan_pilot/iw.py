"""Kernel-level wireless queries through the ``iw`` tool."""

from __future__ import annotations

import logging
import re

from .errors import WiFiError
from .execution import CommandRunner
from .models import InterfaceInfo
from .sanitizer import is_valid_interface_name


logger = logging.getLogger(__name__)

_MAC_PATTERN = re.compile(r"([0-9a-fA-F]{2}(?::[0-9a-fA-F]{2}){5})")


class IwTool:
    """Thin parser around ``iw`` output.

    Every query is best effort: a failing or missing ``iw`` binary yields an
    empty/negative answer instead of an exception, because the kernel view is
    only ever used as a secondary signal.
    """

    def __init__(self, runner: CommandRunner | None = None, *, program: str = "iw") -> None:
        self._runner = runner or CommandRunner(timeout=10.0)
        self._program = program

    # ------------------------------- helpers -------------------------------
    def _query(self, *args: str) -> str | None:
        try:
            result = self._runner.execute(self._program, list(args))
        except WiFiError as exc:
            logger.debug("iw %s failed: %s", " ".join(args), exc)
            return None
        if not result.ok:
            logger.debug("iw %s exited with %s", " ".join(args), result.returncode)
            return None
        return result.output

    def available(self) -> bool:
        return self._runner.exists(self._program)

    # ------------------------------ interfaces -----------------------------
    def list_interfaces(self) -> list[str]:
        output = self._query("dev")
        if not output:
            return []
        interfaces: list[str] = []
        for line in output.splitlines():
            stripped = line.strip()
            if stripped.startswith("Interface "):
                name = stripped.split(None, 1)[1].strip()
                if name and name not in interfaces:
                    interfaces.append(name)
        return interfaces

    def wiphy_index(self, interface: str) -> int | None:
        if not is_valid_interface_name(interface):
            return None
        output = self._query("dev", interface, "info")
        if not output:
            return None
        for line in output.splitlines():
            stripped = line.strip()
            if stripped.startswith("wiphy "):
                try:
                    return int(stripped.split()[1])
                except (IndexError, ValueError):
                    return None
        return None

    def _phy_info(self, interface: str) -> str | None:
        index = self.wiphy_index(interface)
        if index is None:
            return None
        return self._query("phy", f"phy{index}", "info")

    @staticmethod
    def _parse_interface_modes(phy_output: str) -> set[str]:
        modes: set[str] = set()
        in_modes = False
        for line in phy_output.splitlines():
            stripped = line.strip()
            if stripped.startswith("Supported interface modes"):
                in_modes = True
                continue
            if not in_modes:
                continue
            if stripped.startswith("* "):
                modes.add(stripped[2:].strip())
            else:
                break
        return modes

    def supports_ap_mode(self, interface: str) -> bool:
        output = self._phy_info(interface)
        if not output:
            return False
        return "AP" in self._parse_interface_modes(output)

    def supports_5ghz(self, interface: str) -> bool:
        output = self._phy_info(interface)
        if not output:
            return False
        return any(line.strip().startswith("Band 2:") for line in output.splitlines())

    # --------------------------------- link --------------------------------
    def link_info(self, interface: str) -> dict[str, object]:
        """Return association details from ``iw dev <if> link``."""

        info: dict[str, object] = {"connected": False}
        if not is_valid_interface_name(interface):
            return info
        output = self._query("dev", interface, "link")
        if not output:
            return info
        for line in output.splitlines():
            stripped = line.strip()
            if stripped.startswith("Connected to"):
                info["connected"] = True
                match = _MAC_PATTERN.search(stripped)
                if match:
                    info["bssid"] = match.group(1).lower()
            elif stripped.startswith("SSID:"):
                info["ssid"] = stripped.split(":", 1)[1].strip()
            elif stripped.startswith("freq:"):
                try:
                    info["frequency"] = float(stripped.split(":", 1)[1].split()[0])
                except (IndexError, ValueError):
                    pass
            elif stripped.startswith("signal:"):
                try:
                    info["signal_dbm"] = int(float(stripped.split(":", 1)[1].split()[0]))
                except (IndexError, ValueError):
                    pass
            elif stripped.startswith("tx bitrate:"):
                info["tx_bitrate"] = stripped.split(":", 1)[1].strip()
            elif stripped.startswith("rx bitrate:"):
                info["rx_bitrate"] = stripped.split(":", 1)[1].strip()
        return info

    def is_associated(self, interface: str) -> bool:
        return bool(self.link_info(interface).get("connected"))

    def station_macs(self, interface: str) -> list[str]:
        """MAC addresses of stations associated with an AP-mode interface."""

        if not is_valid_interface_name(interface):
            return []
        output = self._query("dev", interface, "station", "dump")
        if not output:
            return []
        macs: list[str] = []
        for line in output.splitlines():
            stripped = line.strip()
            if stripped.startswith("Station "):
                match = _MAC_PATTERN.search(stripped)
                if match:
                    macs.append(match.group(1).lower())
        return macs

    def interface_info(self, interface: str) -> InterfaceInfo:
        link = self.link_info(interface)
        extra: dict[str, object] = {}
        for key in ("ssid", "signal_dbm", "tx_bitrate", "rx_bitrate"):
            if key in link:
                extra[key] = link[key]
        return InterfaceInfo(
            name=interface,
            wiphy=self.wiphy_index(interface),
            supports_ap=self.supports_ap_mode(interface),
            supports_5ghz=self.supports_5ghz(interface),
            connected=bool(link.get("connected")),
            extra=extra,
        )


__all__ = ["IwTool"]
