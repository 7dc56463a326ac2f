"""Idempotent management of the packet-filter rules used for hotspot sharing."""

from __future__ import annotations

import ipaddress
import logging
import os
from dataclasses import dataclass
from typing import Callable, Sequence

from .errors import InvalidInputError, NetworkError, WiFiError
from .execution import CommandRunner
from .sanitizer import validate_interface_name


logger = logging.getLogger(__name__)

MAX_DELETE_ATTEMPTS = 10


def _running_as_root() -> bool:
    return os.geteuid() == 0


@dataclass(frozen=True, slots=True)
class NatRule:
    """One rule of the sharing rule set, identified by its exact arguments."""

    label: str
    table: str
    chain: str
    spec: tuple[str, ...]
    required: bool = True

    def command(self, action: str) -> list[str]:
        """Return iptables arguments for ``action`` (``-A``, ``-C`` or ``-D``)."""

        return ["-t", self.table, action, self.chain, *self.spec]


def build_rule_set(hotspot_iface: str, internet_iface: str | None, subnet: str) -> list[NatRule]:
    """Return the masquerade and forward rules for one hotspot."""

    rules = [
        NatRule(
            "masquerade",
            "nat",
            "POSTROUTING",
            ("-s", subnet, "!", "-d", subnet, "-j", "MASQUERADE"),
        ),
    ]
    if internet_iface:
        rules.append(
            NatRule(
                "forward-out",
                "filter",
                "FORWARD",
                ("-i", hotspot_iface, "-o", internet_iface, "-j", "ACCEPT"),
            )
        )
        rules.append(
            NatRule(
                "forward-in",
                "filter",
                "FORWARD",
                (
                    "-i", internet_iface,
                    "-o", hotspot_iface,
                    "-m", "state",
                    "--state", "RELATED,ESTABLISHED",
                    "-j", "ACCEPT",
                ),
                required=False,
            )
        )
    return rules


def _normalise_subnet(subnet: str) -> str:
    try:
        return str(ipaddress.ip_network(subnet, strict=False))
    except ValueError as exc:
        raise InvalidInputError(f"Invalid subnet: {subnet!r}") from exc


class NatRuleReconciler:
    """Add or drain the sharing rules, checking existence before each change.

    Without root privilege every operation is a logged no-op: a hotspot
    without internet sharing is still a usable hotspot.
    """

    def __init__(
        self,
        runner: CommandRunner | None = None,
        *,
        program: str = "iptables",
        is_privileged: Callable[[], bool] = _running_as_root,
        enable_forwarding: bool = True,
    ) -> None:
        self._runner = runner or CommandRunner(timeout=15.0)
        self._program = program
        self._is_privileged = is_privileged
        self._enable_forwarding = enable_forwarding

    # ------------------------------- helpers -------------------------------
    def _execute(self, args: Sequence[str]) -> bool:
        try:
            result = self._runner.execute(self._program, list(args))
        except WiFiError as exc:
            logger.debug("%s %s failed: %s", self._program, " ".join(args), exc)
            return False
        return result.ok

    def rule_exists(self, rule: NatRule) -> bool:
        return self._execute(rule.command("-C"))

    def _ensure_forwarding(self) -> None:
        try:
            result = self._runner.execute("sysctl", ["-w", "net.ipv4.ip_forward=1"])
        except WiFiError as exc:
            logger.warning("Unable to enable IPv4 forwarding: %s", exc)
            return
        if not result.ok:
            logger.warning("Unable to enable IPv4 forwarding: %s", result.output.strip())

    # ------------------------------ operations -----------------------------
    def setup(self, hotspot_iface: str, internet_iface: str, subnet: str) -> bool:
        """Make sure the sharing rules exist exactly once.

        Returns ``True`` on success, including the unprivileged no-op case.
        Failure to add a required rule raises :class:`NetworkError`; the
        established-traffic rule is best effort. Already applied rules are
        never rolled back.
        """

        if not self._is_privileged():
            logger.warning(
                "Skipping NAT setup for %s: root privileges required, sharing disabled",
                hotspot_iface,
            )
            return True
        validate_interface_name(hotspot_iface)
        validate_interface_name(internet_iface)
        subnet = _normalise_subnet(subnet)
        if self._enable_forwarding:
            self._ensure_forwarding()
        for rule in build_rule_set(hotspot_iface, internet_iface, subnet):
            if self.rule_exists(rule):
                logger.debug("NAT rule %s already present", rule.label)
                continue
            try:
                result = self._runner.execute(self._program, rule.command("-A"))
                ok = result.ok
                detail = result.output.strip()
            except WiFiError as exc:
                ok = False
                detail = str(exc)
            if ok:
                logger.info("Added NAT rule %s for %s", rule.label, hotspot_iface)
                continue
            if rule.required:
                raise NetworkError(f"Failed to add NAT rule {rule.label}: {detail or 'unknown error'}")
            logger.warning("Unable to add optional NAT rule %s: %s", rule.label, detail)
        return True

    def cleanup(
        self,
        hotspot_iface: str,
        subnet: str,
        internet_iface: str | None = None,
    ) -> int:
        """Delete every copy of the sharing rules; return how many were removed.

        Each rule shape is deleted repeatedly, up to a fixed ceiling, until
        the filter reports that no matching rule is left.
        """

        if not self._is_privileged():
            logger.debug("Skipping NAT cleanup for %s: not running as root", hotspot_iface)
            return 0
        validate_interface_name(hotspot_iface)
        if internet_iface:
            validate_interface_name(internet_iface)
        subnet = _normalise_subnet(subnet)
        removed = 0
        for rule in build_rule_set(hotspot_iface, internet_iface, subnet):
            for _ in range(MAX_DELETE_ATTEMPTS):
                if not self._execute(rule.command("-D")):
                    break
                removed += 1
        if removed:
            logger.info("Removed %d NAT rule(s) for %s", removed, hotspot_iface)
        return removed


__all__ = ["MAX_DELETE_ATTEMPTS", "NatRule", "NatRuleReconciler", "build_rule_set"]
