"""Validation and escaping of user supplied tokens before they reach a command."""

from __future__ import annotations

import re

from .errors import InvalidInputError


MAX_SSID_BYTES = 32
MAX_INTERFACE_LENGTH = 15
MAX_CONFIG_NAME_LENGTH = 64
DEFAULT_ESCAPE_LIMIT = 1024

WPA_PASSWORD_MIN = 8
WPA_PASSWORD_MAX = 63
WEP_KEY_LENGTHS = frozenset({5, 13, 16, 29})

_INTERFACE_PATTERN = re.compile(r"[A-Za-z0-9_-]+")
_CONFIG_NAME_PATTERN = re.compile(r"[A-Za-z0-9_.-]+")
_SHELL_SAFE_PATTERN = re.compile(r"[A-Za-z0-9_.:/@%+=,-]*")
_UNSAFE_CHARACTER = re.compile(r"[^A-Za-z0-9_.-]")
_FORMAT_SPECIFIER = re.compile(r"%[-+ #0]*\d*(?:\.\d+)?[diouxXeEfFgGcrsanp%]")


def escape_for_shell(value: str, limit: int = DEFAULT_ESCAPE_LIMIT) -> str | None:
    """Quote ``value`` for a POSIX shell.

    The result is wrapped in single quotes and every embedded quote becomes
    ``'\\''``. Returns ``None`` when the quoted text would exceed ``limit``.
    """

    quoted = "'" + value.replace("'", "'\\''") + "'"
    if len(quoted) > limit:
        return None
    return quoted


def is_valid_identity(value: str | bytes) -> bool:
    if isinstance(value, str):
        try:
            raw = value.encode("utf-8")
        except UnicodeEncodeError:
            return False
    elif isinstance(value, (bytes, bytearray)):
        raw = bytes(value)
    else:
        return False
    return 1 <= len(raw) <= MAX_SSID_BYTES and b"\x00" not in raw


def validate_identity(value: str | bytes) -> str | bytes:
    """Return ``value`` when it is a usable network name, else raise."""

    if not is_valid_identity(value):
        raise InvalidInputError(
            f"Network name must be 1-{MAX_SSID_BYTES} bytes without NUL characters"
        )
    return value


def is_valid_interface_name(value: str) -> bool:
    if not isinstance(value, str) or not 1 <= len(value) <= MAX_INTERFACE_LENGTH:
        return False
    if value.startswith("-"):
        return False
    return _INTERFACE_PATTERN.fullmatch(value) is not None


def validate_interface_name(value: str) -> str:
    if not is_valid_interface_name(value):
        raise InvalidInputError(f"Invalid interface name: {value!r}")
    return value


def is_valid_config_name(value: str) -> bool:
    if not isinstance(value, str) or not 1 <= len(value) <= MAX_CONFIG_NAME_LENGTH:
        return False
    return _CONFIG_NAME_PATTERN.fullmatch(value) is not None


def validate_config_name(value: str) -> str:
    if not is_valid_config_name(value):
        raise InvalidInputError(
            "Hotspot name must be 1-64 characters of letters, digits, '.', '_' or '-'"
        )
    return value


def is_shell_safe(value: str) -> bool:
    """Return ``True`` when ``value`` contains no shell metacharacters."""

    return bool(value) and _SHELL_SAFE_PATTERN.fullmatch(value) is not None


def sanitize_token(value: str, replacement: str = "_") -> str:
    """Replace every character outside ``[A-Za-z0-9_.-]`` with ``replacement``."""

    return _UNSAFE_CHARACTER.sub(replacement, value)


def contains_format_specifiers(value: str) -> bool:
    return _FORMAT_SPECIFIER.search(value) is not None


def network_requires_password(security: str | None) -> bool:
    """Return ``True`` when a scan security descriptor needs a credential."""

    if not security:
        return False
    upper = security.upper()
    return any(token in upper for token in ("WPA", "WEP", "802.1X", "ENTERPRISE", "SAE"))


def validate_password(password: str | None, security: str | None) -> str | None:
    """Check ``password`` against the rules for ``security``.

    Open networks accept anything (the value is ignored). WPA-family networks
    need 8-63 characters and WEP keys one of the standard key lengths.
    """

    if not network_requires_password(security):
        return password
    if not password:
        raise InvalidInputError("A password is required for secured networks")
    if "\x00" in password:
        raise InvalidInputError("Password must not contain NUL characters")
    upper = (security or "").upper()
    if "WPA" in upper or "SAE" in upper:
        if not WPA_PASSWORD_MIN <= len(password) <= WPA_PASSWORD_MAX:
            raise InvalidInputError(
                f"WPA passwords must be {WPA_PASSWORD_MIN}-{WPA_PASSWORD_MAX} characters"
            )
    elif "WEP" in upper:
        if len(password) not in WEP_KEY_LENGTHS:
            raise InvalidInputError("WEP keys must be 5, 13, 16 or 29 characters")
    return password


__all__ = [
    "MAX_SSID_BYTES",
    "WPA_PASSWORD_MIN",
    "WPA_PASSWORD_MAX",
    "escape_for_shell",
    "is_valid_identity",
    "validate_identity",
    "is_valid_interface_name",
    "validate_interface_name",
    "is_valid_config_name",
    "validate_config_name",
    "is_shell_safe",
    "sanitize_token",
    "contains_format_specifiers",
    "network_requires_password",
    "validate_password",
]
