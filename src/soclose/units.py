"""
=============================================================================
HUMAN-READABLE VALUES
=============================================================================

Parsers for the values people type on the command line:

    parse_size("95MiB")                 → 99614720
    parse_header("X-Test: hello")       → (b"X-Test", b"hello")
    parse_bind("127.0.0.1:8080")        → ("127.0.0.1", 8080)

All of them raise ConfigError on bad input, so argparse can report a clean
usage error and the core never sees an unvalidated value.

=============================================================================
SIZE UNITS
=============================================================================

    ┌──────────┬────────────────────┬──────────┬────────────────────┐
    │ Decimal  │ Multiplier         │ Binary   │ Multiplier         │
    ├──────────┼────────────────────┼──────────┼────────────────────┤
    │ B        │ 1                  │          │                    │
    │ K / KB   │ 1000               │ KiB      │ 1024               │
    │ M / MB   │ 1000²              │ MiB      │ 1024²              │
    │ G / GB   │ 1000³              │ GiB      │ 1024³              │
    │ T / TB   │ 1000⁴              │ TiB      │ 1024⁴              │
    │ P / PB   │ 1000⁵              │ PiB      │ 1024⁵              │
    └──────────┴────────────────────┴──────────┴────────────────────┘

Units are case-insensitive. Fractions are allowed ("1.5MiB") and the
result is floored to whole bytes.

=============================================================================
"""

import ipaddress
import re
from typing import Tuple

from .errors import ConfigError


_PREFIXES = "kmgtp"

_SIZE_RE = re.compile(
    r"^\s*(?P<number>\d+(?:\.\d*)?|\.\d+)\s*(?P<unit>(?:[kmgtp](?:i?b)?|b)?)\s*$",
    re.IGNORECASE,
)


def _unit_multiplier(unit: str) -> int:
    unit = unit.lower()
    if unit in ("", "b"):
        return 1

    prefix, rest = unit[0], unit[1:]
    base = 1024 if rest == "ib" else 1000

    return base ** (_PREFIXES.index(prefix) + 1)


def parse_size(text: str) -> int:
    """
    Parse a human-readable byte size.

    Args:
        text: e.g. "8192", "100MiB", "1.5 GB", "64k".

    Returns:
        The size in whole bytes (fractions are floored).

    Raises:
        ConfigError: If the text is not a valid size.
    """
    match = _SIZE_RE.match(text)
    if not match:
        raise ConfigError(f"invalid size: {text!r}")

    multiplier = _unit_multiplier(match.group("unit"))
    number = match.group("number")

    if "." in number:
        whole, _, fraction = number.partition(".")
        # Integer arithmetic so that "0.5KiB" is exactly 512, not 511
        scale = 10 ** len(fraction)
        return (int(whole or "0") * scale + int(fraction or "0")) * multiplier // scale

    return int(number) * multiplier


def parse_header(text: str) -> Tuple[bytes, bytes]:
    """
    Parse a "name:value" header argument.

    The text is split at the FIRST colon, so values may contain colons
    ("Location: http://example.com/"). Surrounding whitespace is trimmed
    from both halves.

    Both halves are encoded with surrogateescape: a header typed in a
    non-UTF-8 terminal reaches the wire with its original bytes.
    """
    name, sep, value = text.partition(":")
    if not sep:
        raise ConfigError(f"invalid header (expected name:value): {text!r}")

    name = name.strip()
    if not name:
        raise ConfigError(f"invalid header (empty name): {text!r}")

    return (
        name.encode("utf-8", "surrogateescape"),
        value.strip().encode("utf-8", "surrogateescape"),
    )


def parse_bind(text: str) -> Tuple[str, int]:
    """
    Parse a socket address: "127.0.0.1:8080", "0.0.0.0:0" or "[::1]:8080".

    The host must be an IP literal. Hostnames are rejected because they
    would make the bind address depend on DNS at startup.
    """
    host, sep, port_text = text.rpartition(":")
    if not sep or not host:
        raise ConfigError(f"invalid bind address (expected ip:port): {text!r}")

    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
        try:
            ipaddress.IPv6Address(host)
        except ValueError:
            raise ConfigError(f"invalid IPv6 address: {host!r}") from None
    else:
        try:
            ipaddress.IPv4Address(host)
        except ValueError:
            raise ConfigError(f"invalid IPv4 address: {host!r}") from None

    if not port_text.isdigit():
        raise ConfigError(f"invalid port: {port_text!r}")
    port = int(port_text)
    if port > 65535:
        raise ConfigError(f"invalid port: {port}. Must be 0-65535.")

    return host, port
