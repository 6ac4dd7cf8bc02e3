"""
=============================================================================
SERVER CONFIGURATION
=============================================================================

Centralized configuration for the soclose server.

The config is built ONCE at startup (normally by the CLI in __main__.py),
validated, and then shared read-only by every connection thread. It is a
frozen dataclass, so nothing can mutate it after construction and no
locking is needed when many handlers read it at the same time.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    WHAT THE CLIENT SEES                              │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   HTTP/1.0 200 OK                                                    │
    │   Content-Length: <file_size>      ← what we PROMISE                 │
    │   <headers...>                                                       │
    │                                                                      │
    │   <send // 8192 blocks of zeros>   ← what we actually SEND           │
    │        (one block every 8192/throttle seconds, if throttled)         │
    │                                                                      │
    │   ... <wait> seconds of silence ...                                  │
    │                                                                      │
    │   FIN                              ← connection closed               │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Optional

from .errors import ConfigError


MiB = 1024 * 1024


@dataclass(frozen=True)
class ServerConfig:
    """
    Configuration for the soclose server.

    =========================================================================
    CONFIGURATION GROUPS
    =========================================================================

    RESPONSE SHAPE
    - file_size, send, headers

    TIMING
    - throttle, wait, timeout

    NETWORK
    - host, port, backlog, max_connections

    LOGGING
    - log_level

    =========================================================================
    """

    # ─────────────────────────────────────────────────────────────────────
    # RESPONSE SHAPE
    # ─────────────────────────────────────────────────────────────────────

    file_size: int = 100 * MiB
    """
    How much data the server promises to send (the Content-Length value).
    Never reconciled with `send`: the mismatch is the whole point.
    """

    send: int = 95 * MiB
    """
    How much body data the server actually sends.
    Floored to a multiple of the 8192-byte block size.
    """

    headers: Dict[bytes, bytes] = field(default_factory=dict)
    """
    Extra response headers as raw bytes, in insertion order.
    Any Content-Length entry is replaced by `file_size`.
    """

    # ─────────────────────────────────────────────────────────────────────
    # TIMING
    # ─────────────────────────────────────────────────────────────────────

    throttle: Optional[int] = None
    """
    Maximum body throughput in bytes/second.
    None = send as fast as the client reads.
    """

    wait: float = 0.0
    """
    Seconds to hold the connection open after the last block.
    """

    timeout: Optional[float] = 10.0
    """
    Deadline in seconds for EACH socket read/write call.
    None = no deadline (a silent client can hold a thread forever).
    """

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK
    # ─────────────────────────────────────────────────────────────────────

    host: str = "127.0.0.1"
    port: int = 8080

    backlog: int = 128
    """
    Maximum number of queued connections waiting for accept().
    """

    max_connections: Optional[int] = None
    """
    Cap on concurrently handled connections.
    None = unbounded (one thread per connection, no limit).
    """

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING
    # ─────────────────────────────────────────────────────────────────────

    log_level: str = "INFO"

    @property
    def address(self) -> tuple:
        """The (host, port) pair to bind to."""
        return (self.host, self.port)

    def validate(self) -> None:
        """
        Validate configuration values.

        Called once at startup. Everything after this point may assume the
        values are sane, so a bad config fails here instead of inside a
        connection thread.

        Raises:
            ConfigError: On the first invalid value found.
        """
        if self.file_size < 0:
            raise ConfigError(f"file_size must be >= 0, got {self.file_size}")

        if self.send < 0:
            raise ConfigError(f"send must be >= 0, got {self.send}")

        if self.throttle is not None and self.throttle <= 0:
            raise ConfigError(f"throttle must be > 0, got {self.throttle}")

        if self.wait < 0:
            raise ConfigError(f"wait must be >= 0, got {self.wait}")

        if self.timeout is not None and self.timeout <= 0:
            raise ConfigError(f"timeout must be > 0, got {self.timeout}")

        if not 0 <= self.port < 65536:
            raise ConfigError(f"Invalid port: {self.port}. Must be 0-65535.")

        if self.backlog < 1:
            raise ConfigError("backlog must be >= 1")

        if self.max_connections is not None and self.max_connections < 1:
            raise ConfigError("max_connections must be >= 1")

        if not isinstance(logging.getLevelName(self.log_level.upper()), int):
            raise ConfigError(f"unknown log level: {self.log_level!r}")

        for name, value in self.headers.items():
            if not name or b":" in name:
                raise ConfigError(f"invalid header name: {name!r}")
            if b"\r" in name + value or b"\n" in name + value:
                raise ConfigError(f"header {name!r} contains a line break")
