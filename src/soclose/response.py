"""
=============================================================================
RESPONSE TEMPLATE
=============================================================================

The response head is identical for every connection, so it is serialized
ONCE at startup and the same bytes object is written to every client.

HTTP RESPONSE HEAD STRUCTURE:
─────────────────────────────

    HTTP/1.0 200 OK\\r\\n                ← Status line
    X-Extra: value\\r\\n                 ← Configured headers, in order
    Content-Length: 104857600\\r\\n      ← Always present, always file_size
    \\r\\n                               ← End of head

HTTP/1.0 is deliberate: without keep-alive the client must treat the
connection close as the end of the response, and the only way to notice
the truncation is to compare the received byte count with Content-Length.

Header names and values are raw bytes. Nothing here decodes them, so
non-UTF-8 values configured by the user reach the wire unchanged.

=============================================================================
"""

from dataclasses import dataclass
from typing import Dict

from .config import ServerConfig


STATUS_LINE = b"HTTP/1.0 200 OK\r\n"

METHOD_NOT_ALLOWED = b"HTTP/1.1 405 Method Not Allowed\r\n\r\n"
"""Sent verbatim to any request that does not start with b"GET "."""

CONTENT_LENGTH = b"Content-Length"


def build_headers(config: ServerConfig) -> Dict[bytes, bytes]:
    """
    Merge the configured headers with the declared Content-Length.

    Header names are case-insensitive in HTTP, so a user-supplied
    "content-length" is dropped rather than sent next to ours.
    """
    headers = {
        name: value
        for name, value in config.headers.items()
        if name.lower() != CONTENT_LENGTH.lower()
    }
    headers[CONTENT_LENGTH] = str(config.file_size).encode("ascii")
    return headers


@dataclass(frozen=True)
class ResponseTemplate:
    """
    Precomputed status line + headers + blank line.

    Attributes:
        head: The complete response head, ready for sendall().
        declared_size: The Content-Length value it advertises.
    """

    head: bytes
    declared_size: int

    def __len__(self) -> int:
        return len(self.head)

    @classmethod
    def from_config(cls, config: ServerConfig) -> "ResponseTemplate":
        parts = [STATUS_LINE]
        for name, value in build_headers(config).items():
            parts.append(name + b": " + value + b"\r\n")
        parts.append(b"\r\n")
        return cls(head=b"".join(parts), declared_size=config.file_size)
