"""
pytest configuration and fixtures.
"""

import socket
import threading
from typing import Callable, Generator, Optional, Tuple
import pytest

# Add src to path for imports
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from soclose import SoCloseServer, ServerConfig
from soclose.core import Connection


GET_REQUEST = b"GET / HTTP/1.1\r\nHost: localhost\r\nUser-Agent: pytest\r\n\r\n"


def recv_all(sock: socket.socket, timeout: float = 5.0) -> bytes:
    """Read until the peer closes the connection."""
    sock.settimeout(timeout)
    chunks = []
    while True:
        chunk = sock.recv(65536)
        if not chunk:
            return b"".join(chunks)
        chunks.append(chunk)


def split_response(raw: bytes) -> Tuple[bytes, bytes]:
    """Split raw response bytes into (head, body)."""
    head, sep, body = raw.partition(b"\r\n\r\n")
    assert sep, f"no end of head in {raw[:200]!r}"
    return head + sep, body


@pytest.fixture
def socket_pair() -> Generator[Tuple[Connection, socket.socket], None, None]:
    """
    A Connection wrapping one end of a socketpair, and the raw client end.

    Lets handler tests drive the protocol without a listening socket.
    """
    server_sock, client_sock = socket.socketpair()
    conn = Connection(socket=server_sock, address=("test-client", 0), timeout=2.0)
    yield conn, client_sock
    conn.close()
    client_sock.close()


class RunningServer:
    """Server helper that runs in a background thread."""

    def __init__(self, server: SoCloseServer):
        self.server = server
        self._thread: Optional[threading.Thread] = None

    @property
    def address(self) -> Tuple[str, int]:
        return self.server.address

    def start(self):
        """Start server in background thread."""
        self._thread = threading.Thread(
            target=self.server.run,
            kwargs={"setup_logging": False},
            daemon=True,
        )
        self._thread.start()

        if not self.server.wait_until_listening(timeout=5.0):
            raise RuntimeError("Server failed to start")

    def connect(self) -> socket.socket:
        return socket.create_connection(self.address, timeout=5.0)

    def request(self, data: bytes = GET_REQUEST) -> bytes:
        """Send `data` and return everything the server sends back."""
        with self.connect() as sock:
            sock.sendall(data)
            return recv_all(sock)

    def stop(self):
        """Stop accepting. Connection threads are daemons and die with pytest."""
        self.server.shutdown()

        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5.0)


@pytest.fixture
def start_server() -> Generator[Callable[..., RunningServer], None, None]:
    """
    Factory fixture: start_server(send=..., wait=...) starts a server on an
    ephemeral port with the given ServerConfig overrides.
    """
    servers = []

    def factory(**overrides) -> RunningServer:
        options = {"host": "127.0.0.1", "port": 0, "timeout": 5.0}
        options.update(overrides)
        running = RunningServer(SoCloseServer(ServerConfig(**options)))
        running.start()
        servers.append(running)
        return running

    yield factory

    for running in servers:
        running.stop()
