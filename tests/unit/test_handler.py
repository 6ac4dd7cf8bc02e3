"""
Unit tests for the per-connection protocol, over a socketpair.
"""

import logging
import socket
import threading
import time

import pytest

from soclose.config import ServerConfig
from soclose.core import Connection, ConnectionHandler, ConnectionState
from soclose.errors import MethodNotAllowedError, IncompleteRequestError
from soclose.response import ResponseTemplate, METHOD_NOT_ALLOWED
from soclose.timing import TimingPolicy, BLOCK_SIZE

from conftest import GET_REQUEST, recv_all, split_response


def make_handler(**overrides) -> ConnectionHandler:
    """Helper to build a handler from ServerConfig overrides."""
    options = {"file_size": 1024 * 1024, "send": 3 * BLOCK_SIZE}
    options.update(overrides)
    config = ServerConfig(**options)
    return ConnectionHandler(ResponseTemplate.from_config(config), TimingPolicy.from_config(config))


def send_request(client: socket.socket, data: bytes = GET_REQUEST):
    """Send a request and half-close, like a client that is done talking."""
    client.sendall(data)
    client.shutdown(socket.SHUT_WR)


@pytest.fixture
def sleeps(monkeypatch):
    """Record time.sleep() calls made by the handler instead of sleeping."""
    calls = []
    monkeypatch.setattr("soclose.core.handler.time.sleep", calls.append)
    return calls


class TestGetRequest:
    """Tests for the successful path."""

    def test_head_then_truncated_body(self, socket_pair):
        conn, client = socket_pair
        handler = make_handler(send=3 * BLOCK_SIZE + 100)
        send_request(client)

        with conn:
            handler.handle(conn)

        head, body = split_response(recv_all(client))
        assert head == handler.template.head
        assert b"Content-Length: 1048576\r\n" in head
        assert len(body) == 3 * BLOCK_SIZE
        assert body == bytes(3 * BLOCK_SIZE)

    def test_state_ends_closed(self, socket_pair):
        conn, client = socket_pair
        send_request(client)

        with conn:
            make_handler().handle(conn)
            assert conn.state == ConnectionState.IDLE

        assert conn.state == ConnectionState.CLOSED
        assert conn.is_closed
        assert conn.bytes_sent == len(make_handler().template.head) + 3 * BLOCK_SIZE

    def test_zero_blocks(self, socket_pair):
        conn, client = socket_pair
        handler = make_handler(send=BLOCK_SIZE - 1)
        send_request(client)

        with conn:
            handler.handle(conn)

        assert recv_all(client) == handler.template.head

    def test_request_prefix_split_across_packets(self, socket_pair):
        """Test that "GET " is recognized even when it arrives in pieces."""
        conn, client = socket_pair
        client.sendall(b"GE")
        client.sendall(b"T")
        send_request(client, b" /path HTTP/1.0\r\n\r\n")

        with conn:
            make_handler(send=0).handle(conn)

        assert recv_all(client).startswith(b"HTTP/1.0 200 OK\r\n")


class TestRejectedRequests:
    """Tests for the failure paths."""

    @pytest.mark.parametrize("request_bytes", [
        b"POST / HTTP/1.1\r\n\r\n",
        b"get / HTTP/1.1\r\n\r\n",
        b"GET/ HTTP/1.1\r\n\r\n",
        b"HEAD / HTTP/1.1\r\n\r\n",
    ])
    def test_not_get_gets_405(self, socket_pair, request_bytes):
        conn, client = socket_pair
        send_request(client, request_bytes)

        with pytest.raises(MethodNotAllowedError) as exc_info:
            with conn:
                make_handler().handle(conn)

        assert exc_info.value.status_code == 405
        assert exc_info.value.prefix == request_bytes[:4]
        assert conn.state == ConnectionState.ABORTED
        assert recv_all(client) == METHOD_NOT_ALLOWED

    def test_trickling_client_does_not_delay_close(self, socket_pair):
        """Test that a client still sending after a 405 cannot hold the connection open."""
        conn, client = socket_pair
        client.sendall(b"POST / HTTP/1.1\r\n")
        stop = threading.Event()

        def trickle():
            try:
                while not stop.wait(0.1):
                    client.sendall(b"x")
            except OSError:
                pass  # Server end closed

        trickler = threading.Thread(target=trickle, daemon=True)
        trickler.start()
        try:
            start = time.monotonic()
            with pytest.raises(MethodNotAllowedError):
                with conn:
                    make_handler().handle(conn)
            elapsed = time.monotonic() - start
        finally:
            stop.set()
            trickler.join(timeout=2.0)

        assert conn.is_closed
        assert elapsed < 1.5

    def test_short_request(self, socket_pair):
        conn, client = socket_pair
        send_request(client, b"GE")

        with pytest.raises(IncompleteRequestError) as exc_info:
            with conn:
                make_handler().handle(conn)

        assert not hasattr(exc_info.value, "status_code")  # Nothing is sent back
        assert recv_all(client) == b""

    def test_silent_client_times_out(self, socket_pair):
        """Test that a client that never sends gets no response bytes at all."""
        conn, client = socket_pair
        conn.socket.settimeout(0.2)

        with pytest.raises(socket.timeout):
            with conn:
                make_handler().handle(conn)

        assert conn.state == ConnectionState.ABORTED
        client.shutdown(socket.SHUT_WR)
        assert recv_all(client) == b""

    def test_write_error_aborts(self, socket_pair):
        conn, client = socket_pair
        client.sendall(GET_REQUEST)
        client.close()

        with pytest.raises(OSError):
            with conn:
                make_handler(send=64 * BLOCK_SIZE).handle(conn)

        assert conn.state == ConnectionState.ABORTED


class TestTiming:
    """Tests for throttle and idle sleeps."""

    def test_no_throttle_no_sleep(self, socket_pair, sleeps):
        conn, client = socket_pair
        send_request(client)

        with conn:
            make_handler().handle(conn)

        assert sleeps == []

    def test_throttle_sleeps_after_every_block(self, socket_pair, sleeps):
        conn, client = socket_pair
        send_request(client)

        with conn:
            make_handler(throttle=BLOCK_SIZE * 4).handle(conn)

        assert sleeps == [0.25, 0.25, 0.25]

    def test_idle_after_body(self, socket_pair, sleeps):
        conn, client = socket_pair
        send_request(client)

        with conn:
            make_handler(throttle=BLOCK_SIZE * 2, wait=3.0).handle(conn)

        assert sleeps == [0.5, 0.5, 0.5, 3.0]

    def test_throttled_wall_clock(self, socket_pair):
        conn, client = socket_pair
        handler = make_handler(throttle=BLOCK_SIZE * 20)  # 50 ms per block
        send_request(client)

        start = time.monotonic()
        with conn:
            handler.handle(conn)
        elapsed = time.monotonic() - start

        assert elapsed >= 3 * 0.05 * 0.95

    def test_deadline_is_per_operation(self, socket_pair):
        """Test that sleeping longer than the deadline does not abort."""
        conn, client = socket_pair
        conn.socket.settimeout(0.1)
        handler = make_handler(send=2 * BLOCK_SIZE, throttle=BLOCK_SIZE * 5, wait=0.3)
        send_request(client)

        with conn:
            handler.handle(conn)

        head, body = split_response(recv_all(client))
        assert len(body) == 2 * BLOCK_SIZE


class TestConnection:
    """Tests for the Connection wrapper itself."""

    def test_close_is_idempotent(self, socket_pair):
        conn, client = socket_pair
        client.shutdown(socket.SHUT_WR)

        conn.close()
        conn.close()

        assert conn.is_closed
        assert conn.state == ConnectionState.CLOSED

    def test_context_manager_closes_on_error(self, socket_pair):
        conn, client = socket_pair
        client.shutdown(socket.SHUT_WR)

        with pytest.raises(RuntimeError):
            with conn:
                raise RuntimeError("boom")

        assert conn.is_closed
        assert conn.state == ConnectionState.ABORTED

    def test_deadline_applied(self):
        server_sock, client_sock = socket.socketpair()
        with client_sock:
            conn = Connection(socket=server_sock, address=("x", 0), timeout=1.5)
            assert server_sock.gettimeout() == 1.5
            conn.close()

    def test_no_deadline_is_blocking(self):
        server_sock, client_sock = socket.socketpair()
        with client_sock:
            conn = Connection(socket=server_sock, address=("x", 0), timeout=None)
            assert server_sock.gettimeout() is None
            conn.close()

    def test_close_logs_bytes_and_age(self, socket_pair, caplog):
        conn, client = socket_pair
        client.shutdown(socket.SHUT_WR)
        conn.send_all(b"abc")

        with caplog.at_level(logging.DEBUG, logger="soclose.core.connection"):
            conn.close()

        message = caplog.records[-1].getMessage()
        assert f"[{conn.id}] Connection closed after 3 bytes in " in message
        assert message.endswith("s (closed)")
        assert conn.age >= 0
