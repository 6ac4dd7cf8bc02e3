"""
=============================================================================
CORE MODULE - Networking and the per-connection protocol
=============================================================================

    ┌───────────────────────────────────────────────────────────────┐
    │                       Request Flow                             │
    ├───────────────────────────────────────────────────────────────┤
    │                                                                │
    │   Client ──► SocketServer.accept()                             │
    │                     │                                          │
    │                     ▼                                          │
    │              Connection (socket + deadline)                    │
    │                     │                                          │
    │                     ▼   own thread                             │
    │              ConnectionHandler.handle()                        │
    │                GET? → head → blocks → idle                     │
    │                     │                                          │
    │                     ▼                                          │
    │              Connection.close()                                │
    │                                                                │
    └───────────────────────────────────────────────────────────────┘

=============================================================================
"""

from .socket_server import SocketServer
from .connection import Connection, ConnectionState
from .handler import ConnectionHandler

__all__ = [
    "SocketServer",       # Binds and accepts connections
    "Connection",         # Wrapper for client socket - exact reads, full writes
    "ConnectionState",    # Enum for the protocol states
    "ConnectionHandler",  # Runs the protocol on one connection
]
