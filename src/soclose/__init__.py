"""
=============================================================================
SOCLOSE - A web server that aborts its own responses
=============================================================================

soclose answers every GET with a response that promises more data than it
delivers:

    $ soclose --file-size 100MiB --send 95MiB --wait 5 127.0.0.1:8080

    $ curl -o /dev/null http://127.0.0.1:8080/
    curl: (18) transfer closed with 5242880 bytes remaining to read

Use it to check how an HTTP client copes with truncated downloads, slow
bodies (--throttle), connections that go quiet before closing (--wait),
and servers with or without I/O deadlines (--timeout / --no-timeout).

=============================================================================
PACKAGE LAYOUT
=============================================================================

    soclose/
    ├── config.py          ServerConfig (frozen, validated)
    ├── units.py           "95MiB", "name:value", "ip:port" parsers
    ├── response.py        ResponseTemplate (precomputed head bytes)
    ├── timing.py          TimingPolicy (blocks, throttle, idle, deadline)
    ├── errors.py          Exception hierarchy
    ├── server.py          SoCloseServer (thread per connection)
    ├── __main__.py        Command-line interface
    └── core/
        ├── socket_server.py   Bind + accept loop
        ├── connection.py      Socket wrapper, guaranteed close
        └── handler.py         The per-connection protocol

=============================================================================
"""

__version__ = "0.1.0"

from .server import SoCloseServer
from .config import ServerConfig

__all__ = ["SoCloseServer", "ServerConfig", "__version__"]
