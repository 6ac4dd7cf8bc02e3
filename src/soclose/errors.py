"""
=============================================================================
ERRORS
=============================================================================

Exception hierarchy for soclose.

    SoCloseError
    ├── ConfigError              (also a ValueError)  fatal, at startup
    └── ProtocolError                                 per connection
        ├── MethodNotAllowedError                     request is not "GET "
        └── IncompleteRequestError                    client hung up early

I/O failures (timeouts, resets, broken pipes) are NOT wrapped. They stay
the built-in OSError family so callers can tell them apart from protocol
errors with a plain `except OSError`.

=============================================================================
"""


class SoCloseError(Exception):
    """Base class for all soclose errors."""


class ConfigError(SoCloseError, ValueError):
    """Invalid configuration or unparseable command-line value."""


class ProtocolError(SoCloseError):
    """The client sent something we refuse to serve."""


class MethodNotAllowedError(ProtocolError):
    """
    The request did not start with b"GET ".

    Attributes:
        prefix: The first bytes the client actually sent.
    """

    status_code = 405

    def __init__(self, prefix: bytes):
        self.prefix = prefix
        super().__init__(f"not a GET request (got {prefix!r})")


class IncompleteRequestError(ProtocolError):
    """The client closed the connection before sending the method token."""

    def __init__(self, expected: int, received: int):
        self.expected = expected
        self.received = received
        super().__init__(
            f"connection closed after {received} of {expected} request bytes"
        )
