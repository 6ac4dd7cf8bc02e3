"""
=============================================================================
COMMAND-LINE INTERFACE
=============================================================================

Entry point for running soclose from the command line:

    python -m soclose [options] BIND
    soclose [options] BIND              (installed console script)

This module is the ONLY place human-facing formats are parsed. It turns
"95MiB", "X-Test: 1" and "127.0.0.1:8080" into a validated ServerConfig
and hands that to the server.

Examples:
    soclose 127.0.0.1:8080                            # 100MiB promised, 95MiB sent
    soclose -f 1GiB -s 10MiB 0.0.0.0:8080             # Abort after 10MiB
    soclose -t 0.0.0.0:8080                           # Throttle to 1MiB/s
    soclose -t 64KiB -w 30 [::1]:8080                 # Slow body, then 30s of silence
    soclose --headers "Content-Type: video/mp4" "Accept-Ranges: none" -- 127.0.0.1:8080
    soclose --no-timeout 127.0.0.1:8080               # Never time out reads/writes

Exit status:
    1   the address could not be bound
    2   invalid command-line arguments
    130 interrupted (Ctrl+C)

=============================================================================
"""

import argparse
import sys

from . import __version__
from .config import ServerConfig
from .errors import ConfigError
from .server import SoCloseServer
from .units import parse_size, parse_header, parse_bind


# ─────────────────────────────────────────────────────────────────────────
# ARGUMENT TYPES
# ─────────────────────────────────────────────────────────────────────────
# argparse calls these on the raw strings. ArgumentTypeError turns into a
# clean "soclose: error: argument --send: invalid size: 'x'" message.


def _argument_type(parse):
    def convert(text):
        try:
            return parse(text)
        except ConfigError as e:
            raise argparse.ArgumentTypeError(str(e)) from None
    convert.__name__ = parse.__name__
    return convert


size_type = _argument_type(parse_size)
header_type = _argument_type(parse_header)
bind_type = _argument_type(parse_bind)


def seconds_type(text: str) -> float:
    try:
        value = float(text)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid number of seconds: {text!r}") from None
    if not value >= 0 or value == float("inf"):
        raise argparse.ArgumentTypeError(f"seconds must be a finite number >= 0, got {text!r}")
    return value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="soclose",
        description=(
            "Web server that automatically aborts its dummy responses "
            "after a specified amount of data is sent"
        ),
        epilog="Sizes accept B, K/KB, M/MB, G/GB (x1000) and KiB, MiB, GiB (x1024).",
    )

    # ─────────────────────────────────────────────────────────────────────
    # RESPONSE ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--file-size", "-f",
        type=size_type,
        default=parse_size("100MiB"),
        metavar="SIZE",
        help="How much data the server promises to send (default: 100MiB)",
    )

    parser.add_argument(
        "--send", "-s",
        type=size_type,
        default=parse_size("95MiB"),
        metavar="SIZE",
        help=(
            "How much data the server actually sends (default: 95MiB). "
            "Floored to a multiple of the 8192-byte block size."
        ),
    )

    parser.add_argument(
        "--throttle", "-t",
        type=size_type,
        nargs="?",
        const=parse_size("1MiB"),
        default=None,
        metavar="SIZE",
        help="Throttle the body to at most SIZE per second (1MiB if SIZE is omitted)",
    )

    parser.add_argument(
        "--wait", "-w",
        type=seconds_type,
        default=0.0,
        metavar="SECS",
        help="Seconds to wait before closing the connection, after all data is sent (default: 0)",
    )

    parser.add_argument(
        "--headers",
        type=header_type,
        nargs="+",
        action="extend",
        default=[],
        metavar="NAME:VALUE",
        help=(
            "Additional headers for each response. Takes every following "
            "argument, so end the list with -- before BIND"
        ),
    )

    # ─────────────────────────────────────────────────────────────────────
    # TIMEOUT ARGUMENTS (mutually exclusive)
    # ─────────────────────────────────────────────────────────────────────

    timeouts = parser.add_mutually_exclusive_group()
    timeouts.add_argument(
        "--no-timeout",
        action="store_true",
        help="Disable the timeout for TCP read/write operations",
    )
    timeouts.add_argument(
        "--timeout",
        type=seconds_type,
        default=10.0,
        metavar="SECS",
        help="Timeout for each TCP read/write operation, in seconds (default: 10)",
    )

    # ─────────────────────────────────────────────────────────────────────
    # SERVER ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--max-connections",
        type=int,
        default=None,
        metavar="N",
        help="Close new connections while N are being handled (default: unlimited)",
    )

    parser.add_argument(
        "--log-level", "-l",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Logging level (default: INFO)",
    )

    parser.add_argument(
        "--version", "-V",
        action="version",
        version=f"soclose {__version__}",
    )

    parser.add_argument(
        "bind",
        type=bind_type,
        metavar="BIND",
        help="Local TCP address to bind to, e.g. 127.0.0.1:8080 or [::1]:8080",
    )

    return parser


def config_from_args(args: argparse.Namespace) -> ServerConfig:
    """Translate parsed CLI arguments to a ServerConfig."""
    host, port = args.bind
    return ServerConfig(
        file_size=args.file_size,
        send=args.send,
        throttle=args.throttle,
        wait=args.wait,
        # dict() keeps the last value of a repeated header name
        headers=dict(args.headers),
        timeout=None if args.no_timeout else args.timeout,
        host=host,
        port=port,
        max_connections=args.max_connections,
        log_level=args.log_level,
    )


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        server = SoCloseServer(config_from_args(args))
    except ConfigError as e:
        parser.error(str(e))

    # =========================================================================
    # RUN SERVER
    # =========================================================================
    # Blocks forever. The only way out is a bind error or the process
    # being stopped.

    try:
        server.run()
    except OSError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        sys.exit(130)


if __name__ == "__main__":
    main()
