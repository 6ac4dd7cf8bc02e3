"""
=============================================================================
TIMING POLICY
=============================================================================

Everything time- and size-related that a connection handler needs, derived
once from ServerConfig.

THROTTLING
──────────

The throttle is a FIXED delay after every block, not a token bucket:

    delay = BLOCK_SIZE / throttle        (seconds)

    throttle = 1 MiB/s  →  8192 / 1048576  = 7.8 ms after each block
    throttle = 8 KiB/s  →  8192 / 8192     = 1 s after each block

Time spent inside send() is not subtracted, so the real throughput is at
most `throttle`, usually a bit less.

=============================================================================
"""

from dataclasses import dataclass
from typing import Optional

from .config import ServerConfig


BLOCK_SIZE = 8192
"""Granularity of body writes and of throttle accounting."""

BLOCK = bytes(BLOCK_SIZE)
"""The body block. All zeros; clients only care about the byte count."""


@dataclass(frozen=True)
class TimingPolicy:
    """
    Immutable per-server timing parameters.

    Attributes:
        block_size: Bytes per body write.
        block_count: Number of blocks to send (send // block_size).
        inter_block_delay: Seconds to sleep after each block.
        idle_after_send: Seconds to hold the connection after the body.
        io_deadline: Per-operation socket timeout, or None for no deadline.
    """

    block_size: int
    block_count: int
    inter_block_delay: float
    idle_after_send: float
    io_deadline: Optional[float]

    @property
    def body_size(self) -> int:
        """Bytes of body actually transmitted."""
        return self.block_size * self.block_count

    @classmethod
    def from_config(cls, config: ServerConfig) -> "TimingPolicy":
        if config.throttle is None:
            delay = 0.0
        else:
            delay = BLOCK_SIZE / config.throttle

        return cls(
            block_size=BLOCK_SIZE,
            block_count=config.send // BLOCK_SIZE,
            inter_block_delay=delay,
            idle_after_send=config.wait,
            io_deadline=config.timeout,
        )
