"""
Time sources for proposal windows.

Proposal start/end are stored in whatever unit the clock reports, block
heights or wall-clock seconds. Comparisons only need a consistent,
non-decreasing ordering.
"""

import time
from typing import Optional, Protocol

from .constants import CLOCK_BLOCK, CLOCK_WALL
from .exceptions import ConfigurationError, InvalidArgumentError


class Clock(Protocol):
    def now(self) -> int: ...


class BlockClock:
    """Manually advanced block height."""

    def __init__(self, start: int = 0):
        if start < 0:
            raise InvalidArgumentError("Block height cannot be negative")
        self._height = start

    def now(self) -> int:
        return self._height

    def advance(self, blocks: int = 1) -> int:
        if blocks < 0:
            raise InvalidArgumentError("Cannot advance the clock backwards")
        self._height += blocks
        return self._height

    def set(self, height: int) -> int:
        if height < self._height:
            raise InvalidArgumentError(
                f"Block height {height} is behind current height {self._height}"
            )
        self._height = height
        return self._height

    def __repr__(self) -> str:
        return f"<BlockClock height={self._height}>"


class WallClock:
    """Whole seconds since the epoch."""

    def now(self) -> int:
        return int(time.time())

    def __repr__(self) -> str:
        return "<WallClock>"


def make_clock(mode: str = CLOCK_BLOCK, start: Optional[int] = None) -> Clock:
    """Build the clock named by ``[clock] mode``."""
    if mode == CLOCK_BLOCK:
        return BlockClock(start or 0)
    if mode == CLOCK_WALL:
        return WallClock()
    raise ConfigurationError(f"Unknown clock mode: {mode!r}")
