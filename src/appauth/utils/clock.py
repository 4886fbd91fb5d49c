"""
Clock abstraction so every time-based decision can be driven from tests.
"""
import time
from typing import Protocol, runtime_checkable


@runtime_checkable
class Clock(Protocol):
    """Callable returning seconds since the UNIX epoch."""

    def __call__(self) -> float: ...


def default_clock() -> float:
    """Delegates to ``time.time()``."""
    return time.time()


def fixed_clock(timestamp: float) -> Clock:
    """Returns a clock frozen at ``timestamp``. Handy for tests and replays."""
    def _clock() -> float:
        return timestamp
    return _clock
