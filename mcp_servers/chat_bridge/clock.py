"""Injectable time source.

Every wait in the control plane (backoff, settle delays, health TTLs, poll
intervals) goes through a ``Clock`` so tests can run in simulated time.
"""

from __future__ import annotations

import time
from typing import Protocol


class Clock(Protocol):
    def now(self) -> float: ...

    def sleep(self, seconds: float) -> None: ...


class SystemClock:
    def now(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float) -> None:
        if seconds > 0:
            time.sleep(seconds)


__all__ = ["Clock", "SystemClock"]
