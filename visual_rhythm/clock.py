from __future__ import annotations

import time
from typing import Protocol


class Clock(Protocol):
    """Monotonic time source for trial timestamps and feedback delays.

    Engines read time only through this interface so scripted sessions can
    drive them with a fake clock.
    """

    def now(self) -> float:
        """Return monotonic seconds."""


class RealClock:
    """Wall-clock implementation used by the desktop shell."""

    def now(self) -> float:
        return time.monotonic()
