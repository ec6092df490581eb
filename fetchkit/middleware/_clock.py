from __future__ import annotations

import time
from collections.abc import Callable
from typing import TypeAlias

Clock: TypeAlias = Callable[[], float]


def monotonic_ms() -> float:
    return time.monotonic() * 1000
