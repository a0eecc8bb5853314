"""RAM peak sampler over process RSS."""
from __future__ import annotations

import psutil


class RamMonitor:
    def __init__(self) -> None:
        self._proc = psutil.Process()
        self._peak = 0

    def reset(self) -> None:
        self._peak = 0

    def sample(self) -> None:
        rss = self._proc.memory_info().rss
        if rss > self._peak:
            self._peak = rss

    @property
    def peak_mb(self) -> float:
        return self._peak / (1024 * 1024)
