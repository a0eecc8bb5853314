"""Per-turn measurement of decode steps and memory peaks."""
from __future__ import annotations

import time
from dataclasses import dataclass

from .ram_monitor import RamMonitor
from .vram_monitor import VramMonitor


@dataclass
class TurnMeasurement:
    steps: int
    elapsed_s: float
    steps_per_s: float
    ram_peak_mb: float
    vram_peak_mb: float | None

    def summary(self) -> str:
        vram = f"{self.vram_peak_mb:.2f}" if self.vram_peak_mb is not None else "n/a"
        return (
            f"last turn: {self.steps} steps in {self.elapsed_s:.2f} s "
            f"({self.steps_per_s:.1f} steps/s), ram_peak_mb: {self.ram_peak_mb:.2f}, "
            f"vram_peak_mb: {vram}"
        )


class TurnMeter:
    """Collects timing and memory peaks on the caller's thread.

    ``sample`` is cheap enough to call once per render poll.
    """

    def __init__(self, gpu_index: int | None = 0, sample_vram: bool = True) -> None:
        self._ram = RamMonitor()
        self._vram = VramMonitor(gpu_index, enabled=sample_vram)
        self._start: float | None = None

    def start(self) -> None:
        self._ram.reset()
        self._vram.start()
        self._start = time.perf_counter()
        self.sample()

    def sample(self) -> None:
        self._ram.sample()
        self._vram.sample()

    def stop(self, steps: int) -> TurnMeasurement:
        if self._start is None:
            raise RuntimeError("TurnMeter.stop() called before start()")
        self.sample()
        elapsed = time.perf_counter() - self._start
        self._start = None
        return TurnMeasurement(
            steps=steps,
            elapsed_s=elapsed,
            steps_per_s=steps / elapsed if elapsed > 0 else 0.0,
            ram_peak_mb=self._ram.peak_mb,
            vram_peak_mb=self._vram.peak_mb,
        )

    def close(self) -> None:
        self._vram.close()
