"""One-shot engine evaluation run."""
from __future__ import annotations

from typing import TextIO

from .engines.base import ChatEngine
from .metrics.instrumentation import TurnMeasurement, TurnMeter


def run_evaluation(engine: ChatEngine, out: TextIO, meter: TurnMeter | None = None) -> TurnMeasurement | None:
    measured = None
    if meter is not None:
        meter.start()
    engine.evaluate()
    out.write(engine.runtime_stats_text() + "\n")
    if meter is not None:
        measured = meter.stop(steps=0)
        meter.close()
        vram = f"{measured.vram_peak_mb:.2f}" if measured.vram_peak_mb is not None else "n/a"
        out.write(
            f"evaluation: {measured.elapsed_s:.2f} s, ram_peak_mb: {measured.ram_peak_mb:.2f}, "
            f"vram_peak_mb: {vram}\n"
        )
    out.flush()
    return measured
