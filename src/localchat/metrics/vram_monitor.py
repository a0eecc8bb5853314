"""VRAM peak sampler using NVML."""
from __future__ import annotations

import logging

import pynvml  # provided by nvidia-ml-py

logger = logging.getLogger(__name__)


class VramMonitor:
    """Samples used device memory; disabled when NVML cannot be initialized."""

    def __init__(self, gpu_index: int | None, enabled: bool = True) -> None:
        self._gpu_index = gpu_index if gpu_index is not None else 0
        self._peak = 0
        self._handle = None
        self._enabled = enabled

    @property
    def enabled(self) -> bool:
        return self._enabled

    def start(self) -> None:
        self._peak = 0
        if not self._enabled or self._handle is not None:
            return
        try:
            pynvml.nvmlInit()
            self._handle = pynvml.nvmlDeviceGetHandleByIndex(self._gpu_index)
        except pynvml.NVMLError as exc:
            logger.debug("VRAM sampling disabled: %s", exc)
            self._enabled = False

    def sample(self) -> None:
        if not self._enabled or self._handle is None:
            return
        try:
            used = pynvml.nvmlDeviceGetMemoryInfo(self._handle).used
        except pynvml.NVMLError as exc:
            logger.debug("VRAM sample failed: %s", exc)
            return
        if used > self._peak:
            self._peak = used

    def close(self) -> None:
        if self._handle is None:
            return
        self._handle = None
        pynvml.nvmlShutdown()

    @property
    def peak_mb(self) -> float | None:
        if not self._enabled:
            return None
        return self._peak / (1024 * 1024)
