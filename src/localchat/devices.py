"""Device name detection."""
from __future__ import annotations

import logging

import torch

from .engines.base import DeviceSpec

logger = logging.getLogger(__name__)

SUPPORTED_DEVICES = ("cuda", "metal", "cpu")


def detect_device_name(device_name: str) -> str:
    if device_name != "auto":
        return device_name
    if torch.cuda.is_available():
        return "cuda"
    if torch.backends.mps.is_available():
        return "metal"
    logger.warning("No accelerator detected, falling back to cpu")
    return "cpu"


def build_device(device_name: str, device_id: int) -> DeviceSpec:
    if device_name not in SUPPORTED_DEVICES:
        raise ValueError(f"Do not recognize device name {device_name}")
    if device_name == "cpu":
        return DeviceSpec(kind="cpu", index=0)
    return DeviceSpec(kind=device_name, index=device_id)
