"""Command-line wiring for the chat session."""
from __future__ import annotations

import argparse
import logging
import sys
from typing import Callable, Sequence, TextIO

import yaml

from .config import DEFAULT_CONFIG_PATH, RootConfig, load_root_config
from .devices import build_device, detect_device_name
from .engines.base import DeviceSpec, EngineBackend
from .errors import EngineInitFailure, InvalidEncoding, ResolutionError
from .evaluate import run_evaluation
from .locator import ModelDescriptor, ModelLocator
from .metrics.instrumentation import TurnMeter
from .session import SessionController

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="localchat", description="Interactive local model chat")
    parser.add_argument("--config", default=DEFAULT_CONFIG_PATH)
    parser.add_argument("--local-id")
    parser.add_argument("--model")
    parser.add_argument("--quantization")
    parser.add_argument("--device-name")
    parser.add_argument("--device-id", type=int)
    parser.add_argument("--artifact-path")
    parser.add_argument("--stream-interval", type=int)
    parser.add_argument("--log-level")
    parser.add_argument("--evaluate", action="store_true")
    return parser.parse_args(argv)


def apply_overrides(cfg: RootConfig, args: argparse.Namespace) -> RootConfig:
    if args.local_id:
        cfg.chat.local_id = args.local_id
    if args.model:
        cfg.chat.model = args.model
    if args.quantization:
        cfg.chat.quantization = args.quantization
    if args.device_name:
        cfg.chat.device_name = args.device_name
    if args.device_id is not None:
        cfg.chat.device_id = args.device_id
    if args.artifact_path:
        cfg.chat.artifact_path = args.artifact_path
    if args.stream_interval is not None:
        cfg.chat.stream_interval = args.stream_interval
    if args.log_level:
        cfg.chat.log_level = args.log_level.upper()
    return cfg


def load_settings(args: argparse.Namespace, err: TextIO | None = None) -> RootConfig | None:
    """Read the config file and apply CLI overrides; None when the file is unusable."""
    try:
        return apply_overrides(load_root_config(args.config), args)
    except (TypeError, ValueError, yaml.YAMLError) as exc:
        (err if err is not None else sys.stderr).write(f"Invalid config {args.config}: {exc}\n")
        return None


def configure_logging(level: str, stream: TextIO | None = None) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        stream=stream if stream is not None else sys.stderr,
        force=True,
    )


def run(
    cfg: RootConfig,
    backend_factory: Callable[[DeviceSpec], EngineBackend],
    evaluate: bool = False,
    read_line: Callable[[str], str] = input,
    out: TextIO | None = None,
    err: TextIO | None = None,
) -> int:
    out = out if out is not None else sys.stdout
    err = err if err is not None else sys.stderr

    try:
        device_name = detect_device_name(cfg.chat.device_name)
        device = build_device(device_name, cfg.chat.device_id)
    except ValueError as exc:
        err.write(f"{exc}\n")
        return 1

    descriptor = ModelDescriptor(
        model=cfg.chat.model,
        quantization=cfg.chat.quantization,
        device_name=device_name,
        device_id=cfg.chat.device_id,
        artifact_path=cfg.chat.artifact_path,
        local_id=cfg.chat.local_id,
    )
    locator = ModelLocator(descriptor.artifact_path, descriptor.device_name)
    try:
        resolved = locator.resolve(descriptor.candidates())
    except ResolutionError as exc:
        err.write(f"{exc}\n")
        return 1

    meter = None
    if cfg.metrics.enabled:
        meter = TurnMeter(device.index, sample_vram=cfg.metrics.sample_vram and device.kind == "cuda")

    try:
        controller = SessionController(
            backend_factory(device),
            locator,
            resolved,
            stream_interval=cfg.chat.stream_interval,
            read_line=read_line,
            out=out,
            err=err,
            meter=meter,
        )
        out.write("Initializing the chat module...\n")
        state = controller.start()
        out.write("Finish loading\n")
        if evaluate:
            run_evaluation(state.engine, out, meter)
            return 0
        return controller.run()
    except (EngineInitFailure, InvalidEncoding, ValueError) as exc:
        logger.debug("Fatal session error", exc_info=True)
        err.write(f"{exc}\n")
        return 1
