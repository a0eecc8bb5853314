"""localchat entrypoint."""
from __future__ import annotations

import sys
from typing import Sequence

from .cli import configure_logging, load_settings, parse_args, run
from .config import RootConfig
from .engines.airllm_engine import AirLLMBackend
from .engines.base import DeviceSpec, GenerationSpec


def _backend_factory(cfg: RootConfig):
    gen = cfg.generation_defaults

    def _build(device: DeviceSpec) -> AirLLMBackend:
        return AirLLMBackend(
            device=device,
            generation=GenerationSpec(
                max_new_tokens=gen.max_new_tokens,
                temperature=gen.temperature,
                top_p=gen.top_p,
                do_sample=gen.do_sample,
                max_context=gen.max_context,
            ),
            layer_cache_dir=cfg.engine.layer_cache_dir,
        )

    return _build


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    cfg = load_settings(args)
    if cfg is None:
        return 1
    configure_logging(cfg.chat.log_level)
    return run(cfg, _backend_factory(cfg), evaluate=args.evaluate)


if __name__ == "__main__":
    sys.exit(main())
