"""Configuration loading and dataclasses."""
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any

import yaml

DEFAULT_CONFIG_PATH = "configs/localchat.yaml"


@dataclass
class ChatConfig:
    artifact_path: str = "dist"
    model: str = "vicuna-v1-7b"
    local_id: str = ""
    quantization: str = "auto"
    device_name: str = "auto"
    device_id: int = 0
    stream_interval: int = 2
    log_level: str = "INFO"


@dataclass
class GenerationDefaults:
    max_new_tokens: int = 256
    temperature: float = 0.7
    top_p: float = 0.95
    do_sample: bool = True
    max_context: int = 2048


@dataclass
class EngineConfig:
    layer_cache_dir: str = "./cache/airllm_layers"


@dataclass
class MetricsConfig:
    enabled: bool = True
    sample_vram: bool = True


@dataclass
class RootConfig:
    chat: ChatConfig
    generation_defaults: GenerationDefaults
    engine: EngineConfig
    metrics: MetricsConfig


def _get(data: dict[str, Any], key: str, default: Any) -> Any:
    return data.get(key, default) if isinstance(data, dict) else default


def default_config() -> RootConfig:
    return RootConfig(
        chat=ChatConfig(),
        generation_defaults=GenerationDefaults(),
        engine=EngineConfig(),
        metrics=MetricsConfig(),
    )


def load_config(path: str) -> RootConfig:
    with open(path, "r", encoding="utf-8") as handle:
        raw = yaml.safe_load(handle) or {}

    chat_raw = _get(raw, "chat", {})
    gen_raw = _get(raw, "generation_defaults", {})
    engine_raw = _get(raw, "engine", {})
    metrics_raw = _get(raw, "metrics", {})

    chat = ChatConfig(
        artifact_path=str(_get(chat_raw, "artifact_path", ChatConfig.artifact_path)),
        model=str(_get(chat_raw, "model", ChatConfig.model)),
        local_id=str(_get(chat_raw, "local_id", ChatConfig.local_id) or ""),
        quantization=str(_get(chat_raw, "quantization", ChatConfig.quantization)),
        device_name=str(_get(chat_raw, "device_name", ChatConfig.device_name)),
        device_id=int(_get(chat_raw, "device_id", ChatConfig.device_id)),
        stream_interval=int(_get(chat_raw, "stream_interval", ChatConfig.stream_interval)),
        log_level=str(_get(chat_raw, "log_level", ChatConfig.log_level)).upper(),
    )

    gen = GenerationDefaults(
        max_new_tokens=int(_get(gen_raw, "max_new_tokens", GenerationDefaults.max_new_tokens)),
        temperature=float(_get(gen_raw, "temperature", GenerationDefaults.temperature)),
        top_p=float(_get(gen_raw, "top_p", GenerationDefaults.top_p)),
        do_sample=bool(_get(gen_raw, "do_sample", GenerationDefaults.do_sample)),
        max_context=int(_get(gen_raw, "max_context", GenerationDefaults.max_context)),
    )

    engine = EngineConfig(
        layer_cache_dir=str(_get(engine_raw, "layer_cache_dir", EngineConfig.layer_cache_dir)),
    )

    metrics = MetricsConfig(
        enabled=bool(_get(metrics_raw, "enabled", MetricsConfig.enabled)),
        sample_vram=bool(_get(metrics_raw, "sample_vram", MetricsConfig.sample_vram)),
    )

    return RootConfig(chat=chat, generation_defaults=gen, engine=engine, metrics=metrics)


def load_root_config(path: str | None) -> RootConfig:
    if not path or not os.path.exists(path):
        return default_config()
    return load_config(path)
