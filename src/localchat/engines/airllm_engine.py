"""AirLLM-backed step-decoding chat engine."""
from __future__ import annotations

import json
import logging
import os
import time
from pathlib import Path
from typing import Any

import torch
from airllm import AutoModel
from safetensors import safe_open

from .base import DeviceSpec, GenerationSpec
from ..locator import CHAT_CONFIG_NAME, JSON_SUFFIX
from ..prompts import GENERIC_TEMPLATE, build_padding_message, get_template, render_prompt

logger = logging.getLogger(__name__)

EVAL_PREFILL_TOKENS = 128
EVAL_DECODE_TOKENS = 32


def _ensure_safetensors_index(model_path: str) -> None:
    index_path = Path(model_path) / "model.safetensors.index.json"
    if index_path.exists():
        return
    st_path = Path(model_path) / "model.safetensors"
    if not st_path.exists():
        return
    weight_map: dict[str, str] = {}
    with safe_open(str(st_path), framework="pt") as f:
        for key in f.keys():
            weight_map[key] = st_path.name
    data = {
        "metadata": {"total_size": os.path.getsize(st_path)},
        "weight_map": weight_map,
    }
    with open(index_path, "w", encoding="utf-8") as handle:
        json.dump(data, handle)


def compression_for(local_id: str) -> str | None:
    """Map the quantization preset in a local id onto an AirLLM compression."""
    preset = local_id.rsplit("-", 1)[-1]
    if preset.startswith("q4") or preset.startswith("q3"):
        return "4bit"
    if preset.startswith("q8"):
        return "8bit"
    return None


def _read_chat_config(model_path: str) -> dict[str, Any]:
    path = Path(model_path) / f"{CHAT_CONFIG_NAME}{JSON_SUFFIX}"
    with open(path, "r", encoding="utf-8") as handle:
        raw = json.load(handle)
    return raw if isinstance(raw, dict) else {}


def _local_id_from_path(model_path: str) -> str:
    # <root>/<id>/params or <root>/prebuilt/<id>
    path = Path(model_path)
    if path.name == "params":
        return path.parent.name
    return path.name


def _sample_next(logits: torch.Tensor, gen: GenerationSpec) -> int:
    if not gen.do_sample or gen.temperature <= 0:
        return int(torch.argmax(logits, dim=-1).item())
    probs = torch.softmax(logits.float() / gen.temperature, dim=-1)
    if 0.0 < gen.top_p < 1.0:
        sorted_probs, sorted_idx = torch.sort(probs, descending=True)
        cumulative = torch.cumsum(sorted_probs, dim=-1)
        sorted_probs[cumulative - sorted_probs > gen.top_p] = 0.0
        sorted_probs = sorted_probs / sorted_probs.sum()
        choice = torch.multinomial(sorted_probs, num_samples=1)
        return int(sorted_idx[choice].item())
    return int(torch.multinomial(probs, num_samples=1).item())


class AirLLMChatEngine:
    def __init__(self, device: DeviceSpec, generation: GenerationSpec, layer_cache_dir: str) -> None:
        self._device = device
        self._defaults = generation
        self._layer_cache_dir = layer_cache_dir
        self._model: Any | None = None
        self._tokenizer: Any | None = None
        self._template = GENERIC_TEMPLATE
        self._explicit_template = False
        self._gen = generation
        self._library: Any = None
        self._history: list[tuple[str, str]] = []
        self._pending_user: str | None = None
        self._prompt_ids: torch.Tensor | None = None
        self._generated: list[int] = []
        self._stopped = True
        self._prefill_tokens = 0
        self._prefill_time_s = 0.0
        self._decode_tokens = 0
        self._decode_time_s = 0.0

    def reload(self, library: Any, model_path: str) -> None:
        chat_config = _read_chat_config(model_path)
        template = get_template(chat_config.get("conv_template"))
        local_id = str(chat_config.get("local_id") or _local_id_from_path(model_path))

        if os.path.isdir(model_path):
            _ensure_safetensors_index(model_path)
        cache_dir = self._layer_cache_dir
        if cache_dir:
            cache_dir = os.path.join(cache_dir, local_id)
            os.makedirs(cache_dir, exist_ok=True)

        model = AutoModel.from_pretrained(
            model_path,
            layer_shards_saving_path=cache_dir,
            compression=compression_for(local_id),
            device=self._device.torch_device,
        )
        tokenizer = getattr(model, "tokenizer", None)
        if tokenizer is None:
            raise RuntimeError("Model tokenizer not available")

        self._model = model
        self._tokenizer = tokenizer
        self._library = library
        self._template = template or GENERIC_TEMPLATE
        self._explicit_template = template is not None
        self._gen = GenerationSpec(
            max_new_tokens=int(chat_config.get("max_gen_len", self._defaults.max_new_tokens)),
            temperature=float(chat_config.get("temperature", self._defaults.temperature)),
            top_p=float(chat_config.get("top_p", self._defaults.top_p)),
            do_sample=self._defaults.do_sample,
            max_context=self._defaults.max_context,
        )
        logger.info("Loaded %s (template %s) with library %s", local_id, self._template.name, library)
        self.reset_chat()

    def unload(self) -> None:
        self._model = None
        self._tokenizer = None
        self._library = None
        self.reset_chat()
        if torch.cuda.is_available():
            torch.cuda.empty_cache()

    def reset_chat(self) -> None:
        self._history = []
        self._pending_user = None
        self._prompt_ids = None
        self._generated = []
        self._stopped = True

    def is_stopped(self) -> bool:
        return self._stopped

    def encode_turn(self, text: str) -> None:
        if self._model is None or self._tokenizer is None:
            raise RuntimeError("Engine not loaded")
        template = self._template if self._explicit_template else None
        prompt = render_prompt(self._tokenizer, template, self._history, text)
        inputs = self._tokenizer(
            prompt,
            return_tensors="pt",
            truncation=True,
            max_length=self._gen.max_context,
        )
        self._prompt_ids = inputs["input_ids"].to(self._device.torch_device)
        self._pending_user = text
        self._generated = []
        self._stopped = False

    def decode_step(self) -> None:
        if self._stopped or self._prompt_ids is None:
            return
        ids = self._prompt_ids
        if self._generated:
            tail = torch.tensor([self._generated], dtype=ids.dtype, device=ids.device)
            ids = torch.cat([ids, tail], dim=-1)

        start = time.perf_counter()
        with torch.no_grad():
            output = self._model(input_ids=ids, use_cache=False)
        logits = output.logits[0, -1, :]
        next_id = _sample_next(logits, self._gen)
        elapsed = time.perf_counter() - start

        if not self._generated:
            self._prefill_tokens += int(self._prompt_ids.shape[-1])
            self._prefill_time_s += elapsed
        else:
            self._decode_tokens += 1
            self._decode_time_s += elapsed

        if next_id == self._tokenizer.eos_token_id:
            self._finish_turn()
            return
        self._generated.append(next_id)
        if len(self._generated) >= self._gen.max_new_tokens:
            self._finish_turn()

    def _finish_turn(self) -> None:
        self._stopped = True
        if self._pending_user is not None:
            self._history.append((self._pending_user, self.current_message()))
            self._pending_user = None

    def current_message(self) -> str:
        if self._tokenizer is None or not self._generated:
            return ""
        return self._tokenizer.decode(self._generated, skip_special_tokens=True)

    def runtime_stats_text(self) -> str:
        prefill = self._prefill_tokens / self._prefill_time_s if self._prefill_time_s > 0 else 0.0
        decode = self._decode_tokens / self._decode_time_s if self._decode_time_s > 0 else 0.0
        return f"prefill: {prefill:.1f} tok/s, decode: {decode:.1f} tok/s"

    def get_role0(self) -> str:
        return self._template.role0

    def get_role1(self) -> str:
        return self._template.role1

    def evaluate(self) -> None:
        if self._tokenizer is None:
            raise RuntimeError("Engine not loaded")
        self.reset_chat()
        self._prefill_tokens = self._decode_tokens = 0
        self._prefill_time_s = self._decode_time_s = 0.0
        self.encode_turn(build_padding_message(self._tokenizer, EVAL_PREFILL_TOKENS))
        for _ in range(EVAL_DECODE_TOKENS):
            if self._stopped:
                break
            self.decode_step()
        logger.info("Evaluation: %s", self.runtime_stats_text())
        self.reset_chat()


class AirLLMBackend:
    """Creates AirLLM engines for one device.

    AirLLM runs layers eagerly through torch, so the compiled model library
    is only checked for presence and passed through to the engine.
    """

    def __init__(self, device: DeviceSpec, generation: GenerationSpec, layer_cache_dir: str) -> None:
        self.device = device
        self.generation = generation
        self.layer_cache_dir = layer_cache_dir

    def load_library(self, path: Path) -> Path:
        if not Path(path).is_file():
            raise FileNotFoundError(f"Model library not found: {path}")
        return Path(path)

    def create_engine(self) -> AirLLMChatEngine:
        return AirLLMChatEngine(self.device, self.generation, self.layer_cache_dir)
