"""Engine protocol and dataclasses."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal, Protocol


@dataclass
class DeviceSpec:
    kind: Literal["cuda", "metal", "cpu"]
    index: int = 0

    @property
    def torch_device(self) -> str:
        if self.kind == "cuda":
            return f"cuda:{self.index}"
        if self.kind == "metal":
            return "mps"
        return "cpu"


@dataclass
class GenerationSpec:
    max_new_tokens: int
    temperature: float
    top_p: float
    do_sample: bool
    max_context: int


class ChatEngine(Protocol):
    """Step-driven chat engine bound to one loaded model.

    A turn is submitted with ``encode_turn`` and advanced one token at a time
    with ``decode_step`` until ``is_stopped`` reports completion.
    ``current_message`` returns everything generated for the turn so far.
    """

    def reload(self, library: Any, model_path: str) -> None:
        ...

    def unload(self) -> None:
        ...

    def reset_chat(self) -> None:
        ...

    def is_stopped(self) -> bool:
        ...

    def encode_turn(self, text: str) -> None:
        ...

    def decode_step(self) -> None:
        ...

    def current_message(self) -> str:
        ...

    def runtime_stats_text(self) -> str:
        ...

    def get_role0(self) -> str:
        ...

    def get_role1(self) -> str:
        ...

    def evaluate(self) -> None:
        ...


class EngineBackend(Protocol):
    def load_library(self, path: Path) -> Any:
        ...

    def create_engine(self) -> ChatEngine:
        ...
