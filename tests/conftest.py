"""Shared fakes and artifact-tree builders for the localchat tests."""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Iterable, List, Optional

import pytest


class FakeEngine:
    """Scripted engine: each turn replays ``outputs`` one decode step at a time."""

    def __init__(
        self,
        outputs: Optional[List[str]] = None,
        roles: tuple[str, str] = ("USER", "ASSISTANT"),
        fail_reload: bool = False,
    ) -> None:
        self.outputs = outputs if outputs is not None else ["Hi"]
        self.roles = roles
        self.fail_reload = fail_reload
        self.loaded: Optional[tuple[object, str]] = None
        self.unloaded = False
        self.resets = 0
        self.turns: List[str] = []
        self.evaluated = False
        self.message_calls = 0
        self._turn: List[str] = []
        self._pos = 0

    def reload(self, library: object, model_path: str) -> None:
        if self.fail_reload:
            raise RuntimeError("weights are corrupt")
        self.loaded = (library, model_path)

    def unload(self) -> None:
        self.unloaded = True

    def reset_chat(self) -> None:
        self.resets += 1

    def is_stopped(self) -> bool:
        return self._pos >= len(self._turn)

    def encode_turn(self, text: str) -> None:
        self.turns.append(text)
        self._turn = list(self.outputs)
        self._pos = 0

    def decode_step(self) -> None:
        self._pos += 1

    def current_message(self) -> str:
        self.message_calls += 1
        return self._turn[self._pos - 1] if self._pos else ""

    def runtime_stats_text(self) -> str:
        return "prefill: 12.5 tok/s, decode: 3.0 tok/s"

    def get_role0(self) -> str:
        return self.roles[0]

    def get_role1(self) -> str:
        return self.roles[1]

    def evaluate(self) -> None:
        self.evaluated = True


class FakeBackend:
    def __init__(self, engines: Iterable[FakeEngine]) -> None:
        self._pending = list(engines)
        self.created: List[FakeEngine] = []
        self.libraries: List[Path] = []

    def load_library(self, path: Path) -> str:
        self.libraries.append(Path(path))
        return f"lib:{Path(path).name}"

    def create_engine(self) -> FakeEngine:
        engine = self._pending.pop(0) if self._pending else FakeEngine()
        self.created.append(engine)
        return engine


def feed(lines: Iterable[str], prompts: Optional[List[str]] = None) -> Callable[[str], str]:
    remaining = iter(lines)

    def _read(prompt: str) -> str:
        if prompts is not None:
            prompts.append(prompt)
        try:
            return next(remaining)
        except StopIteration:
            raise EOFError from None

    return _read


def make_model(
    root: Path,
    local_id: str,
    device: str = "cpu",
    lib_suffix: str = ".so",
    with_lib: bool = True,
    with_params: bool = True,
) -> Path:
    """Create ``<root>/<id>/params`` with config, params index and library."""

    params = root / local_id / "params"
    params.mkdir(parents=True, exist_ok=True)
    (params / "mlc-chat-config.json").write_text('{"conv_template": "vicuna_v1.1"}', encoding="utf-8")
    if with_params:
        (params / "ndarray-cache.json").write_text("{}", encoding="utf-8")
    if with_lib:
        lib_dir = root / local_id / "lib"
        lib_dir.mkdir(parents=True, exist_ok=True)
        (lib_dir / f"{local_id}-{device}{lib_suffix}").write_bytes(b"\x7fELF")
    return params


@pytest.fixture
def artifact_root(tmp_path: Path) -> Path:
    root = tmp_path / "dist"
    root.mkdir()
    return root
