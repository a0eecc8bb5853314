"""Chat session state."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .engines.base import ChatEngine
from .locator import ResolvedModel


@dataclass(frozen=True)
class SessionState:
    role0: str
    role1: str
    engine: ChatEngine
    library: Any
    model: ResolvedModel

    @property
    def current_model_path(self) -> str:
        return str(self.model.model_resource_dir)
