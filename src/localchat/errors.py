"""Error types raised by the chat session."""
from __future__ import annotations

from pathlib import Path
from typing import Sequence


class LocalChatError(Exception):
    """Base class for localchat failures."""


class ResolutionError(LocalChatError):
    def __init__(self, message: str, search_roots: Sequence[Path | str] = ()) -> None:
        super().__init__(message)
        self.search_roots = [str(root) for root in search_roots]


class ModelNotFound(ResolutionError):
    pass


class LibraryNotFound(ResolutionError):
    pass


class ParamsNotFound(ResolutionError):
    pass


class InvalidEncoding(LocalChatError):
    def __init__(self, offset: int, message: str = "Invalid UTF8 string") -> None:
        super().__init__(f"{message} (byte offset {offset})")
        self.offset = offset


class EngineInitFailure(LocalChatError):
    """The engine could not be (re)initialized; the cause is chained."""
