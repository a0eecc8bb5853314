"""Incremental terminal rendering of a streamed message.

The engine hands back the full accumulated message on every poll. Rather
than reprinting it, the renderer keeps the UTF-8 characters it painted last
time, finds the longest common prefix with the new message, backspaces over
the divergent tail and writes the new tail. Characters are erased and
written whole so multi-byte glyphs are never split on screen. Every
character is assumed to occupy one terminal cell.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Sequence, TextIO

from .errors import InvalidEncoding

ERASE = "\b \b"

# (mask, pattern, width) for UTF-8 lead bytes
_LEAD_PATTERNS = (
    (0x80, 0x00, 1),
    (0xE0, 0xC0, 2),
    (0xF0, 0xE0, 3),
    (0xF8, 0xF0, 4),
)


def _unit_width(data: bytes, pos: int) -> int:
    lead = data[pos]
    for mask, pattern, width in _LEAD_PATTERNS:
        if lead & mask != pattern:
            continue
        if pos + width > len(data):
            raise InvalidEncoding(pos, "Truncated UTF8 sequence")
        for offset in range(1, width):
            if data[pos + offset] & 0xC0 != 0x80:
                raise InvalidEncoding(pos + offset, "Malformed UTF8 continuation byte")
        return width
    raise InvalidEncoding(pos, "Invalid UTF8 lead byte")


def split_units(data: bytes | str) -> list[bytes]:
    """Split UTF-8 text into whole characters.

    Raises InvalidEncoding on the first byte that does not start a valid
    one to four byte sequence, or on a missing or malformed continuation.
    """
    if isinstance(data, str):
        try:
            data = data.encode("utf-8")
        except UnicodeEncodeError as exc:
            raise InvalidEncoding(exc.start, "Unencodable character") from exc
    units: list[bytes] = []
    pos = 0
    while pos < len(data):
        width = _unit_width(data, pos)
        units.append(data[pos : pos + width])
        pos += width
    return units


def common_prefix_length(previous: Sequence[bytes], current: Sequence[bytes]) -> int:
    limit = min(len(previous), len(current))
    for i in range(limit):
        if previous[i] != current[i]:
            return i
    return limit


@dataclass
class EditScript:
    erase: int = 0
    append: list[bytes] = field(default_factory=list)

    @property
    def appended_text(self) -> str:
        # Overlong and surrogate forms pass the lead-byte check but would not
        # paint as one cell each.
        data = b"".join(self.append)
        try:
            return data.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise InvalidEncoding(exc.start, "Undecodable UTF8 sequence") from exc

    def to_text(self) -> str:
        return ERASE * self.erase + self.appended_text

    def is_empty(self) -> bool:
        return self.erase == 0 and not self.append


def diff_units(previous: Sequence[bytes], current: Sequence[bytes]) -> EditScript:
    keep = common_prefix_length(previous, current)
    return EditScript(erase=len(previous) - keep, append=list(current[keep:]))


class TextDiffRenderer:
    def __init__(self, stream: TextIO) -> None:
        self._stream = stream
        self._painted: list[bytes] = []

    @property
    def painted(self) -> list[bytes]:
        return list(self._painted)

    def reset(self) -> None:
        self._painted = []

    def render(self, message: bytes | str) -> EditScript:
        units = split_units(message)
        script = diff_units(self._painted, units)
        text = script.to_text()
        if not script.is_empty():
            self._stream.write(text)
            self._stream.flush()
        self._painted = units
        return script
