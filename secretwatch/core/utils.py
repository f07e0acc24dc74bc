from __future__ import annotations

import bisect
from pathlib import Path
from typing import List, Optional

import chardet  # type: ignore

BINARY_BYTES = bytes(range(0, 32)) + b"\x7f"


def is_likely_binary(
    data: bytes, control_threshold: float = 0.30, high_bit_threshold: float = 0.60
) -> bool:
    if not data:
        return False
    total = len(data)
    if 0 in data:
        return True
    control = sum(1 for b in data if b in BINARY_BYTES and b not in (9, 10, 13))
    if (control / total) > control_threshold:
        return True
    high = sum(1 for b in data if b >= 0x80)
    if (high / total) > high_bit_threshold:
        # UTF-8 heavy scripts (minified i18n bundles) are still text
        try:
            data.decode("utf-8", errors="strict")
        except UnicodeDecodeError:
            return True
    return False


def decode_script_bytes(data: bytes, declared_encoding: Optional[str] = None) -> str:
    """Decode a script body: declared charset, then chardet, then UTF-8, then lossy UTF-8.

    A body cut mid-character (size-capped downloads) drops the partial tail
    instead of failing the candidate.
    """
    candidates: List[str] = []
    if declared_encoding:
        candidates.append(declared_encoding)
    detected = chardet.detect(data[:65536]).get("encoding") if data else None
    if detected:
        candidates.append(detected)
    candidates.append("utf-8")
    for candidate in candidates:
        try:
            return data.decode(candidate, errors="strict")
        except LookupError:
            continue
        except UnicodeDecodeError as exc:
            if exc.reason != "unexpected end of data":
                continue
            try:
                return data[: exc.start].decode(candidate, errors="strict")
            except UnicodeDecodeError:
                continue
    return data.decode("utf-8", errors="replace")


def read_text_safely(path: Path, max_bytes: int = 20_000_000) -> Optional[str]:
    try:
        with path.open("rb") as f:
            head = f.read(min(4096, max_bytes))
            if is_likely_binary(head):
                return None
            rest = f.read(max(0, max_bytes - len(head)))
            data = head + rest
    except OSError:
        return None
    if is_likely_binary(data):
        return None
    return decode_script_bytes(data)


class LineIndex:
    """Offset -> 1-based line number lookups over one text."""

    def __init__(self, text: str) -> None:
        self._starts = [0]
        pos = text.find("\n")
        while pos != -1:
            self._starts.append(pos + 1)
            pos = text.find("\n", pos + 1)

    def line_of(self, offset: int) -> int:
        return bisect.bisect_right(self._starts, offset)
