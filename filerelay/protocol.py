"""Wire format and small text helpers shared by the file relay server and clients."""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import ClassVar

FILENAME_SIZE = 128
HASH_HEX_SIZE = 64
PROGRESS_BAR_WIDTH = 50

_HEADER_STRUCT = struct.Struct(f"<{FILENAME_SIZE}sQ{HASH_HEX_SIZE}s")


@dataclass(frozen=True)
class FileSegmentHeader:
    """Fixed-size header sent before each file in a multi-file download."""

    filename: str
    file_size: int
    hash_hex: str

    SIZE: ClassVar[int] = _HEADER_STRUCT.size

    def pack(self) -> bytes:
        """Encode the header; text fields are truncated and null padded."""
        try:
            return _HEADER_STRUCT.pack(
                self.filename.encode("utf-8"),
                self.file_size,
                self.hash_hex.encode("utf-8"),
            )
        except struct.error as exc:
            raise ValueError(f"cannot encode header: {exc}") from exc

    @classmethod
    def unpack(cls, data: bytes) -> "FileSegmentHeader":
        """Decode a header from the first ``SIZE`` bytes of ``data``."""
        if len(data) < cls.SIZE:
            raise ValueError(
                f"incomplete header: got {len(data)} bytes, need {cls.SIZE}"
            )
        raw_name, size, raw_hash = _HEADER_STRUCT.unpack_from(data)
        return cls(
            filename=_c_string(raw_name),
            file_size=size,
            hash_hex=_c_string(raw_hash),
        )


def _c_string(raw: bytes) -> str:
    return raw.split(b"\0", 1)[0].decode("utf-8", errors="replace")


def parse_query_parameter(url: str, key: str) -> str:
    """Return the raw value of ``key`` in the query part of ``url``, or ""."""
    _, sep, query = url.partition("?")
    if not sep or not query:
        return ""
    for pair in query.split("&"):
        name, eq, value = pair.partition("=")
        if eq and name == key:
            return value
    return ""


def base_name(path: str) -> str:
    """Return the part of ``path`` after the last slash or backslash."""
    cut = max(path.rfind("/"), path.rfind("\\"))
    return path[cut + 1:] if cut >= 0 else path


def progress_bar(prefix: str, done: int, total: int) -> str:
    """Render a text progress bar for ``done`` out of ``total`` bytes."""
    if total <= 0:
        raise ValueError("total must be positive")
    progress = done / total
    filled = min(int(PROGRESS_BAR_WIDTH * progress), PROGRESS_BAR_WIDTH)
    filled = max(filled, 0)
    bar = "█" * filled + " " * (PROGRESS_BAR_WIDTH - filled)
    return f"{prefix} Progress: [{bar}] {progress * 100.0:.2f}%"


def byte_dump(data: bytes) -> str:
    """Render bytes as space-separated two-digit hex values."""
    return "".join(f"{byte:02x} " for byte in data)