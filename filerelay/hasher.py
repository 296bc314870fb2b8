"""SHA-256 helpers used to verify transferred files."""

from __future__ import annotations

import hashlib
import os
from typing import Union

BytesLike = Union[bytes, bytearray, memoryview, str]

_READ_SIZE = 8192


def sha256_hex(data: BytesLike) -> str:
    """Return the lowercase hex SHA-256 digest of ``data``.

    Text is hashed as its UTF-8 encoding.
    """
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha256(data).hexdigest()


def calculate_sha256(path: Union[str, os.PathLike]) -> str:
    """Return the lowercase hex SHA-256 digest of the file at ``path``.

    An empty string is returned when the file cannot be opened, so a
    comparison against a real digest always fails.
    """
    try:
        handle = open(path, "rb")
    except OSError:
        return ""
    digest = hashlib.sha256()
    with handle:
        for chunk in iter(lambda: handle.read(_READ_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()