"""
Content hashing for cataloged files.

The catalog stores a truncated SHA-256 hex digest (10 characters by default),
the short form model hubs use to look files up by content.
"""

from __future__ import annotations

import hashlib
from typing import BinaryIO, Optional

import catalog.config as config

READ_CHUNK_SIZE = 8192


def _truncate(digest: str, length: Optional[int]) -> str:
    return digest[: length or config.HASH_PREFIX_LENGTH]


def hash_bytes(content: bytes, length: Optional[int] = None) -> str:
    return _truncate(hashlib.sha256(content).hexdigest(), length)


def hash_stream(stream: BinaryIO, length: Optional[int] = None) -> str:
    hasher = hashlib.sha256()
    for chunk in iter(lambda: stream.read(READ_CHUNK_SIZE), b""):
        hasher.update(chunk)
    return _truncate(hasher.hexdigest(), length)


def hash_file(path, length: Optional[int] = None) -> str:
    with open(path, "rb") as handle:
        return hash_stream(handle, length)
