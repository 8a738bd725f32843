# SPDX-License-Identifier: MPL-2.0
"""Content digests shared by the enclave, the registry and verifiers.

All hashing in the protocol goes through :func:`digest`. Inputs are hashed
byte-for-byte; text is encoded as UTF-8 without any Unicode normalisation, so
two prompts that only differ in composition produce different digests.
"""

from __future__ import annotations

import hashlib
from pathlib import Path
from typing import Any, Union

HASH_ALGORITHM = "sha256"
DIGEST_SIZE = 32
CHUNK_SIZE = 8192


def digest(data: bytes) -> bytes:
    """Return the 32-byte SHA-256 digest of ``data``."""
    if not isinstance(data, (bytes, bytearray, memoryview)):
        raise TypeError(f"digest() expects bytes, got {type(data).__name__}")
    return hashlib.sha256(data).digest()


def digest_hex(data: bytes) -> str:
    """Return the digest of ``data`` as 64 lowercase hex characters."""
    return digest(data).hex()


def digest_text(text: str) -> bytes:
    """Digest the exact UTF-8 bytes of ``text``."""
    return digest(text.encode("utf-8"))


def digest_file(path: Union[str, Path]) -> bytes:
    """Digest a file in chunks.

    Args:
        path: Path to the file to hash.

    Returns:
        The 32-byte digest of the file contents.

    Raises:
        FileNotFoundError: If the file does not exist.
    """
    sha256 = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
            sha256.update(chunk)
    return sha256.digest()


def ensure_digest(value: Any) -> bytes:
    """Coerce ``value`` to a raw 32-byte digest.

    Accepts raw bytes, a 64-character hex string (optionally ``0x``-prefixed)
    or a list of integers, which is how the enclave serialises byte vectors.

    Raises:
        ValueError: If ``value`` does not describe exactly 32 bytes.
    """
    if isinstance(value, (bytes, bytearray, memoryview)):
        raw = bytes(value)
    elif isinstance(value, str):
        text = value[2:] if value.startswith(("0x", "0X")) else value
        try:
            raw = bytes.fromhex(text)
        except ValueError as e:
            raise ValueError(f"Invalid hex digest: {value!r}") from e
    elif isinstance(value, (list, tuple)):
        if not all(isinstance(b, int) and 0 <= b <= 255 for b in value):
            raise ValueError("Byte list must contain integers in range 0-255")
        raw = bytes(value)
    else:
        raise ValueError(f"Unsupported digest type: {type(value).__name__}")

    if len(raw) != DIGEST_SIZE:
        raise ValueError(f"Digest must be {DIGEST_SIZE} bytes, got {len(raw)}")
    return raw
