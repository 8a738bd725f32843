# SPDX-License-Identifier: MPL-2.0
"""Canonical binary encoding of generation payloads.

This is the one module that defines the bytes an enclave signs. The enclave,
the registry and every client must produce exactly the same sequence, so the
layout is fixed, versioned and length-prefixed::

    magic            4 bytes   b"VFCP"
    schema version   1 byte
    intent scope     1 byte
    image_hash       32 bytes
    prompt_hash      32 bytes
    source flag      1 byte    0 = absent, 1 = present
    source hash      32 bytes  zero-filled when absent
    model_id         u32 length + UTF-8 bytes
    seed             u64
    output_blob_ref  u32 length + UTF-8 bytes
    timestamp_ms     u64

All integers are big-endian. Strings are encoded as given, with no Unicode
normalisation.
"""

from __future__ import annotations

import struct
from typing import TYPE_CHECKING, Optional, Tuple

from veriforge.core.exceptions import EncodingError
from veriforge.core.hashing import DIGEST_SIZE

if TYPE_CHECKING:
    from veriforge.core.models import GenerationPayload

MAGIC = b"VFCP"
SCHEMA_VERSION = 1
SUPPORTED_VERSIONS = frozenset({SCHEMA_VERSION})

# Intent scopes, as used by the enclave when wrapping signed messages.
INTENT_PROCESS_DATA = 0

MAX_FIELD_LENGTH = 4096
ABSENT_DIGEST = b"\x00" * DIGEST_SIZE

HEADER_SIZE = len(MAGIC) + 2
_U64_MAX = 2**64 - 1


def _digest_field(name: str, value: Optional[bytes]) -> bytes:
    if not isinstance(value, (bytes, bytearray)):
        raise EncodingError(f"{name} must be bytes", {"field": name})
    if len(value) != DIGEST_SIZE:
        raise EncodingError(
            f"{name} must be {DIGEST_SIZE} bytes, got {len(value)}",
            {"field": name, "length": len(value)},
        )
    return bytes(value)


def _u64(name: str, value: int) -> bytes:
    if isinstance(value, bool) or not isinstance(value, int):
        raise EncodingError(f"{name} must be an integer", {"field": name})
    if not 0 <= value <= _U64_MAX:
        raise EncodingError(f"{name} out of u64 range: {value}", {"field": name})
    return struct.pack(">Q", value)


def _string(name: str, value: str) -> bytes:
    if not isinstance(value, str):
        raise EncodingError(f"{name} must be a string", {"field": name})
    try:
        raw = value.encode("utf-8")
    except UnicodeEncodeError as e:
        raise EncodingError(f"{name} is not valid UTF-8: {e}", {"field": name}) from e
    if len(raw) > MAX_FIELD_LENGTH:
        raise EncodingError(
            f"{name} exceeds {MAX_FIELD_LENGTH} bytes",
            {"field": name, "length": len(raw)},
        )
    return struct.pack(">I", len(raw)) + raw


def encode_fields(
    image_hash: bytes,
    prompt_hash: bytes,
    source_image_hash: Optional[bytes],
    model_id: str,
    seed: int,
    output_blob_ref: str,
    timestamp_ms: int,
    *,
    version: int = SCHEMA_VERSION,
    intent: int = INTENT_PROCESS_DATA,
) -> bytes:
    """Encode explicit payload fields, in signing order, to canonical bytes.

    Raises:
        EncodingError: If any field is malformed or out of range.
    """
    if version not in SUPPORTED_VERSIONS:
        raise EncodingError(f"Unsupported schema version: {version}")
    if not 0 <= intent <= 0xFF:
        raise EncodingError(f"Intent scope out of range: {intent}")

    if source_image_hash is None:
        source = b"\x00" + ABSENT_DIGEST
    else:
        source = b"\x01" + _digest_field("source_image_hash", source_image_hash)

    return b"".join(
        (
            MAGIC,
            bytes((version, intent)),
            _digest_field("image_hash", image_hash),
            _digest_field("prompt_hash", prompt_hash),
            source,
            _string("model_id", model_id),
            _u64("seed", seed),
            _string("output_blob_ref", output_blob_ref),
            _u64("timestamp_ms", timestamp_ms),
        )
    )


def encode_payload(payload: "GenerationPayload", *, intent: int = INTENT_PROCESS_DATA) -> bytes:
    """Encode a :class:`~veriforge.core.models.GenerationPayload`."""
    return encode_fields(
        payload.image_hash,
        payload.prompt_hash,
        payload.source_image_hash,
        payload.model_id,
        payload.seed,
        payload.output_blob_ref,
        payload.timestamp_ms,
        intent=intent,
    )


def decode_header(data: bytes) -> Tuple[int, int]:
    """Return ``(schema_version, intent)`` from canonical bytes.

    Raises:
        EncodingError: If the magic is wrong or the version is unsupported.
    """
    if len(data) < HEADER_SIZE or data[: len(MAGIC)] != MAGIC:
        raise EncodingError("Not a canonical payload encoding")
    version, intent = data[len(MAGIC)], data[len(MAGIC) + 1]
    if version not in SUPPORTED_VERSIONS:
        raise EncodingError(f"Unsupported schema version: {version}", {"version": version})
    return version, intent


def encoded_length(model_id: str, output_blob_ref: str) -> int:
    """Length of an encoding; depends only on the two string fields."""
    return (
        HEADER_SIZE
        + 2 * DIGEST_SIZE
        + 1
        + DIGEST_SIZE
        + 4
        + len(model_id.encode("utf-8"))
        + 8
        + 4
        + len(output_blob_ref.encode("utf-8"))
        + 8
    )


__all__ = [
    "ABSENT_DIGEST",
    "INTENT_PROCESS_DATA",
    "MAGIC",
    "MAX_FIELD_LENGTH",
    "SCHEMA_VERSION",
    "decode_header",
    "encode_fields",
    "encode_payload",
    "encoded_length",
]
