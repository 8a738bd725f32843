# SPDX-License-Identifier: MPL-2.0
"""Data models for provenance certificates."""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Optional

from pydantic import (
    AfterValidator,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    PlainSerializer,
    model_validator,
)

from veriforge.core.encoding import MAX_FIELD_LENGTH, encode_payload
from veriforge.core.hashing import ensure_digest

U64_MAX = 2**64 - 1

DEFAULT_MODEL_ID = "flux-dev"

Digest = Annotated[
    bytes,
    BeforeValidator(ensure_digest),
    PlainSerializer(lambda v: v.hex(), return_type=str, when_used="json"),
]


def _coerce_signature(value: object) -> object:
    if isinstance(value, str):
        return bytes.fromhex(value[2:] if value.startswith("0x") else value)
    if isinstance(value, list):
        return bytes(value)
    return value


SignatureBytes = Annotated[
    bytes,
    BeforeValidator(_coerce_signature),
    PlainSerializer(lambda v: v.hex(), return_type=str, when_used="json"),
]

U64 = Annotated[int, Field(ge=0, le=U64_MAX, strict=True)]


def _within_field_length(value: str) -> str:
    size = len(value.encode("utf-8"))
    if size > MAX_FIELD_LENGTH:
        raise ValueError(f"must be at most {MAX_FIELD_LENGTH} UTF-8 bytes, got {size}")
    return value


# A string that fits one length-prefixed field of the canonical encoding.
FieldText = Annotated[str, Field(min_length=1), AfterValidator(_within_field_length)]


class GenerationMode(str, Enum):
    """Kind of generation request."""

    GENERATE = "generate"
    EDIT = "edit"


class GenerationRequest(BaseModel):
    """What a caller asks the generation backend for."""

    model_config = ConfigDict(frozen=True)

    prompt: str = Field(min_length=1)
    seed: Optional[U64] = None
    source_image_ref: Optional[FieldText] = None
    model_id: FieldText = DEFAULT_MODEL_ID

    @property
    def mode(self) -> GenerationMode:
        return GenerationMode.EDIT if self.source_image_ref else GenerationMode.GENERATE


class GenerationPayload(BaseModel):
    """The fields an enclave attests to for one generated image.

    The prompt text may travel with the payload on the client side but is
    never serialised, encoded or stored; only ``prompt_hash`` is.
    """

    model_config = ConfigDict(frozen=True)

    image_hash: Digest
    prompt_hash: Digest
    source_image_hash: Optional[Digest] = None
    source_image_ref: Optional[str] = None
    model_id: str = Field(min_length=1)
    seed: U64
    output_blob_ref: str = Field(min_length=1)
    timestamp_ms: U64
    prompt: Optional[str] = Field(default=None, exclude=True, repr=False)

    @model_validator(mode="after")
    def _source_fields_together(self) -> "GenerationPayload":
        if (self.source_image_ref is None) != (self.source_image_hash is None):
            raise ValueError(
                "source_image_hash must be present if and only if source_image_ref is present"
            )
        return self


class SignedAttestation(BaseModel):
    """A payload together with the enclave signature over its canonical bytes."""

    model_config = ConfigDict(frozen=True)

    payload: GenerationPayload
    signature: SignatureBytes
    enclave_identity: str = Field(min_length=1)

    def canonical_bytes(self) -> bytes:
        """Re-derive the exact bytes the enclave signed."""
        return encode_payload(self.payload)


class CertificateDraft(BaseModel):
    """A certificate before the registry has assigned it an identifier."""

    model_config = ConfigDict(frozen=True)

    owner: str = Field(min_length=1)
    image_hash: Digest
    prompt_hash: Digest
    source_image_hash: Optional[Digest] = None
    model_id: str
    seed: U64
    output_blob_ref: str
    timestamp_ms: U64
    enclave_identity: str

    @classmethod
    def from_attestation(cls, attestation: SignedAttestation, owner: str) -> "CertificateDraft":
        payload = attestation.payload
        return cls(
            owner=owner,
            image_hash=payload.image_hash,
            prompt_hash=payload.prompt_hash,
            source_image_hash=payload.source_image_hash,
            model_id=payload.model_id,
            seed=payload.seed,
            output_blob_ref=payload.output_blob_ref,
            timestamp_ms=payload.timestamp_ms,
            enclave_identity=attestation.enclave_identity,
        )


class Certificate(CertificateDraft):
    """An immutable, registered provenance certificate."""

    id: str  # noqa: A003

    @classmethod
    def from_draft(cls, certificate_id: str, draft: CertificateDraft) -> "Certificate":
        return cls(id=certificate_id, **draft.model_dump())


__all__ = [
    "DEFAULT_MODEL_ID",
    "Certificate",
    "CertificateDraft",
    "Digest",
    "FieldText",
    "GenerationMode",
    "GenerationPayload",
    "GenerationRequest",
    "SignedAttestation",
    "U64_MAX",
]
