# SPDX-License-Identifier: MPL-2.0
"""Generation backends.

A backend turns a :class:`GenerationRequest` into a :class:`SignedAttestation`.
:class:`HttpGenerationBackend` talks to a remote enclave; :class:`LocalEnclaveBackend`
plays the enclave's role in-process with a pluggable image renderer.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional

import httpx
from pydantic import ValidationError

from veriforge.core.attestation import now_ms
from veriforge.core.crypto import EnclaveSigner
from veriforge.core.encoding import INTENT_PROCESS_DATA
from veriforge.core.exceptions import BackendUnavailableError, EncodingError
from veriforge.core.hashing import digest, digest_text
from veriforge.core.models import (
    GenerationPayload,
    GenerationRequest,
    SignedAttestation,
)
from veriforge.services.blobstore import BlobStore

logger = logging.getLogger(__name__)

DEFAULT_SEED = 42

# Enclave response field -> payload field
WIRE_ALIASES = {
    "walrus_blob_id": "output_blob_ref",
    "model": "model_id",
    "source_image_url": "source_image_ref",
}

Renderer = Callable[[GenerationRequest, int, Optional[bytes]], bytes]


class GenerationBackend(ABC):
    """Abstract generation backend."""

    @abstractmethod
    def generate(self, request: GenerationRequest) -> SignedAttestation:
        """
        Generate an image and return the enclave's attestation for it.

        Raises:
            BackendUnavailableError: If the backend fails or answers badly
            StorageUnavailableError: If the output cannot be stored
        """


def placeholder_renderer(
    request: GenerationRequest, seed: int, source: Optional[bytes]
) -> bytes:
    """Deterministic stand-in for an image model.

    Produces PNG-signature-prefixed bytes that depend only on the request,
    the seed and the source image.
    """
    material = b"|".join(
        (
            request.model_id.encode("utf-8"),
            request.prompt.encode("utf-8"),
            str(seed).encode("ascii"),
            digest(source) if source is not None else b"",
        )
    )
    return b"\x89PNG\r\n\x1a\n" + digest(material) * 8


class LocalEnclaveBackend(GenerationBackend):
    """In-process enclave: render, hash, upload, sign."""

    def __init__(
        self,
        signer: EnclaveSigner,
        blob_store: BlobStore,
        renderer: Renderer = placeholder_renderer,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.signer = signer
        self.blob_store = blob_store
        self.renderer = renderer
        self._clock = clock

    def generate(self, request: GenerationRequest) -> SignedAttestation:
        seed = DEFAULT_SEED if request.seed is None else request.seed

        source_bytes = None
        source_hash = None
        if request.source_image_ref is not None:
            # Edit mode: the source is hashed for provenance only.
            source_bytes = self.blob_store.get(request.source_image_ref)
            source_hash = digest(source_bytes)

        try:
            image = self.renderer(request, seed, source_bytes)
        except Exception as e:
            logger.error(f"Renderer failed for model {request.model_id}: {e}")
            raise BackendUnavailableError(f"Image generation failed: {e}") from e

        output_ref = self.blob_store.put(image)
        payload = GenerationPayload(
            image_hash=digest(image),
            prompt_hash=digest_text(request.prompt),
            source_image_hash=source_hash,
            source_image_ref=request.source_image_ref,
            model_id=request.model_id,
            seed=seed,
            output_blob_ref=output_ref,
            timestamp_ms=self._clock(),
            prompt=request.prompt,
        )
        try:
            attestation = self.signer.sign(payload)
        except EncodingError as e:
            logger.error(f"Enclave {self.signer.identity} cannot encode payload: {e.message}")
            raise BackendUnavailableError(f"Cannot attest output: {e.message}", e.details) from e

        logger.info(
            f"Enclave {self.signer.identity} attested {request.mode.value} output {output_ref}"
        )
        return attestation


class HttpGenerationBackend(GenerationBackend):
    """Client for a remote enclave's ``/process_data`` endpoint.

    The request body is ``{"payload": {"prompt", "seed", "source_image_url",
    "model"}}``, where ``source_image_url`` is a blob id or absolute URL.
    """

    def __init__(
        self,
        enclave_url: str,
        enclave_identity: Optional[str] = None,
        timeout: float = 120.0,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self.enclave_url = enclave_url.rstrip("/")
        self.enclave_identity = enclave_identity
        self._client = client or httpx.Client(timeout=timeout)

    def generate(self, request: GenerationRequest) -> SignedAttestation:
        body = {
            "payload": {
                "prompt": request.prompt,
                "seed": request.seed,
                "source_image_url": request.source_image_ref,
                "model": request.model_id,
            }
        }
        try:
            response = self._client.post(f"{self.enclave_url}/process_data", json=body)
        except httpx.HTTPError as e:
            logger.error(f"Enclave request failed: {e}")
            raise BackendUnavailableError(f"Enclave request failed: {e}") from e

        if not response.is_success:
            raise BackendUnavailableError(
                f"Enclave returned HTTP {response.status_code}",
                {"status_code": response.status_code, "body": response.text[:500]},
            )

        try:
            data = response.json()
        except ValueError as e:
            raise BackendUnavailableError("Enclave returned invalid JSON") from e

        return parse_enclave_response(data, request, self.enclave_identity)

    def close(self) -> None:
        self._client.close()


def parse_enclave_response(
    body: Any,
    request: GenerationRequest,
    default_identity: Optional[str] = None,
) -> SignedAttestation:
    """Build a :class:`SignedAttestation` from an enclave's JSON response.

    The response has the shape ``{"response": {"intent", "timestamp_ms",
    "data": {...}}, "signature": ..., "enclave_identity": ...}``. Byte
    vectors may be hex strings or integer arrays; an empty source hash means
    no source image. The enclave's own field names ``walrus_blob_id``,
    ``model`` and ``source_image_url`` are accepted for ``output_blob_ref``,
    ``model_id`` and ``source_image_ref``.

    Raises:
        BackendUnavailableError: If the response is malformed.
    """
    try:
        message = body["response"]
        data: Dict[str, Any] = dict(message["data"])
        timestamp_ms = message["timestamp_ms"]
        intent = message.get("intent", INTENT_PROCESS_DATA)
        signature = body["signature"]
    except (KeyError, TypeError) as e:
        raise BackendUnavailableError(f"Malformed enclave response: missing {e}") from e

    for wire_name, field_name in WIRE_ALIASES.items():
        if wire_name in data:
            data.setdefault(field_name, data.pop(wire_name))

    if intent != INTENT_PROCESS_DATA:
        raise BackendUnavailableError(f"Unexpected intent scope in enclave response: {intent}")

    identity = body.get("enclave_identity") or default_identity
    if not identity:
        raise BackendUnavailableError("Enclave response does not name an enclave identity")

    if not data.get("source_image_hash"):
        data["source_image_hash"] = None
        data["source_image_ref"] = None
    else:
        data.setdefault("source_image_ref", request.source_image_ref)
    data.setdefault("model_id", request.model_id)

    try:
        payload = GenerationPayload(**data, timestamp_ms=timestamp_ms, prompt=request.prompt)
        return SignedAttestation(payload=payload, signature=signature, enclave_identity=identity)
    except (ValidationError, ValueError, TypeError) as e:
        raise BackendUnavailableError(f"Malformed enclave response: {e}") from e


__all__ = [
    "DEFAULT_SEED",
    "GenerationBackend",
    "HttpGenerationBackend",
    "LocalEnclaveBackend",
    "parse_enclave_response",
    "placeholder_renderer",
]
