# SPDX-License-Identifier: MPL-2.0
"""Shared fixtures for the veriforge test suite."""

from typing import Callable, Optional

import pytest

from veriforge.core.app import Services
from veriforge.core.attestation import AttestationVerifier, now_ms
from veriforge.core.crypto import EnclaveKeyStore, EnclaveSigner
from veriforge.core.hashing import digest, digest_text
from veriforge.core.models import GenerationPayload
from veriforge.core.registry import InMemoryRegistry
from veriforge.services.blobstore import InMemoryBlobStore
from veriforge.services.enclave import LocalEnclaveBackend

ENCLAVE_SEED = bytes(range(32))


@pytest.fixture
def signer() -> EnclaveSigner:
    return EnclaveSigner.from_seed(ENCLAVE_SEED, identity="enclave-test")


@pytest.fixture
def key_store(signer: EnclaveSigner) -> EnclaveKeyStore:
    store = EnclaveKeyStore()
    store.register(signer.identity, signer)
    return store


@pytest.fixture
def verifier(key_store: EnclaveKeyStore) -> AttestationVerifier:
    return AttestationVerifier(key_store)


@pytest.fixture
def blob_store() -> InMemoryBlobStore:
    return InMemoryBlobStore()


@pytest.fixture
def registry() -> InMemoryRegistry:
    return InMemoryRegistry()


@pytest.fixture
def backend(signer: EnclaveSigner, blob_store: InMemoryBlobStore) -> LocalEnclaveBackend:
    return LocalEnclaveBackend(signer, blob_store)


@pytest.fixture
def services(
    registry: InMemoryRegistry,
    blob_store: InMemoryBlobStore,
    key_store: EnclaveKeyStore,
    backend: LocalEnclaveBackend,
    verifier: AttestationVerifier,
) -> Services:
    return Services.assemble(
        registry=registry,
        blob_store=blob_store,
        key_store=key_store,
        backend=backend,
        verifier=verifier,
    )


@pytest.fixture
def make_payload() -> Callable[..., GenerationPayload]:
    """Factory for payloads describing arbitrary image bytes."""

    def _make(
        image: bytes = b"image-bytes",
        prompt: str = "a red fox",
        seed: int = 42,
        model_id: str = "flux-dev",
        output_blob_ref: str = "blob-1",
        timestamp_ms: Optional[int] = None,
        source: Optional[bytes] = None,
    ) -> GenerationPayload:
        return GenerationPayload(
            image_hash=digest(image),
            prompt_hash=digest_text(prompt),
            source_image_hash=digest(source) if source is not None else None,
            source_image_ref="source-blob" if source is not None else None,
            model_id=model_id,
            seed=seed,
            output_blob_ref=output_blob_ref,
            timestamp_ms=now_ms() if timestamp_ms is None else timestamp_ms,
        )

    return _make
