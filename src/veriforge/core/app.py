# SPDX-License-Identifier: MPL-2.0
"""
Service wiring for the provenance certificate protocol.

This module builds the registry, blob store, enclave backend, attestation
verifier, mint orchestrator and verification engine from :class:`Settings`.
The HTTP API and the CLI both start from :func:`build_services`.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from veriforge.core.attestation import AttestationVerifier
from veriforge.core.config import Settings
from veriforge.core.crypto import EnclaveKeyStore, EnclaveSigner
from veriforge.core.exceptions import ConfigurationError
from veriforge.core.models import DEFAULT_MODEL_ID
from veriforge.core.orchestrator import MintOrchestrator
from veriforge.core.registry import CertificateRegistry, SQLiteRegistry
from veriforge.core.verification import VerificationEngine
from veriforge.services.blobstore import BlobStore, HttpBlobStore, InMemoryBlobStore
from veriforge.services.enclave import (
    GenerationBackend,
    HttpGenerationBackend,
    LocalEnclaveBackend,
)

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Everything a front end needs to mint and verify certificates."""

    registry: CertificateRegistry
    blob_store: BlobStore
    key_store: EnclaveKeyStore
    backend: GenerationBackend
    orchestrator: MintOrchestrator
    engine: VerificationEngine
    default_model_id: str

    @classmethod
    def assemble(
        cls,
        registry: CertificateRegistry,
        blob_store: BlobStore,
        key_store: EnclaveKeyStore,
        backend: GenerationBackend,
        verifier: Optional[AttestationVerifier] = None,
        default_model_id: Optional[str] = None,
    ) -> "Services":
        """Wire already-built collaborators together."""
        verifier = verifier or AttestationVerifier(key_store)
        return cls(
            registry=registry,
            blob_store=blob_store,
            key_store=key_store,
            backend=backend,
            orchestrator=MintOrchestrator(backend, verifier, registry),
            engine=VerificationEngine(registry, blob_store),
            default_model_id=default_model_id or DEFAULT_MODEL_ID,
        )


def build_blob_store(settings: Settings) -> BlobStore:
    if not settings.BLOB_PUBLISHER_URL:
        logger.warning("No blob publisher configured; blobs are kept in memory")
        return InMemoryBlobStore()
    return HttpBlobStore(
        publisher_url=settings.BLOB_PUBLISHER_URL,
        aggregator_url=settings.BLOB_AGGREGATOR_URL or settings.BLOB_PUBLISHER_URL,
        epochs=settings.BLOB_EPOCHS,
        timeout=settings.REQUEST_TIMEOUT,
    )


def local_signer(settings: Settings) -> EnclaveSigner:
    """Signer for the in-process enclave."""
    if not settings.LOCAL_ENCLAVE_SEED:
        return EnclaveSigner.generate()
    try:
        return EnclaveSigner.from_seed(bytes.fromhex(settings.LOCAL_ENCLAVE_SEED))
    except ValueError as e:
        raise ConfigurationError(f"Invalid LOCAL_ENCLAVE_SEED: {e}") from e


def build_services(settings: Settings) -> Services:
    """Build the default service graph described by ``settings``.

    Raises:
        ConfigurationError: If enclave keys or seeds are malformed
    """
    registry = SQLiteRegistry(settings.DATABASE_PATH)
    blob_store = build_blob_store(settings)
    key_store = EnclaveKeyStore.from_mapping(settings.ENCLAVE_KEYS, settings.REVOKED_ENCLAVES)

    backend: GenerationBackend
    if settings.ENCLAVE_URL:
        # A single configured enclave may omit its identity from responses.
        identities = list(settings.ENCLAVE_KEYS)
        backend = HttpGenerationBackend(
            settings.ENCLAVE_URL,
            enclave_identity=identities[0] if len(identities) == 1 else None,
            timeout=settings.REQUEST_TIMEOUT,
        )
    else:
        signer = local_signer(settings)
        key_store.register(signer.identity, signer)
        logger.info(f"Running local enclave {signer.identity}")
        backend = LocalEnclaveBackend(signer, blob_store)

    verifier = AttestationVerifier(
        key_store,
        max_age_ms=settings.ATTESTATION_MAX_AGE_MS,
        max_future_skew_ms=settings.ATTESTATION_MAX_FUTURE_SKEW_MS,
    )
    return Services.assemble(
        registry=registry,
        blob_store=blob_store,
        key_store=key_store,
        backend=backend,
        verifier=verifier,
        default_model_id=settings.DEFAULT_MODEL_ID,
    )
