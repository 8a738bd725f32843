# SPDX-License-Identifier: MPL-2.0
"""Core functionality for veriforge provenance certificates."""
from veriforge.core.hashing import digest, digest_file, digest_hex, digest_text
from veriforge.core.exceptions import ErrorKind, VeriforgeError
from veriforge.core.encoding import decode_header, encode_payload
from veriforge.core.models import (
    Certificate,
    CertificateDraft,
    GenerationPayload,
    GenerationRequest,
    SignedAttestation,
)
from veriforge.core.crypto import EnclaveKeyStore, EnclaveSigner
from veriforge.core.attestation import AttestationResult, AttestationVerifier
from veriforge.core.registry import CertificateRegistry, InMemoryRegistry, SQLiteRegistry
from veriforge.core.orchestrator import MintOrchestrator, MintOutcome, MintState
from veriforge.core.verification import (
    CertificateVerification,
    ImageVerification,
    PromptCheck,
    VerificationEngine,
    VerificationOutcome,
)

__all__ = [
    "digest",
    "digest_file",
    "digest_hex",
    "digest_text",
    "ErrorKind",
    "VeriforgeError",
    "decode_header",
    "encode_payload",
    "Certificate",
    "CertificateDraft",
    "GenerationPayload",
    "GenerationRequest",
    "SignedAttestation",
    "EnclaveKeyStore",
    "EnclaveSigner",
    "AttestationResult",
    "AttestationVerifier",
    "CertificateRegistry",
    "InMemoryRegistry",
    "SQLiteRegistry",
    "MintOrchestrator",
    "MintOutcome",
    "MintState",
    "CertificateVerification",
    "ImageVerification",
    "PromptCheck",
    "VerificationEngine",
    "VerificationOutcome",
]
