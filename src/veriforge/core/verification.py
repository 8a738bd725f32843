# SPDX-License-Identifier: MPL-2.0
"""
Verification Module for provenance certificates

Two independent, read-only flows:

* verify-by-ID fetches a certificate, downloads the referenced image, hashes it
  and compares the digest with the registered one. A mismatch is a normal
  ``TAMPERED`` result, never an exception.
* verify-by-image hashes candidate bytes and looks the digest up in the
  registry. Registry membership already implies the attestation was checked
  at mint time, so signatures are not re-verified here.
"""

import hmac
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Optional

from veriforge.core.exceptions import ErrorKind
from veriforge.core.hashing import digest, digest_text
from veriforge.core.models import Certificate
from veriforge.core.registry import CertificateRegistry

if TYPE_CHECKING:
    from veriforge.services.blobstore import BlobStore

logger = logging.getLogger(__name__)


class VerificationOutcome(str, Enum):
    """Result of checking a certificate's image."""

    AUTHENTIC = "authentic"
    TAMPERED = "tampered"
    NOT_FOUND = "not_found"


class PromptCheck(str, Enum):
    """Result of checking a caller-supplied prompt guess."""

    MATCHES = "prompt_matches"
    MISMATCH = "prompt_mismatch"
    NOT_CHECKED = "prompt_not_checked"


def certificate_summary(certificate: Certificate) -> Dict[str, Any]:
    """Public view of a certificate. It holds only the prompt digest."""
    return certificate.model_dump(mode="json")


@dataclass
class CertificateVerification:
    """Result of a verify-by-ID operation."""

    certificate_id: str
    outcome: VerificationOutcome
    prompt_check: PromptCheck = PromptCheck.NOT_CHECKED
    certificate: Optional[Certificate] = None
    computed_hash: Optional[bytes] = None

    @property
    def authentic(self) -> bool:
        return self.outcome is VerificationOutcome.AUTHENTIC

    @property
    def reason(self) -> Optional[ErrorKind]:
        if self.outcome is VerificationOutcome.TAMPERED:
            return ErrorKind.HASH_MISMATCH
        if self.outcome is VerificationOutcome.NOT_FOUND:
            return ErrorKind.CERTIFICATE_NOT_FOUND
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Convert the result to a dictionary."""
        return {
            "certificate_id": self.certificate_id,
            "outcome": self.outcome.value,
            "prompt_check": self.prompt_check.value,
            "reason": self.reason.value if self.reason else None,
            "computed_hash": self.computed_hash.hex() if self.computed_hash else None,
            "certificate": certificate_summary(self.certificate) if self.certificate else None,
        }

    def to_json(self, indent: int = 2) -> str:
        """Convert the result to a JSON string."""
        return json.dumps(self.to_dict(), indent=indent)


@dataclass
class ImageVerification:
    """Result of a verify-by-image operation."""

    image_hash: bytes
    certificate: Optional[Certificate] = None

    @property
    def certified(self) -> bool:
        return self.certificate is not None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "certified": self.certified,
            "image_hash": self.image_hash.hex(),
            "certificate": None,
        }
        if self.certificate is not None:
            data["certificate"] = certificate_summary(self.certificate)
        return data

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)


def check_prompt(certificate: Certificate, prompt: Optional[str]) -> PromptCheck:
    """Compare the digest of a prompt guess with the certified prompt digest."""
    if prompt is None:
        return PromptCheck.NOT_CHECKED
    if hmac.compare_digest(digest_text(prompt), certificate.prompt_hash):
        return PromptCheck.MATCHES
    return PromptCheck.MISMATCH


class VerificationEngine:
    """
    Read-only verification against a registry and a blob store.

    The engine never sees prompt text other than a caller's guess, and never
    returns it.
    """

    def __init__(self, registry: CertificateRegistry, blob_store: "BlobStore"):
        """Initialize the engine.

        Args:
            registry: The certificate registry to read from
            blob_store: Store used to fetch certified image bytes
        """
        self.registry = registry
        self.blob_store = blob_store

    def verify_by_id(
        self, certificate_id: str, prompt: Optional[str] = None
    ) -> CertificateVerification:
        """Recompute a certificate's image hash and compare it.

        Args:
            certificate_id: The certificate to check
            prompt: Optional prompt guess to check against the prompt digest

        Returns:
            A CertificateVerification with the outcome

        Raises:
            StorageUnavailableError: If the image cannot be fetched
        """
        certificate = self.registry.get(certificate_id)
        if certificate is None:
            logger.info(f"Certificate {certificate_id} not found")
            return CertificateVerification(certificate_id, VerificationOutcome.NOT_FOUND)

        data = self.blob_store.get(certificate.output_blob_ref)
        computed = digest(data)
        if hmac.compare_digest(computed, certificate.image_hash):
            outcome = VerificationOutcome.AUTHENTIC
        else:
            outcome = VerificationOutcome.TAMPERED
            logger.warning(
                f"Hash mismatch for certificate {certificate_id}: "
                f"registered {certificate.image_hash.hex()}, computed {computed.hex()}"
            )

        return CertificateVerification(
            certificate_id=certificate_id,
            outcome=outcome,
            prompt_check=check_prompt(certificate, prompt),
            certificate=certificate,
            computed_hash=computed,
        )

    def verify_by_image(self, data: bytes) -> ImageVerification:
        """Resolve the certificate, if any, for exactly these image bytes."""
        image_hash = digest(data)
        return ImageVerification(
            image_hash=image_hash,
            certificate=self.registry.get_by_hash(image_hash),
        )
