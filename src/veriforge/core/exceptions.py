# SPDX-License-Identifier: MPL-2.0
"""Custom exceptions for the provenance certificate protocol.

Every failure that can reach a caller of the protocol carries an
:class:`ErrorKind`, so the HTTP layer and the mint orchestrator can report the
specific rejection instead of a generic error.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(str, Enum):
    """Protocol-level failure kinds."""

    UNKNOWN_ENCLAVE = "UnknownEnclave"
    SIGNATURE_INVALID = "SignatureInvalid"
    ATTESTATION_EXPIRED = "AttestationExpired"
    DUPLICATE_HASH = "DuplicateHash"
    BACKEND_UNAVAILABLE = "BackendUnavailable"
    STORAGE_UNAVAILABLE = "StorageUnavailable"
    CERTIFICATE_NOT_FOUND = "CertificateNotFound"
    HASH_MISMATCH = "HashMismatch"

    @property
    def retryable(self) -> bool:
        """Whether a caller may reasonably retry after this failure."""
        return self in (ErrorKind.BACKEND_UNAVAILABLE, ErrorKind.STORAGE_UNAVAILABLE)


class VeriforgeError(Exception):
    """Base exception for all veriforge errors."""

    kind: Optional[ErrorKind] = None

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        """Initialize the exception.

        Args:
            message: Error message
            details: Optional dictionary with additional error details
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value if self.kind else type(self).__name__,
            "message": self.message,
            "details": self.details,
        }


class EncodingError(VeriforgeError):
    """Raised when a payload cannot be canonically encoded."""

    pass


class ConfigurationError(VeriforgeError):
    """Raised when configuration is invalid or missing."""

    pass


class AttestationError(VeriforgeError):
    """Base exception for attestation rejections."""

    pass


class UnknownEnclaveError(AttestationError):
    """Raised when the enclave identity is not registered or has been revoked."""

    kind = ErrorKind.UNKNOWN_ENCLAVE


class SignatureInvalidError(AttestationError):
    """Raised when the enclave signature does not match the canonical bytes."""

    kind = ErrorKind.SIGNATURE_INVALID


class AttestationExpiredError(AttestationError):
    """Raised when the attestation timestamp is outside the freshness window."""

    kind = ErrorKind.ATTESTATION_EXPIRED


class RegistryError(VeriforgeError):
    """Base exception for certificate registry errors."""

    pass


class DuplicateHashError(RegistryError):
    """Raised when a certificate already exists for an image hash."""

    kind = ErrorKind.DUPLICATE_HASH

    def __init__(
        self,
        message: str,
        existing_id: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Initialize the duplicate exception.

        Args:
            message: Error message
            existing_id: Identifier of the certificate that already holds the hash
            details: Optional dictionary with additional error details
        """
        super().__init__(message, {"existing_id": existing_id, **(details or {})})
        self.existing_id = existing_id


class CertificateNotFoundError(RegistryError):
    """Raised when a requested certificate does not exist."""

    kind = ErrorKind.CERTIFICATE_NOT_FOUND


class CollaboratorError(VeriforgeError):
    """Base exception for failures of external collaborators."""

    pass


class BackendUnavailableError(CollaboratorError):
    """Raised when the generation backend cannot produce an attestation."""

    kind = ErrorKind.BACKEND_UNAVAILABLE


class StorageUnavailableError(CollaboratorError):
    """Raised when the blob store cannot store or return bytes."""

    kind = ErrorKind.STORAGE_UNAVAILABLE
