# SPDX-License-Identifier: MPL-2.0
"""Attestation verification.

Checks, in order, that the enclave identity is trusted, that the signature
covers the canonical encoding of the payload, and that the enclave timestamp
lies inside the freshness window.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from veriforge.core.crypto import EnclaveKeyStore
from veriforge.core.encoding import decode_header
from veriforge.core.exceptions import (
    AttestationError,
    AttestationExpiredError,
    EncodingError,
    ErrorKind,
    SignatureInvalidError,
    UnknownEnclaveError,
)
from veriforge.core.models import SignedAttestation

logger = logging.getLogger(__name__)

DEFAULT_MAX_AGE_MS = 5 * 60 * 1000
DEFAULT_MAX_FUTURE_SKEW_MS = 30 * 1000


def now_ms() -> int:
    """Current wall-clock time in milliseconds since the epoch."""
    return time.time_ns() // 1_000_000


@dataclass(frozen=True)
class AttestationResult:
    """Outcome of checking one attestation."""

    accepted: bool
    reason: Optional[ErrorKind] = None
    message: str = ""

    def __bool__(self) -> bool:
        return self.accepted


_ERRORS = {
    ErrorKind.UNKNOWN_ENCLAVE: UnknownEnclaveError,
    ErrorKind.SIGNATURE_INVALID: SignatureInvalidError,
    ErrorKind.ATTESTATION_EXPIRED: AttestationExpiredError,
}


class AttestationVerifier:
    """Verifies enclave attestations against a store of trusted keys."""

    def __init__(
        self,
        key_store: EnclaveKeyStore,
        max_age_ms: int = DEFAULT_MAX_AGE_MS,
        max_future_skew_ms: int = DEFAULT_MAX_FUTURE_SKEW_MS,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        if max_age_ms < 0 or max_future_skew_ms < 0:
            raise ValueError("Freshness window bounds must be non-negative")
        self.key_store = key_store
        self.max_age_ms = max_age_ms
        self.max_future_skew_ms = max_future_skew_ms
        self._clock = clock

    def verify(
        self, attestation: SignedAttestation, current_ms: Optional[int] = None
    ) -> AttestationResult:
        """Check an attestation without raising."""
        try:
            key = self.key_store.get(attestation.enclave_identity)
        except UnknownEnclaveError as e:
            return self._reject(ErrorKind.UNKNOWN_ENCLAVE, e.message)

        try:
            message = attestation.canonical_bytes()
            decode_header(message)
        except EncodingError as e:
            return self._reject(ErrorKind.SIGNATURE_INVALID, f"Payload not encodable: {e.message}")

        if not key.verify(message, attestation.signature):
            return self._reject(
                ErrorKind.SIGNATURE_INVALID,
                f"Signature does not match payload for enclave {attestation.enclave_identity!r}",
            )

        current = self._clock() if current_ms is None else current_ms
        timestamp = attestation.payload.timestamp_ms
        if timestamp < current - self.max_age_ms:
            return self._reject(
                ErrorKind.ATTESTATION_EXPIRED,
                f"Attestation is {current - timestamp} ms old (limit {self.max_age_ms} ms)",
            )
        if timestamp > current + self.max_future_skew_ms:
            return self._reject(
                ErrorKind.ATTESTATION_EXPIRED,
                f"Attestation is {timestamp - current} ms in the future "
                f"(limit {self.max_future_skew_ms} ms)",
            )

        return AttestationResult(accepted=True)

    def require(
        self, attestation: SignedAttestation, current_ms: Optional[int] = None
    ) -> None:
        """Check an attestation, raising the matching :class:`AttestationError`."""
        result = self.verify(attestation, current_ms)
        if not result.accepted:
            error_cls = _ERRORS.get(result.reason, AttestationError)  # type: ignore[arg-type]
            raise error_cls(result.message, {"enclave_identity": attestation.enclave_identity})

    @staticmethod
    def _reject(reason: ErrorKind, message: str) -> AttestationResult:
        logger.warning(f"Attestation rejected ({reason.value}): {message}")
        return AttestationResult(accepted=False, reason=reason, message=message)
