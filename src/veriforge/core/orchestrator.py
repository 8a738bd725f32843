# SPDX-License-Identifier: MPL-2.0
"""
Mint orchestration.

One mint attempt walks ``IDLE -> GENERATING -> ATTESTING -> MINTING`` and ends
in ``MINTED``, ``DUPLICATE_DETECTED`` or ``FAILED``. Nothing is retried here:
attestation failures cannot be fixed by retrying, and collaborator failures are
reported as retryable so the caller can decide. The registry insert is the
commit point; a run abandoned before it leaves no trace.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, List, Optional

from veriforge.core.attestation import AttestationVerifier
from veriforge.core.exceptions import (
    DuplicateHashError,
    ErrorKind,
    RegistryError,
    VeriforgeError,
)
from veriforge.core.models import Certificate, CertificateDraft, GenerationRequest, SignedAttestation
from veriforge.core.registry import CertificateRegistry

if TYPE_CHECKING:
    from veriforge.services.enclave import GenerationBackend

logger = logging.getLogger(__name__)


class MintState(str, Enum):
    """States of a single mint attempt."""

    IDLE = "idle"
    GENERATING = "generating"
    ATTESTING = "attesting"
    MINTING = "minting"
    MINTED = "minted"
    DUPLICATE_DETECTED = "duplicate_detected"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (MintState.MINTED, MintState.DUPLICATE_DETECTED, MintState.FAILED)


@dataclass
class MintOutcome:
    """The terminal result of a mint attempt."""

    state: MintState
    certificate: Optional[Certificate] = None
    reason: Optional[ErrorKind] = None
    message: str = ""
    history: List[MintState] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        """True when the content now has exactly one certificate."""
        return self.state in (MintState.MINTED, MintState.DUPLICATE_DETECTED)

    @property
    def retryable(self) -> bool:
        return self.reason is not None and self.reason.retryable

    def to_dict(self) -> dict:
        return {
            "state": self.state.value,
            "certificate": self.certificate.model_dump(mode="json") if self.certificate else None,
            "reason": self.reason.value if self.reason else None,
            "message": self.message,
            "retryable": self.retryable,
            "history": [s.value for s in self.history],
        }


class _Run:
    """Per-attempt state; never shared between attempts."""

    def __init__(self, owner: str) -> None:
        self.owner = owner
        self.history: List[MintState] = [MintState.IDLE]

    @property
    def state(self) -> MintState:
        return self.history[-1]

    def advance(self, state: MintState) -> None:
        logger.debug(f"Mint for {self.owner}: {self.state.value} -> {state.value}")
        self.history.append(state)

    def finish(
        self,
        state: MintState,
        certificate: Optional[Certificate] = None,
        reason: Optional[ErrorKind] = None,
        message: str = "",
    ) -> MintOutcome:
        self.advance(state)
        return MintOutcome(
            state=state,
            certificate=certificate,
            reason=reason,
            message=message,
            history=list(self.history),
        )

    def fail(self, reason: ErrorKind, message: str) -> MintOutcome:
        logger.warning(f"Mint failed in {self.state.value} ({reason.value}): {message}")
        return self.finish(MintState.FAILED, reason=reason, message=message)


class MintOrchestrator:
    """Combines a generation backend, the attestation verifier and the registry."""

    def __init__(
        self,
        backend: "GenerationBackend",
        verifier: AttestationVerifier,
        registry: CertificateRegistry,
    ) -> None:
        self.backend = backend
        self.verifier = verifier
        self.registry = registry

    def mint(self, request: GenerationRequest, owner: str) -> MintOutcome:
        """Generate, attest and register content for ``owner``."""
        if not owner:
            raise ValueError("owner is required")

        run = _Run(owner)
        run.advance(MintState.GENERATING)
        try:
            attestation = self.backend.generate(request)
        except VeriforgeError as e:
            return run.fail(e.kind or ErrorKind.BACKEND_UNAVAILABLE, e.message)

        return self._attest_and_register(run, attestation)

    def mint_attestation(self, attestation: SignedAttestation, owner: str) -> MintOutcome:
        """Register an attestation the caller already obtained from an enclave."""
        if not owner:
            raise ValueError("owner is required")
        return self._attest_and_register(_Run(owner), attestation)

    def _attest_and_register(self, run: _Run, attestation: SignedAttestation) -> MintOutcome:
        run.advance(MintState.ATTESTING)
        result = self.verifier.verify(attestation)
        if not result.accepted:
            return run.fail(result.reason or ErrorKind.SIGNATURE_INVALID, result.message)

        run.advance(MintState.MINTING)
        draft = CertificateDraft.from_attestation(attestation, run.owner)
        try:
            certificate = self.registry.insert(draft.image_hash, draft)
        except DuplicateHashError as e:
            existing = self.registry.get(e.existing_id)
            if existing is None:
                return run.fail(
                    ErrorKind.STORAGE_UNAVAILABLE,
                    f"Registry reported duplicate {e.existing_id} but could not return it",
                )
            logger.warning(
                f"Content {draft.image_hash.hex()} already certified as {existing.id}"
            )
            return run.finish(
                MintState.DUPLICATE_DETECTED,
                certificate=existing,
                reason=ErrorKind.DUPLICATE_HASH,
                message=f"Content is already certified as {existing.id}",
            )
        except RegistryError as e:
            return run.fail(ErrorKind.STORAGE_UNAVAILABLE, e.message)

        logger.info(f"Minted certificate {certificate.id} for {run.owner}")
        return run.finish(MintState.MINTED, certificate=certificate)
