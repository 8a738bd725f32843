# SPDX-License-Identifier: MPL-2.0
"""Tests for verify-by-ID and verify-by-image."""

import json

import pytest

from veriforge.core.exceptions import ErrorKind, StorageUnavailableError
from veriforge.core.hashing import digest
from veriforge.core.models import GenerationRequest
from veriforge.core.orchestrator import MintOrchestrator
from veriforge.core.verification import (
    PromptCheck,
    VerificationEngine,
    VerificationOutcome,
    check_prompt,
)
from veriforge.services.blobstore import InMemoryBlobStore


@pytest.fixture
def engine(registry, blob_store) -> VerificationEngine:
    return VerificationEngine(registry, blob_store)


@pytest.fixture
def minted(backend, verifier, registry):
    outcome = MintOrchestrator(backend, verifier, registry).mint(
        GenerationRequest(prompt="a red fox", seed=42), owner="alice"
    )
    return outcome.certificate


class TestVerifyById:
    def test_authentic(self, engine, minted) -> None:
        """An untouched image verifies as authentic."""
        result = engine.verify_by_id(minted.id)
        assert result.outcome is VerificationOutcome.AUTHENTIC
        assert result.authentic
        assert result.reason is None
        assert result.computed_hash == minted.image_hash
        assert result.prompt_check is PromptCheck.NOT_CHECKED

    def test_tampered_blob(self, engine, minted, blob_store) -> None:
        """Replaced blob bytes are reported as a hash mismatch."""
        blob_store.overwrite(minted.output_blob_ref, b"something else entirely")
        result = engine.verify_by_id(minted.id)
        assert result.outcome is VerificationOutcome.TAMPERED
        assert result.reason is ErrorKind.HASH_MISMATCH
        assert result.computed_hash == digest(b"something else entirely")

    def test_not_found(self, engine) -> None:
        """Unknown ids are reported as not found."""
        result = engine.verify_by_id("0x" + "ab" * 32)
        assert result.outcome is VerificationOutcome.NOT_FOUND
        assert result.reason is ErrorKind.CERTIFICATE_NOT_FOUND
        assert result.certificate is None

    def test_missing_blob_raises(self, registry, minted) -> None:
        """An unreachable blob is a storage failure, not tampering."""
        with pytest.raises(StorageUnavailableError):
            VerificationEngine(registry, InMemoryBlobStore()).verify_by_id(minted.id)

    def test_prompt_guess(self, engine, minted) -> None:
        """Prompt guesses are compared against the prompt hash."""
        assert engine.verify_by_id(minted.id, "a red fox").prompt_check is PromptCheck.MATCHES
        assert engine.verify_by_id(minted.id, "a blue fox").prompt_check is PromptCheck.MISMATCH

    def test_result_never_contains_prompt(self, engine, minted) -> None:
        """Verification results never echo the prompt."""
        text = engine.verify_by_id(minted.id, "a red fox").to_json()
        data = json.loads(text)
        assert "a red fox" not in text
        assert data["outcome"] == "authentic"
        assert data["prompt_check"] == "prompt_matches"
        assert data["certificate"]["prompt_hash"] == minted.prompt_hash.hex()


class TestVerifyByImage:
    def test_certified(self, engine, minted, blob_store) -> None:
        """Exact image bytes resolve to their certificate."""
        image = blob_store.get(minted.output_blob_ref)
        result = engine.verify_by_image(image)
        assert result.certified
        assert result.certificate == minted
        assert result.image_hash == minted.image_hash

    def test_single_byte_change_is_not_certified(self, engine, minted, blob_store) -> None:
        """Changing one byte loses the certificate."""
        image = bytearray(blob_store.get(minted.output_blob_ref))
        image[-1] ^= 0xFF
        result = engine.verify_by_image(bytes(image))
        assert not result.certified
        assert result.to_dict()["certificate"] is None

    def test_empty_registry(self, engine) -> None:
        """Nothing is certified in an empty registry."""
        assert not engine.verify_by_image(b"anything").certified

    def test_does_not_require_blob_store(self, registry, minted, blob_store) -> None:
        """Image lookup works without reading the blob store."""
        image = blob_store.get(minted.output_blob_ref)
        engine = VerificationEngine(registry, blob_store=None)  # type: ignore[arg-type]
        assert engine.verify_by_image(image).certified


def test_check_prompt(minted) -> None:
    """check_prompt reports not checked, match and mismatch."""
    assert check_prompt(minted, None) is PromptCheck.NOT_CHECKED
    assert check_prompt(minted, "a red fox") is PromptCheck.MATCHES
    assert check_prompt(minted, "a red fox ") is PromptCheck.MISMATCH
