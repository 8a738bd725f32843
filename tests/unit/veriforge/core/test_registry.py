# SPDX-License-Identifier: MPL-2.0
"""Tests for the content-addressed certificate registry."""

import re
import sqlite3
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from veriforge.core.exceptions import DuplicateHashError, RegistryError
from veriforge.core.hashing import digest
from veriforge.core.models import CertificateDraft
from veriforge.core.registry import (
    InMemoryRegistry,
    SQLiteRegistry,
    new_certificate_id,
)

U64_MAX = 2**64 - 1


def make_draft(image: bytes = b"image", owner: str = "alice", **overrides) -> CertificateDraft:
    fields = dict(
        owner=owner,
        image_hash=digest(image),
        prompt_hash=digest(b"a red fox"),
        source_image_hash=None,
        model_id="flux-dev",
        seed=42,
        output_blob_ref="blob-1",
        timestamp_ms=1_700_000_000_000,
        enclave_identity="enclave-test",
    )
    fields.update(overrides)
    return CertificateDraft(**fields)


@pytest.fixture(params=["memory", "sqlite-memory", "sqlite-file"])
def any_registry(request, tmp_path):
    if request.param == "memory":
        return InMemoryRegistry()
    if request.param == "sqlite-memory":
        return SQLiteRegistry()
    return SQLiteRegistry(tmp_path / "registry.db")


def test_certificate_ids_are_opaque_object_ids() -> None:
    """Certificate ids are unique 0x-prefixed 32-byte hex strings."""
    ids = {new_certificate_id() for _ in range(100)}
    assert len(ids) == 100
    assert all(re.fullmatch(r"0x[0-9a-f]{64}", i) for i in ids)


class TestRegistryContract:
    """Behaviour shared by every registry backend."""

    def test_insert_and_read_back(self, any_registry) -> None:
        """Inserted certificates can be read by id and by hash."""
        draft = make_draft()
        certificate = any_registry.insert(draft.image_hash, draft)

        assert certificate.owner == "alice"
        assert any_registry.lookup_by_hash(draft.image_hash) == certificate.id
        assert any_registry.get(certificate.id) == certificate
        assert any_registry.get_by_hash(draft.image_hash) == certificate
        assert any_registry.count() == 1

    def test_missing(self, any_registry) -> None:
        """Lookups of unknown hashes and ids return None."""
        assert any_registry.lookup_by_hash(digest(b"nothing")) is None
        assert any_registry.get("0x" + "00" * 32) is None
        assert any_registry.get_by_hash(digest(b"nothing")) is None

    def test_duplicate_names_existing_certificate(self, any_registry) -> None:
        """A duplicate insert names the certificate that holds the hash."""
        first = any_registry.insert(digest(b"image"), make_draft(owner="alice"))
        with pytest.raises(DuplicateHashError) as exc_info:
            any_registry.insert(digest(b"image"), make_draft(owner="bob", seed=7))

        assert exc_info.value.existing_id == first.id
        assert any_registry.get(first.id).owner == "alice"
        assert any_registry.count() == 1

    def test_distinct_images_get_distinct_certificates(self, any_registry) -> None:
        """Different images get different certificates."""
        a = any_registry.insert(digest(b"a"), make_draft(b"a"))
        b = any_registry.insert(digest(b"b"), make_draft(b"b"))
        assert a.id != b.id
        assert any_registry.count() == 2

    def test_key_must_match_draft(self, any_registry) -> None:
        """The insert key must equal the draft's image hash."""
        with pytest.raises(RegistryError):
            any_registry.insert(digest(b"other"), make_draft())
        with pytest.raises(RegistryError):
            any_registry.insert(b"short", make_draft())
        assert any_registry.count() == 0

    def test_full_integer_range_and_source_hash(self, any_registry) -> None:
        """u64 extremes and source hashes survive storage."""
        draft = make_draft(seed=U64_MAX, timestamp_ms=U64_MAX, source_image_hash=digest(b"src"))
        certificate = any_registry.insert(draft.image_hash, draft)
        stored = any_registry.get(certificate.id)
        assert stored.seed == U64_MAX
        assert stored.timestamp_ms == U64_MAX
        assert stored.source_image_hash == digest(b"src")

    def test_concurrent_inserts_have_one_winner(self, any_registry) -> None:
        """Racing inserts of one hash produce exactly one certificate."""
        draft = make_draft()
        barrier = threading.Barrier(8)

        def attempt(i: int):
            barrier.wait()
            try:
                return any_registry.insert(draft.image_hash, make_draft(owner=f"owner-{i}"))
            except DuplicateHashError as e:
                return e

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(attempt, range(8)))

        winners = [r for r in results if not isinstance(r, DuplicateHashError)]
        losers = [r for r in results if isinstance(r, DuplicateHashError)]
        assert len(winners) == 1
        assert len(losers) == 7
        assert all(e.existing_id == winners[0].id for e in losers)
        assert any_registry.count() == 1


class TestSQLiteRegistry:
    def test_persists_across_instances(self, tmp_path) -> None:
        """Certificates survive reopening the database."""
        path = tmp_path / "registry.db"
        draft = make_draft()
        certificate = SQLiteRegistry(path).insert(draft.image_hash, draft)

        reopened = SQLiteRegistry(path)
        assert reopened.get(certificate.id) == certificate
        with pytest.raises(DuplicateHashError):
            reopened.insert(draft.image_hash, draft)

    def test_rows_are_append_only(self, tmp_path) -> None:
        """Stored certificates cannot be updated or deleted."""
        path = tmp_path / "registry.db"
        draft = make_draft()
        certificate = SQLiteRegistry(path).insert(draft.image_hash, draft)

        conn = sqlite3.connect(path)
        try:
            with pytest.raises(sqlite3.DatabaseError):
                conn.execute("UPDATE certificates SET owner = 'mallory'")
            with pytest.raises(sqlite3.DatabaseError):
                conn.execute("DELETE FROM certificates")
        finally:
            conn.close()

        assert SQLiteRegistry(path).get(certificate.id).owner == "alice"
