# SPDX-License-Identifier: MPL-2.0
"""
Content-addressed certificate registry.

The registry maps each distinct image hash to at most one certificate. Inserts
are check-then-insert operations that behave as if serialised per key: of any
number of concurrent inserts for the same hash exactly one succeeds and the
rest fail with :class:`~veriforge.core.exceptions.DuplicateHashError` naming
the winner. Certificates are append-only; nothing is ever updated or deleted.
"""

import logging
import os
import sqlite3
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, Optional, Union

from veriforge.core.exceptions import DuplicateHashError, RegistryError
from veriforge.core.hashing import DIGEST_SIZE
from veriforge.core.models import Certificate, CertificateDraft

# Type aliases
CertificateID = str
ImageHash = bytes

logger = logging.getLogger(__name__)

# Database schema version
SCHEMA_VERSION = 1

# SQL statements for schema creation
SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS metadata (
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS certificates (
        id TEXT PRIMARY KEY,
        image_hash BLOB NOT NULL,
        prompt_hash BLOB NOT NULL,
        source_image_hash BLOB,
        model_id TEXT NOT NULL,
        seed TEXT NOT NULL,
        output_blob_ref TEXT NOT NULL,
        timestamp_ms TEXT NOT NULL,
        owner TEXT NOT NULL,
        enclave_identity TEXT NOT NULL,
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
        UNIQUE(image_hash)
    )
    """,
    """
    CREATE TRIGGER IF NOT EXISTS certificates_no_update
    BEFORE UPDATE ON certificates
    BEGIN
        SELECT RAISE(ABORT, 'certificates are immutable');
    END;
    """,
    """
    CREATE TRIGGER IF NOT EXISTS certificates_no_delete
    BEFORE DELETE ON certificates
    BEGIN
        SELECT RAISE(ABORT, 'certificates are append-only');
    END;
    """,
]

_COLUMNS = (
    "id, image_hash, prompt_hash, source_image_hash, model_id, seed, "
    "output_blob_ref, timestamp_ms, owner, enclave_identity"
)


def new_certificate_id() -> CertificateID:
    """Return a fresh opaque certificate identifier."""
    return "0x" + os.urandom(32).hex()


def _check_key(image_hash: ImageHash, draft: CertificateDraft) -> None:
    if len(image_hash) != DIGEST_SIZE:
        raise RegistryError(
            f"Registry keys must be {DIGEST_SIZE} bytes, got {len(image_hash)}"
        )
    if image_hash != draft.image_hash:
        raise RegistryError(
            "Registry key does not match the certificate image hash",
            {"key": image_hash.hex(), "image_hash": draft.image_hash.hex()},
        )


class CertificateRegistry(ABC):
    """Interface every registry backend implements."""

    @abstractmethod
    def insert(self, image_hash: ImageHash, draft: CertificateDraft) -> Certificate:
        """
        Atomically register ``draft`` under ``image_hash``.

        Args:
            image_hash: The registry key; must equal ``draft.image_hash``
            draft: The certificate contents

        Returns:
            Certificate: The committed certificate with its assigned id

        Raises:
            DuplicateHashError: If a certificate already exists for the hash
            RegistryError: If the key is malformed or does not match the draft
        """

    @abstractmethod
    def lookup_by_hash(self, image_hash: ImageHash) -> Optional[CertificateID]:
        """Return the id of the certificate registered under ``image_hash``."""

    @abstractmethod
    def get(self, certificate_id: CertificateID) -> Optional[Certificate]:
        """Return the certificate with ``certificate_id``, if any."""

    @abstractmethod
    def count(self) -> int:
        """Return the number of registered certificates."""

    def get_by_hash(self, image_hash: ImageHash) -> Optional[Certificate]:
        certificate_id = self.lookup_by_hash(image_hash)
        if certificate_id is None:
            return None
        return self.get(certificate_id)


class InMemoryRegistry(CertificateRegistry):
    """Process-local registry guarded by a single writer lock."""

    def __init__(self) -> None:
        self._by_id: Dict[CertificateID, Certificate] = {}
        self._by_hash: Dict[ImageHash, CertificateID] = {}
        self._lock = threading.Lock()

    def insert(self, image_hash: ImageHash, draft: CertificateDraft) -> Certificate:
        _check_key(image_hash, draft)
        with self._lock:
            existing = self._by_hash.get(image_hash)
            if existing is not None:
                raise DuplicateHashError(
                    f"Image hash {image_hash.hex()} is already certified",
                    existing_id=existing,
                )
            certificate = Certificate.from_draft(new_certificate_id(), draft)
            # Publish the record before its index entry so a reader that finds
            # the hash can always resolve the id.
            self._by_id[certificate.id] = certificate
            self._by_hash[image_hash] = certificate.id
        logger.info(f"Registered certificate {certificate.id} for {image_hash.hex()}")
        return certificate

    def lookup_by_hash(self, image_hash: ImageHash) -> Optional[CertificateID]:
        return self._by_hash.get(bytes(image_hash))

    def get(self, certificate_id: CertificateID) -> Optional[Certificate]:
        return self._by_id.get(certificate_id)

    def count(self) -> int:
        return len(self._by_id)


class SQLiteRegistry(CertificateRegistry):
    """
    Durable registry backed by SQLite.

    Uniqueness is enforced twice: the insert runs inside a ``BEGIN IMMEDIATE``
    transaction that checks for an existing row, and the table carries a
    ``UNIQUE(image_hash)`` constraint. Each certificate is a single row, so a
    reader sees a whole certificate or none of it.

    Attributes:
        db_path: Path to the SQLite database file, or ":memory:"
    """

    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        """Initialize the registry.

        Args:
            db_path: Path to the SQLite database file, or ":memory:" for an
                in-memory database shared by all callers of this instance.
        """
        self.db_path = str(db_path)
        self._memory_conn: Optional[sqlite3.Connection] = None
        self._memory_lock = threading.RLock()
        if self.db_path == ":memory:":
            self._memory_conn = sqlite3.connect(
                ":memory:", isolation_level=None, check_same_thread=False
            )
            self._memory_conn.row_factory = sqlite3.Row
        self._init_db()

    def _init_db(self) -> None:
        """Initialize the database schema and ensure proper configuration."""
        with self._get_connection() as conn:
            if self._memory_conn is None:
                # Enable WAL mode for better concurrency
                conn.execute("PRAGMA journal_mode=WAL")
                conn.execute("PRAGMA synchronous = NORMAL")

            for stmt in SCHEMA:
                conn.execute(stmt)

            conn.execute(
                """
                INSERT INTO metadata (key, value) VALUES ('schema_version', ?)
                ON CONFLICT(key) DO UPDATE SET value=excluded.value
                WHERE CAST(value AS INTEGER) < ?
                """,
                (str(SCHEMA_VERSION), SCHEMA_VERSION),
            )

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Get a database connection in autocommit mode."""
        if self._memory_conn is not None:
            with self._memory_lock:
                yield self._memory_conn
            return

        conn = sqlite3.connect(self.db_path, isolation_level=None)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA busy_timeout = 5000")  # 5 second timeout
        try:
            yield conn
        finally:
            conn.close()

    def insert(self, image_hash: ImageHash, draft: CertificateDraft) -> Certificate:
        _check_key(image_hash, draft)
        certificate = Certificate.from_draft(new_certificate_id(), draft)

        with self._get_connection() as conn:
            try:
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.OperationalError as e:
                raise RegistryError(f"Registry is unavailable: {e}") from e
            try:
                row = conn.execute(
                    "SELECT id FROM certificates WHERE image_hash = ?", (image_hash,)
                ).fetchone()
                if row is not None:
                    raise DuplicateHashError(
                        f"Image hash {image_hash.hex()} is already certified",
                        existing_id=row["id"],
                    )
                conn.execute(
                    f"INSERT INTO certificates ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        certificate.id,
                        certificate.image_hash,
                        certificate.prompt_hash,
                        certificate.source_image_hash,
                        certificate.model_id,
                        str(certificate.seed),
                        certificate.output_blob_ref,
                        str(certificate.timestamp_ms),
                        certificate.owner,
                        certificate.enclave_identity,
                    ),
                )
                conn.execute("COMMIT")
            except sqlite3.IntegrityError as e:
                conn.execute("ROLLBACK")
                existing = self.lookup_by_hash(image_hash)
                if existing is None:
                    raise RegistryError(f"Failed to register certificate: {e}") from e
                raise DuplicateHashError(
                    f"Image hash {image_hash.hex()} is already certified",
                    existing_id=existing,
                ) from e
            except BaseException:
                conn.execute("ROLLBACK")
                raise

        logger.info(f"Registered certificate {certificate.id} for {image_hash.hex()}")
        return certificate

    def lookup_by_hash(self, image_hash: ImageHash) -> Optional[CertificateID]:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT id FROM certificates WHERE image_hash = ?", (bytes(image_hash),)
            ).fetchone()
            return row["id"] if row else None

    def get(self, certificate_id: CertificateID) -> Optional[Certificate]:
        with self._get_connection() as conn:
            row = conn.execute(
                f"SELECT {_COLUMNS} FROM certificates WHERE id = ?", (certificate_id,)
            ).fetchone()
        if row is None:
            return None
        return Certificate(
            id=row["id"],
            owner=row["owner"],
            image_hash=row["image_hash"],
            prompt_hash=row["prompt_hash"],
            source_image_hash=row["source_image_hash"],
            model_id=row["model_id"],
            seed=int(row["seed"]),
            output_blob_ref=row["output_blob_ref"],
            timestamp_ms=int(row["timestamp_ms"]),
            enclave_identity=row["enclave_identity"],
        )

    def count(self) -> int:
        with self._get_connection() as conn:
            return conn.execute("SELECT COUNT(*) AS count FROM certificates").fetchone()["count"]
