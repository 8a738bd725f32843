# SPDX-License-Identifier: MPL-2.0
"""Enclave signing keys and the registry of trusted enclave public keys.

An enclave is known by its *identity*, a short string recorded in every
certificate it attests. Certificates keep the identity they were minted
under, so rotating an enclave key means registering a new identity and
revoking the old one; existing certificates are unaffected.
"""

from __future__ import annotations

import os
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Iterable, Mapping, Optional, Union, cast

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ed25519

from veriforge.core.encoding import encode_payload
from veriforge.core.exceptions import ConfigurationError, UnknownEnclaveError
from veriforge.core.hashing import digest
from veriforge.core.models import GenerationPayload, SignedAttestation

SIGNATURE_ALGORITHM = "ed25519"
PUBLIC_KEY_SIZE = 32
SEED_SIZE = 32


def _public_bytes(public_key: ed25519.Ed25519PublicKey) -> bytes:
    return cast(
        "bytes",
        public_key.public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        ),
    )


def identity_for(public_key: bytes) -> str:
    """Derive a stable enclave identity from raw public key bytes."""
    return f"enclave-{digest(public_key)[:8].hex()}"


@dataclass
class EnclaveSigner:
    """The enclave side of attestation: an Ed25519 key pair with an identity."""

    private_key: ed25519.Ed25519PrivateKey
    identity: str = ""

    def __post_init__(self) -> None:
        if not self.identity:
            self.identity = identity_for(self.public_bytes())

    @classmethod
    def generate(cls, identity: Optional[str] = None) -> EnclaveSigner:
        """Generate a signer with a fresh random key."""
        return cls(ed25519.Ed25519PrivateKey.generate(), identity or "")

    @classmethod
    def from_seed(cls, seed: bytes, identity: Optional[str] = None) -> EnclaveSigner:
        """Create a signer deterministically from a 32-byte seed."""
        if len(seed) != SEED_SIZE:
            raise ValueError(f"Seed must be {SEED_SIZE} bytes, got {len(seed)}")
        return cls(ed25519.Ed25519PrivateKey.from_private_bytes(seed), identity or "")

    @property
    def public_key(self) -> ed25519.Ed25519PublicKey:
        return self.private_key.public_key()

    def public_bytes(self) -> bytes:
        """Get the public key as raw bytes."""
        return _public_bytes(self.public_key)

    def sign_bytes(self, data: bytes) -> bytes:
        return cast("bytes", self.private_key.sign(data))

    def sign(self, payload: GenerationPayload) -> SignedAttestation:
        """Sign the canonical encoding of ``payload``."""
        signature = self.sign_bytes(encode_payload(payload))
        return SignedAttestation(
            payload=payload, signature=signature, enclave_identity=self.identity
        )


@dataclass
class EnclaveKey:
    """A registered enclave public key."""

    identity: str
    public_key: ed25519.Ed25519PublicKey
    registered_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_bytes(cls, identity: str, public_key: bytes) -> EnclaveKey:
        if len(public_key) != PUBLIC_KEY_SIZE:
            raise ValueError(
                f"Ed25519 public key must be {PUBLIC_KEY_SIZE} bytes, got {len(public_key)}"
            )
        return cls(identity, ed25519.Ed25519PublicKey.from_public_bytes(public_key))

    def public_bytes(self) -> bytes:
        return _public_bytes(self.public_key)

    def verify(self, data: bytes, signature: bytes) -> bool:
        """Return True if ``signature`` is valid for ``data``."""
        try:
            self.public_key.verify(signature, data)
        except InvalidSignature:
            return False
        return True


class EnclaveKeyStore:
    """A thread-safe store of trusted enclave public keys.

    Keys are looked up by enclave identity. Revoked identities stay known but
    are refused by :meth:`get`, so new attestations from them are rejected.
    """

    def __init__(self, keys: Iterable[EnclaveKey] = ()) -> None:
        self._keys: Dict[str, EnclaveKey] = {}
        self._revoked: set[str] = set()
        self._lock = threading.Lock()
        for key in keys:
            self.add(key)

    @classmethod
    def from_mapping(
        cls,
        keys: Mapping[str, str],
        revoked: Iterable[str] = (),
    ) -> EnclaveKeyStore:
        """Build a store from ``identity -> hex public key`` pairs.

        Raises:
            ConfigurationError: If a public key is not valid hex of the right size.
        """
        store = cls()
        for identity, public_hex in keys.items():
            try:
                store.register(identity, bytes.fromhex(public_hex))
            except ValueError as e:
                raise ConfigurationError(
                    f"Invalid public key for enclave {identity!r}: {e}",
                    {"identity": identity},
                ) from e
        for identity in revoked:
            store.revoke(identity)
        return store

    def add(self, key: EnclaveKey) -> None:
        with self._lock:
            self._keys[key.identity] = key

    def register(self, identity: str, public_key: Union[bytes, EnclaveSigner]) -> EnclaveKey:
        """Register ``public_key`` (or a signer's public key) under ``identity``."""
        if isinstance(public_key, EnclaveSigner):
            public_key = public_key.public_bytes()
        key = EnclaveKey.from_bytes(identity, public_key)
        self.add(key)
        return key

    def get(self, identity: str) -> EnclaveKey:
        """Retrieve the key for ``identity``.

        Raises:
            UnknownEnclaveError: If the identity is unknown or revoked.
        """
        with self._lock:
            if identity in self._revoked:
                raise UnknownEnclaveError(
                    f"Enclave {identity!r} has been revoked", {"identity": identity}
                )
            key = self._keys.get(identity)
        if key is None:
            raise UnknownEnclaveError(
                f"Enclave {identity!r} is not registered", {"identity": identity}
            )
        return key

    def revoke(self, identity: str) -> None:
        """Mark ``identity`` as revoked."""
        with self._lock:
            self._revoked.add(identity)

    def is_revoked(self, identity: str) -> bool:
        with self._lock:
            return identity in self._revoked

    def identities(self) -> Dict[str, EnclaveKey]:
        """Return a mapping of all registered keys, revoked ones included."""
        with self._lock:
            return dict(self._keys)


def random_seed() -> bytes:
    return os.urandom(SEED_SIZE)


__all__ = [
    "EnclaveKey",
    "EnclaveKeyStore",
    "EnclaveSigner",
    "SIGNATURE_ALGORITHM",
    "identity_for",
    "random_seed",
]
