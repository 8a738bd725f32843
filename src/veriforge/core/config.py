# SPDX-License-Identifier: MPL-2.0
"""
Application configuration using Pydantic Settings.

Every value can be set through a ``VERIFORGE_``-prefixed environment variable
or a ``.env`` file. Business logic receives a :class:`Settings` instance and
never reads the environment itself.
"""

from functools import lru_cache
from typing import Dict, List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from veriforge.core.attestation import DEFAULT_MAX_AGE_MS, DEFAULT_MAX_FUTURE_SKEW_MS
from veriforge.core.models import DEFAULT_MODEL_ID


class Settings(BaseSettings):
    """Settings loaded from environment variables"""

    model_config = SettingsConfigDict(
        env_prefix="VERIFORGE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Registry
    DATABASE_PATH: str = Field(
        default="veriforge.db",
        description='SQLite registry path, or ":memory:"',
    )

    # Enclave
    ENCLAVE_URL: Optional[str] = Field(
        default=None,
        description="Base URL of the remote enclave; unset runs a local enclave",
    )
    ENCLAVE_KEYS: Dict[str, str] = Field(
        default_factory=dict,
        description="Trusted enclaves as a JSON object of identity -> hex Ed25519 public key",
    )
    REVOKED_ENCLAVES: List[str] = Field(
        default_factory=list,
        description="Enclave identities whose new attestations are refused",
    )
    LOCAL_ENCLAVE_SEED: Optional[str] = Field(
        default=None,
        description="Hex 32-byte seed for the local enclave key; random when unset",
    )
    DEFAULT_MODEL_ID: str = Field(
        default=DEFAULT_MODEL_ID,
        description="Model used when a mint request names none",
    )

    # Blob storage
    BLOB_PUBLISHER_URL: Optional[str] = Field(
        default=None,
        description="Blob publisher base URL; unset keeps blobs in memory",
    )
    BLOB_AGGREGATOR_URL: Optional[str] = Field(
        default=None,
        description="Blob aggregator base URL; defaults to the publisher URL",
    )
    BLOB_EPOCHS: int = Field(
        default=1,
        ge=1,
        description="Storage epochs requested for each upload",
    )
    REQUEST_TIMEOUT: float = Field(
        default=30.0,
        gt=0,
        description="Timeout in seconds for enclave and blob store requests",
    )

    # Attestation freshness
    ATTESTATION_MAX_AGE_MS: int = Field(
        default=DEFAULT_MAX_AGE_MS,
        ge=0,
        description="Oldest acceptable enclave timestamp, in milliseconds",
    )
    ATTESTATION_MAX_FUTURE_SKEW_MS: int = Field(
        default=DEFAULT_MAX_FUTURE_SKEW_MS,
        ge=0,
        description="Tolerated enclave clock skew into the future, in milliseconds",
    )

    # HTTP surface
    ALLOWED_ORIGINS: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:8000"],
        description="CORS allowed origins",
    )
    TRUSTED_HOSTS: List[str] = Field(
        default=["localhost", "127.0.0.1", "testserver"],
        description="Hosts accepted by the trusted host middleware",
    )
    RATE_LIMIT: str = Field(
        default="60/minute",
        description="Per-client rate limit for mint and verify endpoints",
    )
    LOG_LEVEL: str = Field(
        default="INFO",
        description="Root log level",
    )


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide settings."""
    return Settings()
