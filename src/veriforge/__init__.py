# SPDX-License-Identifier: MPL-2.0
"""
Veriforge - Provenance certificates for AI-generated images.

This package binds generated images to the prompt, model and seed that produced
them through enclave attestations, registers one certificate per distinct image
and verifies images against the registry.
"""

import contextlib
from importlib.metadata import version

# Set up version
__version__ = "0.1.0"

with contextlib.suppress(Exception):
    __version__ = version("veriforge")


# Core components
from veriforge.core import (
    AttestationVerifier,
    EnclaveSigner,
    MintOrchestrator,
    VerificationEngine,
    digest,
    encode_payload,
)

# Public API
__all__ = [
    "AttestationVerifier",
    "EnclaveSigner",
    "MintOrchestrator",
    "VerificationEngine",
    "digest",
    "encode_payload",
    "__version__",
]
