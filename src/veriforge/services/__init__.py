# SPDX-License-Identifier: MPL-2.0
"""External collaborators: generation backends and blob stores."""

from veriforge.services.blobstore import BlobStore, HttpBlobStore, InMemoryBlobStore
from veriforge.services.enclave import (
    GenerationBackend,
    HttpGenerationBackend,
    LocalEnclaveBackend,
)

__all__ = [
    "BlobStore",
    "GenerationBackend",
    "HttpBlobStore",
    "HttpGenerationBackend",
    "InMemoryBlobStore",
    "LocalEnclaveBackend",
]
