# SPDX-License-Identifier: MPL-2.0
"""Blob store clients.

Images are never inlined into certificates; a certificate holds a content
address that resolves through one of these stores.
"""

import base64
import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import httpx

from veriforge.core.exceptions import StorageUnavailableError
from veriforge.core.hashing import digest

logger = logging.getLogger(__name__)

DEFAULT_EPOCHS = 1


def content_address(data: bytes) -> str:
    """Unpadded base64url SHA-256 of ``data``."""
    return base64.urlsafe_b64encode(digest(data)).decode("ascii").rstrip("=")


class BlobStore(ABC):
    """Put and get immutable byte blobs by content address."""

    @abstractmethod
    def put(self, data: bytes) -> str:
        """
        Store ``data``.

        Returns:
            str: The blob's content address

        Raises:
            StorageUnavailableError: If the store cannot accept the blob
        """

    @abstractmethod
    def get(self, ref: str) -> bytes:
        """
        Fetch the bytes stored under ``ref``.

        Raises:
            StorageUnavailableError: If the blob cannot be fetched
        """


class InMemoryBlobStore(BlobStore):
    """A dictionary-backed store for tests and local runs."""

    def __init__(self) -> None:
        self._blobs: Dict[str, bytes] = {}
        self._lock = threading.Lock()

    def put(self, data: bytes) -> str:
        ref = content_address(data)
        with self._lock:
            self._blobs.setdefault(ref, bytes(data))
        return ref

    def get(self, ref: str) -> bytes:
        with self._lock:
            data = self._blobs.get(ref)
        if data is None:
            raise StorageUnavailableError(f"Blob not found: {ref}", {"ref": ref})
        return data

    def overwrite(self, ref: str, data: bytes) -> None:
        """Replace the bytes behind ``ref``, as a misbehaving store might."""
        with self._lock:
            self._blobs[ref] = bytes(data)

    def __contains__(self, ref: object) -> bool:
        return ref in self._blobs

    def __len__(self) -> int:
        return len(self._blobs)


class HttpBlobStore(BlobStore):
    """Client for a publisher/aggregator blob service.

    Uploads go to ``PUT {publisher}/v1/blobs?epochs=N`` and downloads to
    ``GET {aggregator}/v1/blobs/{id}``. References that are already absolute
    URLs are fetched as-is.
    """

    def __init__(
        self,
        publisher_url: str,
        aggregator_url: str,
        epochs: int = DEFAULT_EPOCHS,
        timeout: float = 30.0,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self.publisher_url = publisher_url.rstrip("/")
        self.aggregator_url = aggregator_url.rstrip("/")
        self.epochs = epochs
        self._client = client or httpx.Client(timeout=timeout)

    def blob_url(self, ref: str) -> str:
        if ref.startswith(("http://", "https://")):
            return ref
        return f"{self.aggregator_url}/v1/blobs/{ref}"

    def put(self, data: bytes) -> str:
        try:
            response = self._client.put(
                f"{self.publisher_url}/v1/blobs",
                params={"epochs": self.epochs},
                content=data,
            )
        except httpx.HTTPError as e:
            logger.error(f"Blob upload failed: {e}")
            raise StorageUnavailableError(f"Blob upload failed: {e}") from e

        if not response.is_success:
            raise StorageUnavailableError(
                f"Blob store rejected upload: HTTP {response.status_code}",
                {"status_code": response.status_code},
            )

        try:
            body = response.json()
        except ValueError as e:
            raise StorageUnavailableError("Blob store returned invalid JSON") from e

        ref = _extract_blob_id(body)
        if not ref:
            raise StorageUnavailableError(
                "Blob store response is missing a blob id", {"response": body}
            )
        logger.info(f"Uploaded {len(data)} bytes as blob {ref}")
        return ref

    def get(self, ref: str) -> bytes:
        url = self.blob_url(ref)
        try:
            response = self._client.get(url)
        except httpx.HTTPError as e:
            logger.error(f"Blob download failed for {ref}: {e}")
            raise StorageUnavailableError(f"Blob download failed: {e}", {"ref": ref}) from e

        if not response.is_success:
            raise StorageUnavailableError(
                f"Blob store returned HTTP {response.status_code} for {ref}",
                {"ref": ref, "status_code": response.status_code},
            )
        return response.content

    def close(self) -> None:
        self._client.close()


def _extract_blob_id(body: Any) -> Optional[str]:
    if not isinstance(body, dict):
        return None
    created = body.get("newlyCreated")
    if isinstance(created, dict):
        blob_id = (created.get("blobObject") or {}).get("blobId")
        if blob_id:
            return str(blob_id)
    certified = body.get("alreadyCertified")
    if isinstance(certified, dict) and certified.get("blobId"):
        return str(certified["blobId"])
    return None
