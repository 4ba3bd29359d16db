"""Object storage client protocol and data types.

This module defines the asynchronous interface both S3 transports are adapted
to, so callers never depend on which transport a client was built with.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, Sequence


class StorageError(RuntimeError):
    """Raised when object storage operations fail."""


class ObjectNotFoundError(StorageError):
    """Raised when the requested object key does not exist."""

    def __init__(self, bucket: str, object_key: str) -> None:
        super().__init__(f"Object not found: s3://{bucket}/{object_key}")
        self.bucket = bucket
        self.object_key = object_key


@dataclass(frozen=True, slots=True)
class ByteRange:
    """Inclusive byte range, as used by the HTTP ``Range`` header."""

    first: int
    last: int

    def __post_init__(self) -> None:
        if self.first < 0:
            raise ValueError(f"first must be non-negative, got {self.first}")
        if self.last < self.first:
            raise ValueError(
                f"last ({self.last}) must not be smaller than first ({self.first})"
            )

    @property
    def size(self) -> int:
        return self.last - self.first + 1

    def header_value(self) -> str:
        return f"bytes={self.first}-{self.last}"


@dataclass(frozen=True, slots=True)
class CompletedPart:
    """Represents a completed part in a multipart upload."""

    part_number: int
    etag: str


@dataclass(frozen=True, slots=True)
class MultipartUpload:
    """Result of initiating a multipart upload."""

    upload_id: str
    bucket: str
    object_key: str


@dataclass(frozen=True, slots=True)
class ObjectHead:
    """Metadata from a HEAD object request."""

    size_bytes: int
    etag: str | None
    content_type: str | None


@dataclass(frozen=True, slots=True)
class ObjectSummary:
    """One entry of a listing."""

    key: str
    size_bytes: int
    etag: str | None


class ObjectStorageClient(Protocol):
    """Asynchronous object storage operations shared by every transport.

    Implementations must be safe for concurrent use from one event loop.
    Every operation raises StorageError on failure; timeouts configured on
    the client surface as StorageError as well.
    """

    async def put_object(
        self,
        *,
        bucket: str,
        object_key: str,
        data: bytes,
        content_type: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> str | None:
        """Upload an object in a single request.

        Args:
            bucket: Target bucket name.
            object_key: Object key (path) in the bucket.
            data: Object content.
            content_type: MIME type of the object.
            metadata: Custom metadata to attach to the object.

        Returns:
            The ETag reported by the service, if any.

        Raises:
            StorageError: If the operation fails.
        """
        ...

    async def get_object(
        self,
        *,
        bucket: str,
        object_key: str,
        byte_range: ByteRange | None = None,
    ) -> bytes:
        """Download an object, or a slice of it.

        Args:
            bucket: Source bucket name.
            object_key: Object key (path) in the bucket.
            byte_range: Inclusive range to fetch; the whole object when None.

        Returns:
            The requested bytes.

        Raises:
            ObjectNotFoundError: If the key does not exist.
            StorageError: If the operation fails.
        """
        ...

    async def head_object(self, *, bucket: str, object_key: str) -> ObjectHead:
        """Get object metadata without downloading the content.

        Raises:
            ObjectNotFoundError: If the key does not exist.
            StorageError: If the operation fails.
        """
        ...

    async def delete_object(self, *, bucket: str, object_key: str) -> None:
        """Delete an object. Deleting a missing key is not an error."""
        ...

    async def list_objects(
        self, *, bucket: str, prefix: str = ""
    ) -> list[ObjectSummary]:
        """List every object under ``prefix``, following continuation tokens."""
        ...

    async def init_multipart_upload(
        self,
        *,
        bucket: str,
        object_key: str,
        content_type: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> MultipartUpload:
        """Initialize a multipart upload session.

        Returns:
            MultipartUpload containing the upload_id for subsequent operations.

        Raises:
            StorageError: If the operation fails.
        """
        ...

    async def upload_part(
        self,
        *,
        bucket: str,
        object_key: str,
        upload_id: str,
        part_number: int,
        data: bytes,
    ) -> CompletedPart:
        """Upload one part (1-based, max 10000) of a multipart upload."""
        ...

    async def complete_multipart_upload(
        self,
        *,
        bucket: str,
        object_key: str,
        upload_id: str,
        parts: Sequence[CompletedPart],
    ) -> None:
        """Complete a multipart upload by combining all parts."""
        ...

    async def abort_multipart_upload(
        self,
        *,
        bucket: str,
        object_key: str,
        upload_id: str,
    ) -> None:
        """Abort a multipart upload and clean up uploaded parts."""
        ...

    async def close(self) -> None:
        """Release transport resources. The client is unusable afterwards."""
        ...

    async def __aenter__(self) -> "ObjectStorageClient":
        ...

    async def __aexit__(self, *exc_info: object) -> None:
        ...
