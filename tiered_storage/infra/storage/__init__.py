"""Object storage access for tiered storage.

This package builds asynchronous S3 clients over either the standard
botocore transport or the accelerated CRT transport, behind a single
protocol-based interface.
"""

from .builder import ClientType, TransportKind, build
from .client import (
    ByteRange,
    CompletedPart,
    MultipartUpload,
    ObjectHead,
    ObjectNotFoundError,
    ObjectStorageClient,
    ObjectSummary,
    StorageError,
)

__all__ = [
    "ByteRange",
    "ClientType",
    "CompletedPart",
    "MultipartUpload",
    "ObjectHead",
    "ObjectNotFoundError",
    "ObjectStorageClient",
    "ObjectSummary",
    "StorageError",
    "TransportKind",
    "build",
]
