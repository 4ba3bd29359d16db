"""Standard-transport S3 client.

Adapts an aiobotocore S3 client (created through aioboto3) to the
ObjectStorageClient protocol. The builder hands over a factory; the botocore
client context is created and entered on the first operation.

Dependencies:
    - aioboto3 / aiobotocore
    - botocore
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Sequence, TypeVar

from botocore.exceptions import BotoCoreError, ClientError

from tiered_storage.infra.storage.client import (
    ByteRange,
    CompletedPart,
    MultipartUpload,
    ObjectHead,
    ObjectNotFoundError,
    ObjectSummary,
    StorageError,
)

logger = logging.getLogger("storage")

T = TypeVar("T")

_NOT_FOUND_CODES = frozenset({"NoSuchKey", "NotFound", "404"})


def is_not_found(exc: ClientError) -> bool:
    error_code = str(exc.response.get("Error", {}).get("Code", ""))
    status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
    return error_code in _NOT_FOUND_CODES or status == 404


class StandardS3Client:
    """S3 client backed by the asyncio botocore transport.

    Whole-call timeouts are enforced here, per operation; per-attempt
    timeouts live in the botocore client configuration.
    """

    def __init__(
        self, client_factory: Callable[[], Any], *, api_call_timeout: float
    ) -> None:
        self._client_factory = client_factory
        self._client_context: Any = None
        self._api_call_timeout = api_call_timeout
        self._client: Any = None
        self._closed = False
        self._lock = asyncio.Lock()

    @property
    def api_call_timeout(self) -> float:
        return self._api_call_timeout

    @property
    def client_factory(self) -> Callable[[], Any]:
        return self._client_factory

    async def __aenter__(self) -> "StandardS3Client":
        await self._ensure_started()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def _ensure_started(self) -> Any:
        if self._client is not None:
            return self._client
        async with self._lock:
            if self._closed:
                raise StorageError("S3 client is closed")
            if self._client is None:
                self._client_context = self._client_factory()
                self._client = await self._client_context.__aenter__()
                logger.debug("s3_client_started transport=standard")
        return self._client

    async def _execute(
        self,
        call: Callable[[Any], Awaitable[T]],
        failure: str,
        *,
        missing: tuple[str, str] | None = None,
    ) -> T:
        client = await self._ensure_started()
        try:
            return await asyncio.wait_for(call(client), timeout=self._api_call_timeout)
        except asyncio.TimeoutError as exc:
            raise StorageError(
                f"{failure}: timed out after {self._api_call_timeout:g}s"
            ) from exc
        except ClientError as exc:
            if missing is not None and is_not_found(exc):
                raise ObjectNotFoundError(*missing) from exc
            raise StorageError(f"{failure}: {exc}") from exc
        except BotoCoreError as exc:
            raise StorageError(f"{failure}: {exc}") from exc

    async def put_object(
        self,
        *,
        bucket: str,
        object_key: str,
        data: bytes,
        content_type: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> str | None:
        """Upload an object in a single request."""
        params: dict[str, Any] = {"Bucket": bucket, "Key": object_key, "Body": data}
        if content_type:
            params["ContentType"] = content_type
        if metadata:
            params["Metadata"] = metadata

        async def call(client: Any) -> str | None:
            response = await client.put_object(**params)
            return response.get("ETag")

        return await self._execute(call, "Failed to put object")

    async def get_object(
        self,
        *,
        bucket: str,
        object_key: str,
        byte_range: ByteRange | None = None,
    ) -> bytes:
        """Download an object, or a slice of it."""
        params: dict[str, Any] = {"Bucket": bucket, "Key": object_key}
        if byte_range is not None:
            params["Range"] = byte_range.header_value()

        async def call(client: Any) -> bytes:
            response = await client.get_object(**params)
            async with response["Body"] as stream:
                return await stream.read()

        return await self._execute(
            call, "Failed to get object", missing=(bucket, object_key)
        )

    async def head_object(self, *, bucket: str, object_key: str) -> ObjectHead:
        """Get object metadata without downloading the content."""

        async def call(client: Any) -> ObjectHead:
            response = await client.head_object(Bucket=bucket, Key=object_key)
            size = response.get("ContentLength")
            return ObjectHead(
                size_bytes=int(size) if size is not None else 0,
                etag=response.get("ETag"),
                content_type=response.get("ContentType"),
            )

        return await self._execute(
            call, "Failed to get object metadata", missing=(bucket, object_key)
        )

    async def delete_object(self, *, bucket: str, object_key: str) -> None:
        """Delete an object from storage."""

        async def call(client: Any) -> None:
            await client.delete_object(Bucket=bucket, Key=object_key)

        await self._execute(call, "Failed to delete object")

    async def list_objects(
        self, *, bucket: str, prefix: str = ""
    ) -> list[ObjectSummary]:
        """List every object under prefix, following continuation tokens."""
        summaries: list[ObjectSummary] = []
        continuation_token: str | None = None
        while True:
            params: dict[str, Any] = {"Bucket": bucket, "Prefix": prefix}
            if continuation_token:
                params["ContinuationToken"] = continuation_token

            async def call(client: Any) -> dict[str, Any]:
                return await client.list_objects_v2(**params)

            response = await self._execute(call, "Failed to list objects")
            for item in response.get("Contents", []):
                summaries.append(
                    ObjectSummary(
                        key=item["Key"],
                        size_bytes=int(item.get("Size", 0)),
                        etag=item.get("ETag"),
                    )
                )
            continuation_token = response.get("NextContinuationToken")
            if not response.get("IsTruncated") or not continuation_token:
                return summaries

    async def init_multipart_upload(
        self,
        *,
        bucket: str,
        object_key: str,
        content_type: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> MultipartUpload:
        """Initialize a multipart upload session."""
        params: dict[str, Any] = {"Bucket": bucket, "Key": object_key}
        if content_type:
            params["ContentType"] = content_type
        if metadata:
            params["Metadata"] = metadata

        async def call(client: Any) -> dict[str, Any]:
            return await client.create_multipart_upload(**params)

        response = await self._execute(call, "Failed to create multipart upload")
        upload_id = response.get("UploadId")
        if not upload_id:
            raise StorageError("S3 response missing UploadId")

        return MultipartUpload(
            upload_id=str(upload_id),
            bucket=bucket,
            object_key=object_key,
        )

    async def upload_part(
        self,
        *,
        bucket: str,
        object_key: str,
        upload_id: str,
        part_number: int,
        data: bytes,
    ) -> CompletedPart:
        """Upload one part of a multipart upload."""

        async def call(client: Any) -> dict[str, Any]:
            return await client.upload_part(
                Bucket=bucket,
                Key=object_key,
                UploadId=upload_id,
                PartNumber=int(part_number),
                Body=data,
            )

        response = await self._execute(call, "Failed to upload part")
        etag = response.get("ETag")
        if not etag:
            raise StorageError("S3 response missing ETag for uploaded part")
        return CompletedPart(part_number=int(part_number), etag=str(etag))

    async def complete_multipart_upload(
        self,
        *,
        bucket: str,
        object_key: str,
        upload_id: str,
        parts: Sequence[CompletedPart],
    ) -> None:
        """Complete a multipart upload by combining all parts."""
        multipart_payload = {
            "Parts": [
                {"ETag": part.etag, "PartNumber": int(part.part_number)}
                for part in sorted(parts, key=lambda p: p.part_number)
            ]
        }

        async def call(client: Any) -> None:
            await client.complete_multipart_upload(
                Bucket=bucket,
                Key=object_key,
                UploadId=upload_id,
                MultipartUpload=multipart_payload,
            )

        await self._execute(call, "Failed to complete multipart upload")

    async def abort_multipart_upload(
        self,
        *,
        bucket: str,
        object_key: str,
        upload_id: str,
    ) -> None:
        """Abort a multipart upload and clean up uploaded parts."""

        async def call(client: Any) -> None:
            await client.abort_multipart_upload(
                Bucket=bucket,
                Key=object_key,
                UploadId=upload_id,
            )

        await self._execute(call, "Failed to abort multipart upload")

    async def close(self) -> None:
        async with self._lock:
            if self._closed:
                return
            self._closed = True
            if self._client is not None:
                self._client = None
                await self._client_context.__aexit__(None, None, None)
                logger.debug("s3_client_closed transport=standard")
