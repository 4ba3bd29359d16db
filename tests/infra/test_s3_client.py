"""Tests for the standard-transport S3 client."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from tiered_storage.infra.storage.client import (
    ByteRange,
    CompletedPart,
    MultipartUpload,
    ObjectNotFoundError,
    StorageError,
)
from tiered_storage.infra.storage.s3_client import StandardS3Client


def _client_error(code: str, status: int, operation: str) -> ClientError:
    return ClientError(
        {
            "Error": {"Code": code, "Message": "boom"},
            "ResponseMetadata": {"HTTPStatusCode": status},
        },
        operation,
    )


class TestStandardS3Client:
    """Test StandardS3Client implementation."""

    @pytest.fixture
    def mock_s3(self):
        """Mock aiobotocore S3 client."""
        return AsyncMock()

    @pytest.fixture
    def client_context(self, mock_s3):
        """Mock client creator context returned by aioboto3."""
        context = MagicMock()
        context.__aenter__ = AsyncMock(return_value=mock_s3)
        context.__aexit__ = AsyncMock(return_value=None)
        return context

    @pytest.fixture
    def client_factory(self, client_context):
        """Zero-argument factory standing in for session.client('s3', ...)."""
        return MagicMock(return_value=client_context)

    @pytest.fixture
    def client(self, client_factory):
        """Create StandardS3Client over the mocked context."""
        return StandardS3Client(client_factory, api_call_timeout=5.0)

    @pytest.mark.asyncio
    async def test_client_context_entered_lazily_once(
        self, client, client_factory, client_context, mock_s3
    ):
        """The botocore client is only created on first use, and only once."""
        client_factory.assert_not_called()
        client_context.__aenter__.assert_not_called()

        mock_s3.delete_object.return_value = {}
        await asyncio.gather(
            client.delete_object(bucket="b", object_key="k1"),
            client.delete_object(bucket="b", object_key="k2"),
        )

        client_factory.assert_called_once_with()
        client_context.__aenter__.assert_awaited_once()
        assert mock_s3.delete_object.await_count == 2

    @pytest.mark.asyncio
    async def test_put_object(self, client, mock_s3):
        """Test uploading an object in one request."""
        mock_s3.put_object.return_value = {"ETag": '"etag-1"'}

        etag = await client.put_object(
            bucket="test-bucket",
            object_key="test/key",
            data=b"payload",
            content_type="application/octet-stream",
            metadata={"segment": "00001"},
        )

        assert etag == '"etag-1"'
        mock_s3.put_object.assert_awaited_once_with(
            Bucket="test-bucket",
            Key="test/key",
            Body=b"payload",
            ContentType="application/octet-stream",
            Metadata={"segment": "00001"},
        )

    @pytest.mark.asyncio
    async def test_get_object_with_range(self, client, mock_s3):
        """Test fetching a byte range of an object."""
        stream = AsyncMock()
        stream.read.return_value = b"abc"
        body = MagicMock()
        body.__aenter__ = AsyncMock(return_value=stream)
        body.__aexit__ = AsyncMock(return_value=None)
        mock_s3.get_object.return_value = {"Body": body}

        data = await client.get_object(
            bucket="test-bucket",
            object_key="test/key",
            byte_range=ByteRange(10, 12),
        )

        assert data == b"abc"
        mock_s3.get_object.assert_awaited_once_with(
            Bucket="test-bucket", Key="test/key", Range="bytes=10-12"
        )

    @pytest.mark.asyncio
    async def test_get_object_without_range(self, client, mock_s3):
        """Test fetching a whole object omits the Range parameter."""
        stream = AsyncMock()
        stream.read.return_value = b"all"
        body = MagicMock()
        body.__aenter__ = AsyncMock(return_value=stream)
        body.__aexit__ = AsyncMock(return_value=None)
        mock_s3.get_object.return_value = {"Body": body}

        assert await client.get_object(bucket="b", object_key="k") == b"all"
        assert "Range" not in mock_s3.get_object.call_args[1]

    @pytest.mark.asyncio
    async def test_get_object_missing_key(self, client, mock_s3):
        """Test NoSuchKey is reported as ObjectNotFoundError."""
        mock_s3.get_object.side_effect = _client_error("NoSuchKey", 404, "GetObject")

        with pytest.raises(ObjectNotFoundError) as exc_info:
            await client.get_object(bucket="test-bucket", object_key="missing")

        assert exc_info.value.bucket == "test-bucket"
        assert exc_info.value.object_key == "missing"

    @pytest.mark.asyncio
    async def test_head_object(self, client, mock_s3):
        """Test getting object metadata."""
        mock_s3.head_object.return_value = {
            "ContentLength": 1024,
            "ETag": '"test-etag"',
            "ContentType": "application/pdf",
        }

        result = await client.head_object(bucket="test-bucket", object_key="test/key")

        assert result.size_bytes == 1024
        assert result.etag == '"test-etag"'
        assert result.content_type == "application/pdf"
        mock_s3.head_object.assert_awaited_once_with(
            Bucket="test-bucket", Key="test/key"
        )

    @pytest.mark.asyncio
    async def test_head_object_missing_size(self, client, mock_s3):
        """Test getting object metadata when ContentLength is missing."""
        mock_s3.head_object.return_value = {"ETag": '"test-etag"'}

        result = await client.head_object(bucket="test-bucket", object_key="test/key")

        assert result.size_bytes == 0
        assert result.content_type is None

    @pytest.mark.asyncio
    async def test_head_object_not_found(self, client, mock_s3):
        """HEAD on a missing key answers a bare 404."""
        mock_s3.head_object.side_effect = _client_error("404", 404, "HeadObject")

        with pytest.raises(ObjectNotFoundError):
            await client.head_object(bucket="test-bucket", object_key="missing")

    @pytest.mark.asyncio
    async def test_delete_object(self, client, mock_s3):
        """Test deleting an object."""
        await client.delete_object(bucket="test-bucket", object_key="test/key")

        mock_s3.delete_object.assert_awaited_once_with(
            Bucket="test-bucket", Key="test/key"
        )

    @pytest.mark.asyncio
    async def test_list_objects_follows_continuation(self, client, mock_s3):
        """Test listing walks every page."""
        mock_s3.list_objects_v2.side_effect = [
            {
                "Contents": [{"Key": "p/a", "Size": 1, "ETag": '"a"'}],
                "IsTruncated": True,
                "NextContinuationToken": "token-2",
            },
            {
                "Contents": [{"Key": "p/b", "Size": 2, "ETag": '"b"'}],
                "IsTruncated": False,
            },
        ]

        result = await client.list_objects(bucket="test-bucket", prefix="p/")

        assert [item.key for item in result] == ["p/a", "p/b"]
        assert [item.size_bytes for item in result] == [1, 2]
        second_call = mock_s3.list_objects_v2.call_args_list[1]
        assert second_call[1]["ContinuationToken"] == "token-2"
        assert "ContinuationToken" not in mock_s3.list_objects_v2.call_args_list[0][1]

    @pytest.mark.asyncio
    async def test_list_objects_empty(self, client, mock_s3):
        """Test listing an empty prefix."""
        mock_s3.list_objects_v2.return_value = {"KeyCount": 0, "IsTruncated": False}

        assert await client.list_objects(bucket="test-bucket") == []

    @pytest.mark.asyncio
    async def test_init_multipart_upload(self, client, mock_s3):
        """Test initiating multipart upload."""
        mock_s3.create_multipart_upload.return_value = {
            "UploadId": "test-upload-id",
            "Bucket": "test-bucket",
            "Key": "test/key",
        }

        result = await client.init_multipart_upload(
            bucket="test-bucket",
            object_key="test/key",
            content_type="application/octet-stream",
        )

        assert isinstance(result, MultipartUpload)
        assert result.upload_id == "test-upload-id"
        assert result.bucket == "test-bucket"
        assert result.object_key == "test/key"
        mock_s3.create_multipart_upload.assert_awaited_once_with(
            Bucket="test-bucket",
            Key="test/key",
            ContentType="application/octet-stream",
        )

    @pytest.mark.asyncio
    async def test_init_multipart_upload_missing_upload_id(self, client, mock_s3):
        """Test error when S3 response missing UploadId."""
        mock_s3.create_multipart_upload.return_value = {}

        with pytest.raises(StorageError, match="S3 response missing UploadId"):
            await client.init_multipart_upload(
                bucket="test-bucket",
                object_key="test/key",
            )

    @pytest.mark.asyncio
    async def test_upload_part(self, client, mock_s3):
        """Test uploading one part returns its ETag."""
        mock_s3.upload_part.return_value = {"ETag": '"part-etag"'}

        part = await client.upload_part(
            bucket="test-bucket",
            object_key="test/key",
            upload_id="test-upload-id",
            part_number=3,
            data=b"chunk",
        )

        assert part == CompletedPart(part_number=3, etag='"part-etag"')
        mock_s3.upload_part.assert_awaited_once_with(
            Bucket="test-bucket",
            Key="test/key",
            UploadId="test-upload-id",
            PartNumber=3,
            Body=b"chunk",
        )

    @pytest.mark.asyncio
    async def test_upload_part_missing_etag(self, client, mock_s3):
        """Test error when the part response carries no ETag."""
        mock_s3.upload_part.return_value = {}

        with pytest.raises(StorageError, match="missing ETag"):
            await client.upload_part(
                bucket="b", object_key="k", upload_id="u", part_number=1, data=b"x"
            )

    @pytest.mark.asyncio
    async def test_complete_multipart_upload(self, client, mock_s3):
        """Test completing multipart upload sorts parts by number."""
        parts = [
            CompletedPart(part_number=2, etag="etag2"),
            CompletedPart(part_number=1, etag="etag1"),
        ]

        await client.complete_multipart_upload(
            bucket="test-bucket",
            object_key="test/key",
            upload_id="test-upload-id",
            parts=parts,
        )

        call_args = mock_s3.complete_multipart_upload.call_args
        assert call_args[1]["UploadId"] == "test-upload-id"
        assert call_args[1]["MultipartUpload"]["Parts"] == [
            {"ETag": "etag1", "PartNumber": 1},
            {"ETag": "etag2", "PartNumber": 2},
        ]

    @pytest.mark.asyncio
    async def test_abort_multipart_upload(self, client, mock_s3):
        """Test aborting multipart upload."""
        await client.abort_multipart_upload(
            bucket="test-bucket",
            object_key="test/key",
            upload_id="test-upload-id",
        )

        mock_s3.abort_multipart_upload.assert_awaited_once_with(
            Bucket="test-bucket",
            Key="test/key",
            UploadId="test-upload-id",
        )

    @pytest.mark.asyncio
    async def test_client_error_wrapped(self, client, mock_s3):
        """Test error handling when the service rejects a call."""
        mock_s3.put_object.side_effect = _client_error("AccessDenied", 403, "PutObject")

        with pytest.raises(StorageError, match="Failed to put object") as exc_info:
            await client.put_object(bucket="b", object_key="k", data=b"x")

        assert not isinstance(exc_info.value, ObjectNotFoundError)
        assert isinstance(exc_info.value.__cause__, ClientError)

    @pytest.mark.asyncio
    async def test_not_found_on_delete_is_plain_storage_error(self, client, mock_s3):
        """Only reads translate a 404 into ObjectNotFoundError."""
        mock_s3.delete_object.side_effect = _client_error("NoSuchBucket", 404, "DeleteObject")

        with pytest.raises(StorageError, match="Failed to delete object") as exc_info:
            await client.delete_object(bucket="b", object_key="k")

        assert not isinstance(exc_info.value, ObjectNotFoundError)

    @pytest.mark.asyncio
    async def test_connection_error_wrapped(self, client, mock_s3):
        """Test transport failures are wrapped."""
        mock_s3.list_objects_v2.side_effect = EndpointConnectionError(
            endpoint_url="http://localhost:9000"
        )

        with pytest.raises(StorageError, match="Failed to list objects"):
            await client.list_objects(bucket="b")

    @pytest.mark.asyncio
    async def test_api_call_timeout(self, client_factory, mock_s3):
        """Test the whole-call timeout bounds each operation."""

        async def never_finishes(**kwargs):
            await asyncio.sleep(10)

        mock_s3.put_object.side_effect = never_finishes
        client = StandardS3Client(client_factory, api_call_timeout=0.01)

        with pytest.raises(StorageError, match="timed out"):
            await client.put_object(bucket="b", object_key="k", data=b"x")

    @pytest.mark.asyncio
    async def test_close_exits_context_and_rejects_calls(
        self, client, client_context, mock_s3
    ):
        """Test closing releases the client and later calls fail."""
        await client.delete_object(bucket="b", object_key="k")

        await client.close()
        await client.close()

        client_context.__aexit__.assert_awaited_once()
        with pytest.raises(StorageError, match="closed"):
            await client.delete_object(bucket="b", object_key="k")

    @pytest.mark.asyncio
    async def test_close_before_first_use(self, client, client_factory, client_context):
        """Closing an unused client never creates or enters the context."""
        await client.close()

        client_factory.assert_not_called()
        client_context.__aenter__.assert_not_called()
        client_context.__aexit__.assert_not_called()

    @pytest.mark.asyncio
    async def test_async_context_manager(self, client_factory, client_context, mock_s3):
        """Test the client works as an async context manager."""
        async with StandardS3Client(client_factory, api_call_timeout=5.0) as client:
            await client.delete_object(bucket="b", object_key="k")

        client_context.__aexit__.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_client_creation_error_propagates_unchanged(self, client_factory):
        """Errors raised while creating the botocore client are not wrapped."""
        failure = ValueError("Invalid endpoint: not-a-url")
        client_factory.side_effect = failure
        client = StandardS3Client(client_factory, api_call_timeout=5.0)

        with pytest.raises(ValueError) as exc_info:
            await client.delete_object(bucket="b", object_key="k")

        assert exc_info.value is failure
