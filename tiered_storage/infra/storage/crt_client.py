"""Accelerated-transport S3 client.

Adapts an ``awscrt.s3.S3Client`` to the ObjectStorageClient protocol. Requests
are serialized by an unsigned botocore client, so endpoint resolution and
addressing (virtual-hosted, or path-style for dotted buckets and IP endpoints)
match the standard transport. The CRT client signs, splits and parallelises
them; responses are parsed back with botocore's parser.

Dependencies:
    - awscrt
    - botocore / s3transfer
"""

from __future__ import annotations

import asyncio
import io
import logging
import threading
from typing import Any, NoReturn, Sequence

from awscrt.exceptions import AwsCrtError
from awscrt.http import HttpRequest
from awscrt.s3 import (
    S3ChecksumAlgorithm,
    S3ChecksumConfig,
    S3ChecksumLocation,
    S3RequestType,
    S3ResponseError,
)
from botocore import xform_name
from botocore.awsrequest import HeadersDict
from botocore.exceptions import BotoCoreError, ClientError
from botocore.handlers import decode_list_object_v2
from botocore.parsers import create_parser
from s3transfer.crt import BotocoreCRTRequestSerializer

from tiered_storage.infra.storage.client import (
    ByteRange,
    CompletedPart,
    MultipartUpload,
    ObjectHead,
    ObjectNotFoundError,
    ObjectSummary,
    StorageError,
)
from tiered_storage.infra.storage.s3_client import is_not_found

logger = logging.getLogger("storage")


class S3RequestSerializer(BotocoreCRTRequestSerializer):
    """Builds CRT requests for any S3 operation and parses their replies."""

    def __init__(self, session: Any, client_kwargs: dict[str, Any]) -> None:
        super().__init__(session, client_kwargs)
        service_model = self._client.meta.service_model
        self._parser = create_parser(service_model.metadata["protocol"])

    @property
    def client_config(self) -> Any:
        return self._client.meta.config

    def serialize(self, operation_name: str, **params: Any) -> HttpRequest:
        http_request = getattr(self._client, xform_name(operation_name))(**params)[
            "HTTPRequest"
        ]
        if isinstance(http_request.body, (bytes, bytearray)):
            http_request.body = io.BytesIO(http_request.body)
        return self._convert_to_crt_http_request(http_request)

    def parse(
        self,
        operation_name: str,
        status_code: int,
        headers: Sequence[tuple[str, str]],
        body: bytes,
    ) -> dict[str, Any]:
        operation_model = self._client.meta.service_model.operation_model(
            operation_name
        )
        response_dict = {
            "status_code": status_code,
            "headers": HeadersDict(headers),
            "body": body,
        }
        # Turns a 200 carrying an <Error> document into a 500.
        self._client.meta.events.emit(
            f"before-parse.s3.{operation_name}",
            operation_model=operation_model,
            response_dict=response_dict,
            customized_response_dict={},
        )
        parsed = self._parser.parse(response_dict, operation_model.output_shape)
        if response_dict["status_code"] >= 300:
            error_code = parsed.get("Error", {}).get("Code")
            error_class = self._client.exceptions.from_code(error_code)
            raise error_class(parsed, operation_name)
        if operation_name == "ListObjectsV2":
            # botocore always requests url-encoded keys for this operation.
            decode_list_object_v2(parsed, context={"encoding_type_auto_set": True})
        return parsed


class _Response:
    """Collects headers and body delivered on CRT event-loop threads."""

    def __init__(self) -> None:
        self.status_code: int | None = None
        self.headers: list[tuple[str, str]] = []
        self._body = io.BytesIO()
        self._lock = threading.Lock()

    def on_headers(self, status_code: int, headers: Any, **kwargs: Any) -> None:
        with self._lock:
            self.status_code = status_code
            self.headers = list(headers)

    def on_body(self, chunk: bytes, **kwargs: Any) -> None:
        with self._lock:
            self._body.write(chunk)

    @property
    def body(self) -> bytes:
        with self._lock:
            return self._body.getvalue()


class CrtS3Client:
    """S3 client backed by the AWS Common Runtime transport."""

    def __init__(
        self,
        crt_client: Any,
        serializer: S3RequestSerializer,
        *,
        checksum_check_enabled: bool,
        api_call_timeout: float,
    ) -> None:
        self._crt_client = crt_client
        self._serializer = serializer
        self._checksum_check_enabled = checksum_check_enabled
        self._api_call_timeout = api_call_timeout

    @property
    def api_call_timeout(self) -> float:
        return self._api_call_timeout

    @property
    def serializer(self) -> S3RequestSerializer:
        return self._serializer

    async def __aenter__(self) -> "CrtS3Client":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def _send(
        self,
        operation_name: str,
        failure: str,
        *,
        request_type: S3RequestType = S3RequestType.DEFAULT,
        checksum_config: S3ChecksumConfig | None = None,
        missing: tuple[str, str] | None = None,
        parse: bool = True,
        **params: Any,
    ) -> tuple[dict[str, Any], bytes]:
        crt_client = self._crt_client
        if crt_client is None:
            raise StorageError("S3 client is closed")

        try:
            request = self._serializer.serialize(operation_name, **params)
        except BotoCoreError as exc:
            raise StorageError(f"{failure}: {exc}") from exc

        response = _Response()
        s3_request = crt_client.make_request(
            type=request_type,
            request=request,
            operation_name=operation_name,
            checksum_config=checksum_config,
            on_headers=response.on_headers,
            on_body=response.on_body,
        )
        try:
            await asyncio.wait_for(
                asyncio.wrap_future(s3_request.finished_future),
                timeout=self._api_call_timeout,
            )
            parsed: dict[str, Any] = {}
            if parse:
                parsed = self._serializer.parse(
                    operation_name,
                    response.status_code or 200,
                    response.headers,
                    response.body,
                )
        except asyncio.TimeoutError as exc:
            s3_request.cancel()
            raise StorageError(
                f"{failure}: timed out after {self._api_call_timeout:g}s"
            ) from exc
        except S3ResponseError as exc:
            client_error = self._serializer.translate_crt_exception(exc)
            if client_error is None:
                raise StorageError(
                    f"{failure}: HTTP {exc.status_code} {exc.name}"
                ) from exc
            self._raise_client_error(client_error, failure, missing)
        except AwsCrtError as exc:
            raise StorageError(f"{failure}: {exc.name} {exc.message}") from exc
        except ClientError as exc:
            self._raise_client_error(exc, failure, missing)
        return parsed, response.body

    @staticmethod
    def _raise_client_error(
        exc: ClientError, failure: str, missing: tuple[str, str] | None
    ) -> NoReturn:
        if missing is not None and is_not_found(exc):
            raise ObjectNotFoundError(*missing) from exc
        raise StorageError(f"{failure}: {exc}") from exc

    @staticmethod
    def _object_params(
        content_type: str | None, metadata: dict[str, str] | None
    ) -> dict[str, Any]:
        params: dict[str, Any] = {}
        if content_type:
            params["ContentType"] = content_type
        if metadata:
            params["Metadata"] = metadata
        return params

    async def put_object(
        self,
        *,
        bucket: str,
        object_key: str,
        data: bytes,
        content_type: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> str | None:
        checksum_config = None
        if self._checksum_check_enabled:
            checksum_config = S3ChecksumConfig(
                algorithm=S3ChecksumAlgorithm.CRC32,
                location=S3ChecksumLocation.TRAILER,
            )
        parsed, _ = await self._send(
            "PutObject",
            "Failed to put object",
            request_type=S3RequestType.PUT_OBJECT,
            checksum_config=checksum_config,
            Bucket=bucket,
            Key=object_key,
            Body=data,
            **self._object_params(content_type, metadata),
        )
        return parsed.get("ETag")

    async def get_object(
        self,
        *,
        bucket: str,
        object_key: str,
        byte_range: ByteRange | None = None,
    ) -> bytes:
        params: dict[str, Any] = {"Bucket": bucket, "Key": object_key}
        if byte_range is not None:
            params["Range"] = byte_range.header_value()
        _, body = await self._send(
            "GetObject",
            "Failed to get object",
            request_type=S3RequestType.GET_OBJECT,
            checksum_config=S3ChecksumConfig(
                validate_response=self._checksum_check_enabled
            ),
            missing=(bucket, object_key),
            parse=False,
            **params,
        )
        return body

    async def head_object(self, *, bucket: str, object_key: str) -> ObjectHead:
        parsed, _ = await self._send(
            "HeadObject",
            "Failed to get object metadata",
            missing=(bucket, object_key),
            Bucket=bucket,
            Key=object_key,
        )
        return ObjectHead(
            size_bytes=parsed.get("ContentLength", 0),
            etag=parsed.get("ETag"),
            content_type=parsed.get("ContentType"),
        )

    async def delete_object(self, *, bucket: str, object_key: str) -> None:
        await self._send(
            "DeleteObject",
            "Failed to delete object",
            Bucket=bucket,
            Key=object_key,
        )

    async def list_objects(
        self, *, bucket: str, prefix: str = ""
    ) -> list[ObjectSummary]:
        summaries: list[ObjectSummary] = []
        params: dict[str, Any] = {"Bucket": bucket, "Prefix": prefix}
        while True:
            parsed, _ = await self._send(
                "ListObjectsV2", "Failed to list objects", **params
            )
            for item in parsed.get("Contents", []):
                summaries.append(
                    ObjectSummary(
                        key=item["Key"],
                        size_bytes=item.get("Size", 0),
                        etag=item.get("ETag"),
                    )
                )
            token = parsed.get("NextContinuationToken")
            if not parsed.get("IsTruncated") or not token:
                return summaries
            params["ContinuationToken"] = token

    async def init_multipart_upload(
        self,
        *,
        bucket: str,
        object_key: str,
        content_type: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> MultipartUpload:
        parsed, _ = await self._send(
            "CreateMultipartUpload",
            "Failed to create multipart upload",
            Bucket=bucket,
            Key=object_key,
            **self._object_params(content_type, metadata),
        )
        upload_id = parsed.get("UploadId")
        if not upload_id:
            raise StorageError("S3 response missing UploadId")
        return MultipartUpload(
            upload_id=upload_id,
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
        parsed, _ = await self._send(
            "UploadPart",
            "Failed to upload part",
            Bucket=bucket,
            Key=object_key,
            UploadId=upload_id,
            PartNumber=int(part_number),
            Body=data,
        )
        etag = parsed.get("ETag")
        if not etag:
            raise StorageError("S3 response missing ETag for uploaded part")
        return CompletedPart(part_number=int(part_number), etag=etag)

    async def complete_multipart_upload(
        self,
        *,
        bucket: str,
        object_key: str,
        upload_id: str,
        parts: Sequence[CompletedPart],
    ) -> None:
        await self._send(
            "CompleteMultipartUpload",
            "Failed to complete multipart upload",
            Bucket=bucket,
            Key=object_key,
            UploadId=upload_id,
            MultipartUpload={
                "Parts": [
                    {"PartNumber": part.part_number, "ETag": part.etag}
                    for part in sorted(parts, key=lambda p: p.part_number)
                ]
            },
        )

    async def abort_multipart_upload(
        self,
        *,
        bucket: str,
        object_key: str,
        upload_id: str,
    ) -> None:
        await self._send(
            "AbortMultipartUpload",
            "Failed to abort multipart upload",
            Bucket=bucket,
            Key=object_key,
            UploadId=upload_id,
        )

    async def close(self) -> None:
        # Native resources are released once the last reference is dropped.
        if self._crt_client is not None:
            self._crt_client = None
            logger.debug("s3_client_closed transport=crt")
