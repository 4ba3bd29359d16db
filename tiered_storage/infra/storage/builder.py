"""Object storage client factory.

Turns an S3StorageConfig into a ready ObjectStorageClient, choosing the
accelerated CRT transport when ``crt_enabled`` is set and the standard
asyncio botocore transport otherwise. Building never performs network I/O;
credential resolution and connections happen on first use.
"""

from __future__ import annotations

import enum
import functools
import logging
from typing import Any, Callable

import aioboto3
import botocore.session
from aiobotocore.config import AioConfig
from awscrt.auth import AwsCredentialsProvider
from awscrt.io import (
    ClientBootstrap,
    ClientTlsContext,
    DefaultHostResolver,
    EventLoopGroup,
    TlsContextOptions,
)
from awscrt.s3 import S3Client, S3RequestTlsMode, create_default_s3_signing_config
from botocore.config import Config

from tiered_storage.common.config import S3StorageConfig
from tiered_storage.infra.observability.metrics import MetricCollector
from tiered_storage.infra.storage.client import ObjectStorageClient
from tiered_storage.infra.storage.crt_client import CrtS3Client, S3RequestSerializer
from tiered_storage.infra.storage.s3_client import StandardS3Client

logger = logging.getLogger("storage")


class ClientType(enum.Enum):
    DOWNLOAD = "download"
    UPLOAD = "upload"


class TransportKind(enum.Enum):
    STANDARD = "standard"
    CRT = "crt"


def transport_kind(config: S3StorageConfig) -> TransportKind:
    return TransportKind.CRT if config.crt_enabled else TransportKind.STANDARD


def build(
    config: S3StorageConfig, client_type: ClientType = ClientType.DOWNLOAD
) -> ObjectStorageClient:
    """Build a client for ``client_type`` usage.

    Transport construction errors propagate unchanged.
    """
    kind = transport_kind(config)
    client = _BUILDERS[kind](config, client_type)

    logger.info(
        "s3_client_built transport=%s client_type=%s region=%s endpoint=%s",
        kind.value,
        client_type.value,
        config.region,
        config.s3_service_endpoint or "<default>",
        extra={
            "extra": {
                "transport": kind.value,
                "client_type": client_type.value,
                "region": config.region,
                "endpoint": config.s3_service_endpoint,
            }
        },
    )
    return client


def _addressing(config: S3StorageConfig) -> dict[str, Any]:
    # Without the flag botocore picks the style per bucket and endpoint.
    if config.path_style_access_enabled is None:
        return {}
    style = "path" if config.path_style_access_enabled else "virtual"
    return {"s3": {"addressing_style": style}}


def build_crt_client(
    config: S3StorageConfig, client_type: ClientType = ClientType.DOWNLOAD
) -> CrtS3Client:
    event_loop_group = EventLoopGroup()
    host_resolver = DefaultHostResolver(event_loop_group)
    bootstrap = ClientBootstrap(event_loop_group, host_resolver)

    client_kwargs: dict[str, Any] = {"bootstrap": bootstrap, "region": config.region}

    # Throughput tuning only pays off for uploads.
    if client_type is ClientType.UPLOAD and config.crt_upload_throughput_gbps > 0:
        client_kwargs["throughput_target_gbps"] = config.crt_upload_throughput_gbps

    tls_ctx_options = TlsContextOptions()
    tls_ctx_options.verify_peer = config.certificate_check_enabled
    client_kwargs["tls_connection_options"] = ClientTlsContext(
        tls_ctx_options
    ).new_connection_options()
    client_kwargs["tls_mode"] = (
        S3RequestTlsMode.ENABLED
        if config.endpoint_is_secure
        else S3RequestTlsMode.DISABLED
    )

    credentials = config.credentials_provider
    if credentials is not None:
        credential_provider = AwsCredentialsProvider.new_static(
            access_key_id=credentials.access_key_id,
            secret_access_key=credentials.secret_access_key,
            session_token=credentials.session_token,
        )
    else:
        credential_provider = AwsCredentialsProvider.new_default_chain(bootstrap)
    client_kwargs["signing_config"] = create_default_s3_signing_config(
        region=config.region, credential_provider=credential_provider
    )

    # Requests are serialized unsigned; the CRT client signs them.
    serializer_kwargs: dict[str, Any] = {
        "region_name": config.region,
        "config": Config(
            request_checksum_calculation="when_required",
            response_checksum_validation="when_required",
            **_addressing(config),
        ),
    }
    if config.s3_service_endpoint is not None:
        serializer_kwargs["endpoint_url"] = config.s3_service_endpoint
    serializer = S3RequestSerializer(botocore.session.get_session(), serializer_kwargs)

    return CrtS3Client(
        S3Client(**client_kwargs),
        serializer,
        checksum_check_enabled=config.checksum_check_enabled,
        api_call_timeout=config.api_call_timeout.total_seconds(),
    )


def build_standard_client(
    config: S3StorageConfig,
    client_type: ClientType = ClientType.DOWNLOAD,
    metric_collector: MetricCollector | None = None,
) -> StandardS3Client:
    session = aioboto3.Session()
    (metric_collector or MetricCollector()).register(session.events)

    client_kwargs: dict[str, Any] = {"region_name": config.region}
    if config.s3_service_endpoint is not None:
        client_kwargs["endpoint_url"] = config.s3_service_endpoint
    if not config.certificate_check_enabled:
        client_kwargs["verify"] = False

    credentials = config.credentials_provider
    if credentials is not None:
        client_kwargs["aws_access_key_id"] = credentials.access_key_id
        client_kwargs["aws_secret_access_key"] = credentials.secret_access_key
        if credentials.session_token is not None:
            client_kwargs["aws_session_token"] = credentials.session_token

    checksum_mode = "when_supported" if config.checksum_check_enabled else "when_required"
    attempt_timeout = config.api_call_attempt_timeout.total_seconds()
    client_kwargs["config"] = AioConfig(
        request_checksum_calculation=checksum_mode,
        response_checksum_validation=checksum_mode,
        connect_timeout=attempt_timeout,
        read_timeout=attempt_timeout,
        **_addressing(config),
    )

    return StandardS3Client(
        functools.partial(session.client, "s3", **client_kwargs),
        api_call_timeout=config.api_call_timeout.total_seconds(),
    )


_BUILDERS: dict[
    TransportKind, Callable[[S3StorageConfig, ClientType], ObjectStorageClient]
] = {
    TransportKind.CRT: build_crt_client,
    TransportKind.STANDARD: build_standard_client,
}
