"""Tests for scripts/s3_smoke_check.py."""

from __future__ import annotations

from unittest.mock import patch

import pytest

from scripts.s3_smoke_check import smoke_check
from tests.infra.mock_storage import MockStorageClient
from tiered_storage.common.config import S3StorageConfig
from tiered_storage.infra.storage import ClientType, ObjectNotFoundError

SCRIPT = "scripts.s3_smoke_check"


@pytest.fixture
def storage():
    return MockStorageClient()


@pytest.fixture
def patched_build(storage):
    config = S3StorageConfig(region="us-east-1", crt_enabled=True)
    with patch(f"{SCRIPT}.get_config", return_value=config), patch(
        f"{SCRIPT}.build", return_value=storage
    ) as build:
        yield build, config


@pytest.mark.asyncio
async def test_round_trip_deletes_object(storage, patched_build):
    build, config = patched_build

    object_key = await smoke_check(
        bucket="tiered", prefix="smoke/", client_type=ClientType.UPLOAD
    )

    build.assert_called_once_with(config, ClientType.UPLOAD)
    assert object_key.startswith("smoke/")
    assert storage.objects == {}
    assert storage.closed is True


@pytest.mark.asyncio
async def test_round_trip_fails_when_object_vanishes(storage, patched_build):
    original_put = storage.put_object

    async def put_then_lose(**kwargs):
        await original_put(**kwargs)
        storage.objects.clear()

    storage.put_object = put_then_lose

    with pytest.raises(ObjectNotFoundError):
        await smoke_check(bucket="tiered", prefix="smoke", client_type=ClientType.DOWNLOAD)


@pytest.mark.asyncio
async def test_keep_leaves_object(storage, patched_build):
    object_key = await smoke_check(
        bucket="tiered", prefix="smoke", client_type=ClientType.DOWNLOAD, keep=True
    )

    assert list(storage.objects) == [f"tiered/{object_key}"]
    listed = await MockStorageClient(objects=storage.objects).list_objects(
        bucket="tiered", prefix="smoke/"
    )
    assert [item.key for item in listed] == [object_key]


@pytest.mark.asyncio
async def test_mock_multipart_round_trip():
    storage = MockStorageClient()
    upload = await storage.init_multipart_upload(bucket="b", object_key="seg")
    second = await storage.upload_part(
        bucket="b", object_key="seg", upload_id=upload.upload_id, part_number=2, data=b"world"
    )
    first = await storage.upload_part(
        bucket="b", object_key="seg", upload_id=upload.upload_id, part_number=1, data=b"hello "
    )

    await storage.complete_multipart_upload(
        bucket="b", object_key="seg", upload_id=upload.upload_id, parts=[second, first]
    )

    assert await storage.get_object(bucket="b", object_key="seg") == b"hello world"
