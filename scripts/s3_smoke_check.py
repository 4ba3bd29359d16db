#!/usr/bin/env python3
"""Round-trip a small object through the configured S3 transport.

Usage:
  .venv/bin/python scripts/s3_smoke_check.py --bucket tiered-storage
  .venv/bin/python scripts/s3_smoke_check.py --bucket tiered-storage --upload --keep

Configuration is read from the environment (S3_REGION, S3_ENDPOINT_URL,
S3_CRT_ENABLED, ...). The object is deleted afterwards unless --keep is given.
"""

from __future__ import annotations

import argparse
import asyncio
import uuid

from tiered_storage.common.config import get_config
from tiered_storage.common.logging import setup_logging
from tiered_storage.infra.storage import ByteRange, ClientType, build


async def smoke_check(
    *, bucket: str, prefix: str, client_type: ClientType, keep: bool = False
) -> str:
    payload = f"tiered-storage smoke check {uuid.uuid4()}".encode()
    object_key = f"{prefix.rstrip('/')}/{uuid.uuid4().hex}.bin"

    async with build(get_config(), client_type) as client:
        await client.put_object(bucket=bucket, object_key=object_key, data=payload)
        head = await client.head_object(bucket=bucket, object_key=object_key)
        if head.size_bytes != len(payload):
            raise RuntimeError(
                f"size mismatch: wrote {len(payload)} bytes, HEAD reports {head.size_bytes}"
            )
        tail = await client.get_object(
            bucket=bucket,
            object_key=object_key,
            byte_range=ByteRange(len(payload) - 8, len(payload) - 1),
        )
        if tail != payload[-8:]:
            raise RuntimeError("ranged read returned unexpected bytes")
        if not keep:
            await client.delete_object(bucket=bucket, object_key=object_key)
    return object_key


def main() -> None:
    parser = argparse.ArgumentParser(description="S3 transport smoke check")
    parser.add_argument("--bucket", required=True, help="Bucket to write to")
    parser.add_argument(
        "--prefix",
        default="smoke-check",
        help="Key prefix for the test object (default: smoke-check)",
    )
    parser.add_argument(
        "--upload",
        action="store_true",
        help="Build the client in UPLOAD mode (applies the CRT throughput target)",
    )
    parser.add_argument(
        "--keep",
        action="store_true",
        help="Leave the test object in the bucket",
    )
    args = parser.parse_args()
    setup_logging()
    client_type = ClientType.UPLOAD if args.upload else ClientType.DOWNLOAD
    object_key = asyncio.run(
        smoke_check(
            bucket=args.bucket,
            prefix=args.prefix,
            client_type=client_type,
            keep=args.keep,
        )
    )
    print(f"OK s3://{args.bucket}/{object_key}")


if __name__ == "__main__":
    main()
