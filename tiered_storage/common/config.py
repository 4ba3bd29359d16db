from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import timedelta
from functools import lru_cache
from pathlib import Path
from urllib.parse import urlparse

ENV_FILE = Path(".env")

DEFAULT_API_CALL_TIMEOUT_MS = 60_000
DEFAULT_API_CALL_ATTEMPT_TIMEOUT_MS = 30_000


def _load_env_file() -> None:
    if not ENV_FILE.exists():
        return
    for raw_line in ENV_FILE.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        if key and key not in os.environ:
            os.environ[key] = value


_TRUE_VALUES = {"1", "true", "t", "yes", "y", "on"}
_FALSE_VALUES = {"0", "false", "f", "no", "n", "off"}


def _as_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    return value.lower() in _TRUE_VALUES


def _as_optional_bool(name: str, value: str | None) -> bool | None:
    # Unset and blank both mean "let the transport decide".
    if value is None or not value.strip():
        return None
    normalized = value.strip().lower()
    if normalized in _TRUE_VALUES:
        return True
    if normalized in _FALSE_VALUES:
        return False
    raise ValueError(f"{name} must be true or false, got {value!r}.")


def _as_millis(value: str | None, default: int) -> timedelta:
    if value is None or not value.strip():
        return timedelta(milliseconds=default)
    return timedelta(milliseconds=int(value))


def _blank_to_none(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


@dataclass(frozen=True, slots=True)
class StaticCredentials:
    """Explicit key pair handed to either transport instead of its default chain."""

    access_key_id: str
    secret_access_key: str = field(repr=False)
    session_token: str | None = field(default=None, repr=False)


@dataclass(frozen=True)
class S3StorageConfig:
    region: str
    s3_service_endpoint: str | None = None
    path_style_access_enabled: bool | None = None
    crt_enabled: bool = False
    crt_upload_throughput_gbps: float = 0.0
    certificate_check_enabled: bool = True
    checksum_check_enabled: bool = False
    api_call_timeout: timedelta = timedelta(milliseconds=DEFAULT_API_CALL_TIMEOUT_MS)
    api_call_attempt_timeout: timedelta = timedelta(
        milliseconds=DEFAULT_API_CALL_ATTEMPT_TIMEOUT_MS
    )
    aws_access_key_id: str | None = None
    aws_secret_access_key: str | None = field(default=None, repr=False)
    aws_session_token: str | None = field(default=None, repr=False)

    def __post_init__(self) -> None:
        if not self.region or not self.region.strip():
            raise ValueError("region must be provided (S3_REGION).")

        if self.s3_service_endpoint is not None:
            parsed = urlparse(self.s3_service_endpoint)
            if parsed.scheme not in {"http", "https"} or not parsed.netloc:
                raise ValueError(
                    "s3_service_endpoint must be an absolute http(s) URL, "
                    f"got {self.s3_service_endpoint!r}."
                )

        if self.api_call_timeout <= timedelta(0):
            raise ValueError("api_call_timeout must be positive.")
        if self.api_call_attempt_timeout <= timedelta(0):
            raise ValueError("api_call_attempt_timeout must be positive.")

        if (self.aws_access_key_id is None) != (self.aws_secret_access_key is None):
            raise ValueError(
                "aws_access_key_id and aws_secret_access_key must be set together."
            )
        if self.aws_session_token is not None and self.aws_access_key_id is None:
            raise ValueError("aws_session_token requires an access key pair.")

    @property
    def credentials_provider(self) -> StaticCredentials | None:
        if self.aws_access_key_id is None or self.aws_secret_access_key is None:
            return None
        return StaticCredentials(
            access_key_id=self.aws_access_key_id,
            secret_access_key=self.aws_secret_access_key,
            session_token=self.aws_session_token,
        )

    @property
    def endpoint_is_secure(self) -> bool:
        if self.s3_service_endpoint is None:
            return True
        return urlparse(self.s3_service_endpoint).scheme == "https"

    @classmethod
    def from_environment(cls) -> "S3StorageConfig":
        _load_env_file()
        return cls(
            region=os.environ.get("S3_REGION", ""),
            s3_service_endpoint=_blank_to_none(os.environ.get("S3_ENDPOINT_URL")),
            path_style_access_enabled=_as_optional_bool(
                "S3_PATH_STYLE_ACCESS_ENABLED",
                os.environ.get("S3_PATH_STYLE_ACCESS_ENABLED"),
            ),
            crt_enabled=_as_bool(os.environ.get("S3_CRT_ENABLED"), False),
            crt_upload_throughput_gbps=float(
                os.environ.get("S3_CRT_UPLOAD_THROUGHPUT_GBPS") or 0
            ),
            certificate_check_enabled=_as_bool(
                os.environ.get("S3_CERTIFICATE_CHECK_ENABLED"), True
            ),
            checksum_check_enabled=_as_bool(
                os.environ.get("S3_CHECKSUM_CHECK_ENABLED"), False
            ),
            api_call_timeout=_as_millis(
                os.environ.get("S3_API_CALL_TIMEOUT_MS"),
                DEFAULT_API_CALL_TIMEOUT_MS,
            ),
            api_call_attempt_timeout=_as_millis(
                os.environ.get("S3_API_CALL_ATTEMPT_TIMEOUT_MS"),
                DEFAULT_API_CALL_ATTEMPT_TIMEOUT_MS,
            ),
            aws_access_key_id=_blank_to_none(os.environ.get("AWS_ACCESS_KEY_ID")),
            aws_secret_access_key=_blank_to_none(
                os.environ.get("AWS_SECRET_ACCESS_KEY")
            ),
            aws_session_token=_blank_to_none(os.environ.get("AWS_SESSION_TOKEN")),
        )


@lru_cache(maxsize=1)
def get_config() -> S3StorageConfig:
    return S3StorageConfig.from_environment()
