from __future__ import annotations

import os
import re
from dataclasses import dataclass
from pathlib import Path

ENV_FILE = Path(".env")

SUPPORTED_BACKENDS: tuple[str, ...] = ("s3", "memory")

# S3 rejects multipart parts smaller than this, except the last one
MIN_S3_PART_SIZE_BYTES = 5 * 1024 * 1024
MAX_DELETE_BATCH_SIZE = 1000

_BUCKET_NAME_RE = re.compile(r"^[a-z0-9][a-z0-9.-]{1,61}[a-z0-9]$")
_IP_ADDRESS_RE = re.compile(r"^\d+\.\d+\.\d+\.\d+$")


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


def _as_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    return value.lower() in {"1", "true", "t", "yes", "y", "on"}


def _as_optional(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


def validate_bucket_name(name: str) -> None:
    """Check a bucket name against the S3 naming rules."""
    if not _BUCKET_NAME_RE.match(name):
        raise ValueError(
            f"Invalid bucket name {name!r}: use 3-63 lowercase letters, digits, "
            "dots or hyphens, starting and ending with a letter or digit."
        )
    if ".." in name or ".-" in name or "-." in name:
        raise ValueError(f"Invalid bucket name {name!r}: malformed label.")
    if _IP_ADDRESS_RE.match(name):
        raise ValueError(f"Invalid bucket name {name!r}: must not be an IP address.")


@dataclass
class Settings:
    STORAGE_BACKEND: str = "s3"
    S3_BUCKET: str | None = None
    S3_ENDPOINT_URL: str | None = None
    S3_REGION: str = "us-east-1"
    S3_ACCESS_KEY_ID: str | None = None
    S3_SECRET_ACCESS_KEY: str | None = None
    S3_PROFILE: str | None = None
    S3_USE_SSL: bool = True
    S3_ADDRESSING_STYLE: str = "path"
    STORE_DEFAULT_DIRECTORY: str = "/"
    STORE_PART_SIZE_BYTES: int = 8 * 1024 * 1024
    STORE_LIST_PAGE_SIZE: int = 1000
    STORE_DELETE_BATCH_SIZE: int = MAX_DELETE_BATCH_SIZE
    STORE_RETRY_ATTEMPTS: int = 4
    STORE_RETRY_BASE_SECONDS: float = 0.2
    STORE_RETRY_CAP_SECONDS: float = 5.0
    LOG_LEVEL: str = "INFO"
    LOG_CONFIGURE: bool = False

    def __post_init__(self) -> None:
        backend = self.STORAGE_BACKEND.strip().lower()
        if backend not in SUPPORTED_BACKENDS:
            raise ValueError(
                f"STORAGE_BACKEND must be one of {', '.join(SUPPORTED_BACKENDS)}."
            )
        self.STORAGE_BACKEND = backend
        if self.S3_BUCKET:
            validate_bucket_name(self.S3_BUCKET)
        if self.STORE_PART_SIZE_BYTES <= 0:
            raise ValueError("STORE_PART_SIZE_BYTES must be positive.")
        if backend == "s3" and self.STORE_PART_SIZE_BYTES < MIN_S3_PART_SIZE_BYTES:
            raise ValueError(
                f"STORE_PART_SIZE_BYTES must be at least {MIN_S3_PART_SIZE_BYTES} "
                "for the s3 backend."
            )
        if not 1 <= self.STORE_DELETE_BATCH_SIZE <= MAX_DELETE_BATCH_SIZE:
            raise ValueError(
                f"STORE_DELETE_BATCH_SIZE must be between 1 and {MAX_DELETE_BATCH_SIZE}."
            )
        if self.STORE_LIST_PAGE_SIZE <= 0:
            raise ValueError("STORE_LIST_PAGE_SIZE must be positive.")
        if self.STORE_RETRY_ATTEMPTS < 1:
            raise ValueError("STORE_RETRY_ATTEMPTS must be at least 1.")
        if self.STORE_RETRY_BASE_SECONDS < 0 or self.STORE_RETRY_CAP_SECONDS < 0:
            raise ValueError("Retry delays must not be negative.")

    @classmethod
    def from_environment(cls) -> "Settings":
        _load_env_file()
        return cls(
            STORAGE_BACKEND=os.environ.get("STORAGE_BACKEND", cls.STORAGE_BACKEND),
            S3_BUCKET=_as_optional(os.environ.get("S3_BUCKET")),
            S3_ENDPOINT_URL=_as_optional(os.environ.get("S3_ENDPOINT_URL")),
            S3_REGION=os.environ.get("S3_REGION", cls.S3_REGION),
            S3_ACCESS_KEY_ID=_as_optional(os.environ.get("S3_ACCESS_KEY_ID")),
            S3_SECRET_ACCESS_KEY=_as_optional(os.environ.get("S3_SECRET_ACCESS_KEY")),
            S3_PROFILE=_as_optional(os.environ.get("S3_PROFILE")),
            S3_USE_SSL=_as_bool(os.environ.get("S3_USE_SSL"), cls.S3_USE_SSL),
            S3_ADDRESSING_STYLE=os.environ.get(
                "S3_ADDRESSING_STYLE", cls.S3_ADDRESSING_STYLE
            ),
            STORE_DEFAULT_DIRECTORY=os.environ.get(
                "STORE_DEFAULT_DIRECTORY", cls.STORE_DEFAULT_DIRECTORY
            ),
            STORE_PART_SIZE_BYTES=int(
                os.environ.get("STORE_PART_SIZE_BYTES", cls.STORE_PART_SIZE_BYTES)
            ),
            STORE_LIST_PAGE_SIZE=int(
                os.environ.get("STORE_LIST_PAGE_SIZE", cls.STORE_LIST_PAGE_SIZE)
            ),
            STORE_DELETE_BATCH_SIZE=int(
                os.environ.get("STORE_DELETE_BATCH_SIZE", cls.STORE_DELETE_BATCH_SIZE)
            ),
            STORE_RETRY_ATTEMPTS=int(
                os.environ.get("STORE_RETRY_ATTEMPTS", cls.STORE_RETRY_ATTEMPTS)
            ),
            STORE_RETRY_BASE_SECONDS=float(
                os.environ.get("STORE_RETRY_BASE_SECONDS", cls.STORE_RETRY_BASE_SECONDS)
            ),
            STORE_RETRY_CAP_SECONDS=float(
                os.environ.get("STORE_RETRY_CAP_SECONDS", cls.STORE_RETRY_CAP_SECONDS)
            ),
            LOG_LEVEL=os.environ.get("LOG_LEVEL", cls.LOG_LEVEL).upper(),
            LOG_CONFIGURE=_as_bool(
                os.environ.get("LOG_CONFIGURE"), cls.LOG_CONFIGURE
            ),
        )
