"""Object-store backends for ingestion records (local filesystem + S3).

Keys are slash-separated relative paths such as
``newspassid/acme/example.com/acme-1f2e.../1718000000000.csv``. Each key
write is atomic; there are no multi-key transactions.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from newspassid.config import Settings

logger = logging.getLogger(__name__)


class ObjectStore(Protocol):
    def read_text(self, key: str) -> str:
        """Return the object's text. Raises FileNotFoundError if absent."""
        ...

    def write_text(self, key: str, content: str, content_type: str = "text/csv") -> str:
        """Write (or overwrite) an object and return its location."""
        ...

    def exists(self, key: str) -> bool:
        ...

    def list_keys(self, prefix: str) -> list[str]:
        ...


class LocalObjectStore:
    def __init__(self, root: Path) -> None:
        self.root = root

    def _full_path(self, key: str) -> Path:
        path = self.root / key.lstrip("/")
        root = self.root.resolve()
        resolved = path.resolve()
        if resolved != root and root not in resolved.parents:
            raise ValueError(f"Key escapes store root: {key!r}")
        return path

    def read_text(self, key: str) -> str:
        return self._full_path(key).read_text(encoding="utf-8")

    def write_text(self, key: str, content: str, content_type: str = "text/csv") -> str:
        path = self._full_path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        tmp_path.write_text(content, encoding="utf-8")
        os.replace(tmp_path, path)
        return str(path)

    def exists(self, key: str) -> bool:
        return self._full_path(key).is_file()

    def list_keys(self, prefix: str) -> list[str]:
        base = self._full_path(prefix)
        if not base.exists():
            return []
        return sorted(
            path.relative_to(self.root).as_posix()
            for path in base.rglob("*")
            if path.is_file() and not path.name.endswith(".tmp")
        )


class S3ObjectStore:
    def __init__(
        self,
        bucket: str,
        prefix: str = "",
        *,
        timeout_seconds: float | None = None,
        client: object | None = None,
    ) -> None:
        self.bucket = bucket
        self.prefix = prefix.strip("/")
        if client is None:
            import boto3
            from botocore.config import Config

            config = None
            if timeout_seconds is not None:
                config = Config(
                    connect_timeout=timeout_seconds,
                    read_timeout=timeout_seconds,
                    retries={"max_attempts": 1},
                )
            client = boto3.client("s3", config=config)
        self._client = client

    def _key(self, key: str) -> str:
        relative = key.lstrip("/")
        if not self.prefix:
            return relative
        return f"{self.prefix}/{relative}"

    def read_text(self, key: str) -> str:
        from botocore.exceptions import ClientError

        full_key = self._key(key)
        try:
            response = self._client.get_object(Bucket=self.bucket, Key=full_key)
        except ClientError as exc:
            error_code = exc.response.get("Error", {}).get("Code")
            if error_code in {"NoSuchKey", "404", "NotFound"}:
                raise FileNotFoundError(full_key) from exc
            raise
        return response["Body"].read().decode("utf-8")

    def write_text(self, key: str, content: str, content_type: str = "text/csv") -> str:
        full_key = self._key(key)
        self._client.put_object(
            Bucket=self.bucket,
            Key=full_key,
            Body=content.encode("utf-8"),
            ContentType=content_type,
        )
        return f"s3://{self.bucket}/{full_key}"

    def exists(self, key: str) -> bool:
        from botocore.exceptions import ClientError

        try:
            self._client.head_object(Bucket=self.bucket, Key=self._key(key))
        except ClientError as exc:
            error_code = exc.response.get("Error", {}).get("Code")
            if error_code in {"NoSuchKey", "404", "NotFound"}:
                return False
            raise
        return True

    def list_keys(self, prefix: str) -> list[str]:
        paginator = self._client.get_paginator("list_objects_v2")
        keys: list[str] = []
        strip = f"{self.prefix}/" if self.prefix else ""
        for page in paginator.paginate(Bucket=self.bucket, Prefix=self._key(prefix)):
            for item in page.get("Contents", []):
                keys.append(item["Key"][len(strip):])
        return sorted(keys)


def build_object_store(settings: Settings) -> ObjectStore:
    """Construct the configured object store."""
    if settings.storage_backend == "s3":
        if not settings.storage_bucket:
            raise ValueError("STORAGE_BUCKET must be set when storage_backend is 's3'")
        logger.info("[STORE] s3://%s", settings.storage_bucket)
        return S3ObjectStore(
            settings.storage_bucket,
            timeout_seconds=settings.storage_timeout_seconds,
        )
    root = Path(settings.storage_local_root)
    logger.info("[STORE] local %s", root.absolute())
    return LocalObjectStore(root)
