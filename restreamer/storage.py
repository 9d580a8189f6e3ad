"""S3-compatible object storage client wrapper."""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from .config import StorageConfig
from .errors import StorageError

logger = logging.getLogger(__name__)

DELETE_BATCH_SIZE = 10


class ObjectStorageClient:
    """Wrapper around a boto3 S3 client bound to a single bucket."""

    def __init__(self, config: StorageConfig, client: Any = None):
        self.config = config
        self.bucket = config.bucket
        self.client = client or self._build_client()

    def _build_client(self):
        return boto3.client(
            "s3",
            endpoint_url=self.config.endpoint,
            aws_access_key_id=self.config.access_key_id,
            aws_secret_access_key=self.config.secret_access_key,
            region_name=self.config.region,
            config=Config(s3={"addressing_style": "path"}),
        )

    def list_objects(self, prefix: str = "") -> List[Dict[str, Any]]:
        """List one level below ``prefix``: folders first, then files."""
        response = self.safe_call(
            self.client.list_objects_v2, Bucket=self.bucket, Prefix=prefix, Delimiter="/"
        )
        result = [
            _folder(item["Prefix"]) for item in response.get("CommonPrefixes", []) if item.get("Prefix")
        ]
        for item in response.get("Contents", []):
            key = item.get("Key", "")
            if key == prefix or key.endswith("/"):
                continue
            result.append(_file(item))
        return result

    def list_all(self, prefix: str = "") -> List[Dict[str, Any]]:
        objects = []
        for item in self._iter_contents(prefix):
            if item.get("Key"):
                entry = _file(item)
                if entry["key"].endswith("/"):
                    entry["type"] = "folder"
                objects.append(entry)
        return objects

    def bucket_stats(self) -> Dict[str, Any]:
        storage_used = 0
        object_count = 0
        for item in self._iter_contents(""):
            storage_used += item.get("Size", 0) or 0
            object_count += 1
        return {"name": self.bucket, "storageUsed": storage_used, "objectCount": object_count}

    def _iter_contents(self, prefix: str) -> Iterable[Dict[str, Any]]:
        token: Optional[str] = None
        while True:
            kwargs = {"Bucket": self.bucket, "Prefix": prefix}
            if token:
                kwargs["ContinuationToken"] = token
            response = self.safe_call(self.client.list_objects_v2, **kwargs)
            yield from response.get("Contents", [])
            token = response.get("NextContinuationToken")
            if not token:
                break

    def create_folder(self, path: str) -> str:
        key = path if path.endswith("/") else f"{path}/"
        self.safe_call(
            self.client.put_object, Bucket=self.bucket, Key=key, Body=b"", ContentType="application/x-directory"
        )
        logger.info("Created folder %s", key)
        return key

    def delete_objects(self, keys: Iterable[str]) -> int:
        """Delete keys, expanding folders (keys ending in ``/``) recursively."""
        to_delete: List[str] = []
        for key in keys:
            if key.endswith("/"):
                to_delete.extend(item["key"] for item in self.list_all(key))
            to_delete.append(key)
        unique = list(dict.fromkeys(to_delete))

        for start in range(0, len(unique), DELETE_BATCH_SIZE):
            batch = unique[start : start + DELETE_BATCH_SIZE]
            self.safe_call(
                self.client.delete_objects,
                Bucket=self.bucket,
                Delete={"Objects": [{"Key": key} for key in batch], "Quiet": True},
            )
        logger.info("Deleted %d object(s)", len(unique))
        return len(unique)

    def rename_object(self, old_key: str, new_key: str) -> None:
        if old_key == new_key:
            return
        if old_key.endswith("/"):
            moves = [(item["key"], f"{new_key}{item['key'][len(old_key):]}") for item in self.list_all(old_key)]
        else:
            moves = [(old_key, new_key)]
        for source, target in moves:
            self.safe_call(
                self.client.copy_object,
                Bucket=self.bucket,
                CopySource={"Bucket": self.bucket, "Key": source},
                Key=target,
            )
            self.safe_call(self.client.delete_object, Bucket=self.bucket, Key=source)
        logger.info("Renamed %s to %s", old_key, new_key)

    def download_to(self, key: str, target: Path) -> Path:
        """Download ``key`` into ``target`` through a temporary file in the same directory."""
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.", suffix=".part")
        os.close(fd)
        try:
            self.safe_call(self.client.download_file, self.bucket, key, tmp_name)
            os.replace(tmp_name, target)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.info("Downloaded %s to %s", key, target)
        return target

    def safe_call(self, func, *args, **kwargs):
        try:
            return func(*args, **kwargs)
        except (BotoCoreError, ClientError) as exc:
            logger.error("Object storage error: %s", exc)
            raise StorageError(f"Object storage error: {exc}") from exc


def _folder(prefix: str) -> Dict[str, Any]:
    return {"key": prefix, "size": 0, "lastModified": None, "etag": "", "type": "folder"}


def _file(item: Dict[str, Any]) -> Dict[str, Any]:
    key = item.get("Key", "")
    modified = item.get("LastModified")
    return {
        "key": key,
        "size": item.get("Size", 0) or 0,
        "lastModified": modified.isoformat() if modified else None,
        "etag": item.get("ETag", ""),
        "type": "file",
        "mimeType": key.rsplit(".", 1)[-1] if "." in key else None,
    }
