"""S3-compatible object storage artifact store."""

import secrets
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, List, Optional

import aioboto3
from botocore.exceptions import BotoCoreError, ClientError
from pydantic import ValidationError

from .._utils import logger
from ..exceptions import StorageError
from ..schemas import BackupMetadata
from .base import ARTIFACT_SUFFIX, BaseArtifactStore, is_safe_id

_MISSING_CODES = {"404", "NoSuchKey", "NotFound"}


def _is_missing(error: ClientError) -> bool:
    return str(error.response.get("Error", {}).get("Code")) in _MISSING_CODES


class S3ArtifactStore(BaseArtifactStore):
    """Store artifacts and metadata as objects in a single bucket.

    Artifacts are uploaded from the local staging dir with a single PUT, so an
    object is either fully visible or absent.
    """

    def __init__(
        self,
        bucket: str,
        prefix: str = "backups",
        region: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        staging_dir: str = "./backups/temp",
    ):
        super().__init__(Path(staging_dir))
        self.bucket = bucket
        self.prefix = prefix.strip("/")
        self.region = region
        self.endpoint_url = endpoint_url
        self.session = aioboto3.Session()

    @property
    def location(self) -> str:
        return f"s3://{self.bucket}/{self.prefix}"

    def _client(self):
        return self.session.client(
            "s3",
            region_name=self.region,
            endpoint_url=self.endpoint_url,
        )

    def _artifact_key(self, backup_id: str) -> str:
        return f"{self.prefix}/artifacts/{backup_id}{ARTIFACT_SUFFIX}"

    def _metadata_key(self, backup_id: str) -> str:
        return f"{self.prefix}/metadata/{backup_id}.json"

    async def put_artifact(self, backup_id: str, staged_path: Path) -> int:
        try:
            size = staged_path.stat().st_size
            async with self._client() as s3:
                await s3.upload_file(str(staged_path), self.bucket, self._artifact_key(backup_id))
            staged_path.unlink(missing_ok=True)
        except (OSError, BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to upload artifact {backup_id}: {e}") from e

        logger.info(f"Uploaded artifact s3://{self.bucket}/{self._artifact_key(backup_id)} ({size:,} bytes)")
        return size

    @asynccontextmanager
    async def artifact_path(self, backup_id: str) -> AsyncIterator[Path]:
        if not is_safe_id(backup_id):
            raise StorageError(f"Artifact not found: {backup_id}")

        local = self.staging_path(f"fetch_{backup_id}_{secrets.token_hex(4)}")
        try:
            try:
                async with self._client() as s3:
                    await s3.download_file(self.bucket, self._artifact_key(backup_id), str(local))
            except ClientError as e:
                if _is_missing(e):
                    raise StorageError(f"Artifact not found: {backup_id}") from e
                raise StorageError(f"Failed to download artifact {backup_id}: {e}") from e
            except (OSError, BotoCoreError) as e:
                raise StorageError(f"Failed to download artifact {backup_id}: {e}") from e
            yield local
        finally:
            local.unlink(missing_ok=True)

    async def _head(self, key: str) -> Optional[dict]:
        try:
            async with self._client() as s3:
                return await s3.head_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if _is_missing(e):
                return None
            raise StorageError(f"Failed to stat {key}: {e}") from e
        except BotoCoreError as e:
            raise StorageError(f"Failed to stat {key}: {e}") from e

    async def artifact_exists(self, backup_id: str) -> bool:
        if not is_safe_id(backup_id):
            return False
        return await self._head(self._artifact_key(backup_id)) is not None

    async def artifact_size(self, backup_id: str) -> Optional[int]:
        if not is_safe_id(backup_id):
            return None
        head = await self._head(self._artifact_key(backup_id))
        return head["ContentLength"] if head else None

    async def delete_artifact(self, backup_id: str) -> int:
        size = await self.artifact_size(backup_id)
        if size is None:
            return 0
        try:
            async with self._client() as s3:
                await s3.delete_object(Bucket=self.bucket, Key=self._artifact_key(backup_id))
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to delete artifact {backup_id}: {e}") from e
        return size

    async def put_metadata(self, metadata: BackupMetadata) -> None:
        if not is_safe_id(metadata.id):
            raise StorageError(f"Invalid backup id: {metadata.id}")
        try:
            async with self._client() as s3:
                await s3.put_object(
                    Bucket=self.bucket,
                    Key=self._metadata_key(metadata.id),
                    Body=metadata.model_dump_json(indent=2).encode("utf-8"),
                    ContentType="application/json",
                )
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to write metadata {metadata.id}: {e}") from e

    async def _read_metadata(self, s3, key: str) -> Optional[BackupMetadata]:
        try:
            response = await s3.get_object(Bucket=self.bucket, Key=key)
            body = await response["Body"].read()
        except ClientError as e:
            if _is_missing(e):
                return None
            raise
        try:
            return BackupMetadata.model_validate_json(body)
        except ValidationError as e:
            logger.warning(f"Corrupted metadata record {key}: {e}")
            return None

    async def get_metadata(self, backup_id: str) -> Optional[BackupMetadata]:
        if not is_safe_id(backup_id):
            return None
        try:
            async with self._client() as s3:
                return await self._read_metadata(s3, self._metadata_key(backup_id))
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to read metadata {backup_id}: {e}") from e

    async def list_metadata(self) -> List[BackupMetadata]:
        records = []
        try:
            async with self._client() as s3:
                paginator = s3.get_paginator("list_objects_v2")
                async for page in paginator.paginate(Bucket=self.bucket, Prefix=f"{self.prefix}/metadata/"):
                    for obj in page.get("Contents", []):
                        if not obj["Key"].endswith(".json"):
                            continue
                        metadata = await self._read_metadata(s3, obj["Key"])
                        if metadata is not None:
                            records.append(metadata)
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to list metadata: {e}") from e
        return records

    async def delete_metadata(self, backup_id: str) -> None:
        if not is_safe_id(backup_id):
            return
        try:
            async with self._client() as s3:
                await s3.delete_object(Bucket=self.bucket, Key=self._metadata_key(backup_id))
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to delete metadata {backup_id}: {e}") from e
