"""
Storage Service
Durable byte storage for reference images and generated artifacts.
Supports Google Cloud Storage, local filesystem, and S3.
"""

import asyncio
import logging
from datetime import timedelta
from pathlib import Path
from typing import Optional

from app.core.config import Settings, settings as default_settings
from app.core.errors import NotFoundError

logger = logging.getLogger(__name__)

ARTIFACT_CACHE_CONTROL = "public,max-age=31536000,immutable"


class StorageService:
    """Service for file storage operations."""

    def __init__(self, config: Optional[Settings] = None):
        self.settings = config or default_settings

        # Priority: GCS > Local > S3
        self.use_gcs = self.settings.USE_GCS
        self.use_local = self.settings.USE_LOCAL_STORAGE and not self.use_gcs

        if self.use_gcs:
            # Google Cloud Storage
            from google.cloud import storage
            self.gcs_client = storage.Client(project=self.settings.GCP_PROJECT_ID or None)
            self.bucket_uploads = self.gcs_client.bucket(self.settings.GCS_BUCKET_UPLOADS)
            self.bucket_outputs = self.gcs_client.bucket(self.settings.GCS_BUCKET_OUTPUTS)
            logger.info(
                f"[Storage] Using Google Cloud Storage: "
                f"{self.settings.GCS_BUCKET_UPLOADS}, {self.settings.GCS_BUCKET_OUTPUTS}"
            )

        elif self.use_local:
            self.base_path = Path(self.settings.LOCAL_STORAGE_PATH)
            self.base_path.mkdir(parents=True, exist_ok=True)
            logger.info(f"[Storage] Using local storage: {self.base_path}")

        else:
            # S3 fallback
            import boto3
            from botocore.config import Config
            self.s3 = boto3.client(
                "s3",
                endpoint_url=self.settings.S3_ENDPOINT or None,
                aws_access_key_id=self.settings.S3_ACCESS_KEY,
                aws_secret_access_key=self.settings.S3_SECRET_KEY,
                region_name=self.settings.S3_REGION,
                config=Config(signature_version="s3v4")
            )
            self.bucket = self.settings.S3_BUCKET
            logger.info(f"[Storage] Using S3: {self.bucket}")

    @property
    def backend(self) -> str:
        if self.use_gcs:
            return "gcs"
        return "local" if self.use_local else "s3"

    def _gcs_bucket(self, path: str):
        """Reference uploads live in the uploads bucket, everything else in outputs."""
        if path.startswith("uploads/") or path.startswith("library/"):
            return self.bucket_uploads
        return self.bucket_outputs

    def get_public_url(self, path: str) -> str:
        """API proxy URL served by the ``/files`` route."""
        return f"{self.settings.API_BASE_URL.rstrip('/')}/files/{path}"

    def _local_path(self, path: str) -> Path:
        """
        Resolve ``path`` under the storage root.

        Raises:
            NotFoundError: if the path escapes the storage root
        """
        root = self.base_path.resolve()
        file_path = (root / path).resolve()
        if file_path != root and root not in file_path.parents:
            raise NotFoundError(f"Stored file not found: {path}")
        return file_path

    async def write(self, path: str, data: bytes, mime_type: str = "image/png") -> str:
        """
        Store bytes at ``path`` (overwriting) and return a retrievable URL.

        The URL is public where the backend allows it, otherwise signed.
        Backend SDK calls block, so they run in a worker thread.
        """
        if self.use_gcs:
            return await asyncio.to_thread(self._write_gcs, data, path, mime_type)
        elif self.use_local:
            return await asyncio.to_thread(self._write_local, data, path)
        else:
            return await asyncio.to_thread(self._write_s3, data, path, mime_type)

    def _write_gcs(self, data: bytes, path: str, mime_type: str) -> str:
        from google.api_core import exceptions as gcs_exceptions

        blob = self._gcs_bucket(path).blob(path)
        blob.cache_control = ARTIFACT_CACHE_CONTROL
        blob.upload_from_string(data, content_type=mime_type)

        try:
            blob.make_public()
            return blob.public_url
        except gcs_exceptions.GoogleAPICallError as e:
            # Uniform bucket-level access or missing IAM permission
            logger.info(f"[Storage] Cannot make {path} public ({e}); issuing signed URL")

        try:
            return blob.generate_signed_url(
                expiration=timedelta(seconds=self.settings.SIGNED_URL_TTL_SECONDS),
                version="v4",
            )
        except (AttributeError, ValueError, TypeError) as e:
            # Credentials without a private key cannot sign
            logger.warning(f"[Storage] Cannot sign URL for {path} ({e}); using API proxy URL")
            return self.get_public_url(path)

    def _write_local(self, data: bytes, path: str) -> str:
        """Save file to local filesystem."""
        file_path = self._local_path(path)
        file_path.parent.mkdir(parents=True, exist_ok=True)

        with open(file_path, "wb") as f:
            f.write(data)

        return self.get_public_url(path)

    def _write_s3(self, data: bytes, path: str, mime_type: str) -> str:
        """Upload to S3 and return a presigned GET URL."""
        self.s3.put_object(
            Bucket=self.bucket,
            Key=path,
            Body=data,
            ContentType=mime_type,
            CacheControl=ARTIFACT_CACHE_CONTROL,
        )
        return self.s3.generate_presigned_url(
            "get_object",
            Params={"Bucket": self.bucket, "Key": path},
            ExpiresIn=self.settings.SIGNED_URL_TTL_SECONDS,
        )

    async def read(self, path: str) -> bytes:
        """
        Get file contents.

        Raises:
            NotFoundError: if nothing is stored at ``path``
        """
        return await asyncio.to_thread(self._read, path)

    def _read(self, path: str) -> bytes:
        if self.use_gcs:
            from google.api_core import exceptions as gcs_exceptions
            try:
                return self._gcs_bucket(path).blob(path).download_as_bytes()
            except gcs_exceptions.NotFound:
                raise NotFoundError(f"Stored file not found: {path}")
        elif self.use_local:
            file_path = self._local_path(path)
            try:
                with open(file_path, "rb") as f:
                    return f.read()
            except (FileNotFoundError, IsADirectoryError):
                raise NotFoundError(f"Stored file not found: {path}")
        else:
            try:
                response = self.s3.get_object(Bucket=self.bucket, Key=path)
            except self.s3.exceptions.NoSuchKey:
                raise NotFoundError(f"Stored file not found: {path}")
            return response["Body"].read()

    async def delete(self, path: str) -> None:
        """Delete a single file; a missing file is not an error."""
        await asyncio.to_thread(self._delete, path)

    def _delete(self, path: str) -> None:
        if self.use_gcs:
            from google.api_core import exceptions as gcs_exceptions
            try:
                self._gcs_bucket(path).blob(path).delete()
                logger.info(f"[Storage] Deleted file: {path}")
            except gcs_exceptions.NotFound:
                logger.debug(f"[Storage] Already gone: {path}")
        elif self.use_local:
            file_path = self._local_path(path)
            if file_path.exists() and file_path.is_file():
                file_path.unlink()
                logger.info(f"[Storage] Deleted file: {path}")
        else:
            # S3 delete is idempotent
            self.s3.delete_object(Bucket=self.bucket, Key=path)
            logger.info(f"[Storage] Deleted file: {path}")
