"""
Object storage backends for composed images.

STORAGE STRUCTURE (local backend):
----------------------------------
data_dir/
└── buckets/{bucket}/{key}     Served at: /assets/{bucket}/{key}

Both backends share one async contract:
    upload(bucket, key, data, content_type) -> public URL
    delete(bucket, key)                     -> None
    public_url(bucket, key)                 -> URL

upload failures raise StorageUploadError, delete failures StorageDeleteError.
Callers decide whether a delete failure matters.
"""
import asyncio
import logging
from pathlib import Path
from typing import Optional

from wearup_service.core.errors import StorageUploadError, StorageDeleteError
from wearup_service.core.validation import ValidationError

logger = logging.getLogger(__name__)

ASSET_ROUTE_PREFIX = "/assets"


class LocalStorage:
    """Filesystem-backed buckets for development and tests."""

    def __init__(self, base_dir: str, public_prefix: str = ASSET_ROUTE_PREFIX):
        self.base_data_dir = Path(base_dir)
        self.buckets_dir = self.base_data_dir / "buckets"
        self.public_prefix = public_prefix.rstrip("/")

    def ensure_directories(self):
        """Create required directories."""
        self.buckets_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"✓ Storage directories initialized: {self.buckets_dir}")

    def get_file_path(self, relative_path: str) -> Path:
        """Get full path for a bucket-relative path, with security check."""
        if any(part in relative_path for part in ("..", "~", "$", "%")):
            raise ValidationError("Access denied: suspicious path pattern", status_code=403)

        full_path = (self.buckets_dir / relative_path).resolve()
        base_resolved = self.buckets_dir.resolve()

        try:
            full_path.relative_to(base_resolved)
        except ValueError:
            raise ValidationError("Access denied: path traversal detected", status_code=403)

        return full_path

    def public_url(self, bucket: str, key: str) -> str:
        return f"{self.public_prefix}/{bucket}/{key}"

    def _write(self, path: Path, data: bytes):
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "wb") as f:
            f.write(data)

    async def upload(self, bucket: str, key: str, data: bytes, content_type: str) -> str:
        try:
            path = self.get_file_path(f"{bucket}/{key}")
            await asyncio.to_thread(self._write, path, data)
        except (OSError, ValidationError) as e:
            raise StorageUploadError(f"Upload of {bucket}/{key} failed: {e}") from e

        logger.info(f"Stored {bucket}/{key} ({len(data)} bytes, {content_type})")
        return self.public_url(bucket, key)

    async def delete(self, bucket: str, key: str) -> None:
        try:
            path = self.get_file_path(f"{bucket}/{key}")
            await asyncio.to_thread(path.unlink)
        except (OSError, ValidationError) as e:
            raise StorageDeleteError(f"Delete of {bucket}/{key} failed: {e}") from e

        logger.info(f"Deleted {bucket}/{key}")


class SupabaseStorage:
    """Supabase Storage buckets. The client is synchronous, calls run in a worker thread."""

    def __init__(self, client, cache_control: str = "3600"):
        self.client = client
        self.cache_control = cache_control

    @classmethod
    def from_credentials(cls, url: str, key: str) -> "SupabaseStorage":
        from supabase import create_client

        client = create_client(url, key)
        logger.info("✓ Supabase storage client initialized")
        return cls(client)

    def public_url(self, bucket: str, key: str) -> str:
        return self.client.storage.from_(bucket).get_public_url(key)

    async def upload(self, bucket: str, key: str, data: bytes, content_type: str) -> str:
        options = {
            "content-type": content_type,
            "cache-control": self.cache_control,
            "upsert": "false",
        }
        try:
            await asyncio.to_thread(
                self.client.storage.from_(bucket).upload, key, data, options
            )
        except Exception as e:
            raise StorageUploadError(f"Supabase upload of {bucket}/{key} failed: {e}") from e

        logger.info(f"Uploaded {bucket}/{key} to Supabase ({len(data)} bytes)")
        return self.public_url(bucket, key)

    async def delete(self, bucket: str, key: str) -> None:
        try:
            await asyncio.to_thread(self.client.storage.from_(bucket).remove, [key])
        except Exception as e:
            raise StorageDeleteError(f"Supabase delete of {bucket}/{key} failed: {e}") from e

        logger.info(f"Deleted {bucket}/{key} from Supabase")


def file_name_from_url(url: Optional[str]) -> Optional[str]:
    """Last path segment of a storage URL, without query string."""
    if not url:
        return None
    name = url.split("?", 1)[0].rstrip("/").rsplit("/", 1)[-1]
    return name or None
