"""Object storage for product images and brand logos.

Path conventions:

- product images: ``products/{product_id}/images/{random}.{ext}``
- product thumbnail: ``products/{product_id}/thumbnail.{ext}``
- brand logos: ``brandLogos/{brand-slug}.png``
"""

import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Optional
from urllib.parse import unquote, urlparse

from google.api_core import exceptions as google_exceptions

from storefront.config import ALLOWED_IMAGE_TYPES, MAX_UPLOAD_BYTES, UPLOAD_BASE_URL, UPLOAD_DIR
from storefront.errors import StorageError
from storefront.logging_config import get_logger
from storefront.models import brand_slug

__all__ = [
    "Upload",
    "validate_upload",
    "ObjectStorage",
    "LocalObjectStorage",
    "FirebaseObjectStorage",
]

logger = get_logger("storage")

EXTENSIONS = {"image/jpeg": "jpg", "image/png": "png", "image/webp": "webp"}


@dataclass
class Upload:
    """An uploaded file held in memory."""

    filename: str
    content: bytes
    content_type: str

    @classmethod
    def from_file_storage(cls, file_storage: Any) -> "Upload":
        """Build from a werkzeug FileStorage (Flask ``request.files``)."""
        return cls(
            filename=file_storage.filename or "upload",
            content=file_storage.read(),
            content_type=file_storage.mimetype or "",
        )

    @property
    def extension(self) -> str:
        return EXTENSIONS.get(self.content_type, "bin")


def validate_upload(upload: Upload, max_bytes: int = MAX_UPLOAD_BYTES) -> None:
    if upload.content_type not in ALLOWED_IMAGE_TYPES:
        raise StorageError(
            f"Invalid file type: {upload.content_type or 'unknown'}. "
            f"Allowed types: {', '.join(sorted(ALLOWED_IMAGE_TYPES))}"
        )
    if len(upload.content) > max_bytes:
        raise StorageError(
            f"File too large: {upload.filename}. Maximum size: {max_bytes // (1024 * 1024)}MB"
        )


def _random_name() -> str:
    return f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:12]}"


class ObjectStorage:
    """Path conventions on top of a put/delete/list backend."""

    def _put(self, path: str, content: bytes, content_type: str) -> str:
        raise NotImplementedError

    def _delete(self, path: str) -> None:
        raise NotImplementedError

    def _list(self, prefix: str) -> List[str]:
        raise NotImplementedError

    def path_from_url(self, url: str) -> Optional[str]:
        raise NotImplementedError

    def upload_product_image(self, product_id: str, upload: Upload) -> str:
        validate_upload(upload)
        path = f"products/{product_id}/images/{_random_name()}.{upload.extension}"
        return self._put(path, upload.content, upload.content_type)

    def upload_product_thumbnail(self, product_id: str, upload: Upload) -> str:
        validate_upload(upload)
        path = f"products/{product_id}/thumbnail.{upload.extension}"
        return self._put(path, upload.content, upload.content_type)

    def upload_image(self, upload: Upload) -> str:
        """Upload an image not yet tied to a product (admin form staging)."""
        validate_upload(upload)
        path = f"uploads/{_random_name()}.{upload.extension}"
        return self._put(path, upload.content, upload.content_type)

    def upload_brand_logo(self, brand: str, upload: Upload) -> str:
        validate_upload(upload)
        return self._put(f"brandLogos/{brand_slug(brand)}.png", upload.content, upload.content_type)

    def delete_brand_logo(self, brand: str) -> None:
        self._delete(f"brandLogos/{brand_slug(brand)}.png")

    def delete_url(self, url: str) -> None:
        path = self.path_from_url(url)
        if path is None:
            raise StorageError(f"URL is not managed by this storage: {url}")
        self._delete(path)

    def cleanup_product(self, product_id: str) -> int:
        """Delete every object stored under a product; returns the count."""
        paths = self._list(f"products/{product_id}/")
        for path in paths:
            self._delete(path)
        if paths:
            logger.info(f"Deleted {len(paths)} stored object(s) for product {product_id}")
        return len(paths)


class LocalObjectStorage(ObjectStorage):
    """Filesystem storage served under ``base_url`` (development)."""

    def __init__(self, root: str = UPLOAD_DIR, base_url: str = UPLOAD_BASE_URL):
        self.root = Path(root)
        self.base_url = base_url.rstrip("/")

    def _resolve(self, path: str) -> Path:
        full = (self.root / path).resolve()
        if self.root.resolve() not in full.parents:
            raise StorageError(f"Path escapes storage root: {path}")
        return full

    def _put(self, path: str, content: bytes, content_type: str) -> str:
        full = self._resolve(path)
        try:
            full.parent.mkdir(parents=True, exist_ok=True)
            full.write_bytes(content)
        except OSError as e:
            raise StorageError(f"Could not write {path}: {e}") from e
        logger.debug(f"Stored {path} ({len(content)} bytes)")
        return f"{self.base_url}/{path}"

    def _delete(self, path: str) -> None:
        full = self._resolve(path)
        try:
            full.unlink()
        except FileNotFoundError:
            logger.debug(f"Object {path} already gone")
        except OSError as e:
            raise StorageError(f"Could not delete {path}: {e}") from e

    def _list(self, prefix: str) -> List[str]:
        base = self.root / prefix
        if not base.exists():
            return []
        return sorted(str(p.relative_to(self.root).as_posix()) for p in base.rglob("*") if p.is_file())

    def path_from_url(self, url: str) -> Optional[str]:
        prefix = self.base_url + "/"
        if not url.startswith(prefix):
            return None
        return url[len(prefix):]


class FirebaseObjectStorage(ObjectStorage):
    """Firebase Storage bucket via firebase_admin."""

    def __init__(self, bucket: Any = None):
        if bucket is None:
            from firebase_admin import storage

            from storefront.firestore import get_firebase_app

            bucket = storage.bucket(app=get_firebase_app())
        self.bucket = bucket

    def _put(self, path: str, content: bytes, content_type: str) -> str:
        blob = self.bucket.blob(path)
        try:
            blob.upload_from_string(content, content_type=content_type)
            blob.make_public()
        except google_exceptions.GoogleAPICallError as e:
            raise StorageError(f"Upload of {path} failed: {e}") from e
        return blob.public_url

    def _delete(self, path: str) -> None:
        try:
            self.bucket.blob(path).delete()
        except google_exceptions.NotFound:
            logger.debug(f"Object {path} already gone")
        except google_exceptions.GoogleAPICallError as e:
            raise StorageError(f"Delete of {path} failed: {e}") from e

    def _list(self, prefix: str) -> List[str]:
        try:
            return [blob.name for blob in self.bucket.list_blobs(prefix=prefix)]
        except google_exceptions.GoogleAPICallError as e:
            raise StorageError(f"Listing {prefix} failed: {e}") from e

    def path_from_url(self, url: str) -> Optional[str]:
        parsed = urlparse(url)
        if parsed.netloc == "firebasestorage.googleapis.com" and "/o/" in parsed.path:
            return unquote(parsed.path.split("/o/", 1)[1])
        bucket_prefix = f"/{self.bucket.name}/"
        if parsed.netloc == "storage.googleapis.com" and parsed.path.startswith(bucket_prefix):
            return unquote(parsed.path[len(bucket_prefix):])
        return None
