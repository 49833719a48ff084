"""Filesystem blob storage for image content."""

import logging
import re
import uuid
from pathlib import Path

import aiofiles
import aiofiles.os

from app.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

# uuid4 hex plus a short extension, e.g. "3f2b...9c.png"
BLOB_REF_PATTERN = re.compile(r"^[0-9a-f]{32}\.[a-z0-9]{1,8}$")

# Raster formats only; anything the browser could execute (SVG, HTML) is refused
_EXTENSIONS = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/webp": ".webp",
    "image/gif": ".gif",
    "image/heic": ".heic",
}


class BlobStoreError(Exception):
    """Base error for blob storage failures."""


class BlobNotFoundError(BlobStoreError):
    """Raised when a blob reference cannot be resolved."""


class InvalidBlobRefError(BlobNotFoundError):
    """Raised for references that can never name a stored blob."""


class UnsupportedMediaTypeError(BlobStoreError):
    """Raised when asked to store a media type outside the allowed formats."""


def is_valid_ref(ref: str) -> bool:
    return bool(ref) and BLOB_REF_PATTERN.match(ref) is not None


def is_supported_mime_type(mime_type: str | None) -> bool:
    return bool(mime_type) and mime_type.lower() in _EXTENSIONS


def extension_for(mime_type: str) -> str:
    ext = _EXTENSIONS.get(mime_type.lower())
    if ext is None:
        raise UnsupportedMediaTypeError(f"Unsupported media type: {mime_type}")
    return ext


class LocalBlobStore:
    """Stores blobs as files under a root directory.

    References are opaque to callers. The media type is recoverable from the
    reference's extension, so no sidecar metadata is kept.
    """

    def __init__(self, root: Path | None = None, url_prefix: str | None = None) -> None:
        self.root = Path(root) if root is not None else settings.blobs_dir
        self.url_prefix = (url_prefix if url_prefix is not None else settings.blob_url_prefix).rstrip(
            "/"
        )

    def path_for(self, ref: str) -> Path:
        if not is_valid_ref(ref):
            raise InvalidBlobRefError(f"Invalid blob reference: {ref!r}")
        return self.root / ref

    def mime_type_for(self, ref: str) -> str:
        suffix = Path(ref).suffix.lower()
        for mime_type, ext in _EXTENSIONS.items():
            if ext == suffix:
                return mime_type
        return "application/octet-stream"

    async def put_blob(self, data: bytes, mime_type: str = "image/png") -> str:
        """Write bytes and return the new reference."""
        if not data:
            raise BlobStoreError("Refusing to store an empty blob")

        ref = f"{uuid.uuid4().hex}{extension_for(mime_type)}"
        path = self.root / ref
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(path, "wb") as f:
                await f.write(data)
        except OSError as e:
            raise BlobStoreError(f"Failed to store blob: {e}") from e

        logger.debug(f"Stored blob {ref} ({len(data)} bytes)")
        return ref

    async def exists(self, ref: str) -> bool:
        try:
            path = self.path_for(ref)
        except InvalidBlobRefError:
            return False
        return await aiofiles.os.path.isfile(path)

    def url_for(self, ref: str) -> str:
        return f"{self.url_prefix}/{ref}"

    async def get_url(self, ref: str) -> str | None:
        """Public URL for a blob, or None if it is not stored."""
        if not await self.exists(ref):
            return None
        return self.url_for(ref)

    async def read_blob(self, ref: str) -> tuple[bytes, str]:
        """Return the blob's bytes and media type."""
        path = self.path_for(ref)
        try:
            async with aiofiles.open(path, "rb") as f:
                data = await f.read()
        except FileNotFoundError as e:
            raise BlobNotFoundError(f"Blob not found: {ref}") from e
        except OSError as e:
            raise BlobStoreError(f"Failed to read blob {ref}: {e}") from e
        return data, self.mime_type_for(ref)

    async def delete_blob(self, ref: str) -> None:
        """Delete a blob. Missing blobs are not an error."""
        path = self.path_for(ref)
        try:
            await aiofiles.os.remove(path)
        except FileNotFoundError:
            logger.info(f"Blob {ref} already absent")
        except OSError as e:
            raise BlobStoreError(f"Failed to delete blob {ref}: {e}") from e


# Global instance
blob_store = LocalBlobStore()
