"""Local-disk storage for listing pictures.

Pictures are stored under ``settings.upload_dir`` with a random suffix and
referenced from listings by that key. The properties service mounts the same
directory at ``/uploads``.
"""
from __future__ import annotations

import logging
import mimetypes
import os
import secrets
from pathlib import Path
from typing import Iterable, List, Optional

from fastapi import UploadFile

from .config import get_settings
from .errors import ValidationError

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif", ".webp"}
IMAGE_MIME_TYPES = {"image/jpeg", "image/png", "image/gif", "image/webp"}
_SAFE_CHARS = set("abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789._-")


def safe_filename(filename: str) -> str:
    """Strip directory parts and unsafe characters from a client-supplied name."""

    name = "".join(ch for ch in os.path.basename(filename or "") if ch in _SAFE_CHARS).lstrip(".-")
    if not name:
        raise ValidationError("Picture filename contains no valid characters")
    if len(name) > 100:
        stem, ext = os.path.splitext(name)
        name = stem[: 100 - len(ext)] + ext
    return name


def unique_key(filename: str) -> str:
    stem, ext = os.path.splitext(safe_filename(filename))
    return f"{stem}_{secrets.token_hex(8)}{ext.lower()}"


class BlobStore:
    def __init__(self, root: Optional[str] = None, max_bytes: Optional[int] = None) -> None:
        settings = get_settings()
        self.root = Path(root or settings.upload_dir)
        self.max_bytes = max_bytes or settings.max_upload_bytes

    def path_for(self, key: str) -> Path:
        return self.root / os.path.basename(key)

    def _validate(self, filename: str, content_type: Optional[str], size: int) -> None:
        ext = os.path.splitext(filename)[1].lower()
        if ext not in IMAGE_EXTENSIONS:
            raise ValidationError(f"Unsupported picture type '{ext or filename}'. Allowed: jpg, jpeg, png, gif, webp")
        mime = content_type or mimetypes.guess_type(filename)[0]
        if mime and mime != "application/octet-stream" and mime not in IMAGE_MIME_TYPES:
            raise ValidationError(f"Unsupported picture content type: {mime}")
        if size == 0:
            raise ValidationError(f"Picture '{filename}' is empty")
        if size > self.max_bytes:
            raise ValidationError(f"Picture '{filename}' exceeds the {self.max_bytes} byte limit")

    def save(self, upload: UploadFile) -> str:
        """Validate and write one upload, returning its storage key."""

        filename = safe_filename(upload.filename or "")
        data = upload.file.read()
        self._validate(filename, upload.content_type, len(data))
        self.root.mkdir(parents=True, exist_ok=True)
        key = unique_key(filename)
        self.path_for(key).write_bytes(data)
        logger.info("Stored picture %s (%d bytes)", key, len(data))
        return key

    def save_many(self, uploads: Iterable[UploadFile]) -> List[str]:
        """Save every upload or none: keys written before a failure are removed."""

        keys: List[str] = []
        try:
            for upload in uploads:
                keys.append(self.save(upload))
        except Exception:
            self.delete_many(keys)
            raise
        return keys

    def delete(self, key: str) -> bool:
        path = self.path_for(key)
        try:
            path.unlink()
        except FileNotFoundError:
            logger.warning("Picture %s already missing from storage", key)
            return False
        except OSError as exc:
            logger.error("Failed to delete picture %s: %s", key, exc)
            return False
        logger.info("Deleted picture %s", key)
        return True

    def delete_many(self, keys: Iterable[str]) -> int:
        return sum(1 for key in keys if self.delete(key))


def get_blob_store() -> BlobStore:
    return BlobStore()
