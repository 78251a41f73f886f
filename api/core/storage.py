"""Local file storage for rendered documents, QR images and PDF templates.

Files are addressed by a storage key relative to ``STORAGE_DIR``
(e.g. ``certificates/3f2c....pdf``). The same tree is mounted read-only at
``/files`` so every key has a stable public URL with no expiry.
"""

from __future__ import annotations

import logging
import os
import uuid
from pathlib import Path
from typing import Annotated

from fastapi import Depends, Request

from core.config import Settings, get_settings

logger = logging.getLogger(__name__)

CERTIFICATES_DIR = "certificates"
QR_DIR = "qr"
TEMPLATES_DIR = "templates"

PUBLIC_PREFIX = "/files"


class StorageKeyError(ValueError):
    """Raised when a storage key escapes the storage root."""


class FileStorage:
    """Maps storage keys to paths under the storage root and to public URLs."""

    def __init__(self, root: Path, base_url: str) -> None:
        self.root = root
        self.base_url = base_url.rstrip("/")

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> FileStorage:
        settings = settings or get_settings()
        return cls(settings.storage_path, settings.backend_url)

    def new_key(self, folder: str, suffix: str) -> str:
        return f"{folder}/{uuid.uuid4().hex}{suffix}"

    def path_for(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if not path.is_relative_to(self.root.resolve()):
            raise StorageKeyError(f"Storage key outside root: {key}")
        return path

    def public_url(self, key: str) -> str:
        return f"{self.base_url}{PUBLIC_PREFIX}/{key}"

    def write_bytes(self, key: str, content: bytes) -> Path:
        """Write atomically: temp sibling first, then rename into place."""
        path = self.path_for(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_name(f".{path.name}.part")
        try:
            tmp_path.write_bytes(content)
            os.replace(tmp_path, path)
        finally:
            tmp_path.unlink(missing_ok=True)
        return path

    def exists(self, key: str) -> bool:
        return self.path_for(key).is_file()

    def delete(self, key: str) -> None:
        self.path_for(key).unlink(missing_ok=True)
        logger.info("storage.deleted", extra={"key": key})

    def ensure_layout(self) -> None:
        for folder in (CERTIFICATES_DIR, QR_DIR, TEMPLATES_DIR):
            (self.root / folder).mkdir(parents=True, exist_ok=True)


def get_storage(request: Request) -> FileStorage:
    return request.app.state.storage


Storage = Annotated[FileStorage, Depends(get_storage)]
