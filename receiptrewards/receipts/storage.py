"""
Receipt image storage.

Images are kept for audit next to the receipt row; only a reference is
stored in the database.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Protocol

from receiptrewards.config import settings

logger = logging.getLogger(__name__)

_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/heic": ".heic",
    "text/plain": ".txt",
}


class ImageStore(Protocol):
    def save(self, receipt_id: str, image: bytes, content_type: str) -> str:
        ...


class LocalImageStore:
    def __init__(self, root: str):
        self.root = Path(root)

    def save(self, receipt_id: str, image: bytes, content_type: str) -> str:
        self.root.mkdir(parents=True, exist_ok=True)
        path = self.root / f"{receipt_id}{_EXTENSIONS.get(content_type, '.bin')}"
        path.write_bytes(image)
        logger.info("Saved receipt image %s (%d bytes)", path.name, len(image))
        return str(path)


def get_image_store() -> ImageStore:
    return LocalImageStore(settings.UPLOAD_DIR)
