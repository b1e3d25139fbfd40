"""Local file storage for reports and uploads (served under /files)"""

import logging
from dataclasses import dataclass
from pathlib import Path

from investkaps.config import settings

logger = logging.getLogger(__name__)


@dataclass
class StoredFile:
    url: str
    public_id: str  # "<folder>/<filename>", relative to STORAGE_DIR


def _resolve(public_id: str) -> Path:
    root = settings.storage_path.resolve()
    path = (root / public_id).resolve()
    if root not in path.parents:
        raise ValueError(f"Invalid storage path: {public_id}")
    return path


def public_url(public_id: str) -> str:
    return f"{settings.PUBLIC_BASE_URL.rstrip('/')}/files/{public_id}"


def save_bytes(folder: str, filename: str, data: bytes) -> StoredFile:
    """Write data to STORAGE_DIR/folder/filename"""
    public_id = f"{folder}/{filename}"
    path = _resolve(public_id)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    logger.info("Stored %s (%d bytes)", public_id, len(data))
    return StoredFile(url=public_url(public_id), public_id=public_id)


def delete(public_id: str) -> bool:
    """Remove a stored file, False if it did not exist"""
    path = _resolve(public_id)
    if not path.exists():
        return False
    path.unlink()
    logger.info("Deleted %s", public_id)
    return True


def read_bytes(public_id: str) -> bytes:
    return _resolve(public_id).read_bytes()
