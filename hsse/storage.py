"""
HSSE - attachment file storage.

Files are written under UPLOAD_DIR/<area>/<entity_id>/ with a random prefix
so two uploads with the same name never collide. Callers store the returned
metadata in their own *_attachments table.
"""
import hashlib
import logging
import mimetypes
import os
import re
import uuid
from pathlib import Path
from typing import Dict

from fastapi import UploadFile

from hsse import config
from hsse.config import AppConfig
from hsse.errors import DomainError, NotFoundError

logger = logging.getLogger(__name__)

_SAFE_NAME = re.compile(r"[^A-Za-z0-9._-]+")

BLOCKED_EXTENSIONS = {".exe", ".bat", ".cmd", ".sh", ".js", ".msi", ".dll", ".ps1"}


def _root() -> Path:
    return Path(config.UPLOAD_DIR)


def safe_filename(name: str) -> str:
    base = os.path.basename(name or "file")
    cleaned = _SAFE_NAME.sub("_", base).strip("._")
    return cleaned or "file"


async def save_upload(upload: UploadFile, area: str, entity_id: int) -> Dict:
    """Persist an uploaded file and return its metadata."""
    original = upload.filename or "file"
    ext = os.path.splitext(original)[1].lower()
    if ext in BLOCKED_EXTENSIONS:
        raise DomainError(f"File type {ext} is not allowed")

    content = await upload.read()
    if not content:
        raise DomainError("Uploaded file is empty")
    max_bytes = int(AppConfig.get("max_upload_mb", 10)) * 1024 * 1024
    if len(content) > max_bytes:
        raise DomainError(f"File exceeds the {AppConfig.get('max_upload_mb', 10)} MB limit")

    folder = _root() / area / str(entity_id)
    folder.mkdir(parents=True, exist_ok=True)
    stored_name = f"{uuid.uuid4().hex[:12]}_{safe_filename(original)}"
    path = folder / stored_name
    with open(path, "wb") as f:
        f.write(content)

    logger.info("[Storage] Saved %s (%d bytes) for %s/%s", stored_name, len(content), area, entity_id)
    return {
        "file_name": original,
        "file_path": str(path),
        "file_size": len(content),
        "content_type": upload.content_type or mimetypes.guess_type(original)[0]
        or "application/octet-stream",
        "sha256": hashlib.sha256(content).hexdigest(),
    }


def resolve(file_path: str) -> Path:
    """Return the stored file's path, refusing anything outside the upload root."""
    root = _root().resolve()
    path = Path(file_path).resolve()
    if root not in path.parents or not path.is_file():
        raise NotFoundError("File")
    return path


def delete_file(file_path: str) -> bool:
    try:
        path = resolve(file_path)
    except NotFoundError:
        return False
    path.unlink()
    return True
