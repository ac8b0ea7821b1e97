"""
storage.py

Local-disk implementation of the AbstractFileStore port.

Files land under <UPLOAD_DIR>/<folder>/ with a collision-resistant name and
are served by the API under /uploads/<folder>/<name>.  Only documents and
images from a fixed allow-list are accepted.
"""

from __future__ import annotations

import logging
import os
import re
import secrets
import time
from pathlib import Path

from application import AbstractFileStore, IncomingFile, StoredFile

logger = logging.getLogger(__name__)

PUBLIC_PREFIX = "/uploads"

ALLOWED_MIME_TYPES = frozenset({
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "image/jpeg",
    "image/jpg",
    "image/png",
})

ALLOWED_EXTENSIONS = frozenset({".pdf", ".doc", ".docx", ".xls", ".xlsx", ".jpg", ".jpeg", ".png"})

_UNSAFE = re.compile(r"[^a-zA-Z0-9.-]")
_REPEATED_UNDERSCORE = re.compile(r"_+")


def sanitize_filename(filename: str) -> str:
    """Replace anything but letters, digits, dots and dashes; lower-case the result."""
    cleaned = _UNSAFE.sub("_", filename)
    return _REPEATED_UNDERSCORE.sub("_", cleaned).lower()


def generate_unique_filename(original: str) -> str:
    """<sanitized stem>_<epoch millis>_<6 hex chars><ext>"""
    stem, ext = os.path.splitext(os.path.basename(original))
    timestamp = int(time.time() * 1000)
    return f"{sanitize_filename(stem)}_{timestamp}_{secrets.token_hex(3)}{ext.lower()}"


def is_allowed_file(filename: str, content_type: str | None) -> bool:
    ext = os.path.splitext(filename)[1].lower()
    return ext in ALLOWED_EXTENSIONS and (content_type or "").lower() in ALLOWED_MIME_TYPES


class LocalFileStore(AbstractFileStore):
    def __init__(self, upload_dir: str, max_file_size: int):
        self.root = Path(upload_dir)
        self.max_file_size = max_file_size

    def validate(self, file: IncomingFile) -> None:
        if not file.filename:
            raise ValueError("File name is required.")
        if not is_allowed_file(file.filename, file.content_type):
            raise ValueError(
                f"File type not allowed: {file.filename}. "
                "Only PDF, Word, Excel and JPEG/PNG images are accepted."
            )
        if file.size > self.max_file_size:
            limit_mb = self.max_file_size / (1024 * 1024)
            raise ValueError(f"File {file.filename} exceeds the {limit_mb:g}MB limit.")

    def save(self, folder: str, file: IncomingFile) -> StoredFile:
        target_dir = self.root / folder
        target_dir.mkdir(parents=True, exist_ok=True)
        name = generate_unique_filename(file.filename)
        with (target_dir / name).open("wb") as fh:
            fh.write(file.content)
        logger.info("Stored upload %s as %s/%s (%d bytes)", file.filename, folder, name, file.size)
        return StoredFile(
            file_path=f"{PUBLIC_PREFIX}/{folder}/{name}",
            file_name=file.filename,
            file_type=file.content_type,
            file_size=file.size,
        )

    def resolve(self, file_path: str) -> Path:
        """Map a public /uploads/... path back onto the disk."""
        relative = file_path[len(PUBLIC_PREFIX):] if file_path.startswith(PUBLIC_PREFIX) else file_path
        candidate = (self.root / relative.lstrip("/")).resolve()
        if self.root.resolve() not in candidate.parents:
            raise ValueError(f"Path escapes the upload directory: {file_path}")
        return candidate

    def delete(self, file_path: str) -> bool:
        """Best-effort removal; a missing file is not an error."""
        try:
            self.resolve(file_path).unlink()
            return True
        except FileNotFoundError:
            return False
        except (OSError, ValueError):
            logger.warning("Could not delete stored file %s", file_path, exc_info=True)
            return False
