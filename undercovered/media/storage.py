from __future__ import annotations

import os
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Optional


def _debug(msg: str) -> None:
    print(f"[media] {msg}")


CATEGORIES = ("image", "video", "audio", "document", "other")
UPLOAD_SUBDIRS = ("images", "videos", "documents")

_CHUNK = 1024 * 1024


def category_for_mimetype(mimetype: Optional[str]) -> str:
    m = (mimetype or "").strip().lower()
    if m.startswith("image/"):
        return "image"
    if m.startswith("video/"):
        return "video"
    if m.startswith("audio/"):
        return "audio"
    if "pdf" in m or "document" in m:
        return "document"
    return "other"


def upload_subdir(mimetype: Optional[str]) -> str:
    m = (mimetype or "").strip().lower()
    if m.startswith("image/"):
        return "images"
    if m.startswith("video/"):
        return "videos"
    return "documents"


def media_extension(original_name: Optional[str]) -> str:
    name = original_name or ""
    if "." not in name:
        return ""
    return name.rsplit(".", 1)[-1].lower()


def human_size(num_bytes: int) -> str:
    """Human readable size, e.g. 1536 -> "1.5 KB"."""
    n = int(num_bytes or 0)
    if n <= 0:
        return "0 Bytes"
    units = ("Bytes", "KB", "MB", "GB", "TB")
    i = 0
    while n >= 1024 ** (i + 1) and i < len(units) - 1:
        i += 1
    value = round(n / (1024 ** i), 2)
    text = f"{value:.2f}".rstrip("0").rstrip(".")
    return f"{text} {units[i]}"


class FileTooLarge(Exception):
    def __init__(self, max_size: int):
        super().__init__(f"file_too_large:{max_size}")
        self.max_size = max_size


@dataclass(frozen=True)
class StoredFile:
    filename: str
    original_name: str
    mimetype: str
    size: int
    path: str
    url: str


def save_upload(
    src: BinaryIO,
    *,
    upload_dir: str,
    public_base_url: str,
    original_name: str,
    mimetype: str,
    field_name: str = "media",
    max_size: Optional[int] = None,
) -> StoredFile:
    """Copy an uploaded stream under `upload_dir/<images|videos|documents>/`.

    Raises FileTooLarge (and leaves nothing on disk) once more than `max_size`
    bytes have been read.
    """
    subdir = upload_subdir(mimetype)
    target_dir = Path(upload_dir) / subdir
    target_dir.mkdir(parents=True, exist_ok=True)

    ext = os.path.splitext(original_name or "")[1]
    filename = f"{field_name}-{int(time.time() * 1000)}-{uuid.uuid4().hex}{ext}"
    path = target_dir / filename

    size = 0
    try:
        with open(path, "wb") as out:
            while True:
                chunk = src.read(_CHUNK)
                if not chunk:
                    break
                size += len(chunk)
                if max_size is not None and size > max_size:
                    raise FileTooLarge(max_size)
                out.write(chunk)
    except BaseException:
        delete_file(str(path))
        raise

    base = (public_base_url or "/uploads").rstrip("/")
    return StoredFile(
        filename=filename,
        original_name=original_name or filename,
        mimetype=mimetype,
        size=size,
        path=str(path),
        url=f"{base}/{subdir}/{filename}",
    )


def delete_file(path: Optional[str]) -> bool:
    """Best-effort removal; failures are logged, not raised."""
    if not path:
        return False
    try:
        os.remove(path)
        return True
    except FileNotFoundError:
        return False
    except OSError as e:
        _debug(f"Failed to delete file {path}: {e}")
        return False
