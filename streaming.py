# SPDX-License-Identifier: LicenseRef-TVArgenta-NC-Attribution-Consult-First
# Proyecto: MovieLocal — Servidor de medios
# Autor: Ricardo Sappia contact:rsflightronics@gmail.com
# © 2025 Ricardo Sappia. Todos los derechos reservados.
# Licencia: No comercial, atribución y consulta previa. Se distribuye TAL CUAL, sin garantías.
# Ver LICENSE para términos completos.

"""
Stream Transport

Resolves a requested path to a library file and opens it for Flask's
send_file. werkzeug reads it in chunks, so nothing is buffered whole.
Every request owns its own read-only handle (many clients can read the
same file at once) and the handle is released when the response closes,
whether or not the body was fully sent.
"""

import logging
import os
from pathlib import Path
from typing import Iterable, Optional

from errors import StreamNotFound, StreamIOError
from media_utils import file_extension

logger = logging.getLogger("movielocal.stream")

VIDEO_MIME_TYPES = {
    "mp4": "video/mp4",
    "mkv": "video/x-matroska",
    "avi": "video/x-msvideo",
    "webm": "video/webm",
    "mov": "video/quicktime",
    "flv": "video/x-flv",
    "wmv": "video/x-ms-wmv",
    "m4v": "video/x-m4v",
}
DEFAULT_VIDEO_MIME = "video/mp4"

IMAGE_MIME_TYPES = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "webp": "image/webp",
}
DEFAULT_IMAGE_MIME = "image/jpeg"

KIND_VIDEO = "video"
KIND_IMAGE = "image"


def mime_type_for(path, kind: str = KIND_VIDEO) -> str:
    ext = file_extension(path)
    if kind == KIND_IMAGE:
        return IMAGE_MIME_TYPES.get(ext, DEFAULT_IMAGE_MIME)
    return VIDEO_MIME_TYPES.get(ext, DEFAULT_VIDEO_MIME)


def _is_within(path: Path, root: Path) -> bool:
    try:
        path.relative_to(root)
        return True
    except ValueError:
        return False


def is_within_roots(raw_path, roots: Iterable) -> bool:
    """True when raw_path (symlinks followed) is one of roots or lives under one."""
    try:
        path = Path(raw_path).resolve()
    except (OSError, RuntimeError, ValueError):
        return False
    for root in roots:
        if not root:
            continue
        try:
            if _is_within(path, Path(root).resolve()):
                return True
        except (OSError, RuntimeError, ValueError):
            continue
    return False


def resolve_media_path(raw_path: str, allowed_roots: Optional[Iterable] = None) -> Path:
    """
    Resolve a requested path to an existing regular file.

    allowed_roots may hold folders and single files. When given, the resolved
    path (symlinks followed) must be one of them or live under one. Anything
    that fails raises StreamNotFound, so a forbidden path looks exactly like a
    missing one.
    """
    if not raw_path or "\x00" in raw_path:
        raise StreamNotFound(raw_path)

    try:
        path = Path(raw_path).resolve()
    except (OSError, RuntimeError):
        raise StreamNotFound(raw_path)

    if allowed_roots is not None and not is_within_roots(path, allowed_roots):
        logger.warning(f"[STREAM] Refusing path outside media roots: {raw_path}")
        raise StreamNotFound(raw_path)

    if not path.is_file():
        raise StreamNotFound(raw_path)
    return path


class MediaFile:
    """
    Read-only handle on one library file, handed to send_file as its body.

    werkzeug pulls chunks through read(); a failing read is logged, closes
    the handle and surfaces as StreamIOError so the response is aborted.
    """

    def __init__(self, path: Path, fileobj, mimetype: str, size: Optional[int]):
        self.path = path
        self.mimetype = mimetype
        self.size = size
        self._file = fileobj
        self.bytes_read = 0

    @property
    def closed(self) -> bool:
        return self._file is None

    def read(self, size: int = -1) -> bytes:
        if self._file is None:
            return b""
        try:
            data = self._file.read(size)
        except OSError as e:
            logger.error(f"[STREAM] Read error on {self.path} after {self.bytes_read} bytes: {e}")
            self.close()
            raise StreamIOError(f"read failed: {e}") from e
        self.bytes_read += len(data)
        return data

    def close(self) -> None:
        f, self._file = self._file, None
        if f is not None:
            f.close()
            logger.debug(f"[STREAM] Closed {self.path} ({self.bytes_read} bytes read)")


def open_media(raw_path: str, kind: str = KIND_VIDEO,
               allowed_roots: Optional[Iterable] = None) -> MediaFile:
    """
    Open a library file for delivery.

    Returns:
        MediaFile with mimetype and size (None if the size can't be read)

    Raises:
        StreamNotFound: path missing, unreadable, not a regular file, or
            outside allowed_roots
        StreamIOError: file exists but opening it failed for another reason
    """
    path = resolve_media_path(raw_path, allowed_roots)
    try:
        fileobj = open(path, "rb")
    except (FileNotFoundError, PermissionError):
        raise StreamNotFound(raw_path)
    except OSError as e:
        logger.error(f"[STREAM] Cannot open {path}: {e}")
        raise StreamIOError(f"cannot open file: {e}") from e

    try:
        size = os.fstat(fileobj.fileno()).st_size
    except OSError:
        size = None

    return MediaFile(path, fileobj, mime_type_for(path, kind), size)
