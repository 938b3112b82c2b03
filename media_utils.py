# SPDX-License-Identifier: LicenseRef-TVArgenta-NC-Attribution-Consult-First
# Proyecto: MovieLocal — Servidor de medios
# Autor: Ricardo Sappia contact:rsflightronics@gmail.com
# © 2025 Ricardo Sappia. Todos los derechos reservados.
# Licencia: No comercial, atribución y consulta previa. Se distribuye TAL CUAL, sin garantías.
# Ver LICENSE para términos completos.

"""File-walking helpers shared by the catalog scanner and the channel streamer."""

import logging
import os
import subprocess
from pathlib import Path
from typing import Iterable, List

from settings import VIDEO_EXTENSIONS, IMAGE_EXTENSIONS, FFPROBE_TIMEOUT_SEC

logger = logging.getLogger("movielocal.media")


def file_extension(name) -> str:
    """'/x/Movie.MKV' -> 'mkv'"""
    return Path(str(name)).suffix.lower().lstrip(".")


def is_video_file(name) -> bool:
    return file_extension(name) in VIDEO_EXTENSIONS


def is_image_file(name) -> bool:
    return file_extension(name) in IMAGE_EXTENSIONS


def is_hidden(path: Path) -> bool:
    return path.name.startswith(".")


def sorted_children(folder: Path) -> List[Path]:
    """Visible entries of a folder sorted by name. Raises OSError if unreadable."""
    return sorted((p for p in folder.iterdir() if not is_hidden(p)), key=lambda p: p.name)


def _collect_videos_recursive(folder: Path, videos: List[str]) -> None:
    for entry in sorted_children(folder):
        if entry.is_dir():
            try:
                _collect_videos_recursive(entry, videos)
            except OSError as e:
                logger.warning(f"[MEDIA] Cannot read {entry}: {e}")
        elif entry.is_file() and is_video_file(entry.name):
            videos.append(str(entry.resolve()))


def collect_videos(folder_paths: Iterable[str]) -> List[str]:
    """
    Resolve a list of folders into one flattened, sorted playlist of video paths.

    Subfolders are walked recursively. Missing or unreadable folders are skipped
    so one bad folder never empties the rest of the list. A file reached through
    overlapping folders is listed once.
    """
    videos: List[str] = []
    for folder_path in folder_paths:
        folder = Path(folder_path)
        if not folder.is_dir():
            logger.warning(f"[MEDIA] Folder not found, skipping: {folder_path}")
            continue
        try:
            _collect_videos_recursive(folder, videos)
        except OSError as e:
            logger.warning(f"[MEDIA] Cannot read {folder_path}: {e}")
    return sorted(set(videos))


def get_video_duration_ms(filepath: str) -> int:
    """Get video duration in milliseconds using ffprobe. 0 when unknown."""
    if not os.path.isfile(filepath):
        return 0
    try:
        result = subprocess.run([
            "ffprobe", "-v", "error",
            "-show_entries", "format=duration",
            "-of", "default=noprint_wrappers=1:nokey=1",
            filepath
        ], stdout=subprocess.PIPE, stderr=subprocess.DEVNULL, text=True, timeout=FFPROBE_TIMEOUT_SEC)
        return max(0, int(float(result.stdout.strip()) * 1000))
    except (OSError, ValueError, subprocess.SubprocessError) as e:
        logger.warning(f"[MEDIA] Could not get duration for {filepath}: {e}")
        return 0
