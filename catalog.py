# SPDX-License-Identifier: LicenseRef-TVArgenta-NC-Attribution-Consult-First
# Proyecto: MovieLocal — Servidor de medios
# Autor: Ricardo Sappia contact:rsflightronics@gmail.com
# © 2025 Ricardo Sappia. Todos los derechos reservados.
# Licencia: No comercial, atribución y consulta previa. Se distribuye TAL CUAL, sin garantías.
# Ver LICENSE para términos completos.

"""
Catalog Scanner

Builds the movie/series catalog from the folder layout on disk:

    Movies/<Movie_Folder>/<video + optional poster>
    Series/<Series_Folder>/Season N/<episode videos>

The catalog is rebuilt from scratch on every scan and never mutated in
place. Ids come from folder names only, so the same tree always yields
the same ids (watch progress is keyed on them).
"""

import logging
from pathlib import Path
from typing import Dict, List, Optional, Tuple
from urllib.parse import quote

from errors import ScanSkip
from media_utils import is_video_file, sorted_children
from settings import (
    DEFAULT_DESCRIPTION, DEFAULT_YEAR, DEFAULT_GENRE, DEFAULT_RATING,
    DEFAULT_MOVIE_DURATION_MIN, DEFAULT_EPISODE_DURATION_MIN,
)

logger = logging.getLogger("movielocal.catalog")

COVER_MARKERS = ("poster", "thumb")

# Fields an enrichment pass may override
ENRICHABLE_FIELDS = {
    "title": str,
    "description": str,
    "year": int,
    "genre": str,
    "rating": float,
    "duration": int,
}


def display_title(folder_name: str) -> str:
    """Convert folder name to display name: The_Matrix → The Matrix"""
    return (folder_name or "").replace("_", " ").strip()


def parse_season_number(folder_name: str) -> int:
    """'Season 02' -> 2, 'Season' -> 1. Digits anywhere in the name are joined."""
    digits = "".join(ch for ch in folder_name if ch.isdigit())
    number = int(digits) if digits else 1
    return number if number > 0 else 1


def is_season_folder(name: str) -> bool:
    return name.lower().startswith("season")


def _is_cover_file(path: Path) -> bool:
    name = path.name.lower()
    return not is_video_file(name) and any(marker in name for marker in COVER_MARKERS)


def _find_cover(files: List[Path]) -> str:
    for f in files:
        if _is_cover_file(f):
            return str(f.resolve())
    return ""


def _apply_enrichment(entry: dict, overrides: Optional[dict]) -> dict:
    if not overrides:
        return entry
    for field, cast in ENRICHABLE_FIELDS.items():
        if field not in entry or field not in overrides or overrides[field] is None:
            continue
        try:
            entry[field] = cast(overrides[field])
        except (TypeError, ValueError):
            logger.warning(f"[CATALOG] Ignoring bad {field!r} override for {entry['id']}")
    return entry


# ============================================================================
# MOVIES
# ============================================================================

def scan_movie(folder: Path, metadata: Optional[dict] = None) -> dict:
    """One movie folder -> Movie entry. Raises ScanSkip when no video is present."""
    files = [p for p in sorted_children(folder) if p.is_file()]
    video = next((f for f in files if is_video_file(f.name)), None)
    if video is None:
        raise ScanSkip(f"no video file in {folder}")

    movie_id = folder.name
    movie = {
        "id": movie_id,
        "type": "movie",
        "title": display_title(folder.name),
        "description": DEFAULT_DESCRIPTION,
        "year": DEFAULT_YEAR,
        "genre": DEFAULT_GENRE,
        "rating": DEFAULT_RATING,
        "duration": DEFAULT_MOVIE_DURATION_MIN,
        "coverPath": _find_cover(files),
        "filePath": str(video.resolve()),
    }
    return _apply_enrichment(movie, (metadata or {}).get(movie_id))


def scan_movies(movies_dir, metadata: Optional[dict] = None) -> List[dict]:
    root = Path(movies_dir)
    if not root.is_dir():
        logger.warning(f"[CATALOG] Movies folder not found: {root}")
        return []

    movies = []
    for folder in sorted_children(root):
        if not folder.is_dir():
            continue
        try:
            movies.append(scan_movie(folder, metadata))
        except ScanSkip as e:
            logger.debug(f"[CATALOG] Skipping movie: {e}")
        except OSError as e:
            logger.warning(f"[CATALOG] Skipping unreadable movie folder {folder}: {e}")
    return movies


# ============================================================================
# SERIES
# ============================================================================

def scan_season(series_id: str, folder: Path, number: int,
                metadata: Optional[dict] = None) -> dict:
    """
    One season folder -> Season entry.

    Episode numbers are positional: files sorted by name get 1..N no matter
    what the filenames say.
    """
    videos = [p for p in sorted_children(folder) if p.is_file() and is_video_file(p.name)]
    if not videos:
        raise ScanSkip(f"no video files in {folder}")

    episodes = []
    for idx, video in enumerate(videos, start=1):
        episode_id = f"{series_id}_S{number}E{idx}"
        episode = {
            "id": episode_id,
            "episodeNumber": idx,
            "title": display_title(video.stem),
            "description": DEFAULT_DESCRIPTION,
            "duration": DEFAULT_EPISODE_DURATION_MIN,
            "filePath": str(video.resolve()),
        }
        episodes.append(_apply_enrichment(episode, (metadata or {}).get(episode_id)))
    return {"seasonNumber": number, "episodes": episodes}


def scan_series_folder(folder: Path, metadata: Optional[dict] = None) -> dict:
    """One series folder -> Series entry. Raises ScanSkip when no season has episodes."""
    series_id = folder.name
    children = sorted_children(folder)

    candidates: List[Tuple[int, str, Path]] = [
        (parse_season_number(p.name), p.name, p)
        for p in children
        if p.is_dir() and is_season_folder(p.name)
    ]
    candidates.sort(key=lambda c: (c[0], c[1]))

    seasons = []
    seen_numbers = set()
    for number, name, season_dir in candidates:
        if number in seen_numbers:
            # "Season 1" y "Season01" chocarían en los ids de episodio
            logger.warning(f"[CATALOG] Duplicate season {number} in {series_id}, skipping {name}")
            continue
        try:
            seasons.append(scan_season(series_id, season_dir, number, metadata))
            seen_numbers.add(number)
        except ScanSkip as e:
            logger.debug(f"[CATALOG] Skipping season: {e}")
        except OSError as e:
            logger.warning(f"[CATALOG] Skipping unreadable season {season_dir}: {e}")

    if not seasons:
        raise ScanSkip(f"no playable seasons in {folder}")

    series = {
        "id": series_id,
        "type": "series",
        "title": display_title(folder.name),
        "description": DEFAULT_DESCRIPTION,
        "year": DEFAULT_YEAR,
        "genre": DEFAULT_GENRE,
        "rating": DEFAULT_RATING,
        "coverPath": _find_cover([p for p in children if p.is_file()]),
        "seasons": seasons,
    }
    return _apply_enrichment(series, (metadata or {}).get(series_id))


def scan_series(series_dir, metadata: Optional[dict] = None) -> List[dict]:
    root = Path(series_dir)
    if not root.is_dir():
        logger.warning(f"[CATALOG] Series folder not found: {root}")
        return []

    series = []
    for folder in sorted_children(root):
        if not folder.is_dir():
            continue
        try:
            series.append(scan_series_folder(folder, metadata))
        except ScanSkip as e:
            logger.debug(f"[CATALOG] Skipping series: {e}")
        except OSError as e:
            logger.warning(f"[CATALOG] Skipping unreadable series folder {folder}: {e}")
    return series


def scan(movies_dir, series_dir, metadata: Optional[Dict[str, dict]] = None) -> dict:
    """
    Scan both library roots.

    Args:
        movies_dir: root whose immediate subfolders are movies
        series_dir: root whose immediate subfolders are series
        metadata: optional enrichment data, id -> field overrides

    Returns:
        {"movies": [...], "series": [...]}
    """
    movies = scan_movies(movies_dir, metadata)
    series = scan_series(series_dir, metadata)
    episode_count = sum(len(s["episodes"]) for item in series for s in item["seasons"])
    logger.info(f"[CATALOG] Scan complete: {len(movies)} movies, {len(series)} series, "
                f"{episode_count} episodes")
    return {"movies": movies, "series": series}


# ============================================================================
# SERIALIZATION
# ============================================================================

def media_url(base_url: str, kind: str, path: str) -> str:
    """Absolute URL for a file served by /api/<kind>/<path>. Empty path -> ''."""
    if not path:
        return ""
    return f"{base_url}/api/{kind}/{quote(path)}"


def content_response(catalog: dict, base_url: str) -> dict:
    """Catalog -> /api/content payload, adding absolute stream and thumbnail URLs."""
    movies = []
    for movie in catalog.get("movies", []):
        item = dict(movie)
        item["thumbnailUrl"] = media_url(base_url, "thumbnail", movie.get("coverPath", ""))
        item["videoUrl"] = media_url(base_url, "stream", movie.get("filePath", ""))
        movies.append(item)

    series_list = []
    for series in catalog.get("series", []):
        item = dict(series)
        item["thumbnailUrl"] = media_url(base_url, "thumbnail", series.get("coverPath", ""))
        item["seasons"] = [
            {
                "seasonNumber": season["seasonNumber"],
                "episodes": [
                    dict(ep,
                         thumbnailUrl="",
                         videoUrl=media_url(base_url, "stream", ep.get("filePath", "")))
                    for ep in season["episodes"]
                ],
            }
            for season in series.get("seasons", [])
        ]
        series_list.append(item)

    return {"movies": movies, "series": series_list}
