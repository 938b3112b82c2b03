# SPDX-License-Identifier: LicenseRef-TVArgenta-NC-Attribution-Consult-First
# Proyecto: MovieLocal — Servidor de medios
# Autor: Ricardo Sappia contact:rsflightronics@gmail.com
# © 2025 Ricardo Sappia. Todos los derechos reservados.
# Licencia: No comercial, atribución y consulta previa. Se distribuye TAL CUAL, sin garantías.
# Ver LICENSE para términos completos.

"""
Key-value persistence for the media server.

Every database in here talks to its backing store only through
get(key, default) / put(key, value) / delete(key), so any store with
those three methods can replace the JSON file backend:

- JsonStore: one JSON document on disk, written atomically
- MemoryStore: plain dict, used by tests and ephemeral servers
- ChannelDatabase: operator-defined channel definitions
- ProgressDatabase: per-video watch progress
"""

import copy
import json
import logging
import os
import threading
import time
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger("movielocal.storage")


def _now_ms() -> int:
    return int(time.time() * 1000)


def _write_json_atomic(path: Path, data: dict) -> None:
    """Write JSON data atomically to prevent corruption."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    with tmp.open("w", encoding="utf-8") as f:
        json.dump(data, f, ensure_ascii=False, indent=2)
        f.flush()
        os.fsync(f.fileno())
    os.replace(tmp, path)


def _read_json(path: Path, default: dict) -> dict:
    try:
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
        return data if isinstance(data, dict) else default
    except FileNotFoundError:
        return default
    except (json.JSONDecodeError, OSError) as e:
        # corrupto: arrancamos vacío en vez de tumbar el server
        logger.warning(f"[STORE] Could not read {path}: {e}")
        return default


class MemoryStore:
    """Dict-backed store. Values are deep-copied in and out."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._lock = threading.Lock()
        self._data: Dict[str, Any] = copy.deepcopy(initial) if initial else {}

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            if key not in self._data:
                return default
            return copy.deepcopy(self._data[key])

    def put(self, key: str, value: Any) -> None:
        with self._lock:
            self._data[key] = copy.deepcopy(value)

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return copy.deepcopy(self._data)


class JsonStore:
    """
    Key-value store persisted as a single JSON object on disk.

    The file is read once and cached; every put/delete rewrites it
    atomically (temp file + rename).
    """

    def __init__(self, path):
        self.path = Path(path)
        self._lock = threading.Lock()
        self._data: Optional[Dict[str, Any]] = None

    def _load(self) -> Dict[str, Any]:
        if self._data is None:
            self._data = _read_json(self.path, {})
        return self._data

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            data = self._load()
            if key not in data:
                return default
            return copy.deepcopy(data[key])

    def put(self, key: str, value: Any) -> None:
        with self._lock:
            data = self._load()
            data[key] = copy.deepcopy(value)
            _write_json_atomic(self.path, data)

    def delete(self, key: str) -> None:
        with self._lock:
            data = self._load()
            if key in data:
                del data[key]
                _write_json_atomic(self.path, data)

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return copy.deepcopy(self._load())


# ============================================================================
# CHANNELS
# ============================================================================

def normalize_channel(data: dict) -> dict:
    """Build a ChannelDefinition dict from client/operator input."""
    if not isinstance(data, dict):
        raise ValueError("channel must be a JSON object")

    folders = data.get("folderPaths") or []
    if isinstance(folders, str):
        folders = [folders]
    if not isinstance(folders, list) or not all(isinstance(p, str) for p in folders):
        raise ValueError("folderPaths must be a list of paths")

    channel_id = str(data.get("id") or uuid.uuid4())
    return {
        "id": channel_id,
        "name": str(data.get("name") or channel_id),
        "description": str(data.get("description") or ""),
        "thumbnailUrl": str(data.get("thumbnailUrl") or ""),
        "folderPaths": [p for p in folders if p],
        "isActive": bool(data.get("isActive", False)),
        "createdAt": int(data.get("createdAt") or _now_ms()),
    }


class ChannelDatabase:
    KEY = "channels"

    def __init__(self, store):
        self.store = store
        self._lock = threading.Lock()

    def get_all_channels(self) -> List[dict]:
        channels = self.store.get(self.KEY, [])
        if not isinstance(channels, list):
            logger.warning("[STORE] channels entry is not a list, ignoring it")
            return []
        return [c for c in channels if isinstance(c, dict) and c.get("id")]

    def get_channel(self, channel_id: str) -> Optional[dict]:
        for channel in self.get_all_channels():
            if channel["id"] == channel_id:
                return channel
        return None

    def get_active_channels(self) -> List[dict]:
        return [c for c in self.get_all_channels() if c.get("isActive")]

    def save_channel(self, channel: dict) -> dict:
        with self._lock:
            channels = [c for c in self.get_all_channels() if c["id"] != channel["id"]]
            channels.append(channel)
            self.store.put(self.KEY, channels)
        return channel

    def set_active(self, channel_id: str, active: bool) -> Optional[dict]:
        with self._lock:
            channels = self.get_all_channels()
            found = None
            for channel in channels:
                if channel["id"] == channel_id:
                    channel["isActive"] = active
                    found = channel
            if found is not None:
                self.store.put(self.KEY, channels)
        return found

    def delete_channel(self, channel_id: str) -> bool:
        with self._lock:
            channels = self.get_all_channels()
            remaining = [c for c in channels if c["id"] != channel_id]
            if len(remaining) == len(channels):
                return False
            self.store.put(self.KEY, remaining)
        return True


# ============================================================================
# WATCH PROGRESS
# ============================================================================

class ProgressDatabase:
    KEY = "progress_data"

    def __init__(self, store):
        self.store = store
        self._lock = threading.Lock()

    def get_all_progress(self) -> Dict[str, dict]:
        data = self.store.get(self.KEY, {})
        return data if isinstance(data, dict) else {}

    def get_progress(self, video_id: str) -> Optional[dict]:
        return self.get_all_progress().get(video_id)

    def save_progress(self, video_id: str, position: int, duration: int,
                      completed: bool = False) -> dict:
        progress = {
            "videoId": video_id,
            "position": int(position),
            "duration": int(duration),
            "timestamp": _now_ms(),
            "completed": bool(completed),
        }
        with self._lock:
            data = self.get_all_progress()
            data[video_id] = progress
            self.store.put(self.KEY, data)
        return progress

    def mark_completed(self, video_id: str) -> dict:
        with self._lock:
            data = self.get_all_progress()
            progress = data.get(video_id) or {
                "videoId": video_id,
                "position": 0,
                "duration": 0,
            }
            progress["completed"] = True
            progress["timestamp"] = _now_ms()
            data[video_id] = progress
            self.store.put(self.KEY, data)
        return progress

    def delete_progress(self, video_id: str) -> None:
        with self._lock:
            data = self.get_all_progress()
            if data.pop(video_id, None) is not None:
                self.store.put(self.KEY, data)
