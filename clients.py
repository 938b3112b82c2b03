# SPDX-License-Identifier: LicenseRef-TVArgenta-NC-Attribution-Consult-First
# Proyecto: MovieLocal — Servidor de medios
# Autor: Ricardo Sappia contact:rsflightronics@gmail.com
# © 2025 Ricardo Sappia. Todos los derechos reservados.
# Licencia: No comercial, atribución y consulta previa. Se distribuye TAL CUAL, sin garantías.
# Ver LICENSE para términos completos.

"""
Connected Client Registry

Tracks companion devices by their self-generated client id. A client that
hasn't registered, sent a heartbeat or reported playback within the
staleness window is treated as gone; expired records are purged on every
read instead of by a background sweeper.
"""

import logging
import threading
import time
from typing import Callable, Dict, List, Optional, Tuple

from settings import CLIENT_STALE_SEC

logger = logging.getLogger("movielocal.clients")


class ConnectedClientsManager:
    """
    Thread-safe registry of connected clients, optionally persisted to a key-value store.

    Mutations take a numbered snapshot under the registry lock; the store is
    written afterwards under a separate save lock, and an older snapshot never
    overwrites a newer one. Readers never wait on disk.
    """

    STORE_KEY = "clients"

    def __init__(self, stale_after_sec: float = CLIENT_STALE_SEC,
                 clock: Callable[[], float] = time.time, store=None):
        self.stale_after_ms = int(stale_after_sec * 1000)
        self._clock = clock
        self._store = store
        self._lock = threading.RLock()
        self._save_lock = threading.Lock()
        self._clients: Dict[str, dict] = {}
        self._version = 0
        self._saved_version = 0
        self._load()

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _load(self) -> None:
        if self._store is None:
            return
        saved = self._store.get(self.STORE_KEY, {})
        if not isinstance(saved, dict):
            return
        with self._lock:
            for client_id, record in saved.items():
                if isinstance(record, dict) and "lastSeen" in record:
                    self._clients[client_id] = record
            pending = self._snapshot() if self._evict_stale() else None
        self._persist(pending)

    def _snapshot(self) -> Optional[Tuple[int, dict]]:
        # caller holds self._lock
        if self._store is None:
            return None
        self._version += 1
        return self._version, {cid: dict(rec) for cid, rec in self._clients.items()}

    def _persist(self, pending: Optional[Tuple[int, dict]]) -> None:
        if pending is None:
            return
        version, snapshot = pending
        with self._save_lock:
            if version <= self._saved_version:
                return
            self._store.put(self.STORE_KEY, snapshot)
            self._saved_version = version

    def _is_stale(self, record: dict, now_ms: int) -> bool:
        return now_ms - record["lastSeen"] > self.stale_after_ms

    def _evict_stale(self) -> int:
        now = self._now_ms()
        stale = [cid for cid, rec in self._clients.items() if self._is_stale(rec, now)]
        for cid in stale:
            del self._clients[cid]
            logger.info(f"[CLIENTS] Expired {cid}")
        return len(stale)

    def _live_record(self, client_id: str) -> Optional[dict]:
        # an expired record counts as absent even before the next purge
        record = self._clients.get(client_id)
        if record is not None and self._is_stale(record, self._now_ms()):
            del self._clients[client_id]
            logger.info(f"[CLIENTS] Expired {client_id}")
            return None
        return record

    def register_client(self, client_id: str, device_name: str, ip_address: str) -> dict:
        """Create or replace the record for client_id."""
        record = {
            "clientId": client_id,
            "deviceName": device_name,
            "ipAddress": ip_address,
            "lastSeen": self._now_ms(),
            "currentlyWatching": None,
            "currentPosition": 0,
        }
        with self._lock:
            is_new = client_id not in self._clients
            self._clients[client_id] = record
            pending = self._snapshot()
        self._persist(pending)
        if is_new:
            logger.info(f"[CLIENTS] Registered {client_id} ({device_name} @ {ip_address})")
        return dict(record)

    def update_heartbeat(self, client_id: str) -> bool:
        """Refresh last-seen. Unknown ids are ignored (returns False)."""
        with self._lock:
            known = client_id in self._clients
            record = self._live_record(client_id)
            if record is not None:
                self._clients[client_id] = dict(record, lastSeen=self._now_ms())
            pending = self._snapshot() if known else None
        self._persist(pending)
        return record is not None

    def update_watching(self, client_id: str, video_title: Optional[str], position: int) -> bool:
        """Record what a client is playing and refresh last-seen. Unknown ids are ignored."""
        with self._lock:
            known = client_id in self._clients
            record = self._live_record(client_id)
            if record is not None:
                self._clients[client_id] = dict(
                    record,
                    currentlyWatching=video_title,
                    currentPosition=int(position or 0),
                    lastSeen=self._now_ms(),
                )
            pending = self._snapshot() if known else None
        self._persist(pending)
        return record is not None

    def get_connected_clients(self) -> List[dict]:
        """Live clients, most recently seen first."""
        with self._lock:
            pending = self._snapshot() if self._evict_stale() else None
            clients = [dict(rec) for rec in self._clients.values()]
        self._persist(pending)
        return sorted(clients, key=lambda c: (-c["lastSeen"], c["clientId"]))

    def get_client(self, client_id: str) -> Optional[dict]:
        with self._lock:
            record = self._clients.get(client_id)
            if record is None or self._is_stale(record, self._now_ms()):
                return None
            return dict(record)

    def get_client_count(self) -> int:
        with self._lock:
            pending = self._snapshot() if self._evict_stale() else None
            count = len(self._clients)
        self._persist(pending)
        return count

    def remove_client(self, client_id: str) -> bool:
        with self._lock:
            removed = self._clients.pop(client_id, None) is not None
            pending = self._snapshot() if removed else None
        self._persist(pending)
        if removed:
            logger.info(f"[CLIENTS] Removed {client_id}")
        return removed
