# SPDX-License-Identifier: LicenseRef-TVArgenta-NC-Attribution-Consult-First
# Proyecto: MovieLocal — Servidor de medios
# Autor: Ricardo Sappia contact:rsflightronics@gmail.com
# © 2025 Ricardo Sappia. Todos los derechos reservados.
# Licencia: No comercial, atribución y consulta previa. Se distribuye TAL CUAL, sin garantías.
# Ver LICENSE para términos completos.

"""
Channel Scheduler

Simulates live channels on top of plain folders of videos. Each started
channel gets:

- a playlist: every video under its folders, flattened and sorted
- a background thread that advances a virtual playback position once per
  tick and moves to the next video (wrapping around) when the current one ends

No video is encoded here. The published ChannelState only tells a joining
client which file to open and where to seek so every viewer sees roughly
the same "broadcast".

Channel lifecycle: stopped -> starting -> running -> stopped
"""

import logging
import threading
import time
from typing import Callable, Dict, List, Optional

from errors import ChannelResolutionEmpty
from media_utils import collect_videos, get_video_duration_ms
from settings import TICK_INTERVAL_SEC

logger = logging.getLogger("movielocal.channels")

STATUS_STARTING = "starting"
STATUS_RUNNING = "running"

# How long stop_channel waits for the thread to exit
STOP_JOIN_TIMEOUT_SEC = 5


class ChannelTask:
    """Handle for one channel's scheduling thread."""

    def __init__(self, channel_id: str):
        self.channel_id = channel_id
        self.status = STATUS_STARTING
        self.stop_event = threading.Event()
        self.thread: Optional[threading.Thread] = None
        self.playlist: List[str] = []

    def cancel(self):
        self.stop_event.set()

    @property
    def cancelled(self) -> bool:
        return self.stop_event.is_set()


class ChannelStreamer:
    """
    Owns every running channel.

    The state map is shared between HTTP handlers (readers) and the channel
    threads (one writer per entry). Published states are never mutated,
    each tick swaps in a new dict, so readers only hold the lock for a
    dictionary lookup.
    """

    def __init__(self,
                 tick_interval: float = TICK_INTERVAL_SEC,
                 duration_probe: Callable[[str], int] = get_video_duration_ms,
                 playlist_resolver: Callable[[List[str]], List[str]] = collect_videos,
                 clock: Callable[[], float] = time.time):
        self.tick_interval = tick_interval
        self.tick_ms = int(round(tick_interval * 1000))
        self._probe = duration_probe
        self._resolve = playlist_resolver
        self._clock = clock
        self._lock = threading.Lock()
        self._tasks: Dict[str, ChannelTask] = {}
        self._states: Dict[str, dict] = {}

    # ------------------------------------------------------------------
    # public API
    # ------------------------------------------------------------------

    def start_channel(self, channel: dict) -> bool:
        """
        Start a channel from its definition.

        Returns True when a new scheduling thread was started, False when the
        channel was already starting/running (no-op).

        Raises:
            ChannelResolutionEmpty: the folders hold no playable videos; the
                channel stays stopped.
        """
        channel_id = channel["id"]
        task = ChannelTask(channel_id)

        with self._lock:
            if channel_id in self._tasks:
                return False
            # Reserve the slot before touching the filesystem so a concurrent
            # start of the same channel sees it taken.
            self._tasks[channel_id] = task

        try:
            playlist = self._resolve(list(channel.get("folderPaths") or []))
        except Exception:
            with self._lock:
                if self._tasks.get(channel_id) is task:
                    del self._tasks[channel_id]
            raise

        with self._lock:
            if self._tasks.get(channel_id) is not task:
                # stopped while resolving
                return False
            if not playlist:
                del self._tasks[channel_id]
                logger.warning(f"[CHANNEL] {channel_id}: no playable videos in {channel.get('folderPaths')}")
                raise ChannelResolutionEmpty(channel_id)

            task.playlist = playlist
            task.status = STATUS_RUNNING
            self._states[channel_id] = self._make_state(channel_id, playlist, 0, 0, 0)
            task.thread = threading.Thread(
                target=self._run_channel, args=(task,),
                name=f"channel-{channel_id}", daemon=True,
            )
            task.thread.start()

        logger.info(f"[CHANNEL] Started {channel_id} ({len(playlist)} videos)")
        return True

    def stop_channel(self, channel_id: str) -> bool:
        """Stop a channel and drop its state. Safe to call on a stopped channel."""
        with self._lock:
            task = self._tasks.pop(channel_id, None)
            self._states.pop(channel_id, None)

        if task is None:
            return False

        task.cancel()
        thread = task.thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=STOP_JOIN_TIMEOUT_SEC)
        logger.info(f"[CHANNEL] Stopped {channel_id}")
        return True

    def get_channel_state(self, channel_id: str) -> Optional[dict]:
        with self._lock:
            state = self._states.get(channel_id)
        return dict(state) if state is not None else None

    def is_channel_active(self, channel_id: str) -> bool:
        with self._lock:
            task = self._tasks.get(channel_id)
            return task is not None and task.status == STATUS_RUNNING

    def active_channel_ids(self) -> List[str]:
        with self._lock:
            return sorted(cid for cid, t in self._tasks.items() if t.status == STATUS_RUNNING)

    def playlist_paths(self) -> List[str]:
        """Every video queued on a running channel."""
        with self._lock:
            return sorted({p for t in self._tasks.values() if t.status == STATUS_RUNNING for p in t.playlist})

    def shutdown(self) -> None:
        """Stop every channel. Used on server shutdown."""
        with self._lock:
            channel_ids = list(self._tasks.keys())
        for channel_id in channel_ids:
            self.stop_channel(channel_id)
        logger.info("[CHANNEL] All channels stopped")

    # ------------------------------------------------------------------
    # scheduling loop
    # ------------------------------------------------------------------

    def _make_state(self, channel_id: str, playlist: List[str], index: int,
                    position: int, duration: int) -> dict:
        return {
            "channelId": channel_id,
            "currentVideoPath": playlist[index],
            "currentVideoIndex": index,
            "currentPosition": position,
            "currentVideoDuration": duration,
            "allVideoPaths": playlist,
            "lastUpdated": int(self._clock() * 1000),
        }

    def _publish(self, task: ChannelTask, index: int, position: int, duration: int) -> bool:
        state = self._make_state(task.channel_id, task.playlist, index, position, duration)
        with self._lock:
            # A stopped (or restarted) channel must not be resurrected by a late tick
            if task.cancelled or self._tasks.get(task.channel_id) is not task:
                return False
            self._states[task.channel_id] = state
        return True

    def _run_channel(self, task: ChannelTask) -> None:
        playlist = task.playlist
        index = 0

        while not task.cancelled:
            video_path = playlist[index]
            try:
                duration = int(self._probe(video_path) or 0)
            except Exception as e:
                logger.warning(f"[CHANNEL] {task.channel_id}: duration probe failed for {video_path}: {e}")
                duration = 0

            position = 0
            if not self._publish(task, index, position, duration):
                break

            while True:
                if task.stop_event.wait(self.tick_interval):
                    logger.debug(f"[CHANNEL] {task.channel_id}: loop cancelled")
                    return
                position += self.tick_ms
                if duration <= 0 or position >= duration:
                    break
                if not self._publish(task, index, position, duration):
                    return

            index = (index + 1) % len(playlist)

        logger.debug(f"[CHANNEL] {task.channel_id}: loop exited")
