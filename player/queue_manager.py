"""
Queue Manager for the music player.
Holds the ordered playback context (all songs, a playlist, liked songs) and its cursor.
"""

import logging
import random
from typing import Callable, List, Optional

from shared.models import Track

logger = logging.getLogger(__name__)


class QueueManager:
    """
    Ordered playback context with a cursor.

    The cursor is a valid index whenever the queue is non-empty and ``None``
    when it is empty. The queue is rebuilt wholesale with ``set_tracks``; it is
    never patched incrementally.
    """

    def __init__(self, rng: Optional[random.Random] = None):
        self._tracks: List[Track] = []
        self._cursor: Optional[int] = None
        self._rng = rng or random.Random()
        self._on_change_callbacks: List[Callable[[], None]] = []

    @property
    def cursor(self) -> Optional[int]:
        return self._cursor

    def set_tracks(self, tracks: List[Track], current_id: Optional[str] = None) -> None:
        """
        Replace the queue contents.

        The cursor follows ``current_id`` when that track is part of the new
        list, otherwise it starts at the first track.
        """
        self._tracks = list(tracks)
        if not self._tracks:
            self._cursor = None
        else:
            index = self.index_of(current_id) if current_id else None
            self._cursor = index if index is not None else 0
        logger.debug("Queue rebuilt: %d tracks, cursor=%s", len(self._tracks), self._cursor)
        self._notify_change()

    def select(self, index: int) -> Optional[Track]:
        """Move the cursor to ``index``. Returns the track there, or None if out of range."""
        if 0 <= index < len(self._tracks):
            self._cursor = index
            self._notify_change()
            return self._tracks[index]
        return None

    def current(self) -> Optional[Track]:
        if self._cursor is None:
            return None
        return self._tracks[self._cursor]

    def advance(self, shuffled: bool = False) -> Optional[Track]:
        """
        Step forward: a uniform random index when shuffled (the current index
        may be picked again), otherwise the next index, wrapping at the end.
        Returns None on an empty queue.
        """
        if not self._tracks:
            return None
        size = len(self._tracks)
        if shuffled:
            index = self._rng.randrange(size)
        else:
            index = (self._cursor + 1) % size
        return self.select(index)

    def retreat(self, shuffled: bool = False) -> Optional[Track]:
        """Step backward; shuffled mode picks a uniform random index (no history)."""
        if not self._tracks:
            return None
        size = len(self._tracks)
        if shuffled:
            index = self._rng.randrange(size)
        else:
            index = (self._cursor - 1 + size) % size
        return self.select(index)

    def index_of(self, track_id: str) -> Optional[int]:
        for i, track in enumerate(self._tracks):
            if track.id == track_id:
                return i
        return None

    def get(self, track_id: str) -> Optional[Track]:
        index = self.index_of(track_id)
        return self._tracks[index] if index is not None else None

    def track_ids(self) -> List[str]:
        return [t.id for t in self._tracks]

    def is_empty(self) -> bool:
        return not self._tracks

    def size(self) -> int:
        return len(self._tracks)

    def add_change_callback(self, callback: Callable[[], None]) -> None:
        """Register a callback to be called when the queue changes."""
        if callback not in self._on_change_callbacks:
            self._on_change_callbacks.append(callback)

    def remove_change_callback(self, callback: Callable[[], None]) -> None:
        """Unregister a queue change callback."""
        if callback in self._on_change_callbacks:
            self._on_change_callbacks.remove(callback)

    def _notify_change(self) -> None:
        for callback in self._on_change_callbacks:
            try:
                callback()
            except Exception:
                logger.exception("Error in queue change callback")
