"""
Like Manager for the music player.
Mirrors the catalog's per-user "liked" flag for tracks and keeps it in sync.

Toggles are optimistic: the visible state flips as soon as the command is
issued. Requests for one track are queued behind a per-track lock and sent in
issuance order, each carrying the target value computed when it was issued,
so responses are applied in that same order and a stale response can never
overwrite a newer one. A failed request leaves the last confirmed value in
place (rolling back its optimistic flip) and reports a LikeSyncFailure.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional

from player.errors import CatalogError, LikeSyncFailure

logger = logging.getLogger(__name__)


class LikeState(Enum):
    UNKNOWN = "unknown"
    LIKED = "liked"
    NOT_LIKED = "not_liked"

    @classmethod
    def from_bool(cls, liked: bool) -> 'LikeState':
        return cls.LIKED if liked else cls.NOT_LIKED


@dataclass
class _TrackLikes:
    confirmed: LikeState = LikeState.UNKNOWN
    pending: List[bool] = field(default_factory=list)
    generation: int = 0
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)


class LikeManager:
    """
    Per-track like state for one user.

    ``refresh`` and ``toggle`` schedule work on the running event loop and
    return the task, so they must be called from inside it.
    """

    def __init__(self, store, user_id: Optional[str] = None,
                 on_failure: Optional[Callable[[LikeSyncFailure], None]] = None):
        self._store = store
        self.user_id = user_id
        self._on_failure = on_failure
        self._tracks: Dict[str, _TrackLikes] = {}
        self._on_change_callbacks: List[Callable[[str], None]] = []

    def _entry(self, track_id: str) -> _TrackLikes:
        if track_id not in self._tracks:
            self._tracks[track_id] = _TrackLikes()
        return self._tracks[track_id]

    def state(self, track_id: Optional[str]) -> LikeState:
        """Visible state: the newest pending target, else the last confirmed value."""
        if track_id is None or track_id not in self._tracks:
            return LikeState.UNKNOWN
        entry = self._tracks[track_id]
        if entry.pending:
            return LikeState.from_bool(entry.pending[-1])
        return entry.confirmed

    def forget_except(self, track_id: Optional[str]) -> None:
        """Drop cached state for every other track with no toggle in flight."""
        for other in [t for t, entry in self._tracks.items() if t != track_id and not entry.pending]:
            del self._tracks[other]

    def is_pending(self, track_id: str) -> bool:
        return bool(self._tracks.get(track_id) and self._tracks[track_id].pending)

    def refresh(self, track_id: str) -> Optional[asyncio.Task]:
        """
        Reset the track to UNKNOWN and fetch its status from the store.
        Skipped while toggles for the track are still in flight (they will
        confirm the state themselves) and when no user is signed in.
        """
        if not self.user_id:
            return None
        entry = self._entry(track_id)
        if entry.pending:
            return None
        entry.confirmed = LikeState.UNKNOWN
        entry.generation += 1
        self._notify_change(track_id)
        loop = asyncio.get_running_loop()
        return loop.create_task(self._fetch_status(track_id, entry.generation))

    async def _fetch_status(self, track_id: str, generation: int) -> None:
        try:
            liked = await self._store.like_status(self.user_id, track_id)
        except CatalogError as e:
            logger.warning("Could not fetch like status for %s: %s", track_id, e)
            return
        except Exception:
            logger.exception("Unexpected error fetching like status for %s", track_id)
            return
        entry = self._tracks.get(track_id)
        # Forgotten, or a toggle or newer refresh since this request started wins
        if entry is None or entry.generation != generation or entry.pending:
            logger.debug("Dropping stale like status for %s", track_id)
            return
        entry.confirmed = LikeState.from_bool(liked)
        self._notify_change(track_id)

    def toggle(self, track_id: str) -> asyncio.Task:
        """
        Flip the visible state and queue the matching like/unlike request.
        Raises RuntimeError when no user is signed in.
        """
        if not self.user_id:
            raise RuntimeError("toggle requires a signed-in user")
        entry = self._entry(track_id)
        target = self.state(track_id) is not LikeState.LIKED
        entry.pending.append(target)
        entry.generation += 1
        self._notify_change(track_id)
        loop = asyncio.get_running_loop()
        return loop.create_task(self._sync(track_id, target))

    async def _sync(self, track_id: str, target: bool) -> None:
        entry = self._entry(track_id)
        async with entry.lock:
            failure = None
            try:
                if target:
                    await self._store.like(self.user_id, track_id)
                else:
                    await self._store.unlike(self.user_id, track_id)
            except Exception as e:
                if not isinstance(e, CatalogError):
                    logger.exception("Unexpected error syncing like for %s", track_id)
                failure = LikeSyncFailure(
                    f"Failed to {'like' if target else 'unlike'} song: {e}", track_id=track_id
                )
            finally:
                entry.pending.pop(0)

            if failure is None:
                entry.confirmed = LikeState.from_bool(target)
                logger.info("%s %s", "Liked" if target else "Unliked", track_id)
            else:
                logger.warning(str(failure))
            self._notify_change(track_id)

        if failure is not None and self._on_failure:
            self._on_failure(failure)

    def add_change_callback(self, callback: Callable[[str], None]) -> None:
        """Register a callback invoked with the track id whose state changed."""
        if callback not in self._on_change_callbacks:
            self._on_change_callbacks.append(callback)

    def remove_change_callback(self, callback: Callable[[str], None]) -> None:
        if callback in self._on_change_callbacks:
            self._on_change_callbacks.remove(callback)

    def _notify_change(self, track_id: str) -> None:
        for callback in self._on_change_callbacks:
            try:
                callback(track_id)
            except Exception:
                logger.exception("Error in like change callback")
