"""
Player session: the playback/queue state machine behind the music player.

The session owns the transport state, the queue and the volume/mute and
shuffle/repeat settings. It talks to two collaborators:

* a catalog store (like/unlike/status requests, see ``player.catalog``)
* an optional media output that actually produces sound (see ``player.engine``)

The media output reports back through ``tick``, ``set_duration``, ``ended``
and ``media_error``. Renderers subscribe with ``add_change_callback`` and read
``state``, ``current_track``, ``like_state`` and ``last_event``.

All commands run on one asyncio event loop. Commands that talk to the
catalog (``load`` with a signed-in user, ``toggle_like``) schedule tasks on
the running loop and return immediately.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Protocol

from shared.constants import DEFAULT_VOLUME, MAX_VOLUME, MIN_VOLUME
from shared.models import Track
from player.errors import (
    InvalidSeekTarget,
    NoTrackLoaded,
    PlaybackResourceError,
    PlayerError,
)
from player.catalog import CatalogStore
from player.like_manager import LikeManager, LikeState
from player.queue_manager import QueueManager

logger = logging.getLogger(__name__)


class Status(Enum):
    IDLE = "idle"
    PLAYING = "playing"
    PAUSED = "paused"


class RepeatMode(Enum):
    NONE = "none"
    ALL = "all"
    ONE = "one"

    def next(self) -> 'RepeatMode':
        """none -> all -> one -> none"""
        order = [RepeatMode.NONE, RepeatMode.ALL, RepeatMode.ONE]
        return order[(order.index(self) + 1) % len(order)]


@dataclass
class PlaybackState:
    status: Status = Status.IDLE
    current_time: float = 0.0
    duration: float = 0.0
    volume: int = DEFAULT_VOLUME
    muted: bool = False
    shuffled: bool = False
    repeat_mode: RepeatMode = RepeatMode.NONE

    @property
    def effective_volume(self) -> float:
        """Audio level in [0, 1] actually sent to the output."""
        return 0.0 if self.muted else self.volume / MAX_VOLUME

    @property
    def progress(self) -> float:
        return self.current_time / self.duration if self.duration > 0 else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "current_time": self.current_time,
            "duration": self.duration,
            "volume": self.volume,
            "muted": self.muted,
            "shuffled": self.shuffled,
            "repeat_mode": self.repeat_mode.value,
        }


@dataclass(frozen=True)
class PlayerEvent:
    """Last error/notification exposed to the rendering layer."""
    error: PlayerError

    @property
    def kind(self) -> str:
        return type(self.error).__name__

    @property
    def message(self) -> str:
        return str(self.error)

    @property
    def track_id(self) -> Optional[str]:
        return self.error.track_id


class MediaOutput(Protocol):
    def load(self, track: Track) -> None: ...
    def play(self) -> None: ...
    def pause(self) -> None: ...
    def seek(self, seconds: float) -> None: ...
    def set_level(self, level: float) -> None: ...


class PlayerSession:
    def __init__(self, store: Optional[CatalogStore] = None, user_id: Optional[str] = None,
                 media: Optional[MediaOutput] = None,
                 rng: Optional[random.Random] = None,
                 volume: int = DEFAULT_VOLUME):
        self.state = PlaybackState(volume=_clamp_volume(volume))
        self.queue = QueueManager(rng)
        self.current_track: Optional[Track] = None
        self.media = media
        self.last_event: Optional[PlayerEvent] = None
        # Set once the current track has finished; the media clock may report
        # the end twice (final position, then eof)
        self._end_handled = False

        self.likes = LikeManager(store, user_id, on_failure=self._record)
        self.likes.add_change_callback(self._on_like_change)

        self._on_change_callbacks: List[Callable[[], None]] = []

    # --- Observers ---

    @property
    def like_state(self) -> LikeState:
        return self.likes.state(self.current_track.id if self.current_track else None)

    @property
    def user_id(self) -> Optional[str]:
        return self.likes.user_id

    def add_change_callback(self, callback: Callable[[], None]) -> None:
        """Register a callback to be called after every state change."""
        if callback not in self._on_change_callbacks:
            self._on_change_callbacks.append(callback)

    def remove_change_callback(self, callback: Callable[[], None]) -> None:
        if callback in self._on_change_callbacks:
            self._on_change_callbacks.remove(callback)

    def consume_event(self) -> Optional[PlayerEvent]:
        """Return the last event and clear it (renderers show each one once)."""
        event, self.last_event = self.last_event, None
        return event

    def snapshot(self) -> Dict[str, Any]:
        return {
            **self.state.to_dict(),
            "track": self.current_track.to_dict() if self.current_track else None,
            "like_state": self.like_state.value,
            "queue": self.queue.track_ids(),
            "cursor": self.queue.cursor,
            "last_event": (
                {"kind": self.last_event.kind, "message": self.last_event.message,
                 "track_id": self.last_event.track_id}
                if self.last_event else None
            ),
        }

    # --- Queue context ---

    def set_queue(self, tracks: List[Track], start_index: Optional[int] = None) -> None:
        """
        Rebuild the playback context. The cursor follows the current track if
        it is in the new list; ``start_index`` loads that track instead.
        """
        current_id = self.current_track.id if self.current_track else None
        self.queue.set_tracks(tracks, current_id=current_id)
        if start_index is not None:
            track = self.queue.select(start_index)
            if track is not None:
                self.load(track)
                return
        self._notify_change()

    def play_track(self, track_id: str) -> bool:
        """Load a queued track and start playing it."""
        track = self.queue.get(track_id)
        if track is None:
            self._record(NoTrackLoaded(f"Track {track_id} is not in the queue", track_id=track_id))
            return False
        self.load(track)
        return self.play()

    # --- Transport ---

    def load(self, track: Track) -> None:
        """Make ``track`` current, paused at 0. Like status is resolved in the background."""
        self.current_track = track
        self._end_handled = False
        index = self.queue.index_of(track.id)
        if index is not None and index != self.queue.cursor:
            self.queue.select(index)

        self.state.status = Status.PAUSED
        self.state.current_time = 0.0
        self.state.duration = float(track.duration or 0)
        logger.debug("Loaded %s - %s", track.artist, track.title)

        if self.media:
            self.media.load(track)
        self.likes.forget_except(track.id)
        self.likes.refresh(track.id)
        self._notify_change()

    def play(self) -> bool:
        if self.current_track is None:
            self._record(NoTrackLoaded("No track loaded"))
            return False
        if self.state.status is not Status.PLAYING:
            self.state.status = Status.PLAYING
            if self.media:
                self.media.play()
            self._notify_change()
        return True

    def pause(self) -> bool:
        if self.state.status is not Status.PLAYING:
            return False
        self.state.status = Status.PAUSED
        if self.media:
            self.media.pause()
        self._notify_change()
        return True

    def toggle(self) -> bool:
        if self.state.status is Status.PLAYING:
            return self.pause()
        return self.play()

    def seek(self, fraction: float) -> bool:
        """Jump to ``fraction`` of the track. Out-of-range fractions are clamped."""
        if self.current_track is None:
            self._record(NoTrackLoaded("No track loaded"))
            return False
        if self.state.duration <= 0:
            self._record(InvalidSeekTarget("Duration unknown", track_id=self.current_track.id))
            return False
        if not 0.0 <= fraction <= 1.0:
            self._record(InvalidSeekTarget(
                f"Seek fraction {fraction} outside [0, 1], clamped", track_id=self.current_track.id
            ))
            fraction = min(1.0, max(0.0, fraction))

        self._end_handled = False
        self.state.current_time = fraction * self.state.duration
        if self.media:
            self.media.seek(self.state.current_time)
        self._notify_change()
        return True

    def tick(self, current_time: float) -> None:
        """
        Media clock position report. Later reports overwrite earlier ones,
        including backwards jumps. Reaching the duration while playing runs
        end-of-track handling.
        """
        if self.current_track is None or self.state.status is Status.IDLE:
            return
        position = max(0.0, float(current_time))
        if self.state.duration > 0:
            position = min(position, self.state.duration)
        if self._end_handled:
            if self.state.duration > 0 and position >= self.state.duration:
                return
            self._end_handled = False
        self.state.current_time = position

        if (self.state.duration > 0 and position >= self.state.duration
                and self.state.status is Status.PLAYING):
            self._handle_track_end()
        else:
            self._notify_change()

    def set_duration(self, seconds: Optional[float]) -> None:
        """Media-reported duration; refines the catalog value."""
        if seconds is None or seconds < 0:
            logger.warning("Ignoring invalid duration %r", seconds)
            return
        self.state.duration = float(seconds)
        if self.state.current_time > self.state.duration:
            self.state.current_time = self.state.duration
        self._notify_change()

    def ended(self) -> None:
        """Media end-of-stream notification."""
        if self.current_track is None or self.state.status is Status.IDLE or self._end_handled:
            return
        self._handle_track_end()

    def media_error(self, message: str) -> None:
        """The media resource failed: stop, report, no retry or auto-advance."""
        track_id = self.current_track.id if self.current_track else None
        self.state.status = Status.IDLE
        self._record(PlaybackResourceError(message, track_id=track_id))

    def _handle_track_end(self) -> None:
        """
        Runs once per finished track. Later end reports for the same track
        are ignored until the clock reports a position before the end again
        (or the user seeks or loads a track).
        """
        mode = self.state.repeat_mode
        if mode is RepeatMode.ONE:
            self.state.current_time = 0.0
            self.state.status = Status.PLAYING
            if self.media:
                self.media.seek(0.0)
                self.media.play()
            self._end_handled = True
            self._notify_change()
            return

        if mode is RepeatMode.ALL and not self.queue.is_empty():
            self.next()
            self._end_handled = True
            return

        self.state.status = Status.IDLE
        self.state.current_time = 0.0
        # keep_open leaves the output parked at eof; rewind it to match
        if self.media:
            self.media.pause()
            self.media.seek(0.0)
        self._end_handled = True
        self._notify_change()

    # --- Queue navigation ---

    def next(self) -> Optional[Track]:
        """Load and play the next track (random pick when shuffled). No-op on an empty queue."""
        track = self.queue.advance(self.state.shuffled)
        if track is None:
            return None
        self.load(track)
        self.play()
        return track

    def previous(self) -> Optional[Track]:
        """Load and play the previous track (random pick when shuffled)."""
        track = self.queue.retreat(self.state.shuffled)
        if track is None:
            return None
        self.load(track)
        self.play()
        return track

    def toggle_shuffle(self) -> bool:
        self.state.shuffled = not self.state.shuffled
        self._notify_change()
        return self.state.shuffled

    def cycle_repeat(self) -> RepeatMode:
        self.state.repeat_mode = self.state.repeat_mode.next()
        self._notify_change()
        return self.state.repeat_mode

    # --- Volume ---

    def set_volume(self, volume: int) -> int:
        """Set volume (0-100, clamped). Setting a volume always unmutes."""
        self.state.volume = _clamp_volume(volume)
        self.state.muted = False
        self._apply_level()
        return self.state.volume

    def toggle_mute(self) -> bool:
        """Flip mute. ``volume`` is kept so unmuting restores it."""
        self.state.muted = not self.state.muted
        self._apply_level()
        return self.state.muted

    def _apply_level(self) -> None:
        if self.media:
            self.media.set_level(self.state.effective_volume)
        self._notify_change()

    # --- Likes ---

    def toggle_like(self) -> Optional[asyncio.Task]:
        """Optimistically flip the like state of the current track and sync it."""
        if self.current_track is None:
            self._record(NoTrackLoaded("No track loaded"))
            return None
        if not self.user_id:
            self._record(PlayerError("Sign in to like songs", track_id=self.current_track.id))
            return None
        return self.likes.toggle(self.current_track.id)

    def _on_like_change(self, track_id: str) -> None:
        if self.current_track is not None and self.current_track.id == track_id:
            self._notify_change()

    # --- Internals ---

    def _record(self, error: PlayerError) -> None:
        self.last_event = PlayerEvent(error)
        logger.info("%s: %s", type(error).__name__, error)
        self._notify_change()

    def _notify_change(self) -> None:
        for callback in self._on_change_callbacks:
            try:
                callback()
            except Exception:
                logger.exception("Error in session change callback")


def _clamp_volume(volume: float) -> int:
    return int(max(MIN_VOLUME, min(MAX_VOLUME, round(volume))))
