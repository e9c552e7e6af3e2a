"""
Core playback engine using python-mpv.

Acts as the session's media output (load/play/pause/seek/level) and as its
media clock: mpv property observers report position, duration, end of file
and load errors back into the session. mpv calls observers on its own
thread, so every report is handed to the session's event loop.
"""

import asyncio
import logging
import time
from typing import Optional

import mpv

from shared.models import Track

logger = logging.getLogger(__name__)

# Position reports are throttled to ~4 per second
TIME_UPDATE_INTERVAL = 0.25


class PlaybackEngine:
    """Wrapper around MPV for music playback."""

    def __init__(self, loop: asyncio.AbstractEventLoop):
        # vo='null' because we are audio-only; keep_open so eof-reached fires
        self.player = mpv.MPV(
            vo='null',
            ytdl=False,
            keep_open='yes',
            input_default_bindings=False,
        )
        self._loop = loop
        self._session = None
        self._last_time_update = 0.0

    def attach(self, session) -> None:
        """Start reporting media clock events into ``session``."""
        self._session = session
        self.player.observe_property('time-pos', self._handle_time_update)
        self.player.observe_property('duration', self._handle_duration)
        self.player.observe_property('eof-reached', self._handle_eof)
        self.player.event_callback('end-file')(self._handle_end_file)
        self.set_level(session.state.effective_volume)

    # --- MediaOutput ---

    def load(self, track: Track) -> None:
        """Load a track paused; the session decides when to play."""
        self.player.pause = True
        self.player.play(track.audio_url)

    def play(self) -> None:
        self.player.pause = False

    def pause(self) -> None:
        self.player.pause = True

    def seek(self, seconds: float) -> None:
        """Seek to absolute position in seconds."""
        try:
            self.player.seek(seconds, reference='absolute')
        except Exception as e:
            # mpv rejects seeks while a file is still opening
            logger.warning("Error seeking: %s", e)

    def set_level(self, level: float) -> None:
        """Set output level (0.0-1.0)."""
        self.player.volume = max(0.0, min(1.0, level)) * 100

    def stop(self) -> None:
        self.player.terminate()

    # --- mpv observers (mpv thread) ---

    def _dispatch(self, callback, *args) -> None:
        if self._session is not None:
            self._loop.call_soon_threadsafe(callback, *args)

    def _handle_time_update(self, name, value: Optional[float]):
        if value is None:
            return
        now = time.monotonic()
        if now - self._last_time_update >= TIME_UPDATE_INTERVAL:
            self._last_time_update = now
            self._dispatch(self._session.tick, value)

    def _handle_duration(self, name, value: Optional[float]):
        if value is not None:
            self._dispatch(self._session.set_duration, value)

    def _handle_eof(self, name, value):
        if value:
            logger.debug("mpv eof-reached")
            self._dispatch(self._session.ended)

    def _handle_end_file(self, event):
        data = getattr(event, 'data', None)
        if getattr(data, 'reason', None) == mpv.MpvEventEndFile.ERROR:
            message = f"Could not play media ({getattr(data, 'error', 'unknown error')})"
            logger.error(message)
            self._dispatch(self._session.media_error, message)
