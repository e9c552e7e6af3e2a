"""
Errors raised inside the player. The session records them as events; none is fatal.
"""

from typing import Optional


class PlayerError(Exception):
    """Base class for player session errors."""

    def __init__(self, message: str, track_id: Optional[str] = None):
        super().__init__(message)
        self.track_id = track_id


class NoTrackLoaded(PlayerError):
    """A command needs a current track but none is set."""


class InvalidSeekTarget(PlayerError):
    """Seek requested with unknown duration or a fraction outside [0, 1]."""


class LikeSyncFailure(PlayerError):
    """A like/unlike request to the catalog failed; the visible state was rolled back."""


class PlaybackResourceError(PlayerError):
    """The media resource for a track failed to load or play."""


class CatalogError(Exception):
    """The catalog store could not complete a request (network, auth or server error)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code
