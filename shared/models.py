"""
Data models for songs, users, playlists and liked songs.

This module defines the core data structures shared by the API server,
the SQLite store and the player client.
"""

from dataclasses import dataclass, asdict, field, fields
from typing import List, Dict, Optional, Any
from datetime import datetime, timezone
import uuid


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _filter_fields(cls, data: Dict[str, Any]) -> Dict[str, Any]:
    """Drop keys that are not dataclass fields of ``cls``."""
    field_names = {f.name for f in fields(cls)}
    return {k: v for k, v in data.items() if k in field_names}


def generate_id() -> str:
    """Generate a unique record ID."""
    return str(uuid.uuid4())


@dataclass(frozen=True)
class Track:
    """
    Represents a single song in the catalog.

    The player borrows these read-only; they are never mutated once loaded.

    Attributes:
        id: Unique identifier (UUID)
        title: Song title
        artist: Artist name
        duration: Duration in seconds
        audio_url: Location of the fully buffered audio resource
        album: Album name (optional)
        cover_image_url: Location of the cover art (optional)
        created_at: Creation timestamp (ISO 8601, optional)
    """
    id: str
    title: str
    artist: str
    duration: int
    audio_url: str
    album: Optional[str] = None
    cover_image_url: Optional[str] = None
    created_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert track to dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Track':
        """Create Track from dictionary, filtering unknown keys."""
        filtered = _filter_fields(cls, data)
        filtered['duration'] = int(filtered.get('duration') or 0)
        return cls(**filtered)


@dataclass
class User:
    """An account. ``password_hash`` never leaves the server."""
    id: str
    username: str
    email: str
    password_hash: str = ""
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    is_admin: bool = False
    created_at: str = field(default_factory=_now)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data.pop('password_hash', None)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'User':
        filtered = _filter_fields(cls, data)
        filtered['is_admin'] = bool(filtered.get('is_admin', False))
        return cls(**filtered)


@dataclass
class Playlist:
    """A user-owned, ordered collection of songs."""
    id: str
    name: str
    user_id: str
    description: Optional[str] = None
    is_public: bool = False
    cover_image_url: Optional[str] = None
    created_at: str = field(default_factory=_now)
    updated_at: str = field(default_factory=_now)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Playlist':
        filtered = _filter_fields(cls, data)
        filtered['is_public'] = bool(filtered.get('is_public', False))
        return cls(**filtered)


@dataclass
class PlaylistSong:
    """Membership of a song in a playlist, with its position."""
    id: str
    playlist_id: str
    song_id: str
    position: int
    added_at: str = field(default_factory=_now)
    song: Optional[Track] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "playlist_id": self.playlist_id,
            "song_id": self.song_id,
            "position": self.position,
            "added_at": self.added_at,
        }
        if self.song is not None:
            data["song"] = self.song.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PlaylistSong':
        song = data.get('song')
        filtered = _filter_fields(cls, data)
        filtered['song'] = Track.from_dict(song) if isinstance(song, dict) else None
        return cls(**filtered)


@dataclass
class LikedSong:
    """A (user, song) like, optionally joined with the song."""
    id: str
    user_id: str
    song_id: str
    liked_at: str = field(default_factory=_now)
    song: Optional[Track] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "user_id": self.user_id,
            "song_id": self.song_id,
            "liked_at": self.liked_at,
        }
        if self.song is not None:
            data["song"] = self.song.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'LikedSong':
        song = data.get('song')
        filtered = _filter_fields(cls, data)
        filtered['song'] = Track.from_dict(song) if isinstance(song, dict) else None
        return cls(**filtered)


def format_time(seconds: Optional[float]) -> str:
    """Format a position in seconds as ``m:ss``; unknown values render as ``0:00``."""
    if seconds is None or seconds != seconds or seconds < 0:
        return "0:00"
    minutes = int(seconds // 60)
    secs = int(seconds % 60)
    return f"{minutes}:{secs:02d}"


def tracks_from_list(items: List[Dict[str, Any]]) -> List[Track]:
    """Deserialize a JSON list of songs."""
    return [Track.from_dict(item) for item in items]
