"""
SQLite Database Manager for MelodyStream.
Stores users, the song catalog, playlists and liked songs.
"""

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from shared.constants import DEFAULT_DATABASE_PATH
from shared.models import (
    LikedSong,
    Playlist,
    PlaylistSong,
    Track,
    User,
    generate_id,
)

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Base class for store failures."""


class NotFoundError(StoreError):
    """A referenced record does not exist."""


class ConflictError(StoreError):
    """A uniqueness constraint would be violated."""


SCHEMA = """
    CREATE TABLE IF NOT EXISTS users (
        id TEXT PRIMARY KEY,
        username TEXT UNIQUE NOT NULL,
        email TEXT UNIQUE NOT NULL,
        password_hash TEXT NOT NULL,
        first_name TEXT,
        last_name TEXT,
        is_admin BOOLEAN DEFAULT 0,
        created_at TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS songs (
        id TEXT PRIMARY KEY,
        title TEXT NOT NULL,
        artist TEXT NOT NULL,
        album TEXT,
        duration INTEGER NOT NULL DEFAULT 0,
        audio_url TEXT NOT NULL,
        cover_image_url TEXT,
        created_at TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS playlists (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        description TEXT,
        user_id TEXT NOT NULL,
        is_public BOOLEAN DEFAULT 0,
        cover_image_url TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
    );

    CREATE TABLE IF NOT EXISTS playlist_songs (
        id TEXT PRIMARY KEY,
        playlist_id TEXT NOT NULL,
        song_id TEXT NOT NULL,
        position INTEGER NOT NULL,
        added_at TEXT NOT NULL,
        FOREIGN KEY (playlist_id) REFERENCES playlists(id) ON DELETE CASCADE,
        FOREIGN KEY (song_id) REFERENCES songs(id) ON DELETE CASCADE,
        UNIQUE(playlist_id, song_id)
    );

    CREATE TABLE IF NOT EXISTS liked_songs (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        song_id TEXT NOT NULL,
        liked_at TEXT NOT NULL,
        FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE,
        FOREIGN KEY (song_id) REFERENCES songs(id) ON DELETE CASCADE,
        UNIQUE(user_id, song_id)
    );

    CREATE INDEX IF NOT EXISTS idx_playlists_user_id ON playlists(user_id);
    CREATE INDEX IF NOT EXISTS idx_playlist_songs_playlist_id ON playlist_songs(playlist_id);
    CREATE INDEX IF NOT EXISTS idx_liked_songs_user_id ON liked_songs(user_id);
"""

SONG_COLUMNS = ("id", "title", "artist", "album", "duration", "audio_url", "cover_image_url", "created_at")
PLAYLIST_UPDATABLE = ("name", "description", "is_public", "cover_image_url")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class DatabaseManager:
    def __init__(self, db_path: Optional[str] = None):
        if db_path is None:
            self.db_path = Path(DEFAULT_DATABASE_PATH).expanduser()
        else:
            self.db_path = Path(db_path).expanduser()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._init_db()

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.db_path, isolation_level=None)
        conn.row_factory = sqlite3.Row
        # WAL lets the API serve reads while a write is in progress
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")
        conn.execute("PRAGMA foreign_keys=ON")
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._get_connection() as conn:
            conn.execute("BEGIN TRANSACTION")
            try:
                yield conn
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise

    def _init_db(self):
        """Initialize the database schema."""
        with self._get_connection() as conn:
            conn.executescript(SCHEMA)
        logger.debug("Database ready at %s", self.db_path)

    # --- Users ---

    def create_user(self, username: str, email: str, password_hash: str,
                    first_name: Optional[str] = None, last_name: Optional[str] = None,
                    is_admin: bool = False) -> User:
        user = User(
            id=generate_id(),
            username=username,
            email=email,
            password_hash=password_hash,
            first_name=first_name,
            last_name=last_name,
            is_admin=is_admin,
        )
        try:
            with self._transaction() as conn:
                conn.execute("""
                    INSERT INTO users (id, username, email, password_hash, first_name,
                                       last_name, is_admin, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """, (user.id, user.username, user.email, user.password_hash,
                      user.first_name, user.last_name, int(user.is_admin), user.created_at))
        except sqlite3.IntegrityError as e:
            raise ConflictError("Username or email already registered") from e
        logger.info("Created user %s", username)
        return user

    def get_user(self, user_id: str) -> Optional[User]:
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
            return User.from_dict(dict(row)) if row else None

    def get_user_by_login(self, login: str) -> Optional[User]:
        """Look a user up by username or email."""
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE username = ? OR email = ?", (login, login)
            ).fetchone()
            return User.from_dict(dict(row)) if row else None

    # --- Songs ---

    def get_all_songs(self) -> List[Track]:
        """Fetch the whole catalog, newest first."""
        with self._get_connection() as conn:
            cursor = conn.execute("SELECT * FROM songs ORDER BY created_at DESC, rowid DESC")
            return [self._row_to_track(row) for row in cursor.fetchall()]

    def get_song(self, song_id: str) -> Optional[Track]:
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM songs WHERE id = ?", (song_id,)).fetchone()
            return self._row_to_track(row) if row else None

    def create_song(self, title: str, artist: str, duration: int, audio_url: str,
                    album: Optional[str] = None, cover_image_url: Optional[str] = None,
                    song_id: Optional[str] = None) -> Track:
        track = Track(
            id=song_id or generate_id(),
            title=title,
            artist=artist,
            album=album,
            duration=int(duration),
            audio_url=audio_url,
            cover_image_url=cover_image_url,
            created_at=_now(),
        )
        try:
            with self._transaction() as conn:
                conn.execute(f"""
                    INSERT INTO songs ({', '.join(SONG_COLUMNS)})
                    VALUES ({', '.join(['?'] * len(SONG_COLUMNS))})
                """, tuple(getattr(track, c) for c in SONG_COLUMNS))
        except sqlite3.IntegrityError as e:
            raise ConflictError(f"Song {track.id} already exists") from e
        return track

    def delete_song(self, song_id: str) -> bool:
        with self._transaction() as conn:
            cursor = conn.execute("DELETE FROM songs WHERE id = ?", (song_id,))
            return cursor.rowcount > 0

    def _row_to_track(self, row: sqlite3.Row) -> Track:
        return Track.from_dict(dict(row))

    # --- Playlists ---

    def get_user_playlists(self, user_id: str) -> List[Playlist]:
        with self._get_connection() as conn:
            cursor = conn.execute("""
                SELECT * FROM playlists WHERE user_id = ?
                ORDER BY updated_at DESC, rowid DESC
            """, (user_id,))
            return [Playlist.from_dict(dict(row)) for row in cursor.fetchall()]

    def get_playlist(self, playlist_id: str) -> Optional[Playlist]:
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM playlists WHERE id = ?", (playlist_id,)).fetchone()
            return Playlist.from_dict(dict(row)) if row else None

    def create_playlist(self, user_id: str, name: str, description: Optional[str] = None,
                        is_public: bool = False, cover_image_url: Optional[str] = None) -> Playlist:
        playlist = Playlist(
            id=generate_id(),
            name=name,
            user_id=user_id,
            description=description,
            is_public=is_public,
            cover_image_url=cover_image_url,
        )
        try:
            with self._transaction() as conn:
                conn.execute("""
                    INSERT INTO playlists (id, name, description, user_id, is_public,
                                           cover_image_url, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """, (playlist.id, playlist.name, playlist.description, playlist.user_id,
                      int(playlist.is_public), playlist.cover_image_url,
                      playlist.created_at, playlist.updated_at))
        except sqlite3.IntegrityError as e:
            raise NotFoundError(f"User {user_id} not found") from e
        return playlist

    def update_playlist(self, playlist_id: str, updates: Dict[str, Any]) -> Optional[Playlist]:
        """Apply a partial update. Unknown keys are ignored."""
        changes = {k: v for k, v in updates.items() if k in PLAYLIST_UPDATABLE}
        if 'is_public' in changes:
            changes['is_public'] = int(bool(changes['is_public']))
        changes['updated_at'] = _now()

        assignments = ', '.join(f"{k} = ?" for k in changes)
        with self._transaction() as conn:
            cursor = conn.execute(
                f"UPDATE playlists SET {assignments} WHERE id = ?",
                (*changes.values(), playlist_id),
            )
            if cursor.rowcount == 0:
                return None
        return self.get_playlist(playlist_id)

    def delete_playlist(self, playlist_id: str) -> bool:
        with self._transaction() as conn:
            cursor = conn.execute("DELETE FROM playlists WHERE id = ?", (playlist_id,))
            return cursor.rowcount > 0

    # --- Playlist songs ---

    def get_playlist_songs(self, playlist_id: str) -> List[PlaylistSong]:
        """Playlist entries joined with their songs, in position order."""
        with self._get_connection() as conn:
            cursor = conn.execute("""
                SELECT ps.id AS entry_id, ps.playlist_id, ps.song_id, ps.position,
                       ps.added_at, s.*
                FROM playlist_songs ps
                JOIN songs s ON s.id = ps.song_id
                WHERE ps.playlist_id = ?
                ORDER BY ps.position, ps.added_at
            """, (playlist_id,))
            entries = []
            for row in cursor.fetchall():
                data = dict(row)
                entries.append(PlaylistSong(
                    id=data['entry_id'],
                    playlist_id=data['playlist_id'],
                    song_id=data['song_id'],
                    position=data['position'],
                    added_at=data['added_at'],
                    song=self._row_to_track(row),
                ))
            return entries

    def add_song_to_playlist(self, playlist_id: str, song_id: str,
                             position: Optional[int] = None) -> PlaylistSong:
        """Append (or insert at ``position``) a song. Raises NotFoundError / ConflictError."""
        if self.get_playlist(playlist_id) is None:
            raise NotFoundError(f"Playlist {playlist_id} not found")
        if self.get_song(song_id) is None:
            raise NotFoundError(f"Song {song_id} not found")

        entry_id = generate_id()
        added_at = _now()
        try:
            with self._transaction() as conn:
                if position is None:
                    row = conn.execute(
                        "SELECT COALESCE(MAX(position), -1) FROM playlist_songs WHERE playlist_id = ?",
                        (playlist_id,),
                    ).fetchone()
                    position = row[0] + 1
                conn.execute("""
                    INSERT INTO playlist_songs (id, playlist_id, song_id, position, added_at)
                    VALUES (?, ?, ?, ?, ?)
                """, (entry_id, playlist_id, song_id, position, added_at))
                conn.execute("UPDATE playlists SET updated_at = ? WHERE id = ?", (added_at, playlist_id))
        except sqlite3.IntegrityError as e:
            raise ConflictError("Song already in playlist") from e
        return PlaylistSong(id=entry_id, playlist_id=playlist_id, song_id=song_id,
                            position=position, added_at=added_at)

    def remove_song_from_playlist(self, playlist_id: str, song_id: str) -> bool:
        with self._transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM playlist_songs WHERE playlist_id = ? AND song_id = ?",
                (playlist_id, song_id),
            )
            if cursor.rowcount:
                conn.execute("UPDATE playlists SET updated_at = ? WHERE id = ?", (_now(), playlist_id))
            return cursor.rowcount > 0

    # --- Liked songs ---

    def get_user_liked_songs(self, user_id: str) -> List[LikedSong]:
        with self._get_connection() as conn:
            cursor = conn.execute("""
                SELECT l.id AS like_id, l.user_id, l.song_id, l.liked_at, s.*
                FROM liked_songs l
                JOIN songs s ON s.id = l.song_id
                WHERE l.user_id = ?
                ORDER BY l.liked_at DESC, l.rowid DESC
            """, (user_id,))
            return [
                LikedSong(
                    id=row['like_id'],
                    user_id=row['user_id'],
                    song_id=row['song_id'],
                    liked_at=row['liked_at'],
                    song=self._row_to_track(row),
                )
                for row in cursor.fetchall()
            ]

    def like_song(self, user_id: str, song_id: str) -> LikedSong:
        """Like a song. Liking an already liked song returns the existing record."""
        if self.get_song(song_id) is None:
            raise NotFoundError(f"Song {song_id} not found")
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM liked_songs WHERE user_id = ? AND song_id = ?", (user_id, song_id)
            ).fetchone()
            if row:
                return LikedSong.from_dict(dict(row))
            liked = LikedSong(id=generate_id(), user_id=user_id, song_id=song_id)
            try:
                conn.execute("""
                    INSERT INTO liked_songs (id, user_id, song_id, liked_at) VALUES (?, ?, ?, ?)
                """, (liked.id, liked.user_id, liked.song_id, liked.liked_at))
            except sqlite3.IntegrityError as e:
                raise NotFoundError(f"User {user_id} not found") from e
            return liked

    def unlike_song(self, user_id: str, song_id: str) -> bool:
        with self._transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM liked_songs WHERE user_id = ? AND song_id = ?", (user_id, song_id)
            )
            return cursor.rowcount > 0

    def is_song_liked(self, user_id: str, song_id: str) -> bool:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT 1 FROM liked_songs WHERE user_id = ? AND song_id = ?", (user_id, song_id)
            ).fetchone()
            return row is not None

    # --- Maintenance ---

    def get_stats(self) -> Dict[str, int]:
        with self._get_connection() as conn:
            return {
                table: conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
                for table in ("users", "songs", "playlists", "liked_songs")
            }

    def clear_all(self):
        """Wipe all data from the database."""
        with self._transaction() as conn:
            for table in ("liked_songs", "playlist_songs", "playlists", "songs", "users"):
                conn.execute(f"DELETE FROM {table}")
        with self._get_connection() as conn:
            conn.execute("VACUUM")
