"""
Catalog store clients used by the player.

Both clients implement the async contract the session consumes
(``list_songs``, ``like_status``, ``like``, ``unlike``). Blocking work runs in
a worker thread via ``asyncio.to_thread`` so the event loop never stalls.
"""

import asyncio
import logging
from typing import Any, List, Optional, Protocol

import requests

from shared.constants import DEFAULT_API_URL, DEFAULT_NETWORK_TIMEOUT
from shared.database import DatabaseManager, StoreError
from shared.models import LikedSong, Playlist, PlaylistSong, Track, User
from player.errors import CatalogError

logger = logging.getLogger(__name__)


class CatalogStore(Protocol):
    async def list_songs(self) -> List[Track]: ...
    async def like_status(self, user_id: str, track_id: str) -> bool: ...
    async def like(self, user_id: str, track_id: str) -> None: ...
    async def unlike(self, user_id: str, track_id: str) -> None: ...


class CatalogClient:
    """
    HTTP client for the MelodyStream REST API.

    Authentication is cookie based, so like/unlike act for whoever logged in
    through this client; the ``user_id`` arguments of the async contract are
    only checked against that user.
    """

    def __init__(self, base_url: str = DEFAULT_API_URL, timeout: int = DEFAULT_NETWORK_TIMEOUT,
                 session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.http = session or requests.Session()
        self.user: Optional[User] = None

    def _request(self, method: str, path: str, **kwargs) -> Any:
        url = f"{self.base_url}/api{path}"
        try:
            response = self.http.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise CatalogError(f"{method} {path} failed: {e}") from e

        if response.status_code >= 400:
            try:
                message = response.json().get("error", response.reason)
            except ValueError:
                message = response.reason
            raise CatalogError(f"{method} {path}: {message}", status_code=response.status_code)

        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise CatalogError(f"{method} {path}: malformed response body", status_code=response.status_code) from e

    # --- Blocking API ---

    def login(self, username: str, password: str) -> User:
        data = self._request("POST", "/auth/login", json={"username": username, "password": password})
        self.user = User.from_dict(data)
        logger.info("Signed in as %s", self.user.username)
        return self.user

    def logout(self) -> None:
        self._request("POST", "/auth/logout")
        self.user = None

    def get_songs(self) -> List[Track]:
        return [Track.from_dict(item) for item in self._request("GET", "/songs")]

    def get_song(self, song_id: str) -> Track:
        return Track.from_dict(self._request("GET", f"/songs/{song_id}"))

    def get_playlists(self) -> List[Playlist]:
        return [Playlist.from_dict(item) for item in self._request("GET", "/playlists")]

    def get_playlist_songs(self, playlist_id: str) -> List[PlaylistSong]:
        return [PlaylistSong.from_dict(item) for item in self._request("GET", f"/playlists/{playlist_id}/songs")]

    def get_liked_songs(self) -> List[LikedSong]:
        return [LikedSong.from_dict(item) for item in self._request("GET", "/liked-songs")]

    def is_liked(self, song_id: str) -> bool:
        return bool(self._request("GET", f"/liked-songs/{song_id}/status")["is_liked"])

    def like_song(self, song_id: str) -> None:
        self._request("POST", "/liked-songs", json={"song_id": song_id})

    def unlike_song(self, song_id: str) -> None:
        self._request("DELETE", f"/liked-songs/{song_id}")

    # --- Async contract ---

    def _check_user(self, user_id: str) -> None:
        if self.user is None or self.user.id != user_id:
            raise CatalogError("Not signed in as this user", status_code=401)

    async def list_songs(self) -> List[Track]:
        return await asyncio.to_thread(self.get_songs)

    async def like_status(self, user_id: str, track_id: str) -> bool:
        self._check_user(user_id)
        return await asyncio.to_thread(self.is_liked, track_id)

    async def like(self, user_id: str, track_id: str) -> None:
        self._check_user(user_id)
        await asyncio.to_thread(self.like_song, track_id)

    async def unlike(self, user_id: str, track_id: str) -> None:
        self._check_user(user_id)
        await asyncio.to_thread(self.unlike_song, track_id)


class LocalCatalog:
    """Catalog backed directly by a local SQLite database."""

    def __init__(self, db: DatabaseManager):
        self.db = db

    async def _call(self, fn, *args):
        try:
            return await asyncio.to_thread(fn, *args)
        except StoreError as e:
            raise CatalogError(str(e)) from e

    async def list_songs(self) -> List[Track]:
        return await self._call(self.db.get_all_songs)

    async def like_status(self, user_id: str, track_id: str) -> bool:
        return await self._call(self.db.is_song_liked, user_id, track_id)

    async def like(self, user_id: str, track_id: str) -> None:
        await self._call(self.db.like_song, user_id, track_id)

    async def unlike(self, user_id: str, track_id: str) -> None:
        await self._call(self.db.unlike_song, user_id, track_id)
