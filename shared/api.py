"""
REST API server for MelodyStream.
Exposes the song catalog, playlists and liked songs to player clients.
"""

import logging
from functools import wraps
from typing import Any, Optional

from flask import Flask, current_app, g, jsonify, request, session
from flask_cors import CORS
from flask_socketio import SocketIO
from werkzeug.security import check_password_hash, generate_password_hash

from shared.config import AppConfig
from shared.constants import (
    EVENT_LIKED_SONGS_UPDATED,
    EVENT_PLAYLISTS_UPDATED,
    EVENT_SONGS_UPDATED,
)
from shared.database import ConflictError, DatabaseManager, NotFoundError

logger = logging.getLogger(__name__)


def parse_song_item(item: Any) -> tuple[dict | None, str | None]:
    """Validate and normalize a song creation payload."""
    if not isinstance(item, dict):
        return None, "Body must be an object"

    title = (item.get("title") or "").strip()
    artist = (item.get("artist") or "").strip()
    audio_url = (item.get("audio_url") or "").strip()
    if not title:
        return None, "title is required"
    if not artist:
        return None, "artist is required"
    if not audio_url:
        return None, "audio_url is required"

    duration = item.get("duration", 0)
    if isinstance(duration, bool) or not isinstance(duration, int) or duration < 0:
        return None, "duration must be a non-negative integer (seconds)"

    return {
        "title": title,
        "artist": artist,
        "album": (item.get("album") or "").strip() or None,
        "duration": duration,
        "audio_url": audio_url,
        "cover_image_url": (item.get("cover_image_url") or "").strip() or None,
    }, None


def parse_playlist_item(item: Any, partial: bool = False) -> tuple[dict | None, str | None]:
    """Validate a playlist payload. With ``partial`` only the keys present are checked."""
    if not isinstance(item, dict):
        return None, "Body must be an object"

    result = {}
    if "name" in item or not partial:
        name = (item.get("name") or "").strip()
        if not name:
            return None, "name is required"
        result["name"] = name
    if "description" in item:
        description = item.get("description")
        if description is not None and not isinstance(description, str):
            return None, "description must be a string"
        result["description"] = description
    if "is_public" in item:
        if not isinstance(item["is_public"], bool):
            return None, "is_public must be a boolean"
        result["is_public"] = item["is_public"]
    if "cover_image_url" in item:
        result["cover_image_url"] = item.get("cover_image_url") or None
    return result, None


def _error(message: str, status: int, details: Optional[str] = None):
    body = {"error": message}
    if details:
        body["details"] = details
    return jsonify(body), status


def _db() -> DatabaseManager:
    return current_app.extensions["melodystream_db"]


def _emit(event: str, payload: Optional[dict] = None) -> None:
    current_app.extensions["socketio"].emit(event, payload or {})


def login_required(view):
    @wraps(view)
    def wrapper(*args, **kwargs):
        user_id = session.get("user_id")
        user = _db().get_user(user_id) if user_id else None
        if user is None:
            return _error("Unauthorized", 401)
        g.user = user
        return view(*args, **kwargs)
    return wrapper


def admin_required(view):
    @login_required
    @wraps(view)
    def wrapper(*args, **kwargs):
        if not g.user.is_admin:
            return _error("Admin privileges required", 403)
        return view(*args, **kwargs)
    return wrapper


def _owned_playlist(playlist_id: str):
    """Return (playlist, None) when the current user owns it, else (None, error response)."""
    playlist = _db().get_playlist(playlist_id)
    if playlist is None:
        return None, _error("Playlist not found", 404)
    if playlist.user_id != g.user.id:
        return None, _error("Not the playlist owner", 403)
    return playlist, None


def create_app(db: DatabaseManager, config: Optional[AppConfig] = None) -> Flask:
    """Build the Flask app around an explicitly constructed store."""
    config = config or AppConfig()

    app = Flask(__name__)
    app.config["SECRET_KEY"] = config.secret_key
    app.extensions["melodystream_db"] = db
    CORS(app, supports_credentials=True)
    SocketIO(app, cors_allowed_origins="*", async_mode="threading")

    @app.errorhandler(NotFoundError)
    def handle_not_found(e):
        return _error(str(e), 404)

    @app.errorhandler(ConflictError)
    def handle_conflict(e):
        return _error(str(e), 409)

    @app.route('/api/health')
    def health_check():
        return jsonify({"status": "healthy"})

    # --- Auth Endpoints ---

    @app.route('/api/auth/register', methods=['POST'])
    def register():
        data = request.get_json(silent=True) or {}
        username = (data.get('username') or '').strip()
        email = (data.get('email') or '').strip()
        password = data.get('password') or ''
        if not username or not email or not password:
            return _error("Invalid registration data", 400, "username, email and password are required")
        user = _db().create_user(
            username=username,
            email=email,
            password_hash=generate_password_hash(password),
            first_name=data.get('first_name'),
            last_name=data.get('last_name'),
        )
        session["user_id"] = user.id
        return jsonify(user.to_dict()), 201

    @app.route('/api/auth/login', methods=['POST'])
    def login():
        data = request.get_json(silent=True) or {}
        user = _db().get_user_by_login((data.get('username') or '').strip())
        if user is None or not check_password_hash(user.password_hash, data.get('password') or ''):
            return _error("Invalid credentials", 401)
        session["user_id"] = user.id
        logger.info("User %s logged in", user.username)
        return jsonify(user.to_dict())

    @app.route('/api/auth/logout', methods=['POST'])
    def logout():
        session.pop("user_id", None)
        return '', 204

    @app.route('/api/auth/user', methods=['GET'])
    @login_required
    def get_current_user():
        return jsonify(g.user.to_dict())

    # --- Song Endpoints ---

    @app.route('/api/songs', methods=['GET'])
    def list_songs():
        return jsonify([t.to_dict() for t in _db().get_all_songs()])

    @app.route('/api/songs/<song_id>', methods=['GET'])
    def get_song(song_id):
        song = _db().get_song(song_id)
        if song is None:
            return _error("Song not found", 404)
        return jsonify(song.to_dict())

    @app.route('/api/songs', methods=['POST'])
    @admin_required
    def create_song():
        item, err = parse_song_item(request.get_json(silent=True))
        if err:
            return _error("Invalid song data", 400, err)
        song = _db().create_song(**item)
        _emit(EVENT_SONGS_UPDATED)
        return jsonify(song.to_dict()), 201

    @app.route('/api/songs/<song_id>', methods=['DELETE'])
    @admin_required
    def delete_song(song_id):
        if not _db().delete_song(song_id):
            return _error("Song not found", 404)
        _emit(EVENT_SONGS_UPDATED)
        return '', 204

    # --- Playlist Endpoints ---

    @app.route('/api/playlists', methods=['GET'])
    @login_required
    def list_playlists():
        return jsonify([p.to_dict() for p in _db().get_user_playlists(g.user.id)])

    @app.route('/api/playlists', methods=['POST'])
    @login_required
    def create_playlist():
        item, err = parse_playlist_item(request.get_json(silent=True))
        if err:
            return _error("Invalid playlist data", 400, err)
        playlist = _db().create_playlist(user_id=g.user.id, **item)
        _emit(EVENT_PLAYLISTS_UPDATED, {"user_id": g.user.id})
        return jsonify(playlist.to_dict()), 201

    @app.route('/api/playlists/<playlist_id>', methods=['GET'])
    @login_required
    def get_playlist(playlist_id):
        playlist = _db().get_playlist(playlist_id)
        if playlist is None or (playlist.user_id != g.user.id and not playlist.is_public):
            return _error("Playlist not found", 404)
        return jsonify(playlist.to_dict())

    @app.route('/api/playlists/<playlist_id>', methods=['PUT'])
    @login_required
    def update_playlist(playlist_id):
        _, err_response = _owned_playlist(playlist_id)
        if err_response:
            return err_response
        item, err = parse_playlist_item(request.get_json(silent=True), partial=True)
        if err:
            return _error("Invalid playlist data", 400, err)
        playlist = _db().update_playlist(playlist_id, item)
        _emit(EVENT_PLAYLISTS_UPDATED, {"user_id": g.user.id})
        return jsonify(playlist.to_dict())

    @app.route('/api/playlists/<playlist_id>', methods=['DELETE'])
    @login_required
    def delete_playlist(playlist_id):
        _, err_response = _owned_playlist(playlist_id)
        if err_response:
            return err_response
        _db().delete_playlist(playlist_id)
        _emit(EVENT_PLAYLISTS_UPDATED, {"user_id": g.user.id})
        return '', 204

    @app.route('/api/playlists/<playlist_id>/songs', methods=['GET'])
    def get_playlist_songs(playlist_id):
        playlist = _db().get_playlist(playlist_id)
        if playlist is None:
            return _error("Playlist not found", 404)
        if not playlist.is_public and playlist.user_id != session.get("user_id"):
            return _error("Playlist not found", 404)
        return jsonify([entry.to_dict() for entry in _db().get_playlist_songs(playlist_id)])

    @app.route('/api/playlists/<playlist_id>/songs', methods=['POST'])
    @login_required
    def add_song_to_playlist(playlist_id):
        _, err_response = _owned_playlist(playlist_id)
        if err_response:
            return err_response
        data = request.get_json(silent=True) or {}
        song_id = data.get('song_id')
        position = data.get('position')
        if not song_id:
            return _error("Invalid playlist song data", 400, "song_id is required")
        if position is not None and (isinstance(position, bool) or not isinstance(position, int)):
            return _error("Invalid playlist song data", 400, "position must be an integer")
        entry = _db().add_song_to_playlist(playlist_id, song_id, position)
        _emit(EVENT_PLAYLISTS_UPDATED, {"user_id": g.user.id})
        return jsonify(entry.to_dict()), 201

    @app.route('/api/playlists/<playlist_id>/songs/<song_id>', methods=['DELETE'])
    @login_required
    def remove_song_from_playlist(playlist_id, song_id):
        _, err_response = _owned_playlist(playlist_id)
        if err_response:
            return err_response
        _db().remove_song_from_playlist(playlist_id, song_id)
        _emit(EVENT_PLAYLISTS_UPDATED, {"user_id": g.user.id})
        return '', 204

    # --- Liked Songs Endpoints ---

    @app.route('/api/liked-songs', methods=['GET'])
    @login_required
    def list_liked_songs():
        return jsonify([liked.to_dict() for liked in _db().get_user_liked_songs(g.user.id)])

    @app.route('/api/liked-songs', methods=['POST'])
    @login_required
    def like_song():
        data = request.get_json(silent=True) or {}
        song_id = data.get('song_id')
        if not song_id:
            return _error("Invalid liked song data", 400, "song_id is required")
        liked = _db().like_song(g.user.id, song_id)
        _emit(EVENT_LIKED_SONGS_UPDATED, {"user_id": g.user.id, "song_id": song_id, "is_liked": True})
        return jsonify(liked.to_dict()), 201

    @app.route('/api/liked-songs/<song_id>', methods=['DELETE'])
    @login_required
    def unlike_song(song_id):
        _db().unlike_song(g.user.id, song_id)
        _emit(EVENT_LIKED_SONGS_UPDATED, {"user_id": g.user.id, "song_id": song_id, "is_liked": False})
        return '', 204

    @app.route('/api/liked-songs/<song_id>/status', methods=['GET'])
    @login_required
    def liked_status(song_id):
        return jsonify({"is_liked": _db().is_song_liked(g.user.id, song_id)})

    return app


# --- Server Management ---

def start_api(config: AppConfig):
    db = DatabaseManager(str(config.resolved_database_path))
    app = create_app(db, config)
    socketio = app.extensions["socketio"]

    logger.info("Database: %s", db.db_path)
    logger.info("Listening on http://%s:%s/api/", config.host, config.port)
    socketio.run(app, host=config.host, port=config.port, debug=config.debug,
                 allow_unsafe_werkzeug=True)
