import pytest
from werkzeug.security import generate_password_hash

from shared.api import create_app, parse_playlist_item, parse_song_item
from shared.config import AppConfig
from shared.database import DatabaseManager

SONG = {
    "title": "Numb",
    "artist": "Linkin Park",
    "album": "Meteora",
    "duration": 185,
    "audio_url": "https://example.com/numb.mp3",
}


@pytest.fixture
def db(tmp_path):
    db = DatabaseManager(str(tmp_path / "api.db"))
    db.create_user("admin", "admin@example.com", generate_password_hash("admin123"), is_admin=True)
    return db


@pytest.fixture
def app(db):
    app = create_app(db, AppConfig(secret_key="test-secret"))
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()


def _login(client, username, password):
    return client.post("/api/auth/login", json={"username": username, "password": password})


def _register(client, username="demo"):
    return client.post("/api/auth/register", json={
        "username": username, "email": f"{username}@example.com", "password": "password123",
    })


@pytest.fixture
def song_id(db):
    return db.create_song(**SONG).id


def test_parse_song_item_validation():
    item, err = parse_song_item({**SONG, "title": "  Numb  "})
    assert err is None
    assert item["title"] == "Numb"

    for broken in ({**SONG, "title": ""}, {**SONG, "duration": -1},
                   {**SONG, "duration": "185"}, {**SONG, "audio_url": None}):
        item, err = parse_song_item(broken)
        assert item is None
        assert err

    assert parse_song_item([SONG]) == (None, "Body must be an object")


def test_parse_playlist_item_partial():
    item, err = parse_playlist_item({"is_public": True}, partial=True)
    assert err is None
    assert item == {"is_public": True}

    item, err = parse_playlist_item({"is_public": True})
    assert item is None
    assert err == "name is required"

    item, err = parse_playlist_item({"name": "Mix", "is_public": "yes"})
    assert "boolean" in err


def test_health(client):
    assert client.get("/api/health").get_json() == {"status": "healthy"}


def test_register_login_logout(client):
    response = _register(client)
    assert response.status_code == 201
    assert "password_hash" not in response.get_json()

    assert client.get("/api/auth/user").get_json()["username"] == "demo"
    assert client.post("/api/auth/logout").status_code == 204
    assert client.get("/api/auth/user").status_code == 401

    assert _login(client, "demo", "wrong").status_code == 401
    assert _login(client, "demo@example.com", "password123").status_code == 200


def test_register_validation_and_conflict(client):
    response = client.post("/api/auth/register", json={"username": "x"})
    assert response.status_code == 400
    assert "details" in response.get_json()

    _register(client)
    assert _register(client).status_code == 409


def test_song_creation_requires_admin(client):
    assert client.post("/api/songs", json=SONG).status_code == 401

    _register(client)
    assert client.post("/api/songs", json=SONG).status_code == 403

    _login(client, "admin", "admin123")
    response = client.post("/api/songs", json=SONG)
    assert response.status_code == 201
    created = response.get_json()

    assert client.post("/api/songs", json={"title": "x"}).status_code == 400
    assert client.get(f"/api/songs/{created['id']}").get_json()["title"] == "Numb"
    assert [s["id"] for s in client.get("/api/songs").get_json()] == [created["id"]]

    assert client.delete(f"/api/songs/{created['id']}").status_code == 204
    assert client.delete(f"/api/songs/{created['id']}").status_code == 404
    assert client.get(f"/api/songs/{created['id']}").status_code == 404


def test_playlist_lifecycle(client, song_id):
    _register(client)
    response = client.post("/api/playlists", json={"name": "Mix", "description": "Loud"})
    assert response.status_code == 201
    playlist_id = response.get_json()["id"]

    assert [p["id"] for p in client.get("/api/playlists").get_json()] == [playlist_id]

    response = client.put(f"/api/playlists/{playlist_id}", json={"name": "Night drive"})
    assert response.get_json()["name"] == "Night drive"
    assert client.put(f"/api/playlists/{playlist_id}", json={"name": ""}).status_code == 400

    response = client.post(f"/api/playlists/{playlist_id}/songs", json={"song_id": song_id})
    assert response.status_code == 201
    assert client.post(f"/api/playlists/{playlist_id}/songs", json={"song_id": song_id}).status_code == 409
    assert client.post(f"/api/playlists/{playlist_id}/songs", json={"song_id": "missing"}).status_code == 404
    assert client.post(f"/api/playlists/{playlist_id}/songs", json={}).status_code == 400

    entries = client.get(f"/api/playlists/{playlist_id}/songs").get_json()
    assert entries[0]["song"]["title"] == "Numb"

    assert client.delete(f"/api/playlists/{playlist_id}/songs/{song_id}").status_code == 204
    assert client.get(f"/api/playlists/{playlist_id}/songs").get_json() == []

    assert client.delete(f"/api/playlists/{playlist_id}").status_code == 204
    assert client.get(f"/api/playlists/{playlist_id}").status_code == 404


def test_playlists_are_owner_only(app, client):
    _register(client, "owner")
    private_id = client.post("/api/playlists", json={"name": "Private"}).get_json()["id"]
    public_id = client.post("/api/playlists", json={"name": "Public", "is_public": True}).get_json()["id"]

    other = app.test_client()
    _register(other, "other")
    assert other.get(f"/api/playlists/{private_id}").status_code == 404
    assert other.get(f"/api/playlists/{public_id}").status_code == 200
    assert other.put(f"/api/playlists/{public_id}", json={"name": "Mine"}).status_code == 403
    assert other.delete(f"/api/playlists/{public_id}").status_code == 403
    assert other.get(f"/api/playlists/{private_id}/songs").status_code == 404

    anonymous = app.test_client()
    assert anonymous.get(f"/api/playlists/{public_id}/songs").status_code == 200
    assert anonymous.get("/api/playlists").status_code == 401


def test_liked_songs_flow(client, song_id):
    assert client.get(f"/api/liked-songs/{song_id}/status").status_code == 401

    _register(client)
    assert client.get(f"/api/liked-songs/{song_id}/status").get_json() == {"is_liked": False}

    assert client.post("/api/liked-songs", json={"song_id": song_id}).status_code == 201
    assert client.post("/api/liked-songs", json={"song_id": song_id}).status_code == 201
    assert client.get(f"/api/liked-songs/{song_id}/status").get_json() == {"is_liked": True}

    liked = client.get("/api/liked-songs").get_json()
    assert [item["song"]["id"] for item in liked] == [song_id]

    assert client.delete(f"/api/liked-songs/{song_id}").status_code == 204
    assert client.get(f"/api/liked-songs/{song_id}/status").get_json() == {"is_liked": False}


def test_like_validation(client):
    _register(client)
    assert client.post("/api/liked-songs", json={}).status_code == 400
    assert client.post("/api/liked-songs", json={"song_id": "missing"}).status_code == 404
