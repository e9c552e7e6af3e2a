import asyncio
import random

import pytest

from shared.models import Track
from player.errors import CatalogError
from player.session import PlayerSession


def make_track(track_id: str, duration: int = 200) -> Track:
    return Track(
        id=track_id,
        title=f"Song {track_id}",
        artist="Tester",
        duration=duration,
        audio_url=f"https://example.com/{track_id}.mp3",
    )


class FakeStore:
    """In-memory catalog; ``gate``/``status_gate`` hold requests until set."""

    def __init__(self, liked=None):
        self.liked = set(liked or ())
        self.calls = []
        self.fail_ops = set()
        self.gate = None
        self.status_gate = None

    async def list_songs(self):
        return []

    async def like_status(self, user_id, track_id):
        self.calls.append(("status", track_id))
        value = track_id in self.liked
        if self.status_gate is not None:
            await self.status_gate.wait()
        if "status" in self.fail_ops:
            raise CatalogError("status unavailable")
        return value

    async def like(self, user_id, track_id):
        self.calls.append(("like", track_id))
        if self.gate is not None:
            await self.gate.wait()
        if "like" in self.fail_ops:
            raise CatalogError("network down")
        self.liked.add(track_id)

    async def unlike(self, user_id, track_id):
        self.calls.append(("unlike", track_id))
        if self.gate is not None:
            await self.gate.wait()
        if "unlike" in self.fail_ops:
            raise CatalogError("network down")
        self.liked.discard(track_id)


async def settle(rounds: int = 10):
    """Let scheduled tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def tracks():
    return [make_track("A", 200), make_track("B", 180), make_track("C", 240)]


@pytest.fixture
def session(tracks):
    s = PlayerSession(rng=random.Random(1234))
    s.set_queue(tracks, start_index=0)
    return s
