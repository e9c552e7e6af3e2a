import random
from unittest.mock import MagicMock, call

import pytest

from conftest import make_track
from player.errors import InvalidSeekTarget, NoTrackLoaded, PlaybackResourceError
from player.like_manager import LikeState
from player.session import PlaybackState, PlayerSession, RepeatMode, Status


def test_initial_state():
    session = PlayerSession()
    assert session.state.status is Status.IDLE
    assert session.state.volume == 70
    assert not session.state.muted
    assert not session.state.shuffled
    assert session.state.repeat_mode is RepeatMode.NONE
    assert session.current_track is None
    assert session.like_state is LikeState.UNKNOWN


def test_set_queue_with_start_index_loads_paused(session, tracks):
    assert session.current_track is tracks[0]
    assert session.state.status is Status.PAUSED
    assert session.state.current_time == 0.0
    assert session.state.duration == 200.0
    assert session.queue.cursor == 0


def test_play_without_track_records_event():
    session = PlayerSession()
    assert session.play() is False
    assert session.state.status is Status.IDLE
    assert isinstance(session.last_event.error, NoTrackLoaded)


def test_play_pause_toggle(session):
    assert session.play()
    assert session.state.status is Status.PLAYING
    assert session.pause()
    assert session.state.status is Status.PAUSED
    assert session.pause() is False

    session.toggle()
    assert session.state.status is Status.PLAYING
    session.toggle()
    assert session.state.status is Status.PAUSED


def test_seek_to_fraction(session):
    session.seek(0.5)
    assert session.state.current_time == 100.0
    assert session.last_event is None


@pytest.mark.parametrize("fraction,expected", [(1.5, 200.0), (-0.2, 0.0)])
def test_seek_out_of_range_is_clamped(session, fraction, expected):
    assert session.seek(fraction)
    assert session.state.current_time == expected
    assert isinstance(session.last_event.error, InvalidSeekTarget)


def test_seek_with_unknown_duration():
    session = PlayerSession()
    session.set_queue([make_track("Z", duration=0)], start_index=0)
    assert session.seek(0.5) is False
    assert session.state.current_time == 0.0
    assert isinstance(session.last_event.error, InvalidSeekTarget)


def test_seek_without_track():
    session = PlayerSession()
    assert session.seek(0.5) is False
    assert isinstance(session.last_event.error, NoTrackLoaded)


def test_tick_updates_and_clamps(session):
    session.play()
    session.tick(42.5)
    assert session.state.current_time == 42.5
    session.tick(10)
    assert session.state.current_time == 10.0
    session.tick(-3)
    assert session.state.current_time == 0.0


def test_tick_ignored_when_idle():
    session = PlayerSession()
    session.tick(12)
    assert session.state.current_time == 0.0


def test_tick_past_end_while_paused_does_not_advance(session):
    session.tick(500)
    assert session.state.current_time == 200.0
    assert session.state.status is Status.PAUSED
    assert session.queue.cursor == 0


def test_set_duration(session):
    session.set_duration(150.5)
    assert session.state.duration == 150.5
    session.set_duration(None)
    session.set_duration(-1)
    assert session.state.duration == 150.5


def test_repeat_none_single_track_goes_idle():
    media = MagicMock()
    session = PlayerSession(media=media)
    session.set_queue([make_track("A")], start_index=0)
    session.play()
    media.reset_mock()

    session.tick(200)
    assert session.state.status is Status.IDLE
    assert session.state.current_time == 0.0
    assert session.queue.cursor == 0
    # The output is rewound too, so a later play starts from the top
    assert media.mock_calls == [call.pause(), call.seek(0.0)]

    session.play()
    assert media.play.called
    session.tick(0.5)
    assert session.state.current_time == 0.5


def test_repeat_one_restarts_track(session):
    media = MagicMock()
    session.media = media
    session.cycle_repeat()
    session.cycle_repeat()
    assert session.state.repeat_mode is RepeatMode.ONE
    session.play()
    media.reset_mock()

    session.tick(200)
    assert session.state.status is Status.PLAYING
    assert session.state.current_time == 0.0
    assert session.current_track.id == "A"
    assert media.mock_calls == [call.seek(0.0), call.play()]


def test_repeat_all_wraps_queue(session):
    session.cycle_repeat()
    session.play()
    visited = []
    for _ in range(3):
        session.tick(1.0)
        session.ended()
        visited.append(session.queue.cursor)
    assert visited == [1, 2, 0]
    assert session.state.status is Status.PLAYING


def test_next_and_previous(session):
    assert session.next().id == "B"
    assert session.state.status is Status.PLAYING
    assert session.previous().id == "A"
    assert session.previous().id == "C"


def test_next_on_empty_queue_is_noop():
    session = PlayerSession()
    assert session.next() is None
    assert session.previous() is None
    assert session.state.status is Status.IDLE


def test_shuffled_next_picks_from_queue(tracks):
    session = PlayerSession(rng=random.Random(7))
    session.set_queue(tracks, start_index=0)
    session.toggle_shuffle()
    ids = {session.next().id for _ in range(30)}
    assert ids <= {"A", "B", "C"}
    assert len(ids) > 1


def test_set_queue_keeps_current_track(session, tracks):
    session.next()
    session.set_queue([make_track("X"), tracks[1]])
    assert session.queue.cursor == 1
    assert session.current_track.id == "B"


def test_play_track_not_in_queue(session):
    assert session.play_track("nope") is False
    assert isinstance(session.last_event.error, NoTrackLoaded)
    assert session.current_track.id == "A"


def test_media_error_goes_idle(session):
    session.play()
    session.media_error("404 from CDN")
    assert session.state.status is Status.IDLE
    event = session.consume_event()
    assert isinstance(event.error, PlaybackResourceError)
    assert event.track_id == "A"
    assert session.last_event is None


def test_volume_is_clamped_and_unmutes(session):
    session.toggle_mute()
    assert session.set_volume(150) == 100
    assert not session.state.muted
    assert session.set_volume(-5) == 0
    assert session.set_volume(42.6) == 43


def test_mute_twice_restores_level():
    media = MagicMock()
    session = PlayerSession(media=media, volume=80)
    session.toggle_mute()
    assert session.state.volume == 80
    assert session.state.effective_volume == 0.0
    session.toggle_mute()
    assert session.state.effective_volume == 0.8
    assert media.set_level.call_args_list == [call(0.0), call(0.8)]


def test_cycle_repeat_order():
    session = PlayerSession()
    modes = [session.cycle_repeat() for _ in range(3)]
    assert modes == [RepeatMode.ALL, RepeatMode.ONE, RepeatMode.NONE]


def test_toggle_like_requires_track_and_user(session):
    empty = PlayerSession()
    assert empty.toggle_like() is None
    assert isinstance(empty.last_event.error, NoTrackLoaded)

    assert session.toggle_like() is None
    assert "Sign in" in session.last_event.message


def test_change_callbacks_fire(session):
    callback = MagicMock()
    session.add_change_callback(callback)
    session.play()
    session.seek(0.25)
    assert callback.call_count == 2


def test_snapshot(session):
    snap = session.snapshot()
    assert snap["status"] == "paused"
    assert snap["track"]["id"] == "A"
    assert snap["queue"] == ["A", "B", "C"]
    assert snap["like_state"] == "unknown"
    assert snap["last_event"] is None


def test_playback_state_progress():
    state = PlaybackState(current_time=50, duration=200)
    assert state.progress == 0.25
    assert PlaybackState().progress == 0.0


def test_final_tick_and_eof_advance_once(session):
    session.cycle_repeat()
    session.play()
    session.tick(200.0)
    session.ended()
    assert session.current_track.id == "B"
    assert session.state.status is Status.PLAYING

    # A late position report from the finished track is ignored as well
    session.tick(200.0)
    assert session.current_track.id == "B"
    assert session.state.current_time == 0.0


def test_repeat_one_restarts_once_per_end(session):
    media = MagicMock()
    session.media = media
    session.cycle_repeat()
    session.cycle_repeat()
    session.play()
    media.reset_mock()

    session.tick(200.0)
    session.ended()
    assert media.mock_calls == [call.seek(0.0), call.play()]

    # Once playback moves again the next end is handled
    session.tick(3.0)
    session.ended()
    assert media.seek.call_count == 2


def test_end_handled_again_after_seek(session):
    session.cycle_repeat()
    session.play()
    session.ended()
    assert session.current_track.id == "B"
    session.seek(0.99)
    session.ended()
    assert session.current_track.id == "C"


def test_loading_forgets_like_state_of_other_tracks(session):
    session.likes._entry("A")
    session.likes._entry("Z")
    session.next()
    assert set(session.likes._tracks) <= {"B"}
