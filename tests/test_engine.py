import importlib
import sys
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from conftest import make_track
from player.session import PlayerSession


@pytest.fixture
def fake_mpv():
    module = MagicMock()
    with patch.dict(sys.modules, {"mpv": module}):
        sys.modules.pop("player.engine", None)
        yield module
        sys.modules.pop("player.engine", None)


@pytest.fixture
def engine(fake_mpv):
    engine_module = importlib.import_module("player.engine")
    loop = MagicMock()
    # Run dispatched callbacks inline
    loop.call_soon_threadsafe.side_effect = lambda callback, *args: callback(*args)
    return engine_module.PlaybackEngine(loop)


@pytest.fixture
def attached(engine, tracks):
    session = PlayerSession(media=engine)
    engine.attach(session)
    session.set_queue(tracks, start_index=0)
    return engine, session


def test_attach_registers_observers(attached):
    engine, session = attached
    observed = [c.args[0] for c in engine.player.observe_property.call_args_list]
    assert observed == ["time-pos", "duration", "eof-reached"]
    engine.player.event_callback.assert_called_with("end-file")


def test_load_starts_paused(attached):
    engine, session = attached
    engine.player.play.assert_called_with("https://example.com/A.mp3")
    assert engine.player.pause is True

    session.play()
    assert engine.player.pause is False


def test_volume_level_is_scaled(attached):
    engine, session = attached
    session.set_volume(40)
    assert engine.player.volume == pytest.approx(40.0)
    session.toggle_mute()
    assert engine.player.volume == 0.0
    engine.set_level(3)
    assert engine.player.volume == 100.0


def test_seek_is_absolute(attached):
    engine, session = attached
    session.seek(0.5)
    engine.player.seek.assert_called_with(100.0, reference="absolute")


def test_seek_errors_are_logged(engine):
    engine.player.seek.side_effect = SystemError("not seekable")
    engine.seek(10)


def test_time_updates_are_throttled(attached):
    engine, session = attached
    session.play()
    engine._handle_time_update("time-pos", 12.0)
    engine._handle_time_update("time-pos", 13.0)
    assert session.state.current_time == 12.0
    engine._handle_time_update("time-pos", None)
    assert session.state.current_time == 12.0


def test_duration_and_eof_reach_session(attached):
    engine, session = attached
    session.play()
    engine._handle_duration("duration", 201.5)
    assert session.state.duration == 201.5

    engine._handle_eof("eof-reached", True)
    assert session.state.status.value == "idle"


def test_end_file_error_stops_session(attached, fake_mpv):
    engine, session = attached
    session.play()
    event = SimpleNamespace(data=SimpleNamespace(reason=fake_mpv.MpvEventEndFile.ERROR, error=-13))
    engine._handle_end_file(event)
    assert session.state.status.value == "idle"
    assert session.last_event.kind == "PlaybackResourceError"

    engine._handle_end_file(SimpleNamespace(data=SimpleNamespace(reason="eof")))
    assert session.last_event.kind == "PlaybackResourceError"


def test_reports_before_attach_are_dropped(engine):
    engine._handle_duration("duration", 10)
    engine._loop.call_soon_threadsafe.assert_not_called()


def test_stop_terminates(engine):
    engine.stop()
    engine.player.terminate.assert_called_once()
