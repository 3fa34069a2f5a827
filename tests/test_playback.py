"""Tests for the playback state machine and follower drift policy."""
import pytest

from watchsync.models.room import DirectSource, LocalStreamSource, Playback, Room, SwarmSource
from watchsync.services import playback as playback_service
from watchsync.services import queue as queue_service


@pytest.fixture
def loaded():
    playback = Playback()
    playback_service.load(playback, DirectSource(url="https://example.com/x.mp4"), now=1000.0)
    return playback


class TestCommands:

    def test_load_resets_and_plays(self):
        playback = Playback(is_playing=False, position_seconds=42.0)
        playback_service.load(playback, SwarmSource(swarm_id="magnet:?xt=urn:btih:abc"), now=10.0)

        assert playback.source.kind == "swarm"
        assert playback.is_playing is True
        assert playback.position_seconds == 0.0
        assert playback.updated_at == 10.0

    def test_play_on_playing_is_a_true_noop(self, loaded):
        before = loaded.model_copy()
        assert playback_service.play(loaded, now=2000.0) is False
        assert loaded.is_playing == before.is_playing
        assert loaded.position_seconds == before.position_seconds
        assert loaded.updated_at == before.updated_at

    def test_play_without_source_is_refused(self):
        playback = Playback()
        assert playback_service.play(playback) is False
        assert playback.is_playing is False

    def test_pause_and_seek_without_source_are_refused(self):
        playback = Playback(position_seconds=5.0)
        stamp = playback.updated_at

        assert playback_service.pause(playback, 30.0, now=50.0) is False
        assert playback_service.seek(playback, 30.0, now=60.0) is False
        assert playback.position_seconds == 5.0
        assert playback.updated_at == stamp

    def test_pause_with_position(self, loaded):
        assert playback_service.pause(loaded, 37.5, now=1010.0) is True
        assert loaded.is_playing is False
        assert loaded.position_seconds == 37.5

    def test_pause_without_position_keeps_last_known(self, loaded):
        loaded.position_seconds = 12.0
        playback_service.pause(loaded, now=1010.0)
        assert loaded.position_seconds == 12.0

    def test_pause_when_paused_is_noop(self, loaded):
        playback_service.pause(loaded, 5.0, now=1010.0)
        stamp = loaded.updated_at
        assert playback_service.pause(loaded, now=1020.0) is False
        assert loaded.updated_at == stamp

    def test_play_resumes_from_paused_position(self, loaded):
        playback_service.pause(loaded, 20.0, now=1010.0)
        assert playback_service.play(loaded, now=1011.0) is True
        assert loaded.is_playing is True
        assert loaded.position_seconds == 20.0

    def test_seek_keeps_play_state(self, loaded):
        playback_service.seek(loaded, 90.0, now=1005.0)
        assert loaded.position_seconds == 90.0
        assert loaded.is_playing is True

        playback_service.pause(loaded, now=1006.0)
        playback_service.seek(loaded, 10.0, now=1007.0)
        assert loaded.is_playing is False
        assert loaded.position_seconds == 10.0

    def test_updated_at_strictly_increases_even_on_clock_stall(self, loaded):
        stamps = [loaded.updated_at]
        playback_service.seek(loaded, 1.0, now=1000.0)
        stamps.append(loaded.updated_at)
        playback_service.pause(loaded, now=999.0)
        stamps.append(loaded.updated_at)
        playback_service.play(loaded, now=1000.0)
        stamps.append(loaded.updated_at)

        assert all(a < b for a, b in zip(stamps, stamps[1:]))


class TestProgressReports:

    def test_report_updates_position(self, loaded):
        now = 1000.0 + playback_service.HINT_SUPPRESSION_SECONDS + 1
        assert playback_service.report_progress(loaded, 4.0, now=now) is True
        assert loaded.position_seconds == 4.0
        assert loaded.updated_at == now

    def test_report_right_after_command_is_dropped(self, loaded):
        playback_service.seek(loaded, 300.0, now=1050.0)
        assert playback_service.report_progress(loaded, 51.0, now=1050.5) is False
        assert loaded.position_seconds == 300.0

    def test_report_does_not_extend_suppression_window(self, loaded):
        window = playback_service.HINT_SUPPRESSION_SECONDS
        assert playback_service.report_progress(loaded, 5.0, now=1000.0 + window + 1)
        assert playback_service.report_progress(loaded, 5.5, now=1000.0 + window + 1.5)

    def test_report_while_paused_is_dropped(self, loaded):
        playback_service.pause(loaded, 8.0, now=1001.0)
        assert playback_service.report_progress(loaded, 60.0, now=2000.0) is False
        assert loaded.position_seconds == 8.0


class TestPlayNext:

    def test_play_next_loads_queue_head(self):
        room = Room(id="r")
        first = queue_service.enqueue(room, DirectSource(url="https://a"), "A")
        queue_service.enqueue(room, LocalStreamSource(), "B")

        item = playback_service.play_next(room, now=5.0)

        assert item.id == first.id
        assert room.playback.source == DirectSource(url="https://a")
        assert room.playback.is_playing is True
        assert room.playback.position_seconds == 0.0
        assert [i.label for i in room.queue] == ["B"]

    def test_play_next_on_empty_queue_is_noop(self):
        room = Room(id="r")
        assert playback_service.play_next(room) is None
        assert room.playback.source is None
        assert room.playback.updated_at == 0.0


class TestFollowerPolicy:

    def test_drift_beyond_threshold_resyncs(self):
        assert playback_service.needs_resync(97.0, 100.0, threshold=2.0) is True

    def test_drift_within_threshold_does_not(self):
        assert playback_service.needs_resync(101.5, 100.0, threshold=2.0) is False

    def test_default_threshold_is_two_seconds(self):
        assert playback_service.DRIFT_THRESHOLD_SECONDS == 2.0

    def test_commands_always_apply(self):
        assert playback_service.should_seek(100.2, 100.0, advisory=False) is True
        assert playback_service.should_seek(100.2, 100.0, advisory=True) is False

    def test_expected_position_extrapolates_while_playing(self, loaded):
        assert playback_service.expected_position(loaded, now=1010.0) == pytest.approx(10.0)
        playback_service.pause(loaded, 10.0, now=1010.0)
        assert playback_service.expected_position(loaded, now=2000.0) == 10.0

    def test_supersedes(self):
        assert playback_service.supersedes(2.0, 1.0) is True
        assert playback_service.supersedes(1.0, 1.0) is False
