"""
Authoritative playback state machine and the follower drift policy.

Load/Play/Pause/Seek are commands: every follower applies them as-is.
Progress reports from the Host are hints: followers only seek when they have
drifted more than DRIFT_THRESHOLD_SECONDS from the hinted position, so a
steady stream of reports doesn't cause a seek on every tick.
"""
import logging
import os
import time
from typing import Optional

from watchsync.models.room import Playback, QueueItem, Room, SourceRef
from watchsync.services import queue as queue_service

logger = logging.getLogger(__name__)

DRIFT_THRESHOLD_SECONDS = float(os.getenv("DRIFT_THRESHOLD_SECONDS", "2.0"))

# Progress reports arriving this soon after a command were sent before the
# host saw the command, so they would undo it.
HINT_SUPPRESSION_SECONDS = float(os.getenv("HINT_SUPPRESSION_SECONDS", "1.5"))

# Minimum step between two updated_at stamps
_TICK = 1e-6


def _stamp(playback: Playback, now: Optional[float], command: bool = True):
    now = time.time() if now is None else now
    playback.updated_at = max(now, playback.updated_at + _TICK)
    if command:
        playback.last_command_at = playback.updated_at


def load(playback: Playback, source: SourceRef, now: Optional[float] = None):
    playback.source = source
    playback.is_playing = True
    playback.position_seconds = 0.0
    _stamp(playback, now)


def play(playback: Playback, now: Optional[float] = None) -> bool:
    if playback.is_playing or playback.source is None:
        return False
    playback.is_playing = True
    _stamp(playback, now)
    return True


def pause(playback: Playback, position: Optional[float] = None, now: Optional[float] = None) -> bool:
    if playback.source is None:
        return False
    if not playback.is_playing and (position is None or position == playback.position_seconds):
        return False
    playback.is_playing = False
    if position is not None:
        playback.position_seconds = position
    _stamp(playback, now)
    return True


def seek(playback: Playback, position: float, now: Optional[float] = None) -> bool:
    if playback.source is None:
        return False
    playback.position_seconds = position
    _stamp(playback, now)
    return True


def report_progress(playback: Playback, position: float, now: Optional[float] = None) -> bool:
    """
    Apply a host progress report. Returns False when the report is dropped:
    nothing loaded, paused, or still inside the suppression window of the
    last command.
    """
    now = time.time() if now is None else now
    if playback.source is None or not playback.is_playing:
        return False
    if now - playback.last_command_at < HINT_SUPPRESSION_SECONDS:
        logger.debug(f"Dropping progress report at {position:.2f}s, command applied {now - playback.last_command_at:.2f}s ago")
        return False
    playback.position_seconds = position
    _stamp(playback, now, command=False)
    return True


def play_next(room: Room, now: Optional[float] = None) -> Optional[QueueItem]:
    item = queue_service.pop_front(room)
    if item is None:
        return None
    load(room.playback, item.source, now)
    logger.info(f"Playing next in queue for room {room.id}: {item.label}")
    return item


# Follower side

def expected_position(playback: Playback, now: Optional[float] = None) -> float:
    """Where the authoritative playhead should be right now."""
    if not playback.is_playing:
        return playback.position_seconds
    now = time.time() if now is None else now
    return playback.position_seconds + max(0.0, now - playback.updated_at)


def needs_resync(local_position: float, authoritative_position: float,
                 threshold: float = DRIFT_THRESHOLD_SECONDS) -> bool:
    return abs(local_position - authoritative_position) > threshold


def should_seek(local_position: float, authoritative_position: float, advisory: bool,
                threshold: float = DRIFT_THRESHOLD_SECONDS) -> bool:
    if not advisory:
        return True
    return needs_resync(local_position, authoritative_position, threshold)


def supersedes(incoming_updated_at: float, local_updated_at: float) -> bool:
    return incoming_updated_at > local_updated_at
