import logging
from typing import Optional

from watchsync.models.room import Member, Room
from watchsync.services.roles import Action, can_perform

logger = logging.getLogger(__name__)


def resolve_target(room: Room, sender: Member, target_id: str) -> Optional[Member]:
    """Connected member a relay message should go to, or None to drop it."""
    target = room.members.get(target_id)
    if not target or not target.connected or target.durable_id == sender.durable_id:
        logger.debug(f"Dropping relay from {sender.durable_id} to {target_id} in room {room.id}")
        return None
    return target


def relay_message(sender: Member, payload) -> dict:
    # Payload is opaque to the server
    return {"from_id": sender.durable_id, "payload": payload}


def start_stream(room: Room, member: Member) -> bool:
    if not can_perform(member.role, None, Action.ANNOUNCE_STREAM):
        return False
    room.streaming_member_id = member.durable_id
    logger.info(f"{member.display_name} started streaming in room {room.id}")
    return True


def stop_stream(room: Room, member: Member) -> bool:
    if not can_perform(member.role, None, Action.ANNOUNCE_STREAM):
        return False
    room.streaming_member_id = None
    logger.info(f"{member.display_name} stopped streaming in room {room.id}")
    return True


def drop_streamer(room: Room, member: Member) -> bool:
    """Clear the stream when its member goes away. Returns True if it was streaming."""
    if room.streaming_member_id != member.durable_id:
        return False
    room.streaming_member_id = None
    return True
