import logging
import time
from typing import List, Optional, Tuple

from watchsync.models.room import Member, Role, Room

logger = logging.getLogger(__name__)


def find(room: Room, durable_id: str) -> Optional[Member]:
    return room.members.get(durable_id)


def find_by_transport(room: Room, transport_id: str) -> Optional[Member]:
    return next((m for m in room.members.values() if m.transport_id == transport_id), None)


def connected_members(room: Room) -> List[Member]:
    return [m for m in room.members.values() if m.connected]


def join(room: Room, transport_id: str, durable_id: str, display_name: str) -> Tuple[Member, bool]:
    """
    Add a member to the room, or resume an existing one.

    A durable ID already on the roster is a reconnect: the member gets the new
    transport ID and keeps its role, so a client that refreshed its page comes
    back with whatever authority it had. Otherwise the first member of an
    empty room becomes Host and everyone after that is a Viewer.

    Returns the member and whether this was a reconnect.
    """
    existing = room.members.get(durable_id)
    if existing:
        existing.transport_id = transport_id
        existing.display_name = display_name
        existing.connected = True
        logger.info(f"{display_name} ({transport_id}) rejoined room {room.id} as {existing.role.value}")
        return existing, True

    role = Role.HOST if not room.members else Role.VIEWER
    member = Member(
        durable_id=durable_id,
        transport_id=transport_id,
        display_name=display_name,
        role=role,
    )
    room.members[durable_id] = member
    logger.info(f"{display_name} ({transport_id}) joined room {room.id} as {role.value}")
    return member, False


def disconnect(room: Room, transport_id: str) -> Optional[Member]:
    """
    Mark the member on this transport as offline. The record stays so a
    reconnect can pick its role back up. Returns None for a transport that no
    longer belongs to anyone (e.g. the member already rejoined on a new one).
    """
    member = find_by_transport(room, transport_id)
    if not member or not member.connected:
        return None
    member.connected = False
    logger.info(f"User {member.display_name} ({transport_id}) disconnected from room {room.id}")
    return member


def forcibly_remove(room: Room, durable_id: str) -> Optional[Member]:
    member = room.members.pop(durable_id, None)
    if member:
        logger.info(f"Removed {member.display_name} ({durable_id}) from room {room.id}")
    return member


def snapshot(room: Room, member: Member) -> dict:
    """Everything a joining client needs to render the room right away."""
    return {
        "room_id": room.id,
        "member": member.model_dump(mode="json"),
        "roster": [m.model_dump(mode="json") for m in connected_members(room)],
        "playback": room.playback.model_dump(mode="json"),
        "queue": [item.model_dump(mode="json") for item in room.queue],
        "streaming_member_id": room.streaming_member_id,
        # History is never replayed on join
        "chat_history": [],
        "server_time": time.time(),
    }
