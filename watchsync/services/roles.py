import logging
from enum import Enum
from typing import List, Optional, Tuple

from watchsync.models.room import Member, Role, Room

logger = logging.getLogger(__name__)

PRIVILEGED = (Role.HOST, Role.MODERATOR)

RoleChange = Tuple[str, Role] # (durable_id, new role)


class Action(str, Enum):
    PROMOTE = "promote"
    DEMOTE = "demote"
    TRANSFER_HOST = "transfer_host"
    KICK = "kick"
    CONTROL_PLAYBACK = "control_playback"
    MANAGE_QUEUE = "manage_queue"
    ANNOUNCE_STREAM = "announce_stream"


TARGETED = (Action.PROMOTE, Action.DEMOTE, Action.TRANSFER_HOST, Action.KICK)


def can_perform(actor_role: Role, target_role: Optional[Role], action: Action) -> bool:
    """
    Permission matrix. target_role is None for actions that don't target a
    member. Anything not explicitly allowed is refused.
    """
    if action in TARGETED and target_role is None:
        return False

    if action == Action.PROMOTE:
        return actor_role == Role.HOST and target_role == Role.VIEWER
    if action == Action.DEMOTE:
        return actor_role == Role.HOST and target_role == Role.MODERATOR
    if action == Action.TRANSFER_HOST:
        return actor_role == Role.HOST
    if action == Action.KICK:
        if actor_role == Role.HOST:
            return True
        return actor_role == Role.MODERATOR and target_role == Role.VIEWER
    if action in (Action.CONTROL_PLAYBACK, Action.MANAGE_QUEUE, Action.ANNOUNCE_STREAM):
        return actor_role in PRIVILEGED
    return False


def authorize(room: Room, actor: Member, target_id: str, action: Action) -> Optional[Member]:
    """Resolve and check a targeted action. Returns the target, or None if refused."""
    target = room.members.get(target_id)
    if not target:
        logger.debug(f"{action.value} in room {room.id}: unknown target {target_id}")
        return None
    if target.durable_id == actor.durable_id:
        logger.debug(f"{action.value} in room {room.id}: {actor.durable_id} targeted themself")
        return None
    if not can_perform(actor.role, target.role, action):
        logger.debug(
            f"{action.value} in room {room.id}: {actor.role.value} may not act on {target.role.value}"
        )
        return None
    return target


def promote(target: Member) -> List[RoleChange]:
    target.role = Role.MODERATOR
    return [(target.durable_id, target.role)]


def demote(target: Member) -> List[RoleChange]:
    target.role = Role.VIEWER
    return [(target.durable_id, target.role)]


def transfer_host(actor: Member, target: Member) -> List[RoleChange]:
    # Both changes are applied before anything is broadcast
    actor.role = Role.MODERATOR
    target.role = Role.HOST
    return [(actor.durable_id, actor.role), (target.durable_id, target.role)]
