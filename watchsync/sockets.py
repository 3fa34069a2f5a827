"""
Socket.IO event handlers.

Every room event is validated, then runs under that room's lock: resolve the
acting connection to a member, check its role, mutate, broadcast. Events for
one room are therefore applied and broadcast in arrival order. Refused or
malformed events are dropped without a reply.
"""
import functools
import logging
import time
from typing import Optional, Tuple

from pydantic import ValidationError

from watchsync.models.events import (
    DequeuePayload, EnqueuePayload, JoinPayload, LoadPayload, MessagePayload,
    PausePayload, PositionPayload, RelayPayload, RoomEvent, TargetPayload,
)
from watchsync.models.room import Member, Role, Room
from watchsync.services import chat as chat_service
from watchsync.services import membership
from watchsync.services import playback as playback_service
from watchsync.services import queue as queue_service
from watchsync.services import roles
from watchsync.services import signaling
from watchsync.services.registry import RoomRegistry, Session
from watchsync.services.roles import Action

logger = logging.getLogger(__name__)


def room_event(schema, locked: bool = True):
    def decorator(handler):
        @functools.wraps(handler)
        async def wrapper(self, sid, data=None):
            try:
                payload = schema.model_validate(data if data is not None else {})
            except ValidationError as e:
                logger.warning(f"Ignoring malformed {handler.__name__} from {sid}: {e.error_count()} validation error(s)")
                return
            try:
                if locked:
                    async with self.registry.locked(payload.room_id):
                        await handler(self, sid, payload)
                else:
                    await handler(self, sid, payload)
            except Exception as e:
                logger.error(f"Error in {handler.__name__}: {e}", exc_info=True)
        return wrapper
    return decorator


class SyncEngine:
    def __init__(self, sio, registry: RoomRegistry):
        self.sio = sio
        self.registry = registry

    def register(self):
        handlers = {
            "connect": self.connect,
            "disconnect": self.disconnect,
            "join_room": self.join_room,
            "leave_room": self.leave_room,
            "send_message": self.send_message,
            "promote_to_moderator": self.promote_to_moderator,
            "demote_to_viewer": self.demote_to_viewer,
            "transfer_host": self.transfer_host,
            "kick_user": self.kick_user,
            "load_video": self.load_video,
            "play_video": self.play_video,
            "pause_video": self.pause_video,
            "seek_video": self.seek_video,
            "progress_report": self.progress_report,
            "add_to_queue": self.add_to_queue,
            "remove_from_queue": self.remove_from_queue,
            "play_next": self.play_next,
            "webrtc_offer": self.webrtc_offer,
            "webrtc_answer": self.webrtc_answer,
            "webrtc_ice_candidate": self.webrtc_ice_candidate,
            "stream_ready": self.stream_ready,
            "stream_stopped": self.stream_stopped,
        }
        for event, handler in handlers.items():
            self.sio.on(event, handler)

    def _actor(self, sid: str, room_id: str) -> Tuple[Optional[Room], Optional[Member]]:
        session = self.registry.lookup(sid)
        if not session or session.room_id != room_id:
            return None, None
        room = self.registry.get(room_id)
        if not room:
            return None, None
        member = room.members.get(session.durable_id)
        if not member or not member.connected or member.transport_id != sid:
            return None, None
        return room, member

    def _privileged(self, sid: str, room_id: str, action: Action) -> Tuple[Optional[Room], Optional[Member]]:
        room, member = self._actor(sid, room_id)
        if not member:
            return None, None
        if not roles.can_perform(member.role, None, action):
            logger.debug(f"{member.durable_id} ({member.role.value}) refused {action.value} in room {room_id}")
            return None, None
        return room, member

    async def _broadcast_playback(self, event: str, room: Room, **extra):
        data = {
            "position": room.playback.position_seconds,
            "is_playing": room.playback.is_playing,
            "updated_at": room.playback.updated_at,
            "server_time": time.time(),
        }
        data.update(extra)
        await self.sio.emit(event, data, room=room.id)

    async def _broadcast_queue(self, room: Room):
        await self.sio.emit("queue_updated", {
            "queue": [item.model_dump(mode="json") for item in room.queue],
            "server_time": time.time(),
        }, room=room.id)

    async def _broadcast_video_changed(self, room: Room):
        await self.sio.emit("video_changed", {
            "playback": room.playback.model_dump(mode="json"),
            "server_time": time.time(),
        }, room=room.id)

    # Presence

    async def connect(self, sid, environ, auth=None):
        logger.info(f"Client {sid} connected")

    async def disconnect(self, sid, reason=None):
        logger.info(f"Client {sid} disconnected")
        session = self.registry.lookup(sid)
        if not session:
            return
        try:
            async with self.registry.locked(session.room_id):
                await self._depart(sid, session)
        except Exception as e:
            logger.error(f"Error in disconnect: {e}", exc_info=True)

    async def _depart(self, sid: str, session: Session):
        # Stale sids (member already rejoined elsewhere) only lose their binding
        current = self.registry.lookup(sid)
        if current == session:
            self.registry.unbind(sid)
        room = self.registry.get(session.room_id)
        if not room:
            return
        member = membership.disconnect(room, sid)
        if not member:
            return
        await self.sio.emit("user_left", {"member_id": member.durable_id}, room=room.id, skip_sid=sid)
        if signaling.drop_streamer(room, member):
            await self.sio.emit("stream_stopped", {"member_id": member.durable_id}, room=room.id, skip_sid=sid)
        self.registry.remove_if_empty(room.id)

    @room_event(JoinPayload, locked=False)
    async def join_room(self, sid, payload: JoinPayload):
        previous = self.registry.lookup(sid)
        if previous and previous != Session(payload.room_id, payload.durable_id):
            # One membership per connection
            async with self.registry.locked(previous.room_id):
                await self._depart(sid, previous)
            if previous.room_id != payload.room_id:
                await self.sio.leave_room(sid, previous.room_id)

        async with self.registry.locked(payload.room_id):
            room = self.registry.get_or_create(payload.room_id)
            existing = membership.find(room, payload.durable_id)
            stale_sid = existing.transport_id if existing and existing.transport_id != sid else None

            member, _ = membership.join(room, sid, payload.durable_id, payload.display_name)
            if stale_sid:
                if self.registry.lookup(stale_sid) == Session(room.id, member.durable_id):
                    self.registry.unbind(stale_sid)
                await self.sio.leave_room(stale_sid, room.id)

            self.registry.bind(sid, room.id, member.durable_id)
            await self.sio.enter_room(sid, room.id)

            await self.sio.emit("room_joined", membership.snapshot(room, member), to=sid)
            await self.sio.emit("user_joined", member.model_dump(mode="json"), room=room.id, skip_sid=sid)

    @room_event(RoomEvent)
    async def leave_room(self, sid, payload: RoomEvent):
        session = self.registry.lookup(sid)
        if not session or session.room_id != payload.room_id:
            return
        await self._depart(sid, session)
        await self.sio.leave_room(sid, payload.room_id)

    @room_event(MessagePayload)
    async def send_message(self, sid, payload: MessagePayload):
        room, member = self._actor(sid, payload.room_id)
        if not member:
            return
        message = chat_service.post(room, member, payload.text)
        if message:
            await self.sio.emit("receive_message", message.model_dump(mode="json"), room=room.id)

    # Roles

    async def _change_roles(self, room: Room, changes):
        await self.sio.emit("role_updated", {
            "changes": [{"member_id": member_id, "new_role": role.value} for member_id, role in changes],
        }, room=room.id)

    @room_event(TargetPayload)
    async def promote_to_moderator(self, sid, payload: TargetPayload):
        room, actor = self._actor(sid, payload.room_id)
        if not actor:
            return
        target = roles.authorize(room, actor, payload.target_id, Action.PROMOTE)
        if target:
            await self._change_roles(room, roles.promote(target))

    @room_event(TargetPayload)
    async def demote_to_viewer(self, sid, payload: TargetPayload):
        room, actor = self._actor(sid, payload.room_id)
        if not actor:
            return
        target = roles.authorize(room, actor, payload.target_id, Action.DEMOTE)
        if target:
            await self._change_roles(room, roles.demote(target))

    @room_event(TargetPayload)
    async def transfer_host(self, sid, payload: TargetPayload):
        room, actor = self._actor(sid, payload.room_id)
        if not actor:
            return
        target = roles.authorize(room, actor, payload.target_id, Action.TRANSFER_HOST)
        if target:
            logger.info(f"Host of room {room.id} transferred from {actor.display_name} to {target.display_name}")
            await self._change_roles(room, roles.transfer_host(actor, target))

    @room_event(TargetPayload)
    async def kick_user(self, sid, payload: TargetPayload):
        room, actor = self._actor(sid, payload.room_id)
        if not actor:
            return
        target = roles.authorize(room, actor, payload.target_id, Action.KICK)
        if not target:
            return

        membership.forcibly_remove(room, target.durable_id)
        target_sid = target.transport_id
        if self.registry.lookup(target_sid) == Session(room.id, target.durable_id):
            self.registry.unbind(target_sid)
        if target.connected:
            await self.sio.emit("user_kicked", {"room_id": room.id}, to=target_sid)
            await self.sio.leave_room(target_sid, room.id)
        logger.info(f"{actor.display_name} kicked {target.display_name} from room {room.id}")

        await self.sio.emit("user_left", {"member_id": target.durable_id}, room=room.id)
        if signaling.drop_streamer(room, target):
            await self.sio.emit("stream_stopped", {"member_id": target.durable_id}, room=room.id)
        self.registry.remove_if_empty(room.id)

    # Playback

    @room_event(LoadPayload)
    async def load_video(self, sid, payload: LoadPayload):
        room, member = self._privileged(sid, payload.room_id, Action.CONTROL_PLAYBACK)
        if not member:
            return
        playback_service.load(room.playback, payload.source)
        logger.info(f"Video changed in {room.id} to {payload.source.kind}:{payload.source.describe()}")
        await self._broadcast_video_changed(room)

    @room_event(RoomEvent)
    async def play_video(self, sid, payload: RoomEvent):
        room, member = self._privileged(sid, payload.room_id, Action.CONTROL_PLAYBACK)
        if member and playback_service.play(room.playback):
            await self._broadcast_playback("video_played", room)

    @room_event(PausePayload)
    async def pause_video(self, sid, payload: PausePayload):
        room, member = self._privileged(sid, payload.room_id, Action.CONTROL_PLAYBACK)
        if member and playback_service.pause(room.playback, payload.position):
            await self._broadcast_playback("video_paused", room)

    @room_event(PositionPayload)
    async def seek_video(self, sid, payload: PositionPayload):
        room, member = self._privileged(sid, payload.room_id, Action.CONTROL_PLAYBACK)
        if member and playback_service.seek(room.playback, payload.position):
            await self._broadcast_playback("video_seeked", room)

    @room_event(PositionPayload)
    async def progress_report(self, sid, payload: PositionPayload):
        room, member = self._actor(sid, payload.room_id)
        if not member or member.role != Role.HOST:
            return
        if playback_service.report_progress(room.playback, payload.position):
            await self.sio.emit("video_progress", {
                "position": room.playback.position_seconds,
                "updated_at": room.playback.updated_at,
                "server_time": time.time(),
            }, room=room.id, skip_sid=sid)

    # Queue

    @room_event(EnqueuePayload)
    async def add_to_queue(self, sid, payload: EnqueuePayload):
        room, member = self._privileged(sid, payload.room_id, Action.MANAGE_QUEUE)
        if not member:
            return
        item = queue_service.enqueue(room, payload.source, payload.label, added_by=member.durable_id)
        logger.info(f"{member.display_name} added to queue in {room.id}: {item.label}")
        await self._broadcast_queue(room)

    @room_event(DequeuePayload)
    async def remove_from_queue(self, sid, payload: DequeuePayload):
        room, member = self._privileged(sid, payload.room_id, Action.MANAGE_QUEUE)
        if member and queue_service.dequeue_by_id(room, payload.item_id):
            await self._broadcast_queue(room)

    @room_event(RoomEvent)
    async def play_next(self, sid, payload: RoomEvent):
        room, member = self._privileged(sid, payload.room_id, Action.MANAGE_QUEUE)
        if member and playback_service.play_next(room):
            await self._broadcast_video_changed(room)
            await self._broadcast_queue(room)

    # Signaling relay

    async def _relay(self, event: str, sid, payload: RelayPayload):
        room, member = self._actor(sid, payload.room_id)
        if not member:
            return
        target = signaling.resolve_target(room, member, payload.target_id)
        if target:
            await self.sio.emit(event, signaling.relay_message(member, payload.payload), to=target.transport_id)

    @room_event(RelayPayload)
    async def webrtc_offer(self, sid, payload: RelayPayload):
        await self._relay("webrtc_offer", sid, payload)

    @room_event(RelayPayload)
    async def webrtc_answer(self, sid, payload: RelayPayload):
        await self._relay("webrtc_answer", sid, payload)

    @room_event(RelayPayload)
    async def webrtc_ice_candidate(self, sid, payload: RelayPayload):
        await self._relay("webrtc_ice_candidate", sid, payload)

    @room_event(RoomEvent)
    async def stream_ready(self, sid, payload: RoomEvent):
        room, member = self._actor(sid, payload.room_id)
        if member and signaling.start_stream(room, member):
            await self.sio.emit("stream_ready", {"member_id": member.durable_id}, room=room.id)

    @room_event(RoomEvent)
    async def stream_stopped(self, sid, payload: RoomEvent):
        room, member = self._actor(sid, payload.room_id)
        if member and signaling.stop_stream(room, member):
            await self.sio.emit("stream_stopped", {"member_id": member.durable_id}, room=room.id)
