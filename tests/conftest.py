from collections import defaultdict

import pytest

from watchsync.services.registry import RoomRegistry
from watchsync.sockets import SyncEngine


class FakeServer:
    """Records what an AsyncServer would deliver, per sid."""

    def __init__(self):
        self.handlers = {}
        self.rooms = defaultdict(set)
        self.sent = []  # (sid, event, data)

    def on(self, event, handler):
        self.handlers[event] = handler

    async def emit(self, event, data=None, to=None, room=None, skip_sid=None):
        if to is not None:
            recipients = [to]
        else:
            recipients = sorted(s for s in self.rooms.get(room, ()) if s != skip_sid)
        for sid in recipients:
            self.sent.append((sid, event, data))

    async def enter_room(self, sid, room):
        self.rooms[room].add(sid)

    async def leave_room(self, sid, room):
        self.rooms[room].discard(sid)

    async def trigger(self, event, sid, data=None):
        if event == "disconnect":
            await self.handlers[event](sid)
            for members in self.rooms.values():
                members.discard(sid)
            return
        await self.handlers[event](sid, data)

    def received(self, sid, event):
        return [data for s, e, data in self.sent if s == sid and e == event]

    def events(self, sid):
        return [e for s, e, _ in self.sent if s == sid]

    def clear(self):
        self.sent.clear()


@pytest.fixture
def registry():
    return RoomRegistry()


@pytest.fixture
def server(registry):
    server = FakeServer()
    SyncEngine(server, registry).register()
    return server


@pytest.fixture
def join(server):
    async def _join(sid, durable_id, room_id="room1", display_name=None):
        await server.trigger("join_room", sid, {
            "room_id": room_id,
            "durable_id": durable_id,
            "display_name": display_name or durable_id.title(),
        })
        return server.received(sid, "room_joined")[-1]
    return _join
