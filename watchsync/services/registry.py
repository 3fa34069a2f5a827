import asyncio
import contextlib
import logging
from typing import Dict, Iterator, NamedTuple, Optional

from watchsync.models.room import Room

logger = logging.getLogger(__name__)


class Session(NamedTuple):
    room_id: str
    durable_id: str


class RoomRegistry:
    """
    Owns every live Room in the process. Rooms are created lazily on first
    join and dropped as soon as nobody in them is connected; nothing else is
    allowed to create or delete a room.

    Also keeps the transport index (sid -> room/member) used to resolve the
    acting connection of an inbound event.
    """

    def __init__(self):
        self._rooms: Dict[str, Room] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}
        self._sessions: Dict[str, Session] = {}

    def __len__(self) -> int:
        return len(self._rooms)

    def __contains__(self, room_id: str) -> bool:
        return room_id in self._rooms

    def __iter__(self) -> Iterator[Room]:
        return iter(list(self._rooms.values()))

    def get(self, room_id: str) -> Optional[Room]:
        return self._rooms.get(room_id)

    def get_or_create(self, room_id: str) -> Room:
        room = self._rooms.get(room_id)
        if room is None:
            room = Room(id=room_id)
            self._rooms[room_id] = room
            logger.info(f"Room {room_id} created")
        return room

    def remove_if_empty(self, room_id: str) -> bool:
        room = self._rooms.get(room_id)
        if room is None:
            return False
        if any(m.connected for m in room.members.values()):
            return False

        del self._rooms[room_id]
        for sid in [sid for sid, s in self._sessions.items() if s.room_id == room_id]:
            del self._sessions[sid]
        logger.info(f"Room {room_id} destroyed (no connected members)")
        return True

    def lock(self, room_id: str) -> asyncio.Lock:
        lock = self._locks.get(room_id)
        if lock is None:
            lock = self._locks[room_id] = asyncio.Lock()
        return lock

    @contextlib.asynccontextmanager
    async def locked(self, room_id: str):
        """
        Hold the room's lock. The lock is forgotten only once its room is gone
        and no coroutine holds or waits on it, so every event for a room id
        serializes on the same lock.
        """
        lock = self.lock(room_id)
        self._lock_users[room_id] = self._lock_users.get(room_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[room_id] -= 1
            if not self._lock_users[room_id]:
                del self._lock_users[room_id]
                if room_id not in self._rooms and self._locks.get(room_id) is lock:
                    del self._locks[room_id]

    # Transport index

    def bind(self, sid: str, room_id: str, durable_id: str):
        self._sessions[sid] = Session(room_id, durable_id)

    def unbind(self, sid: str) -> Optional[Session]:
        return self._sessions.pop(sid, None)

    def lookup(self, sid: str) -> Optional[Session]:
        return self._sessions.get(sid)
