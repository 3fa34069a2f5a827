"""
Inbound Socket.IO payloads. Handlers validate against these before touching
room state; anything that fails validation is dropped.
"""
import os
from typing import Any, Optional

from pydantic import BaseModel, Field

from watchsync.models.room import SourceRef

MAX_MESSAGE_LENGTH = int(os.getenv("MAX_MESSAGE_LENGTH", "2000"))


class RoomEvent(BaseModel):
    room_id: str = Field(min_length=1)


class JoinPayload(RoomEvent):
    durable_id: str = Field(min_length=1)
    display_name: str = "Guest"


class MessagePayload(RoomEvent):
    text: str = Field(max_length=MAX_MESSAGE_LENGTH)


class TargetPayload(RoomEvent):
    target_id: str = Field(min_length=1)


class LoadPayload(RoomEvent):
    source: SourceRef


class PausePayload(RoomEvent):
    position: Optional[float] = Field(default=None, ge=0)


class PositionPayload(RoomEvent):
    position: float = Field(ge=0)


class EnqueuePayload(RoomEvent):
    source: SourceRef
    label: Optional[str] = None


class DequeuePayload(RoomEvent):
    item_id: str = Field(min_length=1)


class RelayPayload(TargetPayload):
    payload: Any = None
