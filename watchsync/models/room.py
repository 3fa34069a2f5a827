import time
from enum import Enum
from typing import Annotated, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field


class Role(str, Enum):
    HOST = "Host"
    MODERATOR = "Moderator"
    VIEWER = "Viewer"


class DirectSource(BaseModel):
    kind: Literal["direct"] = "direct"
    url: str = Field(min_length=1)

    def describe(self) -> str:
        return self.url


class SwarmSource(BaseModel):
    kind: Literal["swarm"] = "swarm"
    swarm_id: str = Field(min_length=1) # Magnet URI or info hash

    def describe(self) -> str:
        return self.swarm_id


class LocalStreamSource(BaseModel):
    kind: Literal["local_stream"] = "local_stream"

    def describe(self) -> str:
        return "Local stream"


SourceRef = Annotated[
    Union[DirectSource, SwarmSource, LocalStreamSource],
    Field(discriminator="kind"),
]


class Member(BaseModel):
    durable_id: str
    transport_id: str # Socket ID of the current connection
    display_name: str
    role: Role = Role.VIEWER
    connected: bool = True
    joined_at: float = Field(default_factory=time.time)


class Playback(BaseModel):
    source: Optional[SourceRef] = None
    is_playing: bool = False
    position_seconds: float = 0.0
    updated_at: float = 0.0 # Server time of the last mutation
    last_command_at: float = Field(default=0.0, exclude=True)


class QueueItem(BaseModel):
    id: str
    source: SourceRef
    label: str
    added_by: Optional[str] = None # Durable ID


class ChatMessage(BaseModel):
    id: str
    member_id: str
    display_name: str
    role: Role
    text: str
    sent_at: float


class Room(BaseModel):
    id: str
    members: Dict[str, Member] = {} # durable_id -> Member, in join order
    playback: Playback = Field(default_factory=Playback)
    queue: List[QueueItem] = []
    messages: List[ChatMessage] = []
    streaming_member_id: Optional[str] = None
    next_item_seq: int = Field(default=0, exclude=True)
    created_at: float = Field(default_factory=time.time)
