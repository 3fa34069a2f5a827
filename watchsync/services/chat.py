import time
import uuid
from typing import Optional

from watchsync.models.room import ChatMessage, Member, Room


def post(room: Room, member: Member, text: str) -> Optional[ChatMessage]:
    text = text.strip()
    if not text:
        return None
    message = ChatMessage(
        id=str(uuid.uuid4()),
        member_id=member.durable_id,
        display_name=member.display_name,
        role=member.role,
        text=text,
        sent_at=time.time(),
    )
    room.messages.append(message)
    return message
