import time
from typing import Optional

from watchsync.models.room import QueueItem, Room, SourceRef


def enqueue(room: Room, source: SourceRef, label: Optional[str] = None,
            added_by: Optional[str] = None) -> QueueItem:
    room.next_item_seq += 1
    item = QueueItem(
        id=f"{int(time.time() * 1000)}-{room.next_item_seq}",
        source=source,
        label=label or source.describe(),
        added_by=added_by,
    )
    room.queue.append(item)
    return item


def dequeue_by_id(room: Room, item_id: str) -> bool:
    before = len(room.queue)
    room.queue = [item for item in room.queue if item.id != item_id]
    return len(room.queue) != before


def pop_front(room: Room) -> Optional[QueueItem]:
    if not room.queue:
        return None
    return room.queue.pop(0)
