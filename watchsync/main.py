import logging
import os
from typing import Optional

import socketio
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from watchsync.services.registry import RoomRegistry
from watchsync.sockets import SyncEngine

# Configure logging
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# CORS Configuration
origins = os.getenv("ALLOWED_ORIGINS", "*").split(",")


def create_app(registry: Optional[RoomRegistry] = None):
    """Build the FastAPI app and wrap it with the Socket.IO server."""
    if registry is None:
        registry = RoomRegistry()

    app = FastAPI(title="WatchSync")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    sio = socketio.AsyncServer(async_mode='asgi', cors_allowed_origins=origins if origins != ["*"] else "*")
    engine = SyncEngine(sio, registry)
    engine.register()

    app.state.registry = registry
    app.state.sio = sio

    @app.get("/")
    async def health():
        return {"status": "ok", "service": "watchsync"}

    @app.get("/api/room/{room_id}")
    async def check_room(room_id: str):
        room = registry.get(room_id)
        if not room:
            raise HTTPException(status_code=404, detail="Room not found")
        return {
            "room_id": room.id,
            "member_count": sum(1 for m in room.members.values() if m.connected),
            "has_content": room.playback.source is not None,
        }

    logger.info("WatchSync server ready")
    return app, socketio.ASGIApp(sio, app)


app, socket_app = create_app()
