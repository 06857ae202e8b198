"""FastAPI application factory, CORS, and WebSocket connection manager."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Dict, List, Optional

from fastapi import FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware

from officers_log.config import get_settings
from officers_log.utils.logging_config import get_logger

logger = get_logger("officers_log.app")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Ensure tables exist
    from officers_log.database import engine
    from officers_log.models import Base
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    await engine.dispose()


settings = get_settings()

app = FastAPI(title=settings.app_name, version="1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Connection Manager ---
class ConnectionManager:
    """Open sockets grouped by participant; one user may have several tabs."""

    def __init__(self):
        self.active_connections: Dict[str, List[WebSocket]] = {}

    async def connect(self, websocket: WebSocket, user_id: str):
        await websocket.accept()
        self.active_connections.setdefault(str(user_id), []).append(websocket)

    def disconnect(self, websocket: WebSocket, user_id: str):
        sockets = self.active_connections.get(str(user_id), [])
        if websocket in sockets:
            sockets.remove(websocket)
        if not sockets:
            self.active_connections.pop(str(user_id), None)

    def is_connected(self, user_id: Optional[str] = None) -> bool:
        if user_id is None:
            return any(self.active_connections.values())
        return bool(self.active_connections.get(str(user_id)))

    async def send_json(self, message: dict, websocket: WebSocket):
        await websocket.send_json(message)

    async def send_to_user(self, user_id: str, message: dict) -> int:
        """Send to every socket the user has open. Returns how many accepted it."""
        delivered = 0
        for connection in list(self.active_connections.get(str(user_id), [])):
            try:
                await connection.send_json(message)
                delivered += 1
            except Exception:
                logger.warning("send to user failed", extra={"user_id": user_id}, exc_info=True)
        return delivered

    async def broadcast(self, message: dict):
        for user_id, sockets in list(self.active_connections.items()):
            for connection in list(sockets):
                try:
                    await connection.send_json(message)
                except Exception:
                    logger.debug("broadcast skipped a closed socket", extra={"user_id": user_id})


manager = ConnectionManager()
