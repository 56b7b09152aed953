"""FastAPI application entry point."""

from __future__ import annotations

import sys
from contextlib import asynccontextmanager
from pathlib import Path

# Ensure backend/ is on sys.path for absolute imports
_backend_dir = str(Path(__file__).resolve().parent)
if _backend_dir not in sys.path:  # pragma: no cover
    sys.path.insert(0, _backend_dir)

__version__ = "0.1.0"

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api import api_router
from config import settings
from database import Base, engine
from services.presence import PresenceRegistry
from ws import ws_router
from ws.broadcast import RedisRelay
from ws.rooms import RoomRouter


@asynccontextmanager
async def lifespan(app: FastAPI):
    from logging_config import setup_logging
    setup_logging("Server")

    import logging
    logger = logging.getLogger(__name__)

    import models  # noqa: F401 — register all models with Base
    Base.metadata.create_all(bind=engine)

    relay = RedisRelay(settings.REDIS_URL) if settings.REDIS_URL else None
    rooms = RoomRouter(relay)
    if relay is not None and not await relay.start(rooms.deliver_local):
        logger.info("Room fan-out limited to this process")
    app.state.presence = PresenceRegistry()
    app.state.rooms = rooms

    yield

    app.state.presence.clear()
    rooms.clear()
    if relay is not None:
        await relay.close()


app = FastAPI(title="Rental Chat API", version=__version__, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router)
app.include_router(ws_router)


@app.get("/health")
def health():
    return {"ok": True}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True, log_config=None)
