from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import logging

import socketio

from database import Base, engine, get_settings
from api import rooms, websocket

settings = get_settings()


def setup_logging(log_level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s"
    )


setup_logging(settings.log_level)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: 在應用啟動時建立資料庫表
    Base.metadata.create_all(bind=engine)
    yield
    # Shutdown: 等待進行中的廣播送完
    await websocket.sync_engine.drain()


app = FastAPI(
    title="Boss Tracker API",
    description="Room-scoped boss reward records with live sync",
    version="1.0.0",
    lifespan=lifespan
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(rooms.router)


@app.get("/")
def root():
    return {"message": "Boss Tracker API", "status": "ok"}


@app.get("/health")
def health():
    return {"status": "healthy", "connections": websocket.registry.connection_count}


# Socket.IO 與 FastAPI 共用同一個 ASGI 入口
asgi_app = socketio.ASGIApp(websocket.sio, other_asgi_app=app)


if __name__ == "__main__":
    import uvicorn
    logger.info("Starting Boss Tracker server on port 8000")
    uvicorn.run(asgi_app, host="0.0.0.0", port=8000)
