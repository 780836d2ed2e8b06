from contextlib import asynccontextmanager
from pathlib import Path
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from devconnect.config import settings
from devconnect.database import init_models
from devconnect.services.realtime import build_pusher_forwarder, realtime_hub
from devconnect.utils.time import utcnow
from devconnect.api import (
    auth,
    chats,
    messages,
    users,
    files,
    websocket
)

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s"
)
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_models()
    forwarder = build_pusher_forwarder()
    if forwarder:
        forwarder.attach(realtime_hub)
        logger.info("Pusher forwarding enabled")
    yield
    if forwarder and forwarder.channel:
        forwarder.channel.unsubscribe()

app = FastAPI(
    title="DevConnect Chat API",
    description="Chat backend for DevConnect: chats, messages, storage and the realtime relay",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# CORS Middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Static files for uploads
Path(settings.UPLOAD_DIR).mkdir(parents=True, exist_ok=True)
app.mount("/uploads", StaticFiles(directory=settings.UPLOAD_DIR), name="uploads")

# Include routers
app.include_router(auth.router, prefix="/api/auth", tags=["Authentication"])
app.include_router(users.router, prefix="/api", tags=["Users"])
app.include_router(chats.router, prefix="/api/chats", tags=["Chats"])
app.include_router(messages.router, prefix="/api/messages", tags=["Messages"])
app.include_router(files.router, prefix="/api", tags=["Files"])
app.include_router(websocket.router, prefix="/api", tags=["WebSocket"])

@app.get("/")
async def root():
    return {"message": "DevConnect Chat API is running", "docs": "/docs"}

@app.get("/health")
async def health_check():
    return {"status": "healthy", "timestamp": utcnow()}

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "devconnect.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG
    )
