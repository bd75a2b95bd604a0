# Load .env file FIRST before any other imports that use os.getenv
from dotenv import load_dotenv
load_dotenv()

import logging

import socketio
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from carelink.api.routes.auth import router as auth_router
from carelink.api.routes.conversations import router as conversations_router
from carelink.core.config import settings
from carelink.db.database import SessionLocal, engine, initialize_main_database
from carelink.realtime.server import attach_handlers, sio
from carelink.services.chat_store import SqlChatStore

app = FastAPI(title=settings.APP_NAME)

logging.basicConfig(level=logging.INFO)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth_router, prefix="/api/auth", tags=["auth"])
app.include_router(conversations_router, prefix="/api/conversations", tags=["conversations"])

# --- Realtime (Socket.IO on "/" and "/community") ---
realtime = attach_handlers(sio, SqlChatStore(SessionLocal))

asgi_app = socketio.ASGIApp(sio, other_asgi_app=app, socketio_path=settings.SOCKETIO_PATH)


@app.on_event("startup")
def _init_database() -> None:
    try:
        initialize_main_database()
        logging.info("[db] schema ready")
    except Exception as exc:  # pragma: no cover
        logging.exception("[db] initialization failed: %s", exc)


@app.get("/health")
def health():
    db_ok = True
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception:
        db_ok = False
    return {
        "status": "ok" if db_ok else "degraded",
        "database": db_ok,
        "socket_namespaces": [realtime.direct.namespace, realtime.community.namespace],
    }
