"""
Anim Codex web server.
FastAPI + WebSocket bridge to the ConnectionSupervisor.

Run:  anim-codex [--port 8765] [--dir /path/to/project]
"""

import logging

from dotenv import load_dotenv
load_dotenv()

from fastapi import FastAPI

from config import app_config
from web import api_sessions, chat

logger = logging.getLogger(__name__)

# ============================================================
# FastAPI application
# ============================================================

app = FastAPI(title=app_config.title)


@app.get("/api/health")
async def health():
    return {"ok": True}


# ============================================================
# Include routers from submodules
# ============================================================

app.include_router(api_sessions.router)
app.include_router(chat.router)
