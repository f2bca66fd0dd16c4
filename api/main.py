"""
FastAPI Application — request surface for the relay queue.

Provides:
- POST /api/send         queue a message for a thread
- GET  /api/queue        every message with its status and last error
- POST /api/pair         issue a pairing code
- POST /api/clear-queue  drop every message (pairings are kept)
- GET  /health           worker, session and queue status
- Static UI from public/ at /
- Dispatch worker started and stopped with the app lifespan
"""
from __future__ import annotations

import structlog
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

# Load .env before any config is read
from dotenv import load_dotenv
load_dotenv()

from fastapi import APIRouter, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import AliasChoices, BaseModel, Field, field_validator

from channels.base import RemoteSession
from channels.factory import create_session
from config.logging import configure_logging
from config.settings import Settings, get_settings
from core.errors import PersistenceError, ValidationError
from core.queue_service import QueueService
from database.store_base import BaseQueueStore
from database.store_factory import create_store
from job_queue.dispatcher import DispatchWorker
from job_queue.retry import create_retry_policy

logger = structlog.get_logger()


# ──────────────────────────────────────────────────────────────
#  Request Models
# ──────────────────────────────────────────────────────────────

class SendRequest(BaseModel):
    thread_target: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("threadTarget", "toThreadId", "thread_target"),
    )
    text: Optional[str] = None
    sender_name: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("senderName", "sender_name"),
    )

    @field_validator("thread_target", mode="before")
    @classmethod
    def _numeric_thread_id(cls, v):
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v


router = APIRouter()


def _service(request: Request) -> QueueService:
    return request.app.state.queue_service


# ══════════════════════════════════════════════════════════════
#  HEALTH
# ══════════════════════════════════════════════════════════════

@router.get("/health")
async def health(request: Request):
    worker: DispatchWorker = request.app.state.worker
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "queue": await _service(request).counts(),
        "worker": await worker.health_check(),
        "session": await worker.session.health_check(),
    }


# ══════════════════════════════════════════════════════════════
#  QUEUE
# ══════════════════════════════════════════════════════════════

@router.post("/api/send")
async def send_message(req: SendRequest, request: Request):
    try:
        message_id = await _service(request).submit(req.thread_target, req.text, req.sender_name)
    except ValidationError as e:
        return JSONResponse(status_code=400, content={"error": str(e)})
    except PersistenceError as e:
        logger.error("message_queue_write_failed", error=str(e))
        raise HTTPException(status_code=500, detail="Failed to persist message")
    return {"ok": True, "id": message_id}


@router.get("/api/queue")
async def list_queue(request: Request):
    messages = await _service(request).list_all()
    return {"messages": [m.to_json() for m in messages]}


@router.get("/api/queue/{message_id}")
async def get_queued_message(message_id: str, request: Request):
    message = await _service(request).get_message(message_id)
    if message is None:
        raise HTTPException(status_code=404, detail="Message not found")
    return message.to_json()


@router.post("/api/clear-queue")
async def clear_queue(request: Request):
    cleared = await _service(request).clear_all()
    return {"ok": True, "cleared": cleared}


# ══════════════════════════════════════════════════════════════
#  PAIRING
# ══════════════════════════════════════════════════════════════

@router.post("/api/pair")
async def pair(request: Request):
    code = await _service(request).generate_pairing_code()
    return {"code": code}


# ══════════════════════════════════════════════════════════════
#  APP FACTORY
# ══════════════════════════════════════════════════════════════

def create_app(
    settings: Settings = None,
    store: BaseQueueStore = None,
    session: RemoteSession = None,
) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level, json_output=not settings.debug)

    store = store or create_store({"backend": settings.store.backend, "path": settings.store.path})
    session = session or create_session(settings.session)
    worker = DispatchWorker(
        store,
        session,
        poll_interval_s=settings.worker.poll_interval_s,
        retry_policy=create_retry_policy(settings.retry.max_attempts, settings.retry.backoff_seconds),
    )
    queue_service = QueueService(
        store,
        pairing_ttl_seconds=settings.pairing.ttl_seconds,
        pairing_max_count=settings.pairing.max_count,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if settings.worker.auto_start:
            await worker.start()
        logger.info("thread_relay_started",
                    port=settings.port,
                    worker=settings.worker.auto_start,
                    session=session.name)
        yield
        await worker.stop()
        await store.close()
        logger.info("thread_relay_stopped")

    app = FastAPI(
        title="Thread Relay API",
        description="Queue outbound messages and deliver them through a browser session",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.store = store
    app.state.worker = worker
    app.state.queue_service = queue_service
    app.include_router(router)

    public_dir = Path(settings.public_dir)
    if public_dir.is_dir():
        app.mount("/", StaticFiles(directory=str(public_dir), html=True), name="public")
        logger.info("public_ui_mounted", path=str(public_dir))

    return app


def run() -> None:
    import uvicorn
    settings = get_settings()
    uvicorn.run("api.main:create_app", factory=True, host="0.0.0.0", port=settings.port)


if __name__ == "__main__":
    run()
