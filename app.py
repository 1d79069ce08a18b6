import asyncio
import os
import time
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import BackgroundTasks, FastAPI, Request, HTTPException
from fastapi.responses import JSONResponse, PlainTextResponse
from loguru import logger
from dotenv import load_dotenv

# Load environment variables before the clients read them
load_dotenv()

from graph.capture import capture_chat_event, capture_crm_event
from graph.flow import FlowController
from tools.idempotency import Idem

# Configure logging
logger.add("logs/app.log", rotation="1 day", retention="7 days", level="INFO")

VERSION = "1.0.0"
SWEEP_INTERVAL_SECONDS = 60

controller = FlowController()
idem = Idem()


async def sweep_idle_sessions(max_idle: timedelta):
    """Periodically evict sessions of contacts who stopped answering."""
    while True:
        await asyncio.sleep(SWEEP_INTERVAL_SECONDS)
        evicted = controller.store.sweep_idle(max_idle)
        for key in evicted:
            logger.info(f"Idle session evicted: {key}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    idle_minutes = int(os.getenv("SESSION_IDLE_TIMEOUT_MINUTES", "0"))
    sweeper = None
    if idle_minutes > 0:
        logger.info(f"Idle sessions expire after {idle_minutes} minutes")
        sweeper = asyncio.create_task(sweep_idle_sessions(timedelta(minutes=idle_minutes)))
    yield
    if sweeper:
        sweeper.cancel()


# Initialize FastAPI app
app = FastAPI(
    title="Mortgage Intake Bot",
    description="WhatsApp questionnaire and document intake synced with monday.com",
    version=VERSION,
    lifespan=lifespan,
)


@app.post("/webhooks/whatsapp")
async def whatsapp_webhook(req: Request, background_tasks: BackgroundTasks):
    """
    Inbound WhatsApp messages from Twilio (form encoded).

    Twilio gets its 200 right away; the turn runs in the background.
    """
    form = await req.form()
    event = capture_chat_event(form)
    if event is None:
        return PlainTextResponse("OK")

    if event.message_id and not idem.check_and_set(f"twilio:{event.message_id}"):
        logger.warning(f"Duplicate message ignored: {event.message_id}")
        return PlainTextResponse("OK")

    background_tasks.add_task(controller.handle_chat_event, event)
    return PlainTextResponse("OK")


@app.post("/webhooks/monday")
async def monday_webhook(req: Request, background_tasks: BackgroundTasks):
    """
    monday.com item notifications.

    Expected payload:
    {"challenge": "..."} on registration, then
    {"event": {"pulseId": 123, "boardId": 456, "triggerUuid": "..."}}
    """
    payload = await req.json()

    if payload.get("challenge"):
        logger.info("Answering monday.com challenge")
        return JSONResponse(status_code=200, content={"challenge": payload["challenge"]})

    event = capture_crm_event(payload)
    if event is None:
        return JSONResponse(status_code=200, content={"status": "ignored"})

    if event.event_id and not idem.check_and_set(f"monday:{event.event_id}"):
        logger.warning(f"Duplicate monday.com event ignored: {event.event_id}")
        return JSONResponse(status_code=200, content={"status": "duplicate_ignored"})

    background_tasks.add_task(controller.handle_crm_event, event)
    return JSONResponse(status_code=200, content={"status": "accepted", "record_id": event.record_id})


@app.get("/health")
def health():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "timestamp": time.time(),
        "version": VERSION,
        "active_sessions": len(controller.store),
        "services": {
            "redis": "connected" if idem.connected else "disconnected",
            "whatsapp": "live" if controller.gateway.enabled else "mock",
            "monday": "live" if controller.records.enabled else "mock",
            "ai_fallback": "enabled" if controller.llm.enabled else "disabled",
        }
    }


@app.get("/admin/sessions/{contact_key}")
async def get_session(contact_key: str):
    """Current session of a contact (for debugging)."""
    session = controller.store.get(contact_key)
    if session is None:
        raise HTTPException(status_code=404, detail="No active session")
    return session.snapshot()


@app.delete("/admin/sessions/{contact_key}")
async def reset_session(contact_key: str):
    """Drop a contact's session; their next message starts over."""
    if not await controller.reset(contact_key):
        raise HTTPException(status_code=404, detail="No active session")
    return {"contact_key": contact_key, "status": "reset"}


# Error handlers
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}")
    return JSONResponse(
        status_code=500,
        content={"status": "error", "message": "Internal server error"}
    )


if __name__ == "__main__":
    import uvicorn

    # Create logs directory if it doesn't exist
    os.makedirs("logs", exist_ok=True)

    logger.info("Starting Mortgage Intake Bot")

    uvicorn.run(
        "app:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8000")),
        reload=True,
        log_level="info"
    )
