"""
FastAPI Application — dialer control API, provider webhooks and live state.

Provides:
- REST commands: start, start-from, stop, reset, auto-next, next, state
- Twilio status webhook feeding the dialer engine
- TwiML answer document played when a target picks up
- WebSocket endpoint pushing a state snapshot on every change
- Operator console served from /dashboard
"""
from __future__ import annotations

import structlog
from contextlib import asynccontextmanager
from pathlib import Path
from xml.sax.saxutils import escape

# Load .env before any config is read
from dotenv import load_dotenv
load_dotenv()

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel

from config.settings import get_settings
from channels.telephony.factory import TelephonyFactory
from dialer.engine import DialerEngine
from dialer.publisher import StatePublisher
from dialer.queue_store import JsonFileTargetSource

logger = structlog.get_logger()

DASHBOARD_DIR = Path(__file__).parent / "static"

# ──────────────────────────────────────────────────────────────
#  Bootstrap
# ──────────────────────────────────────────────────────────────

settings = get_settings()
telephony_client = TelephonyFactory.create(settings.telephony)
publisher = StatePublisher()
engine = DialerEngine(
    telephony=telephony_client,
    source=JsonFileTargetSource(settings.dialer.numbers_path),
    publisher=publisher,
    status_callback_url=settings.status_callback_url,
    answer_url=settings.answer_url,
    auto_next=settings.dialer.auto_next_default,
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("autodialer_started",
                 provider=settings.telephony.provider.value,
                 numbers_path=settings.dialer.numbers_path,
                 public_base_url=settings.public_base_url)
    yield

    # Hang up whatever is still ringing before the process goes away.
    if engine.state.calling or engine.state.active_calls:
        await engine.stop()
    await engine.telephony.close()
    logger.info("autodialer_stopped")


# ──────────────────────────────────────────────────────────────
#  App
# ──────────────────────────────────────────────────────────────

app = FastAPI(
    title="AutoDialer API",
    description="Sequential outbound dialer with manual and automatic advance",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)


# ──────────────────────────────────────────────────────────────
#  Request Models
# ──────────────────────────────────────────────────────────────

class StartFromRequest(BaseModel):
    index: int


class AutoNextRequest(BaseModel):
    enabled: bool


# ══════════════════════════════════════════════════════════════
#  HEALTH
# ══════════════════════════════════════════════════════════════

@app.get("/health")
async def health():
    snapshot = engine.snapshot()
    return {
        "status": "healthy",
        "provider": settings.telephony.provider.value,
        "calling": snapshot.calling,
        "active_calls": len(engine.state.active_calls),
        "observers": publisher.observer_count,
    }


# ══════════════════════════════════════════════════════════════
#  DIALER COMMANDS
# ══════════════════════════════════════════════════════════════

@app.post("/api/reset")
async def reset_dialer():
    result = await engine.reset()
    return result.to_wire()


@app.post("/api/start")
async def start_dialer():
    result = await engine.start()
    return result.to_wire()


@app.post("/api/start-from")
async def start_dialer_from(req: StartFromRequest):
    result = await engine.start_from(req.index)
    return result.to_wire()


@app.post("/api/stop")
async def stop_dialer():
    result = await engine.stop()
    return result.to_wire()


@app.post("/api/auto-next")
async def toggle_auto_next(req: AutoNextRequest):
    result = await engine.toggle_auto_next(req.enabled)
    return result.to_wire()


@app.post("/api/next")
async def manual_next():
    result = await engine.next()
    return result.to_wire()


@app.get("/api/state")
async def dialer_state():
    return engine.snapshot().to_wire()


@app.get("/api/targets")
async def list_targets():
    """The loaded queue with each entry's display fields. Never triggers a load."""
    return {
        "index": engine.queue.index,
        "targets": [
            {"phone": target.phone, "dialable": target.is_dialable, "extra": target.extra}
            for target in engine.queue.targets
        ],
    }


# ══════════════════════════════════════════════════════════════
#  TWILIO — answer TwiML and status callbacks
# ══════════════════════════════════════════════════════════════

@app.post("/twiml/outbound")
async def twiml_outbound():
    """Twilio answer URL — the callee hears a short prompt, then the line stays open."""
    message = escape(settings.dialer.answer_message)
    return Response(
        content=f"""<?xml version="1.0" encoding="UTF-8"?>
<Response>
    <Say>{message}</Say>
</Response>""",
        media_type="application/xml",
    )


@app.post("/webhooks/status")
async def twilio_status_webhook(request: Request):
    """Twilio status callback — form-encoded. Always acknowledged."""
    body = dict(await request.form())
    parse = TelephonyFactory.get_webhook_parser(settings.telephony.provider)
    notification = parse(body)
    if not notification.call_id:
        logger.warning("status_webhook_without_call_sid")
        return {"status": "ok"}
    advanced = await engine.handle_status(notification)
    return {"status": "ok", "advanced": advanced}


# ══════════════════════════════════════════════════════════════
#  WEBSOCKET — live dialer state
# ══════════════════════════════════════════════════════════════

@app.websocket("/ws/dialer")
async def dialer_state_stream(websocket: WebSocket):
    await websocket.accept()
    await publisher.connect(websocket, engine.snapshot())
    try:
        while True:
            # Observers are read-only; incoming frames are ignored.
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        publisher.disconnect(websocket)


# Operator console: plain HTML driving the REST commands and /ws/dialer.
app.mount("/dashboard", StaticFiles(directory=DASHBOARD_DIR, html=True), name="dashboard")


# ══════════════════════════════════════════════════════════════
#  Entry Point
# ══════════════════════════════════════════════════════════════

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.host, port=settings.port)
