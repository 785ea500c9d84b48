import json
import logging
from contextlib import aclosing, asynccontextmanager
from dataclasses import asdict
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, List

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from .context.messages import extract_code_blocks
from .delivery.events import CompleteEvent
from .models import Strategy
from .relay import get_conversation, get_relay_service, run_delivery_stream
from .services.conversation_service import (
    close_conversation_service,
    get_conversation_service_async,
)
from .settings import get_settings


def setup_server_logging() -> logging.Logger:
    """Configure the package logger with console and rotating file output."""
    logs_dir = Path("logs")
    logs_dir.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger("contextrelay")
    if logger.handlers:
        return logger

    logger.setLevel(get_settings().log_level)
    fmt = logging.Formatter("%(asctime)s %(levelname)s %(name)s - %(message)s")

    ch = logging.StreamHandler()
    ch.setFormatter(fmt)
    logger.addHandler(ch)

    fh = RotatingFileHandler(logs_dir / "server.log", maxBytes=5_000_000, backupCount=3)
    fh.setFormatter(fmt)
    logger.addHandler(fh)

    return logger


def _cors_origins_list(origins: str) -> list[str]:
    """Parse CORS_ORIGINS into a list."""
    if not origins or origins.strip() == "*":
        return ["*"]
    return [o.strip() for o in origins.split(",") if o.strip()]


LOGGER = setup_server_logging()
settings = get_settings()


class EstimateRequest(BaseModel):
    files: List[str] = Field(default_factory=list)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Connect the optional Redis conversation store; close it on shutdown."""
    try:
        store = await get_conversation_service_async()
        if store is not None:
            LOGGER.info("Conversation store (Redis) ready")
    except Exception as e:
        LOGGER.debug("Conversation store not available: %s", e)

    yield

    LOGGER.info("Shutting down...")
    await close_conversation_service()


app = FastAPI(
    title="Context Relay",
    version="0.1.0",
    debug=settings.debug,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins_list(settings.cors_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
async def health() -> dict[str, Any]:
    """Health check for load balancers and monitoring.

    Returns:
        dict[str, Any]: JSON response with status field.
    """
    return {"status": "ok"}


@app.post("/estimate")
async def estimate(request: EstimateRequest) -> dict[str, Any]:
    """Estimate tokens and the delivery strategy for a set of files.

    Returns:
        dict[str, Any]: the estimate fields plus a rendered ``report`` string.
    """
    report = get_relay_service().estimate(request.files)
    return {**report.to_dict(), "report": report.render()}


@app.get("/check")
async def check() -> dict[str, Any]:
    """Send a probe request to the completion endpoint."""
    ok = await get_relay_service().check_connection()
    return {"status": "ok" if ok else "failed"}


@app.delete("/sessions/{session_id}")
async def clear_session(session_id: str) -> dict[str, Any]:
    """Forget a session's conversation history, in memory and in Redis.

    Returns:
        dict[str, Any]: status and the cleared session_id.
    """
    await get_relay_service().clear_conversation(session_id)
    LOGGER.info("Cleared conversation for session_id=%s", session_id)
    return {"status": "cleared", "session_id": session_id}


@app.websocket("/ws/chat")
async def chat_ws(websocket: WebSocket) -> None:
    """WebSocket chat endpoint: client sends one request, server streams delivery events then done.

    Args:
        websocket: WebSocket connection from client.

    Expected Input (JSON):
        {
            "session_id": str - unique session identifier,
            "message": str - the question,
            "files": [str] - context file paths, in order,
            "strategy": "single" | "streaming" | "auto" (optional)
        }

    Response Format:
        One JSON object per delivery event, each with a "type" of
        progress, part_complete, final_processing, complete or error.
        After a complete event: {"type": "done", "session_id": str,
        "history_length": int, "code_blocks": [{"language", "code"}]}.
    """
    await websocket.accept()
    try:
        raw = await websocket.receive_text()
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as e:
            LOGGER.error("Invalid WS payload (not JSON): %s", e)
            await websocket.send_json({"type": "error", "kind": "bad_request", "message": "Invalid JSON payload"})
            await websocket.close()
            return

        if not isinstance(payload, dict):
            await websocket.send_json({"type": "error", "kind": "bad_request", "message": "Payload must be a JSON object"})
            await websocket.close()
            return

        session_id = str(payload.get("session_id") or "default")
        message = str(payload.get("message") or "").strip()
        raw_files = payload.get("files") or []
        strategy = payload.get("strategy")

        if not message:
            await websocket.send_json({"type": "error", "kind": "bad_request", "message": "Empty message"})
            await websocket.close()
            return
        if not isinstance(raw_files, list):
            await websocket.send_json({"type": "error", "kind": "bad_request", "message": "files must be a list of paths"})
            await websocket.close()
            return
        if strategy is not None and (
            not isinstance(strategy, str) or strategy not in {s.value for s in Strategy}
        ):
            await websocket.send_json(
                {"type": "error", "kind": "bad_request", "message": "Invalid strategy. Use: single, streaming, or auto"}
            )
            await websocket.close()
            return

        files = [str(p) for p in raw_files]
        LOGGER.info("WS chat start session_id=%s files=%d", session_id, len(files))

        answer = None
        # Closing the stream releases the sequencer even when a send fails mid-run.
        async with aclosing(run_delivery_stream(session_id, message, files, strategy)) as events:
            async for event in events:
                await websocket.send_json(event.to_dict())
                if isinstance(event, CompleteEvent):
                    answer = event.response

        if answer is not None:
            conversation = await get_conversation(session_id)
            await websocket.send_json(
                {
                    "type": "done",
                    "session_id": session_id,
                    "history_length": len(conversation.messages),
                    "code_blocks": [asdict(b) for b in extract_code_blocks(answer)],
                }
            )
        await websocket.close()

    except WebSocketDisconnect:
        LOGGER.info("WS disconnect")
    except (ConnectionError, TimeoutError, RuntimeError) as e:
        LOGGER.exception("Unexpected WS error: %s", e)
        try:
            await websocket.send_json({"type": "error", "kind": "transport", "message": str(e)})
        except (OSError, RuntimeError, ValueError, TypeError):
            pass
        try:
            await websocket.close()
        except (OSError, RuntimeError):
            pass
