"""
FastAPI application — the poetloop entry point.

Every service operation is one endpoint under /api/v1. Bodies and results
are JSON; records use their field names as-is and optional values are null.
Failures come back as {"error": "..."} except evolve, which always answers
200 with {"Ok": cycle} or {"Err": "..."}.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from poetloop import __version__
from poetloop.config import get_config
from poetloop.errors import (
    ConcurrentUpdate,
    InvalidRequest,
    NotFound,
    PoetLoopError,
    StoreIntegrityError,
)
from poetloop.service import PoetLoopService, build_service

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Globals — initialized at startup
# ---------------------------------------------------------------------------
service: PoetLoopService | None = None


def _setup_logging(cfg: dict):
    log_cfg = cfg.get("logging", {})
    level = getattr(logging, log_cfg.get("level", "INFO").upper(), logging.INFO)
    log_file = log_cfg.get("file")

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        from pathlib import Path
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    global service

    cfg = get_config()
    _setup_logging(cfg)

    service = build_service(cfg)
    logger.info(
        "poetloop started — backend %s, model %s, storage %s",
        cfg.get("backend", {}).get("url", ""),
        cfg.get("backend", {}).get("model", ""),
        cfg.get("storage", {}).get("sqlite_path", ""),
    )
    logger.info("Tools: %s", service.orchestrator.tool_registry.list_tools())

    yield

    logger.info("poetloop shutting down")


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------
app = FastAPI(
    title="poetloop",
    description="A chat assistant with memory and a poet that steers itself.",
    version=__version__,
    lifespan=lifespan,
)


@app.exception_handler(PoetLoopError)
async def poetloop_error_handler(request: Request, exc: PoetLoopError):
    if isinstance(exc, NotFound):
        status = 404
    elif isinstance(exc, InvalidRequest):
        status = 400
    elif isinstance(exc, (StoreIntegrityError, ConcurrentUpdate)):
        status = 409
    else:
        status = 502
    logger.warning("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse({"error": str(exc)}, status_code=status)


async def _json_body(request: Request) -> dict:
    try:
        body = await request.json()
    except ValueError:
        raise InvalidRequest("Request body must be JSON")
    if not isinstance(body, dict):
        raise InvalidRequest("Request body must be a JSON object")
    return body


def _opt(record):
    return record.to_dict() if record is not None else None


@app.get("/health")
async def health():
    return JSONResponse({"status": "ok", "version": __version__})


@app.get("/api/v1/backend")
async def api_backend():
    """Health and models of the configured generation backend."""
    return JSONResponse(await service.backend_status())


# ---------------------------------------------------------------------------
# Chat
# ---------------------------------------------------------------------------

@app.post("/api/v1/chat")
async def api_chat(request: Request):
    """Body: {"messages": [...]}"""
    body = await _json_body(request)
    reply = await service.chat(body.get("messages", []))
    return JSONResponse({"response": reply})


@app.post("/api/v1/chat/storage")
async def api_chat_with_storage(request: Request):
    """Body: {"conversation_id": int | null, "messages": [...]}"""
    body = await _json_body(request)
    conv_id, reply = await service.chat_with_storage(
        body.get("conversation_id"), body.get("messages", [])
    )
    return JSONResponse({"conversation_id": conv_id, "response": reply})


@app.post("/api/v1/prompt")
async def api_prompt(request: Request):
    """Body: {"prompt": "..."}"""
    body = await _json_body(request)
    reply = await service.prompt(body.get("prompt", ""))
    return JSONResponse({"response": reply})


# ---------------------------------------------------------------------------
# Conversations
# ---------------------------------------------------------------------------

@app.get("/api/v1/conversations")
async def api_conversations():
    return JSONResponse([c.to_dict() for c in service.get_conversations()])


@app.get("/api/v1/conversations/{conv_id}")
async def api_conversation(conv_id: str):
    return JSONResponse(_opt(service.get_conversation_with_messages(conv_id)))


@app.get("/api/v1/conversations/{conv_id}/messages")
async def api_conversation_messages(conv_id: str):
    return JSONResponse([m.to_dict() for m in service.get_conversation_messages(conv_id)])


@app.put("/api/v1/conversations/{conv_id}/title")
async def api_conversation_title(conv_id: str, request: Request):
    """Body: {"title": "..."}"""
    body = await _json_body(request)
    existed = service.update_conversation_title(conv_id, body.get("title"))
    return JSONResponse({"updated": existed})


@app.delete("/api/v1/conversations/{conv_id}")
async def api_conversation_delete(conv_id: str):
    return JSONResponse({"deleted": service.delete_conversation(conv_id)})


# ---------------------------------------------------------------------------
# Poet
# ---------------------------------------------------------------------------

@app.post("/api/v1/poet/evolve")
async def api_poet_evolve():
    result = await service.evolve_poet()
    return JSONResponse(result.to_dict())


@app.get("/api/v1/poet/current")
async def api_poet_current():
    return JSONResponse(_opt(service.get_current_poem()))


@app.get("/api/v1/poet/poems")
async def api_poet_poems():
    return JSONResponse([p.to_dict() for p in service.get_all_poems()])


@app.get("/api/v1/poet/poems/{cycle_number}")
async def api_poet_poem(cycle_number: str):
    return JSONResponse(_opt(service.get_poem_by_cycle(cycle_number)))


@app.get("/api/v1/poet/poems/{cycle_number}/raw")
async def api_poet_raw(cycle_number: str):
    return JSONResponse({"raw_response": service.get_raw_response(cycle_number)})


@app.get("/api/v1/poet/state")
async def api_poet_state():
    return JSONResponse(_opt(service.get_poet_state()))


@app.get("/api/v1/poet/stats")
async def api_poet_stats():
    return JSONResponse({
        "initialized": service.is_poet_initialized(),
        "poem_count": service.get_poem_count(),
        "generation": service.get_generation_stats(),
    })


@app.post("/api/v1/poet/next-prompt")
async def api_poet_next_prompt(request: Request):
    """Body: {"next_prompt": "..."}"""
    body = await _json_body(request)
    return JSONResponse({"updated": service.set_next_prompt(body.get("next_prompt"))})


@app.post("/api/v1/poet/reset")
async def api_poet_reset():
    return JSONResponse({"reset": await service.reset_poet()})
