"""FastAPI server for the support orchestrator.

Run with:
    uv run uvicorn support_orchestrator.server:app --reload --host 0.0.0.0 --port 3001
"""

from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from support_orchestrator.agent import TicketOrchestrator
from support_orchestrator.api.routes import router
from support_orchestrator.config import CORS_ORIGINS, SERVER_HOST, SERVER_PORT
from support_orchestrator.services.knowledge import KnowledgeClient
from support_orchestrator.services.letta_client import LettaClient
from support_orchestrator.services.llm import SupportLLM
from support_orchestrator.services.memory import MemoryClient
from support_orchestrator.services.metrics import metrics
from support_orchestrator.services.store import create_store
from support_orchestrator.tools.support import build_support_tools

# ── Logging ──────────────────────────────────────────────────────────
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)


# ── Lifespan: initialise / tear-down shared resources ────────────────
@asynccontextmanager
async def lifespan(application: FastAPI):
    """Start-up: build the clients and the orchestrator once.

    The HTTP API uses the stateful orchestrator (tickets, logs and
    insights in the database); the tool surface shares it.
    """
    logger.info("Building support orchestrator…")
    transport = LettaClient()
    if not transport.configured:
        logger.warning("LETTA_API_KEY not set: memory and knowledge stages will degrade")
    knowledge = KnowledgeClient(transport)
    orchestrator = TicketOrchestrator(
        classifier=SupportLLM(),
        memory=MemoryClient(transport),
        knowledge=knowledge,
        store=create_store(),
    )

    application.state.letta = transport
    application.state.knowledge = knowledge
    application.state.orchestrator = orchestrator
    application.state.tools = build_support_tools(orchestrator, knowledge)
    logger.info("Orchestrator ready (%s).", " → ".join(orchestrator.stage_names))
    yield
    # Shutdown: release the HTTP pool and push buffered metrics.
    transport.close()
    orchestrator.store.engine.dispose()
    metrics.flush()


# ── FastAPI application ──────────────────────────────────────────────
app = FastAPI(
    title="Support Orchestrator",
    description=(
        "AI-powered customer support: classify tickets, draft responses "
        "and keep customer memory and product knowledge."
    ),
    version="1.0.0",
    lifespan=lifespan,
)

# ── CORS (dashboard frontend) ───────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── Request-ID middleware ────────────────────────────────────────────
@app.middleware("http")
async def add_request_id(request: Request, call_next) -> Response:
    """Attach a unique request ID to every request for log correlation.

    The ID is echoed in the ``X-Request-ID`` response header and prefixed
    to every log line the routes write for this request.
    """
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    request.state.request_id = request_id
    logger.info(
        "[%s] %s %s", request_id, request.method, request.url.path,
    )
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


# ── Register routes ──────────────────────────────────────────────────
app.include_router(router, prefix="/api")


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "service": "Support Orchestrator",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/api/health",
    }


# ── CLI entry point ──────────────────────────────────────────────────

if __name__ == "__main__":
    logger.info("Starting support orchestrator API on %s:%d", SERVER_HOST, SERVER_PORT)
    uvicorn.run(
        "support_orchestrator.server:app",
        host=SERVER_HOST,
        port=SERVER_PORT,
        reload=True,
    )
