"""FastAPI route definitions for the support orchestrator API."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from fastapi import APIRouter, HTTPException, Query, Request

from support_orchestrator.api.schemas import (
    ClassifyRequest,
    HealthResponse,
    KnowledgeCreateRequest,
    KnowledgeSearchRequest,
    TicketCreateRequest,
    TicketDetailResponse,
    TicketListResponse,
    TicketProcessResponse,
    ToolCallRequest,
)
from support_orchestrator.errors import (
    MemoryStoreError,
    TicketNotFoundError,
    TicketValidationError,
)
from support_orchestrator.knowledge_templates import KNOWLEDGE_TEMPLATES
from support_orchestrator.models import (
    ClassificationResult,
    CustomerInsights,
    KnowledgeDocument,
    TicketStatus,
)
from support_orchestrator.tools.support import call_tool, list_tool_specs

logger = logging.getLogger(__name__)

router = APIRouter()


def _get_state(request: Request, name: str):
    """Retrieve a shared resource built by the lifespan (see ``server.py``)."""
    value = getattr(request.app.state, name, None)
    if value is None:
        raise HTTPException(
            status_code=503,
            detail="The service is still starting up. Please try again in a moment.",
        )
    return value


def _get_store(request: Request):
    store = _get_state(request, "orchestrator").store
    if store is None:
        raise HTTPException(status_code=501, detail="Ticket storage is not enabled.")
    return store


async def _run(request: Request, fn: Callable[..., Any], *args, **kwargs) -> Any:
    """Run a blocking call on the thread pool and map domain errors to HTTP.

    Orchestrator and client calls talk to the Anthropic / Letta APIs
    synchronously, so they are offloaded with ``asyncio.to_thread`` to
    keep the event loop free for other requests.
    """
    request_id = getattr(request.state, "request_id", "?")
    try:
        return await asyncio.to_thread(fn, *args, **kwargs)
    except TicketValidationError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except TicketNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except MemoryStoreError as e:
        logger.error("[%s] Memory store error: %s", request_id, e)
        raise HTTPException(
            status_code=502, detail="The knowledge store is unavailable. Please try again.",
        ) from e
    except Exception as e:
        # Full traceback stays server-side; the client gets a generic message.
        logger.exception("[%s] Error handling %s", request_id, request.url.path)
        raise HTTPException(
            status_code=500,
            detail="An internal error occurred. Please try again.",
        ) from e


# ── Health ───────────────────────────────────────────────────────────


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request):
    """Health check endpoint."""
    transport = getattr(request.app.state, "letta", None)
    return HealthResponse(memory=bool(transport is not None and transport.configured))


# ── Tickets ──────────────────────────────────────────────────────────


@router.post("/tickets", response_model=TicketProcessResponse)
async def create_ticket(body: TicketCreateRequest, request: Request):
    """Process a new support ticket through the full pipeline."""
    orchestrator = _get_state(request, "orchestrator")
    result = await _run(
        request,
        orchestrator.process_ticket,
        body.message,
        body.customer_email,
        subject=body.subject,
        workspace_id=body.workspace_id,
    )
    return TicketProcessResponse(**result.model_dump())


@router.get("/tickets", response_model=TicketListResponse)
async def list_tickets(
    request: Request,
    limit: int = Query(50, ge=1, le=500),
    status: TicketStatus | None = None,
):
    store = _get_store(request)
    tickets = await _run(request, store.list_tickets, limit=limit, status=status)
    return TicketListResponse(tickets=tickets, total=len(tickets))


@router.get("/tickets/{ticket_id}", response_model=TicketDetailResponse)
async def get_ticket(ticket_id: str, request: Request):
    store = _get_store(request)
    ticket = await _run(request, store.get_ticket, ticket_id)
    if ticket is None:
        raise HTTPException(status_code=404, detail="Ticket not found.")
    logs = await _run(request, store.get_logs, ticket_id)
    return TicketDetailResponse(ticket=ticket, processing_logs=logs)


@router.post("/classify", response_model=ClassificationResult)
async def classify(body: ClassifyRequest, request: Request):
    """Classify a message without generating a response or storing anything."""
    orchestrator = _get_state(request, "orchestrator")
    return await _run(request, orchestrator.classify_only, body.message)


# ── Customers & analytics ────────────────────────────────────────────


@router.get("/customers/{email}/insights", response_model=CustomerInsights)
async def customer_insights(email: str, request: Request):
    orchestrator = _get_state(request, "orchestrator")
    return await _run(request, orchestrator.customer_insights, email)


@router.get("/analytics")
async def analytics(request: Request) -> dict[str, Any]:
    store = _get_store(request)
    return await _run(request, store.analytics)


# ── Knowledge base ───────────────────────────────────────────────────


@router.get("/knowledge")
async def list_knowledge(request: Request) -> dict[str, Any]:
    knowledge = _get_state(request, "knowledge")
    documents = await _run(request, knowledge.list)
    return {"documents": [d.model_dump() for d in documents], "total": len(documents)}


@router.post("/knowledge", status_code=201)
async def add_knowledge(body: KnowledgeCreateRequest, request: Request) -> dict[str, Any]:
    knowledge = _get_state(request, "knowledge")
    doc = KnowledgeDocument(**body.model_dump())
    doc_id = await _run(request, knowledge.store, doc)
    return {"id": doc_id, "message": "Knowledge document added successfully"}


@router.post("/knowledge/search")
async def search_knowledge(body: KnowledgeSearchRequest, request: Request) -> dict[str, Any]:
    knowledge = _get_state(request, "knowledge")
    results = await _run(
        request, knowledge.search, body.query, limit=body.limit, category=body.category,
    )
    return {"results": results, "total": len(results)}


@router.get("/knowledge/templates")
async def knowledge_templates() -> dict[str, Any]:
    return {
        "templates": [t.model_dump() for t in KNOWLEDGE_TEMPLATES],
        "total": len(KNOWLEDGE_TEMPLATES),
    }


@router.post("/knowledge/templates/install")
async def install_templates(request: Request) -> dict[str, Any]:
    knowledge = _get_state(request, "knowledge")
    installed = await _run(request, knowledge.install_templates)
    return {"installed": installed, "total": len(KNOWLEDGE_TEMPLATES)}


@router.delete("/knowledge/{doc_id}")
async def delete_knowledge(doc_id: str, request: Request) -> dict[str, Any]:
    knowledge = _get_state(request, "knowledge")
    if not await _run(request, knowledge.delete, doc_id):
        raise HTTPException(status_code=502, detail="Could not delete knowledge document.")
    return {"success": True}


# ── Tool surface ─────────────────────────────────────────────────────


@router.get("/mcp/tools")
async def list_tools(request: Request) -> dict[str, Any]:
    tools = _get_state(request, "tools")
    return {"tools": list_tool_specs(tools)}


@router.post("/mcp/tools")
async def invoke_tool(body: ToolCallRequest, request: Request) -> dict[str, Any]:
    """Dispatch a tool call; failures come back as ``success: false``."""
    tools = _get_state(request, "tools")
    return await asyncio.to_thread(call_tool, tools, body.name, body.arguments)
