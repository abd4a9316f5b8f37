"""Pydantic schemas for the FastAPI endpoints."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, field_validator

from support_orchestrator.models import (
    ClassificationResult,
    KnowledgeCategory,
    ProcessingLog,
    ProcessingStep,
    Ticket,
    check_knowledge_tags,
    check_knowledge_title,
)


class TicketCreateRequest(BaseModel):
    """Incoming support ticket."""

    message: str = Field(..., min_length=1, max_length=10_000, description="The customer's message")
    customer_email: str = Field(..., min_length=3, max_length=320, description="The customer's email")
    subject: str | None = Field(None, max_length=500)
    workspace_id: str | None = Field(None, max_length=100)


class TicketProcessResponse(BaseModel):
    """Result of running a ticket through the pipeline."""

    ticket: Ticket | None = None
    classification: ClassificationResult
    ai_response: str
    tone: str
    suggested_actions: list[str]
    customer_context: str
    knowledge_context: str
    processing_steps: list[ProcessingStep]


class TicketListResponse(BaseModel):
    tickets: list[Ticket]
    total: int


class TicketDetailResponse(BaseModel):
    ticket: Ticket
    processing_logs: list[ProcessingLog]


class ClassifyRequest(BaseModel):
    message: str = Field(..., min_length=1, max_length=10_000)


class KnowledgeCreateRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    content: str = Field(..., min_length=1)
    category: KnowledgeCategory = KnowledgeCategory.GENERAL
    tags: list[str] = Field(default_factory=list)

    title_header_safe = field_validator("title")(check_knowledge_title)
    tags_header_safe = field_validator("tags")(check_knowledge_tags)


class KnowledgeSearchRequest(BaseModel):
    query: str = Field(..., min_length=1, max_length=500)
    limit: int = Field(5, ge=1, le=50)
    category: KnowledgeCategory | None = None


class ToolCallRequest(BaseModel):
    name: str = Field(..., min_length=1)
    arguments: dict[str, Any] = Field(default_factory=dict)


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    service: str = "support-orchestrator"
    memory: bool = False
