"""Domain models for tickets, classifications, knowledge and customer insights.

All enums are closed: a value outside them fails pydantic validation,
which is how out-of-enum model output is surfaced instead of coerced.
"""

from __future__ import annotations

import re
from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator

# RFC 5322-ish pattern, same shape the booking tools used for invitees.
EMAIL_RE = re.compile(
    r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+"
    r"@[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?"
    r"(?:\.[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)+$"
)


def utcnow_iso() -> str:
    """Current UTC time as an ISO 8601 string (the storage format)."""
    return datetime.now(UTC).isoformat()


def normalize_email(email: str) -> str:
    """Trim and case-fold an email so every lookup keys on one spelling."""
    return (email or "").strip().casefold()


def is_valid_email(email: str) -> bool:
    return bool(email) and bool(EMAIL_RE.match(email.strip()))


# ── Classification ──────────────────────────────────────────────────


class Category(str, Enum):
    BILLING = "billing"
    TECHNICAL = "technical"
    ACCOUNT = "account"
    FEATURE_REQUEST = "feature_request"
    COMPLAINT = "complaint"
    GENERAL = "general"


class Urgency(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class Sentiment(str, Enum):
    POSITIVE = "positive"
    NEUTRAL = "neutral"
    NEGATIVE = "negative"
    FRUSTRATED = "frustrated"


class ClassificationResult(BaseModel):
    """Structured classification produced once per ticket."""

    model_config = ConfigDict(frozen=True)

    category: Category
    urgency: Urgency
    sentiment: Sentiment
    reasoning: str = ""
    key_entities: list[str] = Field(default_factory=list)


class GeneratedResponse(BaseModel):
    """Customer-facing reply plus internal follow-up actions."""

    response: str = Field(..., min_length=1)
    tone: str = "professional"
    suggested_actions: list[str] = Field(default_factory=list)


# ── Tickets & processing steps ──────────────────────────────────────


class TicketStatus(str, Enum):
    """Lifecycle: pending → classified → processed (never backwards)."""

    PENDING = "pending"
    CLASSIFIED = "classified"
    PROCESSED = "processed"

    @property
    def rank(self) -> int:
        return _STATUS_ORDER.index(self)


_STATUS_ORDER = [TicketStatus.PENDING, TicketStatus.CLASSIFIED, TicketStatus.PROCESSED]


class Ticket(BaseModel):
    id: str
    customer_email: str
    subject: str | None = None
    message: str
    classification: str | None = None
    urgency: str | None = None
    sentiment: str | None = None
    reasoning: str | None = None
    ai_response: str | None = None
    actions_taken: str | None = None
    status: TicketStatus = TicketStatus.PENDING
    created_at: str
    processed_at: str | None = None


class StepStatus(str, Enum):
    COMPLETED = "completed"
    ERROR = "error"


class ProcessingStep(BaseModel):
    """One append-only audit entry per attempted pipeline stage."""

    step: str
    status: StepStatus
    detail: str | None = None
    degraded: bool = False
    timestamp: str = Field(default_factory=utcnow_iso)


class ProcessingLog(BaseModel):
    """A processing step as persisted by the store."""

    id: int
    ticket_id: str
    step: str
    status: str
    details: str | None = None
    timestamp: str


class TicketRequest(BaseModel):
    """Validated input to the pipeline."""

    message: str
    customer_email: str
    subject: str | None = None
    workspace_id: str | None = None

    @field_validator("message")
    @classmethod
    def _message_not_blank(cls, value: str) -> str:
        cleaned = (value or "").strip()
        if not cleaned:
            raise ValueError("message must not be empty")
        return cleaned

    @field_validator("customer_email")
    @classmethod
    def _email_valid(cls, value: str) -> str:
        if not is_valid_email(value):
            raise ValueError(f'"{value}" does not look like a valid email address')
        return normalize_email(value)

    @field_validator("subject", "workspace_id")
    @classmethod
    def _blank_to_none(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip() or None


class TicketProcessingResult(BaseModel):
    ticket: Ticket | None = None
    classification: ClassificationResult
    ai_response: str
    tone: str
    suggested_actions: list[str] = Field(default_factory=list)
    customer_context: str
    knowledge_context: str
    processing_steps: list[ProcessingStep] = Field(default_factory=list)


# ── Knowledge ───────────────────────────────────────────────────────


class KnowledgeCategory(str, Enum):
    FAQ = "faq"
    PRICING = "pricing"
    FEATURES = "features"
    POLICIES = "policies"
    TROUBLESHOOTING = "troubleshooting"
    GENERAL = "general"


# Characters that would break the ``[KNOWLEDGE_BASE | ... ]`` header.
TITLE_FORBIDDEN = "|]"
TAG_FORBIDDEN = ",]"


def check_knowledge_title(title: str) -> str:
    cleaned = (title or "").strip()
    if not cleaned:
        raise ValueError("title must not be empty")
    if any(ch in cleaned for ch in TITLE_FORBIDDEN):
        raise ValueError(f"title must not contain any of {' '.join(TITLE_FORBIDDEN)}")
    return cleaned


def check_knowledge_tags(tags: list[str]) -> list[str]:
    cleaned = [t.strip() for t in tags if t and t.strip()]
    for tag in cleaned:
        if any(ch in tag for ch in TAG_FORBIDDEN):
            raise ValueError(f'tag "{tag}" must not contain any of {" ".join(TAG_FORBIDDEN)}')
    return cleaned


class KnowledgeDocument(BaseModel):
    title: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1)
    category: KnowledgeCategory = KnowledgeCategory.GENERAL
    tags: list[str] = Field(default_factory=list)
    id: str | None = None
    created_at: str | None = None

    @field_validator("title")
    @classmethod
    def _title_header_safe(cls, value: str) -> str:
        return check_knowledge_title(value)

    @field_validator("tags")
    @classmethod
    def _tags_header_safe(cls, value: list[str]) -> list[str]:
        return check_knowledge_tags(value)


# ── Customers ───────────────────────────────────────────────────────


class CustomerInsight(BaseModel):
    email: str
    preferences: str | None = None
    history_summary: str | None = None
    interaction_count: int = 0
    last_updated: str


class CustomerInsights(BaseModel):
    """Everything known about a customer, local and remote."""

    email: str
    local: CustomerInsight | None = None
    memories: str
    ticket_history: list[Ticket] = Field(default_factory=list)
    interaction_count: int = 0
