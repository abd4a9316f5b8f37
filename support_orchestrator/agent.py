"""LangGraph-based ticket orchestrator for the support backend.

Architecture:
  A ticket runs through a **linear** LangGraph StateGraph whose nodes are
  generated from a declarative stage table.  Each stage carries a
  :class:`StagePolicy`:

    * ``DEGRADABLE`` — context enrichment and write-back.  Any exception
      is caught once, logged, and replaced by the stage's fallback value.
    * ``MANDATORY``  — classification, response generation and (when a
      store is attached) persistence.  Failure records an ``error`` step
      and aborts the request with :class:`StageFailedError`.

  Stage order (stateful extras in brackets):

    [create_ticket] → search_knowledge → retrieve_memory → classify_message
      → generate_response → store_memory → [persist_ticket] → END

  Every attempted stage appends exactly one :class:`ProcessingStep` to the
  ``steps`` channel (an ``operator.add`` reducer), so the returned log can
  be replayed in order.  In the stateful variant each step is also written
  to the processing log table as soon as it is recorded.

  Stateful vs stateless:
    One :class:`TicketOrchestrator` covers both.  Passing a
    :class:`TicketStore` adds the ticket lifecycle
    (pending → classified → processed), local history lookup and the
    customer-insight upsert; without one the pipeline only talks to the
    external services.
"""

from __future__ import annotations

import json
import logging
import operator
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Annotated, Any

from langgraph.graph import END, StateGraph
from pydantic import ValidationError
from typing_extensions import TypedDict

from support_orchestrator.errors import StageFailedError, TicketValidationError
from support_orchestrator.models import (
    ClassificationResult,
    CustomerInsights,
    GeneratedResponse,
    ProcessingLog,
    ProcessingStep,
    StepStatus,
    Ticket,
    TicketProcessingResult,
    TicketRequest,
    TicketStatus,
    is_valid_email,
    normalize_email,
    utcnow_iso,
)
from support_orchestrator.services.knowledge import KnowledgeClient
from support_orchestrator.services.letta_client import LettaClient
from support_orchestrator.services.llm import SupportLLM
from support_orchestrator.services.memory import NO_HISTORY, MemoryClient
from support_orchestrator.services.metrics import metrics
from support_orchestrator.services.store import TicketStore, create_store

logger = logging.getLogger(__name__)

KNOWLEDGE_QUERY_MAX_CHARS = 200
LOCAL_HISTORY_SHOWN = 5
NO_KNOWLEDGE_MATCH = "No knowledge base match"
HISTORY_UNAVAILABLE = "Unable to retrieve customer history."


# ── Stage policy ─────────────────────────────────────────────────────


class StagePolicy(str, Enum):
    DEGRADABLE = "degradable"
    MANDATORY = "mandatory"


@dataclass(frozen=True)
class StageResult:
    """Outcome of one stage: a step detail plus the state updates to merge."""

    detail: str
    updates: dict[str, Any] = field(default_factory=dict)
    degraded: bool = False


@dataclass(frozen=True)
class Stage:
    name: str
    policy: StagePolicy
    run: Callable[[PipelineState], StageResult]
    # Used in place of ``run``'s result when a degradable stage raises.
    fallback: StageResult | None = None


# ── State schema ─────────────────────────────────────────────────────


class PipelineState(TypedDict, total=False):
    """The state that flows through the graph.

    ``steps`` uses an ``operator.add`` reducer so each node appends its
    own step without rewriting the log.
    """

    request: TicketRequest
    ticket_id: str
    knowledge_context: str
    customer_context: str
    classification: ClassificationResult
    response: GeneratedResponse
    steps: Annotated[list[ProcessingStep], operator.add]


def build_knowledge_query(message: str, subject: str | None = None) -> str:
    return f"{subject or ''} {message}"[:KNOWLEDGE_QUERY_MAX_CHARS]


def format_local_history(tickets: list[Ticket], history_summary: str | None = None) -> str:
    """Render a customer's previous tickets as prompt context."""
    lines = []
    for t in tickets[:LOCAL_HISTORY_SHOWN]:
        # Tickets whose classification failed stay pending with no category.
        label = (
            f"{t.classification} issue ({t.urgency} urgency)"
            if t.classification
            else "unclassified issue"
        )
        lines.append(f'- {t.created_at}: {label} - "{t.subject or t.message[:50]}..."')
    context = f"Previous interactions ({len(tickets)} found):\n" + "\n".join(lines)
    if history_summary:
        context += f"\n\nProfile: {history_summary}"
    return context


def build_memory_summary(
    email: str,
    subject: str | None,
    classification: ClassificationResult,
    response: str,
    *,
    ticket_id: str | None = None,
    date: str | None = None,
) -> str:
    lines = [f"Customer: {email}"]
    if ticket_id:
        lines.append(f"Ticket ID: {ticket_id}")
    lines.append(f"Date: {date or utcnow_iso()}")
    lines.append(
        f"{subject or 'Support ticket'}: {classification.category.value} issue "
        f"({classification.urgency.value}). Resolution: {response[:200]}..."
    )
    return "\n".join(lines)


class TicketOrchestrator:
    """Sequences the knowledge, memory and LLM clients for one ticket.

    Clients are injected; see :func:`create_support_orchestrator` for the
    production wiring.  The compiled graph holds no per-request state, so
    one instance serves concurrent requests.
    """

    def __init__(
        self,
        classifier: SupportLLM,
        memory: MemoryClient,
        knowledge: KnowledgeClient,
        store: TicketStore | None = None,
    ):
        self._classifier = classifier
        self._memory = memory
        self._knowledge = knowledge
        self._store = store
        self._stages = self._build_stages()
        self._graph = self._compile()

    @property
    def store(self) -> TicketStore | None:
        return self._store

    @property
    def stateful(self) -> bool:
        return self._store is not None

    @property
    def stage_names(self) -> list[str]:
        return [stage.name for stage in self._stages]

    # ── Public API ────────────────────────────────────────────────────

    def process_ticket(
        self,
        message: str,
        customer_email: str,
        subject: str | None = None,
        workspace_id: str | None = None,
    ) -> TicketProcessingResult:
        """Run the full pipeline for one ticket.

        Raises :class:`TicketValidationError` before any external call when
        the input is invalid, and :class:`StageFailedError` when a mandatory
        stage fails.  Degradable failures only show up in the step log.
        """
        try:
            request = TicketRequest(
                message=message,
                customer_email=customer_email,
                subject=subject,
                workspace_id=workspace_id,
            )
        except ValidationError as exc:
            raise TicketValidationError(str(exc)) from exc

        ticket_id = str(uuid.uuid4())
        logger.info("[%s] Processing ticket from %s", ticket_id, request.customer_email)

        final = self._graph.invoke({"request": request, "ticket_id": ticket_id, "steps": []})

        response: GeneratedResponse = final["response"]
        return TicketProcessingResult(
            ticket=self._store.get_ticket(ticket_id) if self._store else None,
            classification=final["classification"],
            ai_response=response.response,
            tone=response.tone,
            suggested_actions=response.suggested_actions,
            customer_context=final["customer_context"],
            knowledge_context=final["knowledge_context"] or NO_KNOWLEDGE_MATCH,
            processing_steps=final["steps"],
        )

    def classify_only(self, message: str) -> ClassificationResult:
        """Classify *message* with best-effort knowledge context, nothing stored."""
        message = (message or "").strip()
        if not message:
            raise TicketValidationError("message must not be empty")

        try:
            context = self._knowledge.build_context(build_knowledge_query(message))
        except Exception as exc:
            logger.warning("Knowledge context unavailable for classification: %s", exc)
            context = ""
        return self._classifier.classify(message, context or None)

    def customer_insights(self, email: str) -> CustomerInsights:
        """Local profile and ticket history plus remote memory for *email*."""
        if not is_valid_email(email):
            raise TicketValidationError(f'"{email}" does not look like a valid email address')
        email = normalize_email(email)

        local = self._store.get_insight(email) if self._store else None
        history = self._store.tickets_for_customer(email) if self._store else []
        try:
            memories = self._memory.context_for(email)
        except Exception as exc:
            logger.warning("Memory lookup failed for %s: %s", email, exc)
            memories = HISTORY_UNAVAILABLE

        return CustomerInsights(
            email=email,
            local=local,
            memories=memories,
            ticket_history=history,
            interaction_count=local.interaction_count if local else len(history),
        )

    def processing_logs(self, ticket_id: str) -> list[ProcessingLog]:
        if self._store is None:
            return []
        return self._store.get_logs(ticket_id)

    # ── Stages ────────────────────────────────────────────────────────

    def _build_stages(self) -> list[Stage]:
        stages = [
            Stage(
                "search_knowledge",
                StagePolicy.DEGRADABLE,
                self._search_knowledge,
                fallback=StageResult(
                    "Knowledge search unavailable", {"knowledge_context": ""}, degraded=True,
                ),
            ),
            Stage(
                "retrieve_memory",
                StagePolicy.DEGRADABLE,
                self._retrieve_memory,
                fallback=StageResult(
                    "Memory unavailable (treated as new customer)",
                    {"customer_context": NO_HISTORY},
                    degraded=True,
                ),
            ),
            Stage("classify_message", StagePolicy.MANDATORY, self._classify),
            Stage("generate_response", StagePolicy.MANDATORY, self._generate_response),
            Stage(
                "store_memory",
                StagePolicy.DEGRADABLE,
                self._store_memory,
                fallback=StageResult(
                    "Memory storage skipped (memory service unavailable)", degraded=True,
                ),
            ),
        ]
        if self._store is not None:
            stages.insert(0, Stage("create_ticket", StagePolicy.MANDATORY, self._create_ticket))
            stages.append(Stage("persist_ticket", StagePolicy.MANDATORY, self._persist_ticket))
        return stages

    def _create_ticket(self, state: PipelineState) -> StageResult:
        request = state["request"]
        self._store.create_ticket(
            customer_email=request.customer_email,
            message=request.message,
            subject=request.subject,
            ticket_id=state["ticket_id"],
        )
        return StageResult(f"Ticket {state['ticket_id']} created")

    def _search_knowledge(self, state: PipelineState) -> StageResult:
        request = state["request"]
        context = self._knowledge.build_context(
            build_knowledge_query(request.message, request.subject)
        )
        if not context:
            return StageResult("No matching knowledge found", {"knowledge_context": ""}, degraded=True)
        return StageResult("Found relevant product documentation", {"knowledge_context": context})

    def _retrieve_memory(self, state: PipelineState) -> StageResult:
        email = state["request"].customer_email

        if self._store is not None:
            previous = self._store.tickets_for_customer(email, exclude_id=state["ticket_id"])
            if previous:
                insight = self._store.get_insight(email)
                context = format_local_history(
                    previous, insight.history_summary if insight else None
                )
                return StageResult(
                    f"Found {len(previous)} previous tickets", {"customer_context": context},
                )

        context = self._memory.context_for(email)
        if context == NO_HISTORY:
            return StageResult(
                "No previous history found (new customer)",
                {"customer_context": NO_HISTORY},
                degraded=True,
            )
        return StageResult("Found context from customer memory", {"customer_context": context})

    def _classify(self, state: PipelineState) -> StageResult:
        context = f"{state['customer_context']}\n\n{state['knowledge_context']}"
        classification = self._classifier.classify(state["request"].message, context)
        if self._store is not None:
            self._store.update_ticket(
                state["ticket_id"],
                classification=classification.category.value,
                urgency=classification.urgency.value,
                sentiment=classification.sentiment.value,
                reasoning=classification.reasoning,
                status=TicketStatus.CLASSIFIED,
            )
        return StageResult(
            f"Category: {classification.category.value}, "
            f"Urgency: {classification.urgency.value}, "
            f"Sentiment: {classification.sentiment.value}",
            {"classification": classification},
        )

    def _generate_response(self, state: PipelineState) -> StageResult:
        response = self._classifier.generate_response(
            state["request"].message,
            state["classification"],
            customer_history=state["customer_context"],
            knowledge=state["knowledge_context"] or None,
        )
        return StageResult(f"Tone: {response.tone}", {"response": response})

    def _store_memory(self, state: PipelineState) -> StageResult:
        request = state["request"]
        classification = state["classification"]
        summary = build_memory_summary(
            request.customer_email,
            request.subject,
            classification,
            state["response"].response,
            ticket_id=state["ticket_id"],
        )
        self._memory.store(
            summary,
            {
                "customer_email": request.customer_email,
                "classification": classification.category.value,
                "urgency": classification.urgency.value,
                "ticket_id": state["ticket_id"],
                "workspace_id": request.workspace_id,
            },
        )
        return StageResult("Customer interaction stored in memory")

    def _persist_ticket(self, state: PipelineState) -> StageResult:
        classification = state["classification"]
        response = state["response"]
        self._store.update_ticket(
            state["ticket_id"],
            ai_response=response.response,
            actions_taken=json.dumps(response.suggested_actions),
            status=TicketStatus.PROCESSED,
            processed_at=utcnow_iso(),
        )
        self._store.upsert_insight(
            state["request"].customer_email,
            history_summary=(
                f"Last interaction: {classification.category.value} ticket "
                f"({classification.urgency.value} urgency)"
            ),
        )
        return StageResult("Ticket processed and customer profile updated")

    # ── Node factory ──────────────────────────────────────────────────

    def _record(self, ticket_id: str, step: ProcessingStep) -> None:
        """Log, count and (stateful) persist one step."""
        outcome = "degraded" if step.degraded else step.status.value
        log = logger.warning if outcome != "completed" else logger.info
        log("[%s] %s: %s - %s", ticket_id, step.step, outcome, step.detail)
        metrics.record_stage(step.step, outcome)

        if self._store is not None:
            try:
                self._store.add_log(
                    ticket_id, step.step, step.status.value, step.detail, step.timestamp,
                )
            except Exception:
                logger.exception("[%s] Could not persist step %s", ticket_id, step.step)

    def _make_node(self, stage: Stage):
        """Wrap *stage* in a graph node that applies its policy."""

        def node(state: PipelineState) -> dict:
            ticket_id = state["ticket_id"]
            try:
                result = stage.run(state)
            except Exception as exc:
                if stage.policy is StagePolicy.MANDATORY:
                    step = ProcessingStep(
                        step=stage.name,
                        status=StepStatus.ERROR,
                        detail=f"{type(exc).__name__}: {exc}",
                    )
                    self._record(ticket_id, step)
                    raise StageFailedError(
                        stage.name, ticket_id=ticket_id, steps=[*state.get("steps", []), step],
                    ) from exc
                logger.warning("[%s] %s failed: %s", ticket_id, stage.name, exc)
                result = stage.fallback

            step = ProcessingStep(
                step=stage.name,
                status=StepStatus.COMPLETED,
                detail=result.detail,
                degraded=result.degraded,
            )
            self._record(ticket_id, step)
            return {**result.updates, "steps": [step]}

        return node

    # ── Graph assembly ────────────────────────────────────────────────

    def _compile(self):
        graph = StateGraph(PipelineState)
        for stage in self._stages:
            graph.add_node(stage.name, self._make_node(stage))

        graph.set_entry_point(self._stages[0].name)
        for current, following in zip(self._stages, self._stages[1:]):
            graph.add_edge(current.name, following.name)
        graph.add_edge(self._stages[-1].name, END)

        compiled = graph.compile()
        logger.debug(
            "Ticket pipeline compiled (%s): %s",
            "stateful" if self.stateful else "stateless",
            " → ".join(self.stage_names),
        )
        return compiled


def create_support_orchestrator(
    stateful: bool = True,
    database_url: str | None = None,
) -> TicketOrchestrator:
    """Build the orchestrator with production clients from config."""
    transport = LettaClient()
    if not transport.configured:
        logger.warning("LETTA_API_KEY not set: memory and knowledge stages will degrade")

    return TicketOrchestrator(
        classifier=SupportLLM(),
        memory=MemoryClient(transport),
        knowledge=KnowledgeClient(transport),
        store=create_store(database_url) if stateful else None,
    )
