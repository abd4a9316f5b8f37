"""Tests for the ticket pipeline.

Covers:
  - Stage order and the one-step-per-stage log
  - Degradable stages (knowledge, memory read, memory write-back)
  - Mandatory stages (classification, response generation)
  - Stateful lifecycle: ticket status, logs, local history, insights
"""

from __future__ import annotations

import json
from unittest.mock import MagicMock

import pytest

from support_orchestrator.agent import (
    HISTORY_UNAVAILABLE,
    NO_KNOWLEDGE_MATCH,
    TicketOrchestrator,
    build_knowledge_query,
    build_memory_summary,
    format_local_history,
)
from support_orchestrator.errors import (
    ClassificationError,
    MemoryStoreError,
    StageFailedError,
    TicketValidationError,
)
from support_orchestrator.models import (
    Category,
    StepStatus,
    Ticket,
    TicketStatus,
    Urgency,
)
from support_orchestrator.services.memory import NO_HISTORY

STATELESS_STAGES = [
    "search_knowledge",
    "retrieve_memory",
    "classify_message",
    "generate_response",
    "store_memory",
]
STATEFUL_STAGES = ["create_ticket", *STATELESS_STAGES, "persist_ticket"]


@pytest.fixture
def stateless(classifier, memory, knowledge):
    return TicketOrchestrator(classifier, memory, knowledge)


@pytest.fixture
def stateful(classifier, memory, knowledge, store):
    return TicketOrchestrator(classifier, memory, knowledge, store=store)


def _steps(result_or_error):
    return {s.step: s for s in result_or_error.processing_steps}


# ── Helpers ──────────────────────────────────────────────────────────


class TestHelpers:
    def test_knowledge_query_is_truncated(self):
        query = build_knowledge_query("x" * 500, subject="Refund")
        assert len(query) == 200
        assert query.startswith("Refund ")

    def test_knowledge_query_without_subject(self):
        assert build_knowledge_query("hello") == " hello"

    def test_memory_summary(self, billing_classification):
        summary = build_memory_summary(
            "a@b.com", None, billing_classification, "r" * 300,
            ticket_id="t-1", date="2026-01-01T00:00:00+00:00",
        )
        assert summary == (
            "Customer: a@b.com\nTicket ID: t-1\nDate: 2026-01-01T00:00:00+00:00\n"
            f"Support ticket: billing issue (high). Resolution: {'r' * 200}..."
        )

    def test_memory_summary_defaults_date_to_now(self, billing_classification):
        summary = build_memory_summary("a@b.com", "Refund", billing_classification, "ok")
        lines = summary.splitlines()
        assert lines[0] == "Customer: a@b.com"
        assert lines[1].startswith("Date: 20")
        assert lines[2].startswith("Refund: billing issue (high).")

    def test_local_history_marks_unclassified_tickets(self):
        tickets = [
            Ticket(
                id="t-2", customer_email="a@b.com", message="charged twice",
                classification="billing", urgency="high", created_at="2026-01-02",
            ),
            Ticket(id="t-1", customer_email="a@b.com", message="hello", created_at="2026-01-01"),
        ]
        context = format_local_history(tickets, history_summary="Prefers email")

        assert context.splitlines() == [
            "Previous interactions (2 found):",
            '- 2026-01-02: billing issue (high urgency) - "charged twice..."',
            '- 2026-01-01: unclassified issue - "hello..."',
            "",
            "Profile: Prefers email",
        ]
        assert "None" not in context


# ── Stateless pipeline ───────────────────────────────────────────────


class TestStatelessPipeline:
    def test_end_to_end_billing_example(self, stateless):
        result = stateless.process_ticket("I was charged twice this month", "jane@acme.com")

        assert result.classification.category is Category.BILLING
        assert result.classification.urgency in set(Urgency)
        assert result.ai_response
        assert isinstance(result.suggested_actions, list)
        assert result.ticket is None

    def test_one_step_per_stage_in_order(self, stateless):
        result = stateless.process_ticket("I was charged twice", "jane@acme.com")

        assert [s.step for s in result.processing_steps] == STATELESS_STAGES
        timestamps = [s.timestamp for s in result.processing_steps]
        assert timestamps == sorted(timestamps)
        assert all(s.status is StepStatus.COMPLETED for s in result.processing_steps)

    def test_empty_knowledge_is_reported_explicitly(self, stateless):
        result = stateless.process_ticket("hello", "a@b.com")

        assert result.knowledge_context == NO_KNOWLEDGE_MATCH
        step = _steps(result)["search_knowledge"]
        assert step.degraded
        assert step.detail == "No matching knowledge found"

    def test_knowledge_context_feeds_classification_and_response(
        self, stateless, knowledge, classifier,
    ):
        knowledge.build_context.return_value = "Relevant Product Knowledge:\n[Knowledge 1]\nRefunds"
        result = stateless.process_ticket("refund please", "a@b.com", subject="Refund")

        knowledge.build_context.assert_called_once_with("Refund refund please")
        assert result.knowledge_context.startswith("Relevant Product Knowledge")
        context = classifier.classify.call_args[0][1]
        assert context == f"{NO_HISTORY}\n\n{result.knowledge_context}"
        assert classifier.generate_response.call_args[1]["knowledge"] == result.knowledge_context

    def test_email_is_normalized_before_lookup(self, stateless, memory):
        stateless.process_ticket("hello", "  Jane@ACME.com ")
        memory.context_for.assert_called_once_with("jane@acme.com")

    def test_memory_write_back_summary_and_metadata(self, stateless, memory, generated_response):
        stateless.process_ticket("charged twice", "jane@acme.com", workspace_id="ws-1")

        text, metadata = memory.store.call_args[0]
        lines = text.splitlines()
        assert lines[0] == "Customer: jane@acme.com"
        assert lines[1] == f"Ticket ID: {metadata['ticket_id']}"
        assert lines[2].startswith("Date: ")
        assert lines[3].startswith("Support ticket: billing issue (high).")
        assert metadata["customer_email"] == "jane@acme.com"
        assert metadata["classification"] == "billing"
        assert metadata["urgency"] == "high"
        assert metadata["workspace_id"] == "ws-1"
        assert metadata["ticket_id"]

    def test_invalid_input_rejected_before_external_calls(self, stateless, knowledge, classifier):
        with pytest.raises(TicketValidationError):
            stateless.process_ticket("   ", "a@b.com")
        with pytest.raises(TicketValidationError):
            stateless.process_ticket("hello", "not-an-email")
        knowledge.build_context.assert_not_called()
        classifier.classify.assert_not_called()


# ── Degradation ──────────────────────────────────────────────────────


class TestDegradation:
    def test_failing_memory_yields_new_customer_sentinel(self, stateless, memory):
        memory.context_for.side_effect = MemoryStoreError("down", status_code=503)
        memory.store.side_effect = MemoryStoreError("down", status_code=503)

        result = stateless.process_ticket("My invoice is wrong", "a@b.com")

        assert result.customer_context == NO_HISTORY
        steps = _steps(result)
        assert steps["retrieve_memory"].status is StepStatus.COMPLETED
        assert steps["retrieve_memory"].degraded
        assert steps["store_memory"].degraded
        assert [s.step for s in result.processing_steps] == STATELESS_STAGES

    def test_failing_knowledge_search_degrades(self, stateless, knowledge):
        knowledge.build_context.side_effect = RuntimeError("connection refused")
        result = stateless.process_ticket("hello", "a@b.com")

        assert result.knowledge_context == NO_KNOWLEDGE_MATCH
        assert _steps(result)["search_knowledge"].detail == "Knowledge search unavailable"

    def test_same_failure_gives_same_detail(self, stateless, memory):
        memory.context_for.side_effect = MemoryStoreError("timeout")
        first = stateless.process_ticket("hello", "a@b.com")
        memory.context_for.side_effect = MemoryStoreError("different message")
        second = stateless.process_ticket("hello again", "a@b.com")

        assert (
            _steps(first)["retrieve_memory"].detail
            == _steps(second)["retrieve_memory"].detail
        )

    def test_new_customer_is_degraded_but_not_an_error(self, stateless):
        result = stateless.process_ticket("hello", "a@b.com")
        step = _steps(result)["retrieve_memory"]
        assert step.degraded
        assert step.detail == "No previous history found (new customer)"

    def test_remote_memory_context_is_used(self, stateless, memory):
        memory.context_for.return_value = "Previous customer interactions (1 found):\n[1] billing"
        result = stateless.process_ticket("hello", "a@b.com")
        assert result.customer_context.startswith("Previous customer interactions")
        assert not _steps(result)["retrieve_memory"].degraded


# ── Mandatory failures ───────────────────────────────────────────────


class TestMandatoryFailure:
    def test_classifier_failure_raises_with_step_log(self, stateless, classifier, memory):
        classifier.classify.side_effect = ClassificationError("category 'shipping' not allowed")

        with pytest.raises(StageFailedError) as exc_info:
            stateless.process_ticket("Where is my parcel?", "a@b.com")

        error = exc_info.value
        assert error.stage == "classify_message"
        assert isinstance(error.__cause__, ClassificationError)
        assert [s.step for s in error.steps] == STATELESS_STAGES[:3]
        assert error.steps[-1].status is StepStatus.ERROR
        classifier.generate_response.assert_not_called()
        memory.store.assert_not_called()

    def test_response_failure_raises(self, stateless, classifier):
        classifier.generate_response.side_effect = RuntimeError("overloaded")

        with pytest.raises(StageFailedError) as exc_info:
            stateless.process_ticket("hello", "a@b.com")
        assert exc_info.value.stage == "generate_response"


# ── Stateful pipeline ────────────────────────────────────────────────


class TestStatefulPipeline:
    def test_ticket_is_processed_and_logged(self, stateful, store, generated_response):
        result = stateful.process_ticket("I was charged twice", "Jane@Acme.com", subject="Billing")

        ticket = result.ticket
        assert ticket.status is TicketStatus.PROCESSED
        assert ticket.customer_email == "jane@acme.com"
        assert ticket.classification == "billing"
        assert ticket.ai_response == generated_response.response
        assert json.loads(ticket.actions_taken) == generated_response.suggested_actions
        assert ticket.processed_at

        assert [s.step for s in result.processing_steps] == STATEFUL_STAGES
        assert [log.step for log in stateful.processing_logs(ticket.id)] == STATEFUL_STAGES

    def test_insight_is_upserted(self, stateful, store):
        stateful.process_ticket("charged twice", "jane@acme.com")
        stateful.process_ticket("charged again", "jane@acme.com")

        insight = store.get_insight("jane@acme.com")
        assert insight.interaction_count == 2
        assert insight.history_summary == "Last interaction: billing ticket (high urgency)"

    def test_local_history_takes_precedence_over_remote(self, stateful, memory):
        stateful.process_ticket("first ticket", "jane@acme.com", subject="Old invoice")
        memory.context_for.reset_mock()

        result = stateful.process_ticket("second ticket", "jane@acme.com")

        assert result.customer_context.startswith("Previous interactions (1 found):")
        assert '"Old invoice..."' in result.customer_context
        assert "Profile: Last interaction: billing ticket (high urgency)" in result.customer_context
        memory.context_for.assert_not_called()
        assert _steps(result)["retrieve_memory"].detail == "Found 1 previous tickets"

    def test_classifier_failure_leaves_ticket_pending(self, stateful, store, classifier):
        classifier.classify.side_effect = ClassificationError("bad output")

        with pytest.raises(StageFailedError) as exc_info:
            stateful.process_ticket("My invoice is wrong", "a@b.com")

        ticket_id = exc_info.value.ticket_id
        ticket = store.get_ticket(ticket_id)
        assert ticket.status is TicketStatus.PENDING
        assert ticket.ai_response is None
        logs = store.get_logs(ticket_id)
        assert logs[-1].step == "classify_message"
        assert logs[-1].status == "error"

    def test_response_failure_leaves_ticket_classified(self, stateful, store, classifier):
        classifier.generate_response.side_effect = RuntimeError("overloaded")

        with pytest.raises(StageFailedError) as exc_info:
            stateful.process_ticket("hello", "a@b.com")

        ticket = store.get_ticket(exc_info.value.ticket_id)
        assert ticket.status is TicketStatus.CLASSIFIED
        assert store.get_insight("a@b.com") is None


# ── Other operations ─────────────────────────────────────────────────


class TestClassifyOnly:
    def test_uses_knowledge_context_when_available(self, stateless, knowledge, classifier):
        knowledge.build_context.return_value = "Relevant Product Knowledge:\n..."
        stateless.classify_only("How much is Pro?")
        classifier.classify.assert_called_once_with(
            "How much is Pro?", "Relevant Product Knowledge:\n...",
        )

    def test_knowledge_failure_is_tolerated(self, stateless, knowledge, classifier):
        knowledge.build_context.side_effect = MemoryStoreError("down")
        result = stateless.classify_only("hello")
        assert result.category is Category.BILLING
        classifier.classify.assert_called_once_with("hello", None)

    def test_empty_message_rejected(self, stateless):
        with pytest.raises(TicketValidationError):
            stateless.classify_only("  ")


class TestCustomerInsights:
    def test_combines_local_and_remote(self, stateful, memory):
        stateful.process_ticket("charged twice", "jane@acme.com")
        memory.context_for.return_value = "Previous customer interactions (1 found):\n[1] x"

        insights = stateful.customer_insights("JANE@acme.com")
        assert insights.email == "jane@acme.com"
        assert insights.local.interaction_count == 1
        assert len(insights.ticket_history) == 1
        assert insights.memories.startswith("Previous customer interactions")

    def test_remote_failure_degrades(self, stateless, memory):
        memory.context_for.side_effect = MemoryStoreError("down")
        insights = stateless.customer_insights("a@b.com")
        assert insights.memories == HISTORY_UNAVAILABLE
        assert insights.local is None
        assert insights.ticket_history == []

    def test_invalid_email_rejected(self, stateless):
        with pytest.raises(TicketValidationError):
            stateless.customer_insights("nope")


def test_stateless_has_no_processing_logs(stateless):
    assert stateless.processing_logs("anything") == []


def test_stage_names_reflect_variant(stateless, stateful):
    assert stateless.stage_names == STATELESS_STAGES
    assert stateful.stage_names == STATEFUL_STAGES
    assert not stateless.stateful
    assert stateful.stateful


def test_degraded_write_back_does_not_change_result(classifier, knowledge):
    failing_memory = MagicMock()
    failing_memory.context_for.return_value = NO_HISTORY
    failing_memory.store.side_effect = RuntimeError("boom")
    result = TicketOrchestrator(classifier, failing_memory, knowledge).process_ticket("hi", "a@b.com")
    assert result.ai_response == classifier.generate_response.return_value.response
