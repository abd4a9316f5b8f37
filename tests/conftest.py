"""Shared test fixtures for the support orchestrator test suite."""

from __future__ import annotations

import os
from unittest.mock import MagicMock

import pytest


def pytest_configure(config):
    """Set test environment variables BEFORE collection starts.

    This runs before any imports, so config.py won't fail on module load.
    """
    os.environ.setdefault("ANTHROPIC_API_KEY", "test-anthropic-key-123")
    os.environ.setdefault("LETTA_API_KEY", "test-letta-key-456")
    os.environ.setdefault("LETTA_AGENT_ID", "agent-test")
    os.environ["DATABASE_URL"] = "sqlite://"
    os.environ["METRICS_ENABLED"] = "false"


@pytest.fixture
def mock_http_response():
    """Factory fixture for creating mock Letta API responses."""

    def _make(data, status_code: int = 200):
        mock = MagicMock()
        mock.status_code = status_code
        mock.json.return_value = data
        mock.text = str(data)
        mock.content = b"" if data is None else str(data).encode()
        return mock

    return _make


@pytest.fixture
def store(tmp_path):
    """A TicketStore on a fresh SQLite file."""
    from support_orchestrator.services.store import create_store

    ticket_store = create_store(f"sqlite:///{tmp_path / 'support.db'}")
    yield ticket_store
    ticket_store.engine.dispose()


@pytest.fixture
def billing_classification():
    from support_orchestrator.models import ClassificationResult

    return ClassificationResult(
        category="billing",
        urgency="high",
        sentiment="frustrated",
        reasoning="Customer reports a duplicate charge.",
        key_entities=["invoice", "charge"],
    )


@pytest.fixture
def generated_response():
    from support_orchestrator.models import GeneratedResponse

    return GeneratedResponse(
        response="Sorry about the double charge, we have started a refund.",
        tone="empathetic",
        suggested_actions=["escalate to billing team"],
    )


@pytest.fixture
def classifier(billing_classification, generated_response):
    """A classifier double that always succeeds."""
    mock = MagicMock()
    mock.classify.return_value = billing_classification
    mock.generate_response.return_value = generated_response
    return mock


@pytest.fixture
def memory():
    from support_orchestrator.services.memory import NO_HISTORY

    mock = MagicMock()
    mock.context_for.return_value = NO_HISTORY
    mock.store.return_value = "mem-1"
    return mock


@pytest.fixture
def knowledge():
    mock = MagicMock()
    mock.build_context.return_value = ""
    return mock
