"""Exception hierarchy shared by the clients, the store and the pipeline."""

from __future__ import annotations

from typing import Any


class SupportOrchestratorError(Exception):
    """Base class for every error raised by this package."""


class TicketValidationError(SupportOrchestratorError, ValueError):
    """Raised when a ticket request is rejected before any external call."""


class ClassificationError(SupportOrchestratorError):
    """Raised when the model returns a classification we cannot trust.

    Covers unparseable JSON as well as values outside the closed
    category / urgency / sentiment enums.  These are never coerced to a
    default because that would corrupt the analytics aggregation.
    """


class LLMError(SupportOrchestratorError):
    """Raised when an LLM call fails after retries or returns an unusable reply."""


class MemoryStoreError(SupportOrchestratorError):
    """Raised when the Letta memory API fails (transport, auth, 5xx)."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class TicketStateError(SupportOrchestratorError):
    """Raised on a backward status transition or a write to a processed ticket."""


class TicketNotFoundError(SupportOrchestratorError, LookupError):
    """Raised when a ticket id does not exist in the store."""


class StageFailedError(SupportOrchestratorError):
    """A mandatory pipeline stage failed and the request was aborted.

    ``steps`` holds the step log up to and including the failed stage so
    the caller can see exactly what was attempted.
    """

    def __init__(
        self,
        stage: str,
        *,
        ticket_id: str,
        steps: list[Any] | None = None,
    ):
        self.stage = stage
        self.ticket_id = ticket_id
        self.steps = list(steps or [])
        super().__init__(f"Mandatory stage '{stage}' failed for ticket {ticket_id}")
