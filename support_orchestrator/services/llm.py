"""LLM client for ticket classification and response generation.

Two call profiles share one retry loop:

* **classification** — low temperature, short output, validated against
  the closed category / urgency / sentiment enums.
* **response generation** — higher temperature for a natural reply plus
  tone and suggested internal actions.

Both calls are mandatory pipeline stages with no fallback, so transient
failures (timeouts, connection errors, 429, 5xx) are retried with
exponential backoff.  Client errors and unusable output are not retried.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any

from langchain_anthropic import ChatAnthropic
from langchain_core.messages import HumanMessage, SystemMessage
from pydantic import ValidationError

from support_orchestrator.config import (
    ANTHROPIC_API_KEY,
    CLASSIFIER_MODEL_NAME,
    RESPONSE_MODEL_NAME,
)
from support_orchestrator.errors import ClassificationError, LLMError
from support_orchestrator.models import ClassificationResult, GeneratedResponse
from support_orchestrator.prompts import get_classify_prompt, get_response_prompt
from support_orchestrator.services.metrics import metrics

logger = logging.getLogger(__name__)

# ── Retry configuration ─────────────────────────────────────────────
MAX_RETRIES = 3
INITIAL_BACKOFF_SECONDS = 1.0

CLASSIFY_TEMPERATURE = 0.2
RESPONSE_TEMPERATURE = 0.7


# ── LLM builders ────────────────────────────────────────────────────


def _build_classifier_llm() -> ChatAnthropic:
    """Deterministic, short-output model for classification."""
    return ChatAnthropic(
        model=CLASSIFIER_MODEL_NAME,
        api_key=ANTHROPIC_API_KEY,
        temperature=CLASSIFY_TEMPERATURE,
        max_tokens=400,
        max_retries=0,  # retries are handled by SupportLLM._invoke
    )


def _build_responder_llm() -> ChatAnthropic:
    """More creative model for the customer-facing reply."""
    return ChatAnthropic(
        model=RESPONSE_MODEL_NAME,
        api_key=ANTHROPIC_API_KEY,
        temperature=RESPONSE_TEMPERATURE,
        max_tokens=1024,
        max_retries=0,
    )


# ── Output parsing ──────────────────────────────────────────────────


def _message_text(content: Any) -> str:
    """Flatten an AIMessage content (str or list of content blocks) to text."""
    if isinstance(content, str):
        return content
    parts = []
    for block in content or []:
        if isinstance(block, dict):
            parts.append(block.get("text", ""))
        else:
            parts.append(str(block))
    return "".join(parts)


def extract_json_object(text: str) -> dict[str, Any]:
    """Parse the first JSON object in *text*, tolerating markdown fences."""
    start, end = text.find("{"), text.rfind("}")
    if start == -1 or end <= start:
        raise ValueError("no JSON object in model output")
    data = json.loads(text[start : end + 1])
    if not isinstance(data, dict):
        raise ValueError("model output is not a JSON object")
    return data


def _is_retryable(exc: Exception) -> bool:
    status = getattr(exc, "status_code", None)
    if status is None:
        return True
    return status == 429 or status >= 500


class SupportLLM:
    """Classifier Client: classification and response generation."""

    def __init__(self, classifier_llm=None, responder_llm=None) -> None:
        self._classifier_llm = classifier_llm or _build_classifier_llm()
        self._responder_llm = responder_llm or _build_responder_llm()

    # ── Public API ────────────────────────────────────────────────────

    def classify(self, message: str, context: str | None = None) -> ClassificationResult:
        """Classify *message*; *context* is free text (history, knowledge).

        Raises :class:`ClassificationError` when the reply is not JSON or
        carries a value outside the closed enums.
        """
        text = self._invoke(
            self._classifier_llm,
            "classify",
            [SystemMessage(content=get_classify_prompt(context)), HumanMessage(content=message)],
        )
        try:
            result = ClassificationResult.model_validate(extract_json_object(text))
        except (ValueError, ValidationError) as exc:
            # ValidationError is a ValueError subclass; kept explicit for readers.
            logger.error("Rejected classification output: %r", text[:300])
            raise ClassificationError(f"Invalid classification from model: {exc}") from exc

        logger.debug(
            "Classified as %s/%s/%s",
            result.category.value, result.urgency.value, result.sentiment.value,
        )
        return result

    def generate_response(
        self,
        message: str,
        classification: ClassificationResult,
        customer_history: str | None = None,
        knowledge: str | None = None,
    ) -> GeneratedResponse:
        """Draft the customer-facing reply, its tone and internal actions."""
        system = get_response_prompt(classification, customer_history, knowledge)
        text = self._invoke(
            self._responder_llm,
            "generate_response",
            [SystemMessage(content=system), HumanMessage(content=message)],
        )
        try:
            data = extract_json_object(text)
            if "suggested_actions" not in data and "suggestedActions" in data:
                data["suggested_actions"] = data.pop("suggestedActions")
            return GeneratedResponse.model_validate(data)
        except (ValueError, ValidationError) as exc:
            logger.error("Rejected response output: %r", text[:300])
            raise LLMError(f"Invalid response from model: {exc}") from exc

    # ── Internal ──────────────────────────────────────────────────────

    def _invoke(self, llm, operation: str, messages: list) -> str:
        """Invoke *llm* with exponential-backoff retries; returns reply text."""
        last_error: Exception | None = None
        for attempt in range(1, MAX_RETRIES + 1):
            t0 = time.perf_counter()
            try:
                response = llm.invoke(messages)
                elapsed = (time.perf_counter() - t0) * 1000
                metrics.record_success("anthropic", operation, latency_ms=elapsed)
                return _message_text(response.content)
            except Exception as exc:
                elapsed = (time.perf_counter() - t0) * 1000
                metrics.record_failure(
                    "anthropic", operation,
                    error_type=type(exc).__name__, latency_ms=elapsed,
                )
                if not _is_retryable(exc):
                    raise LLMError(f"{operation} failed: {exc}") from exc
                last_error = exc

            if attempt < MAX_RETRIES:
                backoff = INITIAL_BACKOFF_SECONDS * (2 ** (attempt - 1))
                logger.warning(
                    "LLM %s attempt %d/%d failed (%s). Retrying in %.1fs…",
                    operation, attempt, MAX_RETRIES, type(last_error).__name__, backoff,
                )
                time.sleep(backoff)

        raise LLMError(
            f"{operation} failed after {MAX_RETRIES} attempts: {last_error}"
        ) from last_error
