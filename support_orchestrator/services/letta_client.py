"""HTTP client for the Letta archival-memory API.

Letta API docs: https://docs.letta.com/guides/agents/archival-memory/
Every request carries the API key as a Bearer token.  Archival memory is
scoped to an agent; the agent id is either pinned via ``LETTA_AGENT_ID``
or resolved once from ``GET /v1/agents`` and reused.

Both the customer-memory client and the knowledge-base client talk to
Letta through one instance of this transport.
"""

from __future__ import annotations

import logging
import time
from typing import Any
from urllib.parse import quote

import httpx

from support_orchestrator.config import LETTA_AGENT_ID, LETTA_API_KEY, LETTA_BASE_URL
from support_orchestrator.errors import MemoryStoreError
from support_orchestrator.services.metrics import metrics

logger = logging.getLogger(__name__)

# ── Retry configuration ─────────────────────────────────────────────
MAX_RETRIES = 2
INITIAL_BACKOFF_SECONDS = 0.5
REQUEST_TIMEOUT_SECONDS = 10.0


class LettaClient:
    """Thin wrapper around the Letta REST API with bounded retries.

    Transport errors (timeouts, connect and read failures) and 5xx
    responses are retried with exponential backoff; 4xx responses and
    undecodable bodies fail immediately.  Every failure surfaces as
    :class:`MemoryStoreError`.
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        *,
        agent_id: str | None = None,
    ):
        self._api_key = LETTA_API_KEY if api_key is None else api_key
        self._base_url = base_url or LETTA_BASE_URL
        self._client = httpx.Client(
            base_url=self._base_url,
            headers={
                "Authorization": f"Bearer {self._api_key}",
                "Content-Type": "application/json",
            },
            timeout=REQUEST_TIMEOUT_SECONDS,
        )
        self._agent_id: str | None = agent_id or LETTA_AGENT_ID

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    # ── Internal helpers ─────────────────────────────────────────────

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
        operation: str | None = None,
    ) -> Any:
        """Execute an HTTP request with exponential-backoff retries."""
        if not self.configured:
            raise MemoryStoreError("Letta is not configured (LETTA_API_KEY missing)")

        operation = operation or f"{method} {path}"
        last_error: Exception | None = None
        t0 = time.perf_counter()
        for attempt in range(1, MAX_RETRIES + 1):
            try:
                response = self._client.request(method, path, params=params, json=json_body)
                if response.status_code >= 400:
                    raise MemoryStoreError(
                        f"Letta API error {response.status_code}: {response.text}",
                        status_code=response.status_code,
                    )
                payload = None
                if response.content:
                    try:
                        payload = response.json()
                    except ValueError as exc:
                        raise MemoryStoreError(
                            f"Letta API returned a non-JSON body for {operation}",
                            status_code=response.status_code,
                        ) from exc
                metrics.record_success(
                    "letta", operation, latency_ms=(time.perf_counter() - t0) * 1000,
                )
                return payload

            except httpx.TransportError as exc:
                last_error = exc
                logger.warning(
                    "Letta API attempt %d/%d failed (%s)",
                    attempt, MAX_RETRIES, type(exc).__name__,
                )
            except MemoryStoreError as exc:
                if exc.status_code and exc.status_code >= 500:
                    last_error = exc
                    logger.warning(
                        "Letta API server error on attempt %d/%d", attempt, MAX_RETRIES,
                    )
                else:
                    metrics.record_failure(
                        "letta", operation, error_type=f"http_{exc.status_code}",
                        latency_ms=(time.perf_counter() - t0) * 1000,
                    )
                    raise

            if attempt < MAX_RETRIES:
                time.sleep(INITIAL_BACKOFF_SECONDS * (2 ** (attempt - 1)))

        metrics.record_failure(
            "letta", operation, error_type=type(last_error).__name__,
            latency_ms=(time.perf_counter() - t0) * 1000,
        )
        raise MemoryStoreError(
            f"Letta API request failed after {MAX_RETRIES} attempts: {last_error}",
            status_code=getattr(last_error, "status_code", None),
        )

    # ── Agent resolution ─────────────────────────────────────────────

    def get_agent_id(self) -> str:
        """Return the archival-memory agent id (resolved once, then cached)."""
        if self._agent_id is None:
            agents = self._request("GET", "/v1/agents", operation="list_agents")
            if not isinstance(agents, list) or not agents or not agents[0].get("id"):
                raise MemoryStoreError("No Letta agents available")
            self._agent_id = str(agents[0]["id"])
            logger.info("Using Letta agent %s", self._agent_id)
        return self._agent_id

    def _memory_path(self, suffix: str = "") -> str:
        return f"/v1/agents/{quote(self.get_agent_id(), safe='')}/archival-memory{suffix}"

    # ── Archival memory ──────────────────────────────────────────────

    def insert_passage(self, text: str) -> dict[str, Any]:
        """Store *text* as one archival passage; returns the created passage."""
        result = self._request(
            "POST", self._memory_path(), json_body={"text": text}, operation="archival_insert",
        )
        # The API answers with a list holding the created passage.
        if isinstance(result, list):
            return result[0] if result else {}
        return result or {}

    def search_passages(self, query: str, limit: int = 5) -> list[dict[str, Any]]:
        """Semantic search over archival memory.  No match is an empty list."""
        data = self._request(
            "GET",
            self._memory_path("/search"),
            params={"query": query, "limit": limit},
            operation="archival_search",
        )
        return list((data or {}).get("results") or [])

    def list_passages(self, limit: int = 100) -> list[dict[str, Any]]:
        data = self._request(
            "GET", self._memory_path(), params={"limit": limit}, operation="archival_list",
        )
        return data if isinstance(data, list) else []

    def delete_passage(self, passage_id: str) -> None:
        self._request(
            "DELETE",
            self._memory_path(f"/{quote(passage_id, safe='')}"),
            operation="archival_delete",
        )

    def check_health(self) -> bool:
        """Return ``True`` when Letta is configured and an agent resolves."""
        if not self.configured:
            logger.warning("Letta not configured - API key missing")
            return False
        try:
            self.get_agent_id()
            return True
        except MemoryStoreError:
            logger.warning("Letta health check failed")
            return False

    def close(self) -> None:
        self._client.close()
