"""Customer memory: interaction summaries kept in Letta archival memory.

Memories are free text.  Metadata is folded into a ``[key: value | ...]``
header line because archival passages carry no structured fields.
Lookups are by semantic search on ``customer <email>``, not by a strict
customer key, so emails are normalised before they are written or read.
"""

from __future__ import annotations

import logging
from typing import Any

from support_orchestrator.errors import MemoryStoreError
from support_orchestrator.models import normalize_email
from support_orchestrator.services.letta_client import LettaClient

logger = logging.getLogger(__name__)

NO_HISTORY = "This appears to be a new customer with no previous interactions."


def format_metadata(metadata: dict[str, Any] | None) -> str:
    """Render metadata as the ``[k: v | k: v]`` header (``None`` values skipped)."""
    if not metadata:
        return ""
    pairs = [f"{key}: {value}" for key, value in metadata.items() if value is not None]
    if not pairs:
        return ""
    return "[" + " | ".join(pairs) + "]"


class MemoryClient:
    """Store and retrieve customer interaction summaries.

    "No results" is a normal outcome (empty list / :data:`NO_HISTORY`);
    transport and auth failures raise :class:`MemoryStoreError`.
    """

    def __init__(self, transport: LettaClient):
        self._transport = transport

    def store(self, text: str, metadata: dict[str, Any] | None = None) -> str | None:
        """Store *text* with optional metadata.  Returns the passage id, if any."""
        header = format_metadata(metadata)
        content = f"{header}\n{text}" if header else text
        passage = self._transport.insert_passage(content)
        passage_id = passage.get("id")
        logger.info("Stored memory passage %s", passage_id or "unknown")
        return passage_id

    def search(self, query: str, limit: int = 5) -> list[str]:
        """Return up to *limit* memory snippets matching *query*."""
        results = self._transport.search_passages(query, limit=limit)
        return [r["content"] for r in results if r.get("content")]

    def context_for(self, email: str) -> str:
        """Summarise previous interactions for *email* for use in a prompt."""
        memories = self.search(f"customer {normalize_email(email)}", limit=5)
        if not memories:
            return NO_HISTORY
        numbered = "\n\n".join(f"[{i}] {m}" for i, m in enumerate(memories, start=1))
        return f"Previous customer interactions ({len(memories)} found):\n{numbered}"

    def delete(self, memory_id: str) -> bool:
        try:
            self._transport.delete_passage(memory_id)
        except MemoryStoreError as exc:
            logger.error("Failed to delete memory %s: %s", memory_id, exc)
            return False
        return True
