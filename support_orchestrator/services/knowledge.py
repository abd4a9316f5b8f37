"""Product knowledge base kept in Letta archival memory.

Letta passages have no structured metadata, so each document is stored
as free text behind a header line that acts as its schema::

    [KNOWLEDGE_BASE | category: pricing | title: Pricing Plans | tags: plans, cost]

    <document content>

The ``KNOWLEDGE_BASE`` marker keeps documents apart from customer
memories that share the same archival store.  Parsing is lenient: a
missing or malformed header yields category ``general`` and title
``Untitled`` with the raw text as content.  :class:`KnowledgeDocument`
rejects titles containing ``|`` or ``]`` and tags containing ``,`` or
``]``, so every stored header parses back unchanged.
"""

from __future__ import annotations

import logging
import re
from typing import Any

from support_orchestrator.errors import MemoryStoreError
from support_orchestrator.knowledge_templates import KNOWLEDGE_TEMPLATES
from support_orchestrator.models import KnowledgeCategory, KnowledgeDocument
from support_orchestrator.services.letta_client import LettaClient

logger = logging.getLogger(__name__)

KNOWLEDGE_MARKER = "KNOWLEDGE_BASE"
UNTITLED = "Untitled"

_HEADER_RE = re.compile(
    r"\[KNOWLEDGE_BASE \| category: (\w+) \| title: ([^|\]]+?)\s*"
    r"(?:\| tags: ([^\]]*))?\]"
)


def format_document(doc: KnowledgeDocument) -> str:
    """Render *doc* as header + blank line + content."""
    header = f"[{KNOWLEDGE_MARKER} | category: {doc.category.value} | title: {doc.title}"
    if doc.tags:
        header += f" | tags: {', '.join(doc.tags)}"
    return f"{header}]\n\n{doc.content}"


def parse_document(
    text: str,
    *,
    doc_id: str | None = None,
    created_at: str | None = None,
) -> KnowledgeDocument:
    """Rebuild a :class:`KnowledgeDocument` from stored passage text."""
    match = _HEADER_RE.match(text.lstrip())
    if not match:
        return KnowledgeDocument(
            id=doc_id,
            title=UNTITLED,
            content=text or UNTITLED,
            category=KnowledgeCategory.GENERAL,
            created_at=created_at,
        )

    raw_category, title, raw_tags = match.groups()
    try:
        category = KnowledgeCategory(raw_category)
    except ValueError:
        category = KnowledgeCategory.GENERAL
    tags = [t.strip() for t in (raw_tags or "").split(",") if t.strip()]
    content = text.lstrip()[match.end():].lstrip("\n")

    return KnowledgeDocument(
        id=doc_id,
        title=title.strip() or UNTITLED,
        content=content or text,
        category=category,
        tags=tags,
        created_at=created_at,
    )


class KnowledgeClient:
    """Store, search, list and delete knowledge documents."""

    def __init__(self, transport: LettaClient):
        self._transport = transport

    def store(self, doc: KnowledgeDocument) -> str | None:
        """Store *doc*; returns the passage id assigned by Letta."""
        passage = self._transport.insert_passage(format_document(doc))
        doc_id = passage.get("id")
        logger.info("Stored knowledge document %r (%s)", doc.title, doc_id or "unknown")
        return doc_id

    def search(
        self,
        query: str,
        limit: int = 5,
        category: KnowledgeCategory | None = None,
    ) -> list[str]:
        """Return raw knowledge passages matching *query*.

        Customer memories returned by the shared search are filtered out;
        *category* narrows results to one document category.
        """
        results = self._transport.search_passages(f"{KNOWLEDGE_MARKER} {query}", limit=limit)
        passages = [r["content"] for r in results if KNOWLEDGE_MARKER in (r.get("content") or "")]
        if category is not None:
            passages = [p for p in passages if parse_document(p).category == category]
        logger.debug("Knowledge search %r: %d passages", query, len(passages))
        return passages

    def build_context(self, query: str, limit: int = 5) -> str:
        """Format matching passages as prompt context, or ``""`` when none."""
        passages = self.search(query, limit=limit)
        if not passages:
            return ""
        blocks = "\n\n---\n\n".join(
            f"[Knowledge {i}]\n{p}" for i, p in enumerate(passages, start=1)
        )
        return f"Relevant Product Knowledge:\n{blocks}"

    def list(self, limit: int = 100) -> list[KnowledgeDocument]:
        """List every knowledge document (customer memories excluded)."""
        passages: list[dict[str, Any]] = self._transport.list_passages(limit=limit)
        docs = [
            parse_document(
                p.get("text", ""), doc_id=p.get("id"), created_at=p.get("created_at"),
            )
            for p in passages
            if f"[{KNOWLEDGE_MARKER}" in (p.get("text") or "")
        ]
        logger.info("Found %d knowledge documents", len(docs))
        return docs

    def delete(self, doc_id: str) -> bool:
        try:
            self._transport.delete_passage(doc_id)
        except MemoryStoreError as exc:
            logger.error("Failed to delete knowledge document %s: %s", doc_id, exc)
            return False
        logger.info("Deleted knowledge document %s", doc_id)
        return True

    def install_templates(self) -> int:
        """Store every starter template; returns how many were stored."""
        installed = 0
        for template in KNOWLEDGE_TEMPLATES:
            try:
                self.store(template)
                installed += 1
            except MemoryStoreError as exc:
                logger.warning("Template %r not installed: %s", template.title, exc)
        return installed
