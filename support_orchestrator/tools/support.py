"""LangChain tools exposing the support pipeline to agents and MCP clients.

Each tool wraps one orchestrator or knowledge-base operation and returns a
JSON string shaped as ``{"success": true, ...}`` so an LLM or an MCP
client can read it directly.  :func:`call_tool` is the dispatcher used by
the ``/mcp/tools`` endpoint: any failure (unknown tool, argument
validation, downstream error) comes back as ``{"success": false, "error"}``.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from langchain_core.tools import BaseTool, tool
from langchain_core.utils.function_calling import convert_to_openai_tool

from support_orchestrator.knowledge_templates import KNOWLEDGE_TEMPLATES
from support_orchestrator.models import KnowledgeCategory, KnowledgeDocument
from support_orchestrator.services.knowledge import KnowledgeClient

logger = logging.getLogger(__name__)


def _envelope(**payload: Any) -> str:
    return json.dumps({"success": True, **payload}, default=str)


def build_support_tools(orchestrator, knowledge: KnowledgeClient) -> list[BaseTool]:
    """Create the tool set bound to *orchestrator* and *knowledge*."""

    # ── Tool 1: Full ticket pipeline ────────────────────────────────

    @tool
    def process_support_ticket(
        message: str,
        customer_email: str,
        subject: str | None = None,
        workspace_id: str | None = None,
    ) -> str:
        """Process a customer support ticket through the full AI pipeline.

        Searches the knowledge base, retrieves customer history, classifies
        the message and generates a contextual response.

        Args:
            message: The customer support message to process.
            customer_email: The customer email address.
            subject: Optional subject line.
            workspace_id: Optional workspace ID for multi-tenant isolation.
        """
        result = orchestrator.process_ticket(message, customer_email, subject, workspace_id)
        return _envelope(**result.model_dump(mode="json"))

    # ── Tool 2: Classification only ─────────────────────────────────

    @tool
    def classify_message(message: str) -> str:
        """Classify a support message without generating a response.

        Returns category, urgency, sentiment and reasoning.

        Args:
            message: The message to classify.
        """
        classification = orchestrator.classify_only(message)
        return _envelope(classification=classification.model_dump(mode="json"))

    # ── Tool 3: Customer history ────────────────────────────────────

    @tool
    def get_customer_insights(email: str) -> str:
        """Retrieve customer history and insights from memory.

        Args:
            email: Customer email to look up.
        """
        insights = orchestrator.customer_insights(email)
        return _envelope(insights=insights.model_dump(mode="json"))

    # ── Tools 4-7: Knowledge base ───────────────────────────────────

    @tool
    def add_knowledge(
        title: str,
        content: str,
        category: KnowledgeCategory,
        tags: list[str] | None = None,
    ) -> str:
        """Add a product knowledge document to the knowledge base.

        This helps the AI give accurate, product-specific responses.

        Args:
            title: Title of the document.
            content: The content of the document.
            category: Category of the document.
            tags: Optional tags for search.
        """
        doc = KnowledgeDocument(title=title, content=content, category=category, tags=tags or [])
        doc_id = knowledge.store(doc)
        return _envelope(message="Knowledge document added successfully", document_id=doc_id)

    @tool
    def search_knowledge(
        query: str,
        limit: int = 5,
        category: KnowledgeCategory | None = None,
    ) -> str:
        """Search the product knowledge base for relevant information.

        Args:
            query: Search query.
            limit: Maximum number of results (default 5).
            category: Optional category filter.
        """
        results = knowledge.search(query, limit=limit, category=category)
        return _envelope(results=results, total=len(results))

    @tool
    def list_knowledge() -> str:
        """List all documents in the knowledge base."""
        documents = knowledge.list()
        return _envelope(
            documents=[d.model_dump(mode="json") for d in documents], total=len(documents),
        )

    @tool
    def get_knowledge_templates() -> str:
        """Get pre-built knowledge document templates for quick setup."""
        return _envelope(
            templates=[t.model_dump(mode="json") for t in KNOWLEDGE_TEMPLATES],
            total=len(KNOWLEDGE_TEMPLATES),
        )

    return [
        process_support_ticket,
        classify_message,
        get_customer_insights,
        add_knowledge,
        search_knowledge,
        list_knowledge,
        get_knowledge_templates,
    ]


def list_tool_specs(tools: list[BaseTool]) -> list[dict[str, Any]]:
    """Describe *tools* as ``{name, description, inputSchema}`` records."""
    specs = []
    for t in tools:
        function = convert_to_openai_tool(t)["function"]
        specs.append({
            "name": function["name"],
            "description": function.get("description", ""),
            "inputSchema": function.get("parameters", {"type": "object", "properties": {}}),
        })
    return specs


def call_tool(tools: list[BaseTool], name: str, arguments: dict[str, Any] | None = None) -> dict[str, Any]:
    """Invoke the tool called *name*; never raises."""
    by_name = {t.name: t for t in tools}
    selected = by_name.get(name)
    if selected is None:
        return {"success": False, "error": f"Unknown tool: {name}"}

    try:
        return json.loads(selected.invoke(arguments or {}))
    except Exception as exc:
        logger.warning("Tool %s failed: %s", name, exc)
        return {"success": False, "error": str(exc) or type(exc).__name__}
