"""Support Orchestrator — AI-powered customer support ticket processing.

Architecture Overview
=====================

Every ticket runs through a **LangGraph** pipeline of fixed stages:

1. **search_knowledge** — product documentation from the knowledge base.
2. **retrieve_memory** — local ticket history, else remote customer memory.
3. **classify_message** — category, urgency and sentiment (Claude, low temperature).
4. **generate_response** — customer-facing reply, tone and internal actions.
5. **store_memory** — a short interaction summary written back to memory.

With a database attached the pipeline also creates the ticket up front
and persists the response and customer profile at the end.

Key Design Decisions
--------------------
- **Degradable vs mandatory stages**: knowledge and memory failures are
  logged and replaced by a default; classification and response
  generation must succeed or the request fails.
- **Step log**: every attempted stage appends exactly one timestamped
  step, returned to the caller and stored with the ticket.
- **Memory & knowledge**: both live in Letta archival memory behind one
  HTTP transport with bounded retries; knowledge documents carry a
  ``KNOWLEDGE_BASE`` header so they can be told apart from memories.
- **Customer identity**: emails are trimmed and case-folded before any
  lookup, local or remote.
- **Interfaces**: FastAPI server, a LangChain tool surface served at
  ``/api/mcp/tools``, and a one-shot CLI.

Package Structure
-----------------
- ``support_orchestrator/agent.py`` — ticket pipeline (LangGraph StateGraph)
- ``support_orchestrator/config.py`` — configuration from env / SSM
- ``support_orchestrator/models.py`` — pydantic models and enums
- ``support_orchestrator/errors.py`` — exception hierarchy
- ``support_orchestrator/prompts.py`` — classification and response prompts
- ``support_orchestrator/server.py`` — FastAPI application
- ``support_orchestrator/main.py`` — CLI
- ``support_orchestrator/services/`` — LLM, Letta, memory, knowledge, store, metrics
- ``support_orchestrator/tools/`` — LangChain tools
- ``support_orchestrator/api/`` — FastAPI routes and Pydantic schemas
"""
