"""Tests for the knowledge base: header format, parsing and the client."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import httpx
import pytest

from support_orchestrator.errors import MemoryStoreError
from support_orchestrator.knowledge_templates import KNOWLEDGE_TEMPLATES
from support_orchestrator.models import KnowledgeCategory, KnowledgeDocument
from support_orchestrator.services.knowledge import (
    KnowledgeClient,
    format_document,
    parse_document,
)
from support_orchestrator.services.letta_client import LettaClient


# ── Header format ────────────────────────────────────────────────────


class TestFormatAndParse:
    def test_format_includes_header_and_content(self):
        doc = KnowledgeDocument(
            title="Pricing Plans",
            content="Pro is $99/month",
            category=KnowledgeCategory.PRICING,
            tags=["plans", "cost"],
        )
        assert format_document(doc) == (
            "[KNOWLEDGE_BASE | category: pricing | title: Pricing Plans | tags: plans, cost]"
            "\n\nPro is $99/month"
        )

    def test_format_without_tags_omits_tag_section(self):
        doc = KnowledgeDocument(title="FAQ", content="body")
        assert format_document(doc).startswith("[KNOWLEDGE_BASE | category: general | title: FAQ]")

    @pytest.mark.parametrize("template", KNOWLEDGE_TEMPLATES, ids=lambda t: t.title)
    def test_round_trip_preserves_title_category_tags(self, template):
        parsed = parse_document(format_document(template), doc_id="p-1")
        assert parsed.title == template.title
        assert parsed.category == template.category
        assert parsed.tags == template.tags
        assert parsed.content == template.content
        assert parsed.id == "p-1"

    def test_missing_header_falls_back_to_general_untitled(self):
        parsed = parse_document("just some text")
        assert parsed.category == KnowledgeCategory.GENERAL
        assert parsed.title == "Untitled"
        assert parsed.content == "just some text"

    def test_unknown_category_falls_back_to_general(self):
        parsed = parse_document("[KNOWLEDGE_BASE | category: shipping | title: Boxes]\n\nbody")
        assert parsed.category == KnowledgeCategory.GENERAL
        assert parsed.title == "Boxes"
        assert parsed.content == "body"

    def test_malformed_header_is_not_parsed(self):
        text = "[KNOWLEDGE_BASE | title: Missing category]\n\nbody"
        parsed = parse_document(text)
        assert parsed.title == "Untitled"
        assert parsed.content == text


# ── Client ───────────────────────────────────────────────────────────


@pytest.fixture
def transport():
    return MagicMock()


@pytest.fixture
def client(transport):
    return KnowledgeClient(transport)


class TestKnowledgeClient:
    def test_store_inserts_formatted_document(self, client, transport):
        transport.insert_passage.return_value = {"id": "passage-9"}
        doc = KnowledgeDocument(title="Refunds", content="14 days", category="policies")

        assert client.store(doc) == "passage-9"
        transport.insert_passage.assert_called_once_with(format_document(doc))

    def test_store_propagates_transport_failure(self, client, transport):
        transport.insert_passage.side_effect = MemoryStoreError("down", status_code=503)
        with pytest.raises(MemoryStoreError):
            client.store(KnowledgeDocument(title="T", content="C"))

    def test_search_filters_out_customer_memories(self, client, transport):
        transport.search_passages.return_value = [
            {"content": "[KNOWLEDGE_BASE | category: faq | title: Reset]\n\nSteps"},
            {"content": "[customer_email: a@b.com]\nCustomer: a@b.com"},
        ]
        results = client.search("reset password")
        assert len(results) == 1
        assert "title: Reset" in results[0]
        transport.search_passages.assert_called_once_with("KNOWLEDGE_BASE reset password", limit=5)

    def test_search_by_category(self, client, transport):
        transport.search_passages.return_value = [
            {"content": "[KNOWLEDGE_BASE | category: faq | title: A]\n\nx"},
            {"content": "[KNOWLEDGE_BASE | category: pricing | title: B]\n\ny"},
        ]
        results = client.search("plans", category=KnowledgeCategory.PRICING)
        assert len(results) == 1
        assert "title: B" in results[0]

    def test_build_context_formats_numbered_blocks(self, client, transport):
        transport.search_passages.return_value = [
            {"content": "[KNOWLEDGE_BASE | category: faq | title: A]\n\nx"},
            {"content": "[KNOWLEDGE_BASE | category: faq | title: B]\n\ny"},
        ]
        context = client.build_context("question")
        assert context.startswith("Relevant Product Knowledge:\n[Knowledge 1]\n")
        assert "\n\n---\n\n[Knowledge 2]\n" in context

    def test_build_context_empty_when_no_match(self, client, transport):
        transport.search_passages.return_value = []
        assert client.build_context("question") == ""

    def test_list_returns_only_knowledge_documents(self, client, transport):
        transport.list_passages.return_value = [
            {
                "id": "p1",
                "text": "[KNOWLEDGE_BASE | category: features | title: Slack | tags: slack]\n\nSetup",
                "created_at": "2026-01-01T00:00:00Z",
            },
            {"id": "p2", "text": "[customer_email: a@b.com]\nsummary"},
        ]
        docs = client.list()
        assert [d.id for d in docs] == ["p1"]
        assert docs[0].category == KnowledgeCategory.FEATURES
        assert docs[0].tags == ["slack"]
        assert docs[0].created_at == "2026-01-01T00:00:00Z"

    def test_delete_returns_false_on_failure(self, client, transport):
        transport.delete_passage.side_effect = MemoryStoreError("not found", status_code=404)
        assert client.delete("missing") is False

    def test_delete_returns_true_on_success(self, client, transport):
        assert client.delete("p1") is True
        transport.delete_passage.assert_called_once_with("p1")

    def test_install_templates_counts_successes(self, client, transport):
        transport.insert_passage.side_effect = [
            {"id": "1"},
            MemoryStoreError("boom"),
            {"id": "3"},
            {"id": "4"},
        ]
        assert client.install_templates() == len(KNOWLEDGE_TEMPLATES) - 1


class TestKnowledgeClientOverLetta:
    """Network-level failures reach the client as ``MemoryStoreError``."""

    @pytest.fixture
    def letta(self):
        letta = LettaClient(api_key="k", base_url="https://letta.test", agent_id="agent-1")
        yield letta
        letta.close()

    @patch("support_orchestrator.services.letta_client.time.sleep")
    def test_delete_returns_false_on_read_error(self, _sleep, letta):
        with patch.object(letta._client, "request", side_effect=httpx.ReadError("reset")):
            assert KnowledgeClient(letta).delete("p-1") is False

    def test_install_templates_survives_non_json_bodies(self, letta, mock_http_response):
        response = mock_http_response("not json")
        response.json.side_effect = ValueError("Expecting value")
        with patch.object(letta._client, "request", return_value=response) as mock_req:
            assert KnowledgeClient(letta).install_templates() == 0

        assert mock_req.call_count == len(KNOWLEDGE_TEMPLATES)
