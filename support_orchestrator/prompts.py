"""System prompts for the classification and response-generation calls."""

from __future__ import annotations

from support_orchestrator.models import Category, ClassificationResult, Sentiment, Urgency

PRODUCT_NAME = "Twisky"


def _choices(enum_cls) -> str:
    return ", ".join(f'"{member.value}"' for member in enum_cls)


CLASSIFY_PROMPT_TEMPLATE = """You are an expert customer support classifier. Analyze the support message and return a JSON object with:
- category: one of {categories}
- urgency: one of {urgencies}
- sentiment: one of {sentiments}
- reasoning: brief explanation of your classification (1-2 sentences)
- key_entities: array of key topics/entities mentioned

{context_block}
Return ONLY valid JSON, no markdown."""


RESPONSE_PROMPT_TEMPLATE = """You are a friendly, professional customer support agent for {product}, a B2B AI-powered support platform. Generate a helpful response to the customer's message.

Guidelines:
- Be empathetic and professional
- Address the customer's concern directly
- Provide actionable next steps when applicable
- Keep responses concise but complete
- Match tone to the situation (more formal for complaints, friendly for general queries)
- Only state product facts that appear in the knowledge below; never invent prices or policies

Classification context:
- Category: {category}
- Urgency: {urgency}
- Sentiment: {sentiment}

{history_block}{knowledge_block}
Return JSON with:
- response: the customer-facing response text
- tone: the tone used (e.g. "empathetic", "professional", "friendly")
- suggested_actions: array of internal actions to take (e.g. "escalate to billing team", "send follow-up in 24h")

Return ONLY valid JSON, no markdown."""


def get_classify_prompt(context: str | None = None) -> str:
    context = (context or "").strip()
    context_block = f"Customer history context:\n{context}\n" if context else ""
    return CLASSIFY_PROMPT_TEMPLATE.format(
        categories=_choices(Category),
        urgencies=_choices(Urgency),
        sentiments=_choices(Sentiment),
        context_block=context_block,
    )


def get_response_prompt(
    classification: ClassificationResult,
    customer_history: str | None = None,
    knowledge: str | None = None,
) -> str:
    history_block = f"Customer history:\n{customer_history}\n\n" if customer_history else ""
    knowledge_block = f"Additional context:\n{knowledge}\n" if knowledge else ""
    return RESPONSE_PROMPT_TEMPLATE.format(
        product=PRODUCT_NAME,
        category=classification.category.value,
        urgency=classification.urgency.value,
        sentiment=classification.sentiment.value,
        history_block=history_block,
        knowledge_block=knowledge_block,
    )
