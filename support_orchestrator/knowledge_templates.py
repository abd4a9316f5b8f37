"""Starter knowledge documents that can be installed in one call."""

from __future__ import annotations

from support_orchestrator.models import KnowledgeCategory, KnowledgeDocument

KNOWLEDGE_TEMPLATES: list[KnowledgeDocument] = [
    KnowledgeDocument(
        title="Pricing Plans",
        category=KnowledgeCategory.PRICING,
        tags=["pricing", "plans", "subscription", "cost"],
        content="""Twisky offers three pricing tiers:

**Starter (Free)**
- 100 AI responses/month
- Slack + Email channels
- 1 knowledge source
- Basic escalation

**Pro ($99/month)**
- Unlimited AI responses
- Slack, Email, WhatsApp support
- 5 knowledge sources
- Conversation summaries
- Priority support

**Enterprise (Custom)**
- Unlimited everything
- Custom integrations
- Advanced analytics
- Dedicated support manager
- SOC 2 + GDPR compliance

To upgrade: Go to Settings > Billing > Change Plan""",
    ),
    KnowledgeDocument(
        title="How to Reset Password",
        category=KnowledgeCategory.TROUBLESHOOTING,
        tags=["password", "reset", "login", "account"],
        content="""To reset your password:

1. Go to the login page
2. Click "Forgot Password"
3. Enter your email address
4. Check your email for the reset link (check the spam folder)
5. Click the link and create a new password

Password requirements:
- Minimum 8 characters
- At least one uppercase letter
- At least one number

If the email does not arrive within 5 minutes, contact support.""",
    ),
    KnowledgeDocument(
        title="Billing & Refund Policy",
        category=KnowledgeCategory.POLICIES,
        tags=["billing", "refund", "charges", "subscription"],
        content="""**Billing Information:**
- Subscriptions are billed monthly on the anniversary of signup
- Invoices are sent via email 3 days before the charge
- Payment methods: Credit card, PayPal, Bank transfer (Enterprise)

**Refund Policy:**
- Full refund within 14 days of first purchase
- Prorated refunds for annual plans cancelled mid-term
- No refunds for monthly plans after the billing date
- Duplicate charges are refunded within 3-5 business days

**To request a refund:**
Contact billing@twisky.com with your account email and reason""",
    ),
    KnowledgeDocument(
        title="Integration Setup",
        category=KnowledgeCategory.FEATURES,
        tags=["integration", "slack", "whatsapp", "email", "setup"],
        content="""**Slack Integration:**
1. Go to Settings > Integrations > Slack
2. Click "Add to Slack"
3. Authorize Twisky in your workspace
4. Select the channel for escalations

**WhatsApp Integration (Pro+):**
1. Go to Settings > Integrations > WhatsApp
2. Connect your WhatsApp Business account
3. Verify your phone number
4. Configure auto-replies

**Email Integration:**
1. Go to Settings > Integrations > Email
2. Add forwarding address: support@yourcompany.twisky.com
3. Configure SMTP for outbound replies""",
    ),
]
