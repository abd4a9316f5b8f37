"""Persistence layer: tickets, customer insights and processing logs.

SQLAlchemy Core over any supported database (SQLite by default).  Every
public method runs in a single connection / transaction, so concurrent
requests never observe a half-applied update.

Timestamps are stored as ISO 8601 UTC strings, which sort correctly as
text and round-trip through SQLite without adapters.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any

from sqlalchemy import (
    Column,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    func,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.pool import StaticPool

from support_orchestrator.config import DATABASE_URL
from support_orchestrator.errors import TicketNotFoundError, TicketStateError
from support_orchestrator.models import (
    CustomerInsight,
    ProcessingLog,
    Ticket,
    TicketStatus,
    normalize_email,
    utcnow_iso,
)

logger = logging.getLogger(__name__)

metadata = MetaData()

tickets = Table(
    "tickets",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("customer_email", String(320), nullable=False, index=True),
    Column("subject", Text),
    Column("message", Text, nullable=False),
    Column("classification", String(32)),
    Column("urgency", String(16)),
    Column("sentiment", String(16)),
    Column("reasoning", Text),
    Column("ai_response", Text),
    Column("actions_taken", Text),
    Column("status", String(16), nullable=False, default=TicketStatus.PENDING.value),
    Column("created_at", String(40), nullable=False),
    Column("processed_at", String(40)),
)

customer_insights = Table(
    "customer_insights",
    metadata,
    Column("email", String(320), primary_key=True),
    Column("preferences", Text),
    Column("history_summary", Text),
    Column("interaction_count", Integer, nullable=False, default=0),
    Column("last_updated", String(40), nullable=False),
)

processing_logs = Table(
    "processing_logs",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("ticket_id", String(36), nullable=False, index=True),
    Column("step", String(64), nullable=False),
    Column("status", String(16), nullable=False),
    Column("details", Text),
    Column("timestamp", String(40), nullable=False),
)

# Columns a caller may change after creation.
UPDATABLE_FIELDS = frozenset({
    "classification",
    "urgency",
    "sentiment",
    "reasoning",
    "ai_response",
    "actions_taken",
    "status",
    "processed_at",
})


def _blank_to_none(value: str | None) -> str | None:
    return value or None


class TicketStore:
    """Repository for tickets, insights and logs on a SQLAlchemy engine."""

    def __init__(self, engine: Engine):
        self.engine = engine

    # ── Tickets ──────────────────────────────────────────────────────

    def create_ticket(
        self,
        customer_email: str,
        message: str,
        subject: str | None = None,
        ticket_id: str | None = None,
    ) -> Ticket:
        """Insert a new ``pending`` ticket and return it."""
        row = {
            "id": ticket_id or str(uuid.uuid4()),
            "customer_email": normalize_email(customer_email),
            "subject": subject,
            "message": message,
            "status": TicketStatus.PENDING.value,
            "created_at": utcnow_iso(),
        }
        with self.engine.begin() as conn:
            conn.execute(tickets.insert().values(**row))
        logger.debug("Created ticket %s for %s", row["id"], row["customer_email"])
        return Ticket(**row)

    def get_ticket(self, ticket_id: str) -> Ticket | None:
        with self.engine.connect() as conn:
            row = conn.execute(select(tickets).where(tickets.c.id == ticket_id)).fetchone()
        return Ticket(**row._mapping) if row else None

    def update_ticket(self, ticket_id: str, **fields: Any) -> Ticket:
        """Apply *fields* to a ticket and return the updated row.

        Status may only move forward (pending → classified → processed),
        and a processed ticket is frozen.  Both rules are checked and the
        write applied in one transaction.
        """
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update ticket fields: {sorted(unknown)}")

        if "status" in fields:
            fields["status"] = TicketStatus(fields["status"]).value

        with self.engine.begin() as conn:
            row = conn.execute(select(tickets).where(tickets.c.id == ticket_id)).fetchone()
            if row is None:
                raise TicketNotFoundError(f"Ticket {ticket_id} not found")

            current = TicketStatus(row.status)
            if current is TicketStatus.PROCESSED:
                raise TicketStateError(f"Ticket {ticket_id} is already processed")
            if "status" in fields and TicketStatus(fields["status"]).rank < current.rank:
                raise TicketStateError(
                    f"Ticket {ticket_id} cannot move from {current.value} "
                    f"to {fields['status']}"
                )

            if fields:
                result = conn.execute(
                    tickets.update()
                    .where(tickets.c.id == ticket_id)
                    .where(tickets.c.status == current.value)
                    .values(**fields)
                )
                if result.rowcount != 1:
                    raise TicketStateError(f"Ticket {ticket_id} changed concurrently")

            updated = conn.execute(select(tickets).where(tickets.c.id == ticket_id)).fetchone()
        return Ticket(**updated._mapping)

    def list_tickets(self, limit: int = 50, status: TicketStatus | str | None = None) -> list[Ticket]:
        """Newest tickets first, optionally filtered by status."""
        stmt = select(tickets).order_by(tickets.c.created_at.desc()).limit(limit)
        if status is not None:
            stmt = stmt.where(tickets.c.status == TicketStatus(status).value)
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [Ticket(**r._mapping) for r in rows]

    def tickets_for_customer(
        self,
        email: str,
        exclude_id: str | None = None,
        limit: int = 100,
    ) -> list[Ticket]:
        """Tickets for *email*, newest first, optionally excluding one id."""
        stmt = (
            select(tickets)
            .where(tickets.c.customer_email == normalize_email(email))
            .order_by(tickets.c.created_at.desc())
            .limit(limit)
        )
        if exclude_id is not None:
            stmt = stmt.where(tickets.c.id != exclude_id)
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [Ticket(**r._mapping) for r in rows]

    # ── Customer insights ────────────────────────────────────────────

    def get_insight(self, email: str) -> CustomerInsight | None:
        stmt = select(customer_insights).where(
            customer_insights.c.email == normalize_email(email)
        )
        with self.engine.connect() as conn:
            row = conn.execute(stmt).fetchone()
        return CustomerInsight(**row._mapping) if row else None

    def upsert_insight(
        self,
        email: str,
        preferences: str | None = None,
        history_summary: str | None = None,
    ) -> CustomerInsight:
        """Create or merge a customer insight.

        Provided (non-empty) fields overwrite, missing ones keep their
        stored value; ``interaction_count`` goes up by exactly one and
        ``last_updated`` is refreshed on every call.
        """
        email = normalize_email(email)
        preferences = _blank_to_none(preferences)
        history_summary = _blank_to_none(history_summary)
        try:
            return self._upsert_insight_once(email, preferences, history_summary)
        except IntegrityError:
            # Another request inserted the row first; merge into it.
            return self._upsert_insight_once(email, preferences, history_summary)

    def _upsert_insight_once(
        self,
        email: str,
        preferences: str | None,
        history_summary: str | None,
    ) -> CustomerInsight:
        now = utcnow_iso()
        merge = (
            customer_insights.update()
            .where(customer_insights.c.email == email)
            .values(
                preferences=func.coalesce(preferences, customer_insights.c.preferences),
                history_summary=func.coalesce(
                    history_summary, customer_insights.c.history_summary
                ),
                interaction_count=customer_insights.c.interaction_count + 1,
                last_updated=now,
            )
        )

        with self.engine.begin() as conn:
            if conn.execute(merge).rowcount == 0:
                conn.execute(
                    customer_insights.insert().values(
                        email=email,
                        preferences=preferences,
                        history_summary=history_summary,
                        interaction_count=1,
                        last_updated=now,
                    )
                )
            row = conn.execute(
                select(customer_insights).where(customer_insights.c.email == email)
            ).fetchone()
        return CustomerInsight(**row._mapping)

    # ── Processing logs ──────────────────────────────────────────────

    def add_log(
        self,
        ticket_id: str,
        step: str,
        status: str,
        details: str | None = None,
        timestamp: str | None = None,
    ) -> None:
        with self.engine.begin() as conn:
            conn.execute(
                processing_logs.insert().values(
                    ticket_id=ticket_id,
                    step=step,
                    status=status,
                    details=details,
                    timestamp=timestamp or utcnow_iso(),
                )
            )

    def get_logs(self, ticket_id: str) -> list[ProcessingLog]:
        """Steps for *ticket_id* in the order they were recorded."""
        stmt = (
            select(processing_logs)
            .where(processing_logs.c.ticket_id == ticket_id)
            .order_by(processing_logs.c.id.asc())
        )
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [ProcessingLog(**r._mapping) for r in rows]

    # ── Analytics ────────────────────────────────────────────────────

    def analytics(self) -> dict[str, Any]:
        """Ticket counts: total and grouped by status, category and urgency."""

        def _group(conn, column) -> dict[str, int]:
            stmt = (
                select(column, func.count())
                .where(column.is_not(None))
                .group_by(column)
            )
            return {value: count for value, count in conn.execute(stmt)}

        with self.engine.connect() as conn:
            total = conn.execute(select(func.count()).select_from(tickets)).scalar_one()
            return {
                "total": total,
                "by_status": _group(conn, tickets.c.status),
                "by_classification": _group(conn, tickets.c.classification),
                "by_urgency": _group(conn, tickets.c.urgency),
            }


def create_store(url: str | None = None) -> TicketStore:
    """Build an engine for *url* (default ``DATABASE_URL``) and create tables."""
    url = url or DATABASE_URL
    kwargs: dict[str, Any] = {}
    if url.startswith("sqlite"):
        # Requests run on worker threads (asyncio.to_thread).
        kwargs["connect_args"] = {"check_same_thread": False}
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool

    engine = create_engine(url, **kwargs)
    metadata.create_all(engine)
    logger.info("Ticket store ready (%s)", engine.url.render_as_string(hide_password=True))
    return TicketStore(engine)
