# lead_feedback/services/entity_resolver.py
"""
Resolve external lead/broker identifiers to internal rows.

Both resolvers AUTO-PROVISION: when no row carries the external id, a
placeholder row is inserted inside the caller's transaction and returned.
A read-like call can therefore create a persistent record.

Creation is insert-if-absent: on the external_id unique constraint for leads,
and on any unique constraint for brokers. A caller
that loses a creation race gets no row back from the insert and re-reads the
winner's row; the conflict is never surfaced.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from lead_feedback.core.config import settings
from lead_feedback.core.exceptions import IntegrityFailureError, ValidationError
from lead_feedback.core.logging import get_structlog_logger
from lead_feedback.models import Broker, Lead

logger = get_structlog_logger(__name__)

PLACEHOLDER_LEAD_NAME = "Unknown Lead"
PLACEHOLDER_LEAD_SOURCE = "feedback-form"
PLACEHOLDER_BROKER_NAME = "Unknown Broker"

EXTERNAL_ID_MAX_LENGTH = 50


@dataclass(frozen=True)
class LeadRecord:
    id: uuid.UUID
    external_id: str
    name: str
    score: int
    created: bool = False


@dataclass(frozen=True)
class BrokerRecord:
    id: uuid.UUID
    external_id: str
    name: str
    email: str
    is_active: bool
    created: bool = False


_LEAD_COLUMNS = (Lead.id, Lead.external_id, Lead.name, Lead.score)
_BROKER_COLUMNS = (Broker.id, Broker.external_id, Broker.name, Broker.email, Broker.is_active)


def canonicalize_external_id(external_id: Optional[str], kind: str) -> str:
    ext = (external_id or "").strip()
    if not ext:
        raise ValidationError(
            f"{kind} external id must not be blank",
            details={"field": f"external_{kind}_id"},
        )
    if len(ext) > EXTERNAL_ID_MAX_LENGTH:
        raise ValidationError(
            f"{kind} external id must be at most {EXTERNAL_ID_MAX_LENGTH} characters",
            details={"field": f"external_{kind}_id"},
        )
    return ext


def placeholder_broker_email(external_id: str) -> str:
    return f"{external_id}@{settings.placeholder_email_domain}"


def _lead_record(row: Any, created: bool) -> LeadRecord:
    return LeadRecord(
        id=row.id,
        external_id=str(row.external_id),
        name=str(row.name),
        score=int(row.score),
        created=created,
    )


def _broker_record(row: Any, created: bool) -> BrokerRecord:
    return BrokerRecord(
        id=row.id,
        external_id=str(row.external_id),
        name=str(row.name),
        email=str(row.email),
        is_active=bool(row.is_active),
        created=created,
    )


async def resolve_or_create_lead(session: AsyncSession, external_id: str) -> LeadRecord:
    """Return the lead for ``external_id``, creating a placeholder lead if none exists."""
    ext = canonicalize_external_id(external_id, "lead")
    lookup = select(*_LEAD_COLUMNS).where(Lead.external_id == ext)

    for attempt in range(1, settings.resolver_max_attempts + 1):
        row = (await session.execute(lookup)).first()
        if row is not None:
            return _lead_record(row, created=False)

        stmt = (
            pg_insert(Lead)
            .values(
                id=uuid.uuid4(),
                external_id=ext,
                name=PLACEHOLDER_LEAD_NAME,
                score=0,
                source=PLACEHOLDER_LEAD_SOURCE,
            )
            .on_conflict_do_nothing(index_elements=["external_id"])
            .returning(*_LEAD_COLUMNS)
        )
        row = (await session.execute(stmt)).first()
        if row is not None:
            logger.info("entity_resolver.lead_created", external_id=ext)
            return _lead_record(row, created=True)

        logger.info("entity_resolver.lead_create_conflict", external_id=ext, attempt=attempt)

    raise IntegrityFailureError(
        "Could not resolve lead",
        details={"external_lead_id": ext, "attempts": settings.resolver_max_attempts},
    )


async def resolve_or_create_broker(session: AsyncSession, external_id: str) -> BrokerRecord:
    """Return the broker for ``external_id``, creating a placeholder broker if none exists.

    Placeholder brokers are active and get a synthesized contact email. Any
    unique conflict on insert is treated as a lost race and re-read by external
    id. A synthesized email held by a different broker never resolves and ends
    in an integrity failure once the attempts run out.
    """
    ext = canonicalize_external_id(external_id, "broker")
    lookup = select(*_BROKER_COLUMNS).where(Broker.external_id == ext)

    for attempt in range(1, settings.resolver_max_attempts + 1):
        row = (await session.execute(lookup)).first()
        if row is not None:
            return _broker_record(row, created=False)

        stmt = (
            pg_insert(Broker)
            .values(
                id=uuid.uuid4(),
                external_id=ext,
                name=PLACEHOLDER_BROKER_NAME,
                email=placeholder_broker_email(ext),
                is_active=True,
            )
            # No arbiter: a racing insert can also collide on the email index
            .on_conflict_do_nothing()
            .returning(*_BROKER_COLUMNS)
        )
        row = (await session.execute(stmt)).first()
        if row is not None:
            logger.info("entity_resolver.broker_created", external_id=ext)
            return _broker_record(row, created=True)

        logger.info("entity_resolver.broker_create_conflict", external_id=ext, attempt=attempt)

    raise IntegrityFailureError(
        "Could not resolve broker",
        details={"external_broker_id": ext, "attempts": settings.resolver_max_attempts},
    )
