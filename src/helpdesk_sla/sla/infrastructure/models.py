"""
SLA Infrastructure Models
==========================

SQLAlchemy ORM models for SLA module.

These are the database representations of our domain entities.
They belong in the infrastructure layer, not the domain layer.
"""

from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import String, DateTime, Boolean, Integer, Text, Uuid, Index
from sqlalchemy.orm import Mapped, mapped_column

from helpdesk_sla.infrastructure.database import Base
from helpdesk_sla.config import Priority, TicketStatus, SLAType, SLAState


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TicketModel(Base):
    """
    Database model for helpdesk tickets.

    Maps to the 'tickets' table. The helpdesk owns this table; the SLA
    engine only reads it.
    """
    __tablename__ = "tickets"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)

    priority: Mapped[Priority] = mapped_column(String(50), nullable=False, default=Priority.MEDIUM)
    status: Mapped[TicketStatus] = mapped_column(String(50), nullable=False, default=TicketStatus.OPEN)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    first_response_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    closed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Keyset pagination for reconciliation
    __table_args__ = (
        Index("ix_tickets_created_at_id", "created_at", "id"),
    )


class PolicyModel(Base):
    """
    Database model for SLA policies.

    Maps to the 'sla_policies' table.
    """
    __tablename__ = "sla_policies"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    priority: Mapped[Priority] = mapped_column(String(50), nullable=False, index=True)

    # Targets
    response_time_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    resolution_time_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    business_hours_only: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Escalation
    notify_before_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=30)
    escalation_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    escalation_target: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class SLARecordModel(Base):
    """
    Database model for per-ticket SLA records.

    Maps to the 'ticket_slas' table. ``ticket_id`` is unique so a ticket can
    never own two records; ``version`` backs compare-and-swap updates.
    """
    __tablename__ = "ticket_slas"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    ticket_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    policy_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)

    # Deadlines, fixed at creation
    response_deadline: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    resolution_deadline: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    # State
    status: Mapped[SLAState] = mapped_column(String(50), nullable=False, default=SLAState.ON_TRACK, index=True)
    response_breached: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    resolution_breached: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Milestones
    first_response_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Escalation tracking
    warnings_sent: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    escalated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    escalated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class EscalationModel(Base):
    """
    Database model for escalation events.

    Maps to the 'sla_escalations' table, an outbox drained by the notifier.
    """
    __tablename__ = "sla_escalations"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    ticket_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)

    deadline_type: Mapped[SLAType] = mapped_column(String(50), nullable=False)  # response or resolution
    previous_status: Mapped[SLAState] = mapped_column(String(50), nullable=False)
    new_status: Mapped[SLAState] = mapped_column(String(50), nullable=False)
    triggered_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    escalation_target: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    # Notification tracking
    notification_sent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    notification_sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
