"""
SLA Infrastructure Repositories
=================================

Concrete implementations of repository interfaces using SQLAlchemy.

This layer contains the data access logic - how we store and retrieve
entities from the database.

Timestamps are written in UTC. Some backends (SQLite) hand them back
naive, so everything read is normalized to aware UTC.
"""

from dataclasses import replace
from typing import List, Optional
from datetime import datetime, timezone
from uuid import UUID, uuid4

from sqlalchemy import select, update, insert, and_, or_, exists
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk_sla.sla.application import (
    ITicketRepository, ISLARecordRepository, IPolicyRepository, IEscalationRepository
)
from helpdesk_sla.sla.domain import (
    EscalationEvent, Policy, SLARecord, TicketCursor, TicketSnapshot
)
from helpdesk_sla.sla.infrastructure.models import (
    TicketModel, PolicyModel, SLARecordModel, EscalationModel
)
from helpdesk_sla.config import Priority, SLAState, SLAType
from helpdesk_sla.core import (
    RepositoryException, ResourceNotFoundException, SLARecordConflictException
)


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    """Convert to aware UTC; naive values are taken as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _parse_uuid(value: str) -> Optional[UUID]:
    try:
        return UUID(value)
    except (ValueError, TypeError):
        return None


class SQLAlchemyTicketRepository(ITicketRepository):
    """
    SQLAlchemy implementation of ticket repository.

    Read-only: tickets belong to the helpdesk.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def tickets_without_sla(
        self,
        after: Optional[TicketCursor] = None,
        limit: int = 100
    ) -> List[TicketSnapshot]:
        """List tickets lacking an SLA record in (created_at, id) order after a keyset cursor."""
        has_record = exists().where(SLARecordModel.ticket_id == TicketModel.id)
        stmt = select(TicketModel).where(~has_record)

        if after is not None:
            created_at = _utc(after.created_at)
            stmt = stmt.where(or_(
                TicketModel.created_at > created_at,
                and_(TicketModel.created_at == created_at, TicketModel.id > after.ticket_id)
            ))

        stmt = stmt.order_by(TicketModel.created_at.asc(), TicketModel.id.asc()).limit(limit)

        result = await self._session.execute(stmt)
        return [self._to_domain(model) for model in result.scalars().all()]

    @staticmethod
    def _to_domain(model: TicketModel) -> TicketSnapshot:
        return TicketSnapshot(
            id=model.id,
            priority=model.priority,
            status=model.status,
            created_at=_utc(model.created_at),
            updated_at=_utc(model.updated_at),
            first_response_at=_utc(model.first_response_at),
            resolved_at=_utc(model.resolved_at),
            closed_at=_utc(model.closed_at)
        )


class SQLAlchemySLARecordRepository(ISLARecordRepository):
    """
    SQLAlchemy implementation of SLA record repository.

    Inserts rely on the unique ``ticket_id`` constraint and updates are
    compare-and-swap on ``version``; both raise SLARecordConflictException
    when they lose.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get(self, ticket_id: str) -> Optional[SLARecord]:
        """Get the record owned by a ticket."""
        stmt = (
            select(SLARecordModel)
            .where(SLARecordModel.ticket_id == ticket_id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        return self._to_domain(model) if model else None

    async def insert(self, record: SLARecord) -> SLARecord:
        """Insert a new record with version 1."""
        if record.is_persisted:
            raise RepositoryException(
                "Record was already persisted",
                {"ticket_id": record.ticket_id, "version": record.version}
            )

        now = datetime.now(timezone.utc)
        stored = replace(
            record,
            version=1,
            created_at=record.created_at or now,
            updated_at=record.updated_at or now
        )
        values = self._to_row(stored)
        dialect = self._session.get_bind().dialect.name

        if dialect in ("postgresql", "sqlite"):
            dialect_insert = postgresql_insert if dialect == "postgresql" else sqlite_insert
            stmt = dialect_insert(SLARecordModel).values(**values).on_conflict_do_nothing(
                index_elements=["ticket_id"]
            )
            result = await self._session.execute(stmt)
            if result.rowcount != 1:
                raise SLARecordConflictException(record.ticket_id)
        else:
            try:
                async with self._session.begin_nested():
                    await self._session.execute(insert(SLARecordModel).values(**values))
            except IntegrityError as e:
                raise SLARecordConflictException(record.ticket_id) from e

        return stored

    async def update(self, record: SLARecord) -> SLARecord:
        """Write ``record`` if the stored version still matches."""
        record_uuid = _parse_uuid(record.id)
        if record_uuid is None or not record.is_persisted:
            raise RepositoryException(
                "Cannot update a record that was never persisted",
                {"ticket_id": record.ticket_id}
            )

        stored = replace(
            record,
            version=record.version + 1,
            updated_at=record.updated_at or datetime.now(timezone.utc)
        )
        values = self._to_row(stored)
        for immutable in ("id", "ticket_id", "policy_id", "response_deadline", "resolution_deadline", "created_at"):
            values.pop(immutable)

        stmt = (
            update(SLARecordModel)
            .where(
                SLARecordModel.id == record_uuid,
                SLARecordModel.version == record.version
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)

        if result.rowcount != 1:
            raise SLARecordConflictException(record.ticket_id, reason="stale version")

        return stored

    async def list_unresolved(
        self,
        after_ticket_id: Optional[str] = None,
        limit: Optional[int] = None
    ) -> List[SLARecord]:
        """List unresolved records ordered by ticket_id."""
        stmt = select(SLARecordModel).where(SLARecordModel.resolved_at.is_(None))

        if after_ticket_id is not None:
            stmt = stmt.where(SLARecordModel.ticket_id > after_ticket_id)

        stmt = stmt.order_by(SLARecordModel.ticket_id.asc()).execution_options(populate_existing=True)
        if limit is not None:
            stmt = stmt.limit(limit)

        result = await self._session.execute(stmt)
        return [self._to_domain(model) for model in result.scalars().all()]

    async def list_all(self) -> List[SLARecord]:
        """List every record."""
        stmt = select(SLARecordModel).execution_options(populate_existing=True)
        result = await self._session.execute(stmt)
        return [self._to_domain(model) for model in result.scalars().all()]

    @staticmethod
    def _to_row(record: SLARecord) -> dict:
        return {
            "id": UUID(record.id),
            "ticket_id": record.ticket_id,
            "policy_id": UUID(record.policy_id),
            "response_deadline": _utc(record.response_deadline),
            "resolution_deadline": _utc(record.resolution_deadline),
            "status": record.status.value,
            "response_breached": record.response_breached,
            "resolution_breached": record.resolution_breached,
            "first_response_at": _utc(record.first_response_at),
            "resolved_at": _utc(record.resolved_at),
            "warnings_sent": record.warnings_sent,
            "escalated": record.escalated,
            "escalated_at": _utc(record.escalated_at),
            "version": record.version,
            "created_at": _utc(record.created_at),
            "updated_at": _utc(record.updated_at),
        }

    @staticmethod
    def _to_domain(model: SLARecordModel) -> SLARecord:
        return SLARecord(
            id=str(model.id),
            ticket_id=model.ticket_id,
            policy_id=str(model.policy_id),
            response_deadline=_utc(model.response_deadline),
            resolution_deadline=_utc(model.resolution_deadline),
            status=SLAState(model.status),
            response_breached=model.response_breached,
            resolution_breached=model.resolution_breached,
            first_response_at=_utc(model.first_response_at),
            resolved_at=_utc(model.resolved_at),
            warnings_sent=model.warnings_sent,
            escalated=model.escalated,
            escalated_at=_utc(model.escalated_at),
            version=model.version,
            created_at=_utc(model.created_at),
            updated_at=_utc(model.updated_at)
        )


class SQLAlchemyPolicyRepository(IPolicyRepository):
    """SQLAlchemy implementation of policy repository."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def list_active(self, priority: Priority) -> List[Policy]:
        """Active policies for a priority."""
        stmt = select(PolicyModel).where(
            PolicyModel.priority == Priority(priority).value,
            PolicyModel.is_active.is_(True)
        )
        result = await self._session.execute(stmt)
        return [self._to_domain(model) for model in result.scalars().all()]

    async def get(self, policy_id: str) -> Optional[Policy]:
        """Get policy by ID."""
        model = await self._get_model(policy_id)
        return self._to_domain(model) if model else None

    async def list_all(self) -> List[Policy]:
        """List every policy."""
        result = await self._session.execute(select(PolicyModel))
        return [self._to_domain(model) for model in result.scalars().all()]

    async def add(self, policy: Policy) -> Policy:
        """Create new policy."""
        model = PolicyModel(
            id=_parse_uuid(policy.id) or uuid4(),
            created_at=_utc(policy.created_at) or datetime.now(timezone.utc)
        )
        self._apply(model, policy)

        self._session.add(model)
        await self._session.flush()

        return self._to_domain(model)

    async def save(self, policy: Policy) -> Policy:
        """Update existing policy."""
        model = await self._get_model(policy.id)
        if not model:
            raise ResourceNotFoundException("SLA policy", policy.id)

        self._apply(model, policy)
        await self._session.flush()

        return self._to_domain(model)

    async def _get_model(self, policy_id: str) -> Optional[PolicyModel]:
        policy_uuid = _parse_uuid(policy_id)
        if policy_uuid is None:
            return None

        stmt = select(PolicyModel).where(PolicyModel.id == policy_uuid)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    def _apply(model: PolicyModel, policy: Policy) -> None:
        model.name = policy.name
        model.priority = policy.priority.value
        model.response_time_minutes = policy.response_time_minutes
        model.resolution_time_minutes = policy.resolution_time_minutes
        model.business_hours_only = policy.business_hours_only
        model.is_active = policy.is_active
        model.notify_before_minutes = policy.notify_before_minutes
        model.escalation_enabled = policy.escalation_enabled
        model.escalation_target = policy.escalation_target
        model.description = policy.description

    @staticmethod
    def _to_domain(model: PolicyModel) -> Policy:
        return Policy(
            id=str(model.id),
            name=model.name,
            priority=Priority(model.priority),
            response_time_minutes=model.response_time_minutes,
            resolution_time_minutes=model.resolution_time_minutes,
            business_hours_only=model.business_hours_only,
            is_active=model.is_active,
            notify_before_minutes=model.notify_before_minutes,
            escalation_enabled=model.escalation_enabled,
            escalation_target=model.escalation_target,
            description=model.description,
            created_at=_utc(model.created_at)
        )


class SQLAlchemyEscalationRepository(IEscalationRepository):
    """
    SQLAlchemy implementation of the escalation outbox.

    Handles persistence of EscalationEvent entities.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def add(self, event: EscalationEvent) -> EscalationEvent:
        """Store a new escalation event."""
        model = EscalationModel(
            id=_parse_uuid(event.id) if event.id else uuid4(),
            ticket_id=event.ticket_id,
            deadline_type=event.deadline_type.value,
            previous_status=event.previous_status.value,
            new_status=event.new_status.value,
            triggered_at=_utc(event.triggered_at),
            escalation_target=event.escalation_target,
            notification_sent=event.notification_sent,
            notification_sent_at=_utc(event.notification_sent_at)
        )

        self._session.add(model)
        await self._session.flush()

        # Update event with generated ID
        event.id = str(model.id)

        return event

    async def list_pending(self, limit: int = 100) -> List[EscalationEvent]:
        """Get events that haven't been sent yet."""
        stmt = (
            select(EscalationModel)
            .where(EscalationModel.notification_sent.is_(False))
            .order_by(EscalationModel.triggered_at.asc())
            .limit(limit)
        )

        result = await self._session.execute(stmt)
        return [self._to_domain(model) for model in result.scalars().all()]

    async def mark_sent(self, event_id: str, sent_at: datetime) -> EscalationEvent:
        """Mark event as sent."""
        event_uuid = _parse_uuid(event_id)
        if event_uuid is None:
            raise ResourceNotFoundException("Escalation", event_id)

        stmt = select(EscalationModel).where(EscalationModel.id == event_uuid)
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()

        if not model:
            raise ResourceNotFoundException("Escalation", event_id)

        if not model.notification_sent:
            model.notification_sent = True
            model.notification_sent_at = _utc(sent_at)
            await self._session.flush()

        return self._to_domain(model)

    @staticmethod
    def _to_domain(model: EscalationModel) -> EscalationEvent:
        return EscalationEvent(
            id=str(model.id),
            ticket_id=model.ticket_id,
            deadline_type=SLAType(model.deadline_type),
            previous_status=SLAState(model.previous_status),
            new_status=SLAState(model.new_status),
            triggered_at=_utc(model.triggered_at),
            escalation_target=model.escalation_target,
            notification_sent=model.notification_sent,
            notification_sent_at=_utc(model.notification_sent_at)
        )
