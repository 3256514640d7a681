"""
SLA Application Services
=========================

Application services orchestrate business logic and coordinate between
domain entities and repositories.

Following SOLID principles:
- Single Responsibility: Each service has one clear purpose
- Dependency Inversion: Depend on abstractions (repositories), not concrete implementations

Every service takes ``now`` explicitly; nothing here reads the wall clock.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Dict, List, Optional, Tuple
from uuid import uuid4

from helpdesk_sla.config import Priority, SLAState
from helpdesk_sla.core import (
    PolicyConflictException,
    PolicyNotFoundException,
    ResourceNotFoundException,
    SLARecordConflictException,
)
from helpdesk_sla.sla.application.dto import PolicyCreateDTO, PolicyUpdateDTO
from helpdesk_sla.sla.domain import (
    ComplianceAggregator,
    EscalationEvent,
    Policy,
    PolicyDefinition,
    SLAConfig,
    SLAEvaluator,
    SLARecord,
    SLAStats,
    TicketCursor,
    TicketSnapshot,
)
from helpdesk_sla.shared.infrastructure.logging import get_logger, log_latency

logger = get_logger(__name__)

# Backfilled history never had warnings raised
NO_LEAD = timedelta(0)


# ========== Repository Interfaces (Dependency Inversion) ==========

class ITicketRepository(ABC):
    """Read-only access to helpdesk tickets."""

    @abstractmethod
    async def tickets_without_sla(
        self,
        after: Optional[TicketCursor] = None,
        limit: int = 100
    ) -> List[TicketSnapshot]:
        """
        List tickets that have no SLA record yet.

        Ordered by (created_at, id), strictly after ``after``.
        """


class ISLARecordRepository(ABC):
    """
    Interface for SLA record data access.

    Implementations enforce one record per ticket and raise
    SLARecordConflictException when a write loses a race.
    """

    @abstractmethod
    async def get(self, ticket_id: str) -> Optional[SLARecord]:
        """Get the record owned by a ticket."""

    @abstractmethod
    async def insert(self, record: SLARecord) -> SLARecord:
        """Insert a new record; conflict if the ticket already has one."""

    @abstractmethod
    async def update(self, record: SLARecord) -> SLARecord:
        """Compare-and-swap on ``record.version``; conflict if stale."""

    async def upsert(self, record: SLARecord) -> SLARecord:
        """Insert never-persisted records, update the rest."""
        if record.is_persisted:
            return await self.update(record)
        return await self.insert(record)

    @abstractmethod
    async def list_unresolved(
        self,
        after_ticket_id: Optional[str] = None,
        limit: Optional[int] = None
    ) -> List[SLARecord]:
        """List unresolved records ordered by ticket_id."""

    @abstractmethod
    async def list_all(self) -> List[SLARecord]:
        """List every record, resolved or not."""


class IPolicyRepository(ABC):
    """Interface for SLA policy data access."""

    @abstractmethod
    async def list_active(self, priority: Priority) -> List[Policy]:
        """Active policies for a priority (normally zero or one)."""

    @abstractmethod
    async def get(self, policy_id: str) -> Optional[Policy]:
        """Get policy by ID, active or not."""

    @abstractmethod
    async def list_all(self) -> List[Policy]:
        """List every policy."""

    @abstractmethod
    async def add(self, policy: Policy) -> Policy:
        """Create new policy."""

    @abstractmethod
    async def save(self, policy: Policy) -> Policy:
        """Update existing policy."""


class IEscalationRepository(ABC):
    """Interface for the escalation outbox."""

    @abstractmethod
    async def add(self, event: EscalationEvent) -> EscalationEvent:
        """Store a new escalation event."""

    @abstractmethod
    async def list_pending(self, limit: int = 100) -> List[EscalationEvent]:
        """Events not yet delivered, oldest first."""

    @abstractmethod
    async def mark_sent(self, event_id: str, sent_at: datetime) -> EscalationEvent:
        """Mark event as delivered."""


class ISLAConfigProvider(ABC):
    """Interface for SLA configuration access."""

    @abstractmethod
    def get_config(self) -> SLAConfig:
        """Get current SLA configuration."""


class IEscalationHook(ABC):
    """Receives escalation events produced by evaluation."""

    @abstractmethod
    async def dispatch(self, events: List[EscalationEvent]) -> None:
        """Hand events over to the notifier side."""


# ========== Application Services ==========

class PolicyCatalog:
    """Read-only lookup of the active policy for a priority."""

    def __init__(self, policy_repository: IPolicyRepository):
        self._policy_repo = policy_repository

    async def find_active_policy(self, priority: Priority) -> Policy:
        """
        Get the active policy for a priority.

        Raises:
            PolicyNotFoundException: No active policy exists
        """
        priority = Priority(priority)
        candidates = await self._policy_repo.list_active(priority)

        if not candidates:
            raise PolicyNotFoundException(priority.value)

        if len(candidates) > 1:
            # Newest wins; ids break ties so the choice is stable
            candidates = sorted(
                candidates,
                key=lambda p: (p.created_at.timestamp() if p.created_at else float("-inf"), p.id),
                reverse=True
            )
            logger.warning(
                "Multiple active SLA policies for one priority",
                extra={
                    "priority": priority.value,
                    "policy_ids": [p.id for p in candidates],
                    "selected_policy_id": candidates[0].id,
                }
            )

        return candidates[0]


class SLAAssigner:
    """
    Creates the SLA record for a ticket.

    Assignment is idempotent: a ticket that already has a record gets that
    record back, and losing an insert race returns the winner's record.
    """

    def __init__(
        self,
        policy_catalog: PolicyCatalog,
        sla_repository: ISLARecordRepository,
        config_provider: ISLAConfigProvider
    ):
        self._catalog = policy_catalog
        self._sla_repo = sla_repository
        self._config_provider = config_provider

    async def assign(self, ticket: TicketSnapshot, now: Optional[datetime] = None) -> SLARecord:
        """
        Assign an SLA record to a ticket.

        Raises:
            PolicyNotFoundException: No active policy for the ticket priority
        """
        existing = await self._sla_repo.get(ticket.id)
        if existing is not None:
            return existing

        record = await self.build_record(ticket, now)
        return await self.insert_or_fetch(record)

    async def build_record(self, ticket: TicketSnapshot, now: Optional[datetime] = None) -> SLARecord:
        """Compute a fresh, unsaved record for a ticket."""
        try:
            policy = await self._catalog.find_active_policy(ticket.priority)
        except PolicyNotFoundException:
            logger.warning(
                "No active SLA policy - ticket left without SLA",
                extra={"ticket_id": ticket.id, "priority": ticket.priority.value}
            )
            raise

        calendar = self._config_provider.get_config().business_hours.build_calendar()

        return SLARecord(
            ticket_id=ticket.id,
            policy_id=policy.id,
            response_deadline=calendar.add_duration(
                ticket.created_at, policy.response_time_minutes, policy.business_hours_only
            ),
            resolution_deadline=calendar.add_duration(
                ticket.created_at, policy.resolution_time_minutes, policy.business_hours_only
            ),
            created_at=now,
            updated_at=now,
        )

    async def insert_or_fetch(self, record: SLARecord) -> SLARecord:
        """Insert ``record``; on a duplicate, return the stored record instead."""
        try:
            saved = await self._sla_repo.insert(record)
        except SLARecordConflictException:
            winner = await self._sla_repo.get(record.ticket_id)
            if winner is None:
                raise
            logger.info(
                "Concurrent SLA assignment, keeping existing record",
                extra={"ticket_id": record.ticket_id, "record_id": winner.id}
            )
            return winner

        logger.info(
            "SLA assigned",
            extra={
                "ticket_id": saved.ticket_id,
                "policy_id": saved.policy_id,
                "response_deadline": saved.response_deadline.isoformat(),
                "resolution_deadline": saved.resolution_deadline.isoformat(),
            }
        )
        return saved


class SLAEvaluationService:
    """
    Applies evaluator transforms to stored records.

    Writes use the store's compare-and-swap; a lost race re-reads the record
    and recomputes, which is safe because breach flags only ever get set.
    """

    def __init__(
        self,
        sla_repository: ISLARecordRepository,
        policy_repository: IPolicyRepository,
        escalation_hook: IEscalationHook,
        config_provider: ISLAConfigProvider,
        max_retries: int = 3
    ):
        self._sla_repo = sla_repository
        self._policy_repo = policy_repository
        self._escalation_hook = escalation_hook
        self._config_provider = config_provider
        self._max_retries = max_retries
        self._policies: Dict[str, Optional[Policy]] = {}

    async def refresh(self, record: SLARecord, now: datetime) -> Tuple[SLARecord, bool]:
        """Evaluate ``record`` at ``now`` and persist it if anything changed."""
        return await self.apply(
            record,
            lambda current, lead: SLAEvaluator.evaluate(current, now, lead),
            now
        )

    async def apply(
        self,
        record: SLARecord,
        transform: Callable[[SLARecord, timedelta], SLARecord],
        now: datetime
    ) -> Tuple[SLARecord, bool]:
        """
        Run ``transform`` on ``record`` and persist the result.

        Returns:
            Tuple of (stored record, whether a write happened)

        Raises:
            SLARecordConflictException: Still conflicting after max_retries
        """
        for attempt in range(self._max_retries):
            policy = await self._policy(record.policy_id)
            lead = policy.at_risk_lead if policy else self._config_provider.get_config().default_at_risk_lead

            updated = transform(record, lead)
            events = SLAEvaluator.transitions(record, updated, now)

            breached_now = any(e.new_status == SLAState.BREACHED for e in events)
            if breached_now and policy is not None and policy.escalation_enabled and not updated.escalated:
                updated = replace(updated, escalated=True, escalated_at=now)

            if updated == record:
                return record, False

            try:
                saved = await self._sla_repo.update(replace(updated, updated_at=now))
            except SLARecordConflictException:
                logger.warning(
                    "SLA record changed concurrently, retrying",
                    extra={"ticket_id": record.ticket_id, "attempt": attempt + 1}
                )
                fresh = await self._sla_repo.get(record.ticket_id)
                if fresh is None:
                    raise
                record = fresh
                continue

            if events:
                if policy is not None and policy.escalation_target:
                    events = [replace(e, escalation_target=policy.escalation_target) for e in events]
                await self._escalation_hook.dispatch(events)
            return saved, True

        raise SLARecordConflictException(record.ticket_id, reason="retries exhausted")

    async def _policy(self, policy_id: str) -> Optional[Policy]:
        if policy_id not in self._policies:
            self._policies[policy_id] = await self._policy_repo.get(policy_id)
        return self._policies[policy_id]


class SLALifecycleService:
    """Ticket lifecycle hook: first response and resolution milestones."""

    def __init__(
        self,
        sla_repository: ISLARecordRepository,
        evaluation_service: SLAEvaluationService
    ):
        self._sla_repo = sla_repository
        self._evaluation = evaluation_service

    async def record_first_response(self, ticket_id: str, at: datetime) -> SLARecord:
        """Record the first response; later calls are no-ops."""
        record = await self._get(ticket_id)
        saved, _ = await self._evaluation.apply(
            record,
            lambda current, lead: SLAEvaluator.record_first_response(current, at, lead),
            at
        )
        return saved

    async def record_resolution(self, ticket_id: str, at: datetime) -> SLARecord:
        """Record resolution and freeze the record; later calls are no-ops."""
        record = await self._get(ticket_id)
        saved, changed = await self._evaluation.apply(
            record,
            lambda current, lead: SLAEvaluator.record_resolution(current, at, lead),
            at
        )
        if changed:
            logger.info(
                "SLA closed",
                extra={
                    "ticket_id": ticket_id,
                    "status": saved.status.value,
                    "response_breached": saved.response_breached,
                    "resolution_breached": saved.resolution_breached,
                }
            )
        return saved

    async def _get(self, ticket_id: str) -> SLARecord:
        record = await self._sla_repo.get(ticket_id)
        if record is None:
            raise ResourceNotFoundException("SLA record", ticket_id)
        return record


@dataclass
class ReconcileReport:
    """Counters and high-water marks of a reconciliation pass."""
    created: int = 0
    evaluated: int = 0
    skipped: int = 0
    unchanged: int = 0
    conflicts: int = 0
    ticket_cursor: Optional[TicketCursor] = None
    record_cursor: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "created": self.created,
            "evaluated": self.evaluated,
            "skipped": self.skipped,
            "unchanged": self.unchanged,
            "conflicts": self.conflicts,
        }


BatchCallback = Callable[[ReconcileReport], Awaitable[None]]


class SLAReconciler:
    """
    Batch process that backfills missing records and refreshes stale ones.

    Pass 1 walks tickets that have no record, by (created_at, id), and
    assigns one. Pass 2 walks unresolved records by ticket_id and
    re-evaluates them. Both passes page with keyset cursors; ``on_batch``
    runs after every page so callers can commit and keep progress if the
    pass is interrupted.
    """

    def __init__(
        self,
        ticket_repository: ITicketRepository,
        sla_repository: ISLARecordRepository,
        assigner: SLAAssigner,
        evaluation_service: SLAEvaluationService,
        batch_size: int = 200
    ):
        self._ticket_repo = ticket_repository
        self._sla_repo = sla_repository
        self._assigner = assigner
        self._evaluation = evaluation_service
        self._batch_size = batch_size

    async def reconcile_all(
        self,
        now: datetime,
        batch_size: Optional[int] = None,
        on_batch: Optional[BatchCallback] = None,
        resume_from: Optional[ReconcileReport] = None
    ) -> ReconcileReport:
        """
        Run both reconciliation passes.

        Args:
            now: Evaluation instant
            batch_size: Page size override
            on_batch: Awaited after each page with the running report
            resume_from: Report of an interrupted pass whose cursors to continue from

        Returns:
            ReconcileReport with created/evaluated/skipped counts
        """
        size = batch_size or self._batch_size
        report = ReconcileReport()
        if resume_from is not None:
            report.ticket_cursor = resume_from.ticket_cursor
            report.record_cursor = resume_from.record_cursor

        with log_latency(logger, "sla_reconciliation", batch_size=size):
            await self._backfill(now, size, report, on_batch)
            await self._refresh(now, size, report, on_batch)

        logger.info("SLA reconciliation finished", extra=report.to_dict())
        return report

    async def _backfill(
        self,
        now: datetime,
        size: int,
        report: ReconcileReport,
        on_batch: Optional[BatchCallback]
    ) -> None:
        while True:
            tickets = await self._ticket_repo.tickets_without_sla(
                after=report.ticket_cursor, limit=size
            )
            if not tickets:
                return

            for ticket in tickets:
                await self._backfill_ticket(ticket, now, report)

            report.ticket_cursor = tickets[-1].cursor
            if on_batch is not None:
                await on_batch(report)
            if len(tickets) < size:
                return

    async def _backfill_ticket(
        self,
        ticket: TicketSnapshot,
        now: datetime,
        report: ReconcileReport
    ) -> None:
        try:
            record = await self._assigner.build_record(ticket, now)
        except PolicyNotFoundException:
            report.skipped += 1
            return

        if ticket.first_response_at is not None:
            record = SLAEvaluator.record_first_response(record, ticket.first_response_at, NO_LEAD)

        resolved_at = ticket.inferred_resolved_at
        if resolved_at is not None:
            # Freeze in its historical state instead of judging it against now
            record = SLAEvaluator.record_resolution(record, resolved_at, NO_LEAD)

        saved = await self._assigner.insert_or_fetch(record)
        if saved.id == record.id:
            report.created += 1

    async def _refresh(
        self,
        now: datetime,
        size: int,
        report: ReconcileReport,
        on_batch: Optional[BatchCallback]
    ) -> None:
        while True:
            records = await self._sla_repo.list_unresolved(
                after_ticket_id=report.record_cursor, limit=size
            )
            if not records:
                return

            for record in records:
                try:
                    _, changed = await self._evaluation.refresh(record, now)
                except SLARecordConflictException as e:
                    report.conflicts += 1
                    logger.error(
                        "Gave up refreshing SLA record",
                        extra={"ticket_id": record.ticket_id, "error": e.message}
                    )
                    continue

                if changed:
                    report.evaluated += 1
                else:
                    report.unchanged += 1

            report.record_cursor = records[-1].ticket_id
            if on_batch is not None:
                await on_batch(report)
            if len(records) < size:
                return


class SLAStatsService:
    """Fleet-wide compliance statistics for dashboards."""

    def __init__(self, sla_repository: ISLARecordRepository):
        self._sla_repo = sla_repository

    async def get_stats(self) -> SLAStats:
        records = await self._sla_repo.list_all()
        return ComplianceAggregator.summarize(records)


class PolicyService:
    """
    Policy administration.

    Validation happens here, at write time, so evaluation can assume
    well-formed policies. At most one policy per priority may be active.
    """

    def __init__(self, policy_repository: IPolicyRepository):
        self._policy_repo = policy_repository

    async def list_policies(self) -> List[Policy]:
        policies = await self._policy_repo.list_all()
        return sorted(policies, key=lambda p: (p.priority.rank, p.name))

    async def get_policy(self, policy_id: str) -> Policy:
        policy = await self._policy_repo.get(policy_id)
        if policy is None:
            raise ResourceNotFoundException("SLA policy", policy_id)
        return policy

    async def create_policy(self, data: PolicyCreateDTO, now: datetime) -> Policy:
        """
        Create a policy.

        Raises:
            ValidationException: Durations are inconsistent
            PolicyConflictException: Another active policy has this priority
        """
        policy = Policy(id=str(uuid4()), created_at=now, **data.model_dump())
        if policy.is_active:
            await self._ensure_single_active(policy)

        created = await self._policy_repo.add(policy)
        logger.info(
            "SLA policy created",
            extra={"policy_id": created.id, "priority": created.priority.value}
        )
        return created

    async def update_policy(self, policy_id: str, data: PolicyUpdateDTO) -> Policy:
        """Apply a partial update to a policy."""
        existing = await self.get_policy(policy_id)
        updated = replace(existing, **data.model_dump(exclude_unset=True))

        if updated.is_active:
            await self._ensure_single_active(updated)

        saved = await self._policy_repo.save(updated)
        logger.info("SLA policy updated", extra={"policy_id": saved.id})
        return saved

    async def deactivate_policy(self, policy_id: str) -> Policy:
        """Deactivate instead of deleting; records keep referencing it."""
        existing = await self.get_policy(policy_id)
        if not existing.is_active:
            return existing

        saved = await self._policy_repo.save(replace(existing, is_active=False))
        logger.info(
            "SLA policy deactivated",
            extra={"policy_id": saved.id, "priority": saved.priority.value}
        )
        return saved

    async def seed_defaults(self, definitions: List[PolicyDefinition], now: datetime) -> List[Policy]:
        """Create policies for priorities that have never had one."""
        existing = await self._policy_repo.list_all()
        covered = {policy.priority for policy in existing}

        created = []
        for definition in definitions:
            if Priority(definition.priority) in covered:
                continue
            policy = Policy(id=str(uuid4()), created_at=now, **definition.model_dump())
            created.append(await self._policy_repo.add(policy))

        if created:
            logger.info(
                "Seeded SLA policies",
                extra={"priorities": [p.priority.value for p in created]}
            )
        return created

    async def _ensure_single_active(self, policy: Policy) -> None:
        active = await self._policy_repo.list_active(policy.priority)
        others = [p for p in active if p.id != policy.id]
        if others:
            raise PolicyConflictException(policy.priority.value, others[0].id)
