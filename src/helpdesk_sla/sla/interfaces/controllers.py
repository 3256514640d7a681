"""
SLA Controllers (API Routes)
=============================

FastAPI routes for the SLA tracking engine.

Controllers are thin - they delegate to application services. Errors
raised by services (not found, conflicts, validation) are translated to
HTTP responses by the application exception handler.
"""

from typing import List, Optional
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk_sla.config import settings
from helpdesk_sla.core import PolicyNotFoundException, ResourceNotFoundException
from helpdesk_sla.infrastructure.database import get_session
from helpdesk_sla.sla.application import (
    ISLAConfigProvider,
    PolicyCatalog,
    PolicyService,
    SLAAssigner,
    SLAEvaluationService,
    SLALifecycleService,
    SLAReconciler,
    SLAStatsService,
    ReconcileReport,
    TicketAssignRequest,
    LifecycleEventRequest,
    PolicyCreateDTO,
    PolicyUpdateDTO,
    PolicyResponse,
    SLARecordResponse,
    AssignResponse,
    SLAStatsResponse,
    ReconcileResponse,
    EscalationResponse,
    EscalationListResponse,
)
from helpdesk_sla.sla.infrastructure import (
    SQLAlchemyTicketRepository,
    SQLAlchemySLARecordRepository,
    SQLAlchemyPolicyRepository,
    SQLAlchemyEscalationRepository,
    OutboxEscalationHook,
)
from helpdesk_sla.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/sla", tags=["SLA Tracking"])


# ========== Example payloads for Swagger ==========

SLA_RECORD_EXAMPLE = {
    "ticket_id": "TCK-1001",
    "policy_id": "4f1c2a9e-8d7b-4a51-9f0e-1b6c7d2e3a45",
    "response_deadline": "2024-01-22T09:30:00Z",
    "resolution_deadline": "2024-01-22T16:30:00Z",
    "status": "on_track",
    "response_breached": False,
    "resolution_breached": False,
    "first_response_at": None,
    "resolved_at": None,
    "warnings_sent": 0,
    "escalated": False,
    "escalated_at": None
}

STATS_EXAMPLE = {
    "total": 42,
    "onTrack": 35,
    "atRisk": 4,
    "breached": 3,
    "responseBreaches": 5,
    "resolutionBreaches": 2,
    "complianceRate": "91.7"
}


# ========== Dependencies ==========

def get_clock() -> datetime:
    """Current instant; overridden in tests to pin time."""
    return datetime.now(timezone.utc)


def get_config_provider(request: Request) -> ISLAConfigProvider:
    """SLA config manager created at startup."""
    return request.app.state.sla_config_manager


def build_evaluation_service(
    session: AsyncSession,
    config_provider: ISLAConfigProvider
) -> SLAEvaluationService:
    """Wire an evaluation service onto one database session."""
    return SLAEvaluationService(
        SQLAlchemySLARecordRepository(session),
        SQLAlchemyPolicyRepository(session),
        OutboxEscalationHook(SQLAlchemyEscalationRepository(session)),
        config_provider
    )


def build_assigner(session: AsyncSession, config_provider: ISLAConfigProvider) -> SLAAssigner:
    return SLAAssigner(
        PolicyCatalog(SQLAlchemyPolicyRepository(session)),
        SQLAlchemySLARecordRepository(session),
        config_provider
    )


def build_reconciler(
    session: AsyncSession,
    config_provider: ISLAConfigProvider,
    batch_size: Optional[int] = None
) -> SLAReconciler:
    """Wire a reconciler; shared by the endpoint and the scheduled job."""
    return SLAReconciler(
        SQLAlchemyTicketRepository(session),
        SQLAlchemySLARecordRepository(session),
        build_assigner(session, config_provider),
        build_evaluation_service(session, config_provider),
        batch_size=batch_size or settings.sla_reconcile_batch_size
    )


async def get_assigner(
    session: AsyncSession = Depends(get_session),
    config_provider: ISLAConfigProvider = Depends(get_config_provider)
) -> SLAAssigner:
    """Get SLA assigner instance."""
    return build_assigner(session, config_provider)


async def get_lifecycle_service(
    session: AsyncSession = Depends(get_session),
    config_provider: ISLAConfigProvider = Depends(get_config_provider)
) -> SLALifecycleService:
    """Get SLA lifecycle service instance."""
    return SLALifecycleService(
        SQLAlchemySLARecordRepository(session),
        build_evaluation_service(session, config_provider)
    )


async def get_stats_service(
    session: AsyncSession = Depends(get_session)
) -> SLAStatsService:
    """Get SLA stats service instance."""
    return SLAStatsService(SQLAlchemySLARecordRepository(session))


async def get_policy_service(
    session: AsyncSession = Depends(get_session)
) -> PolicyService:
    """Get policy service instance."""
    return PolicyService(SQLAlchemyPolicyRepository(session))


# ========== Ticket SLA Routes ==========

@router.post(
    "/tickets",
    response_model=AssignResponse,
    summary="Assign an SLA to a ticket",
    description="""
    Create the SLA record for a newly created ticket.

    **Idempotent**: A ticket that already has a record gets the existing
    record back. Concurrent calls for the same ticket produce exactly one
    record.

    **Deadlines** are computed from `created_at` using the active policy for
    the ticket priority. Business-hours policies count only opening hours
    (Mon-Fri 09:00-17:00 by default).

    When no active policy matches the priority, no record is created and
    `assigned` is `false`.

    **Example Request**:
    ```json
    {
        "id": "TCK-1001",
        "priority": "high",
        "created_at": "2024-01-19T16:30:00Z"
    }
    ```
    """,
    responses={
        200: {
            "description": "SLA assigned (or already present)",
            "content": {
                "application/json": {
                    "example": {
                        "ticket_id": "TCK-1001",
                        "assigned": True,
                        "record": SLA_RECORD_EXAMPLE,
                        "reason": None
                    }
                }
            }
        }
    }
)
async def assign_sla(
    request: TicketAssignRequest,
    session: AsyncSession = Depends(get_session),
    assigner: SLAAssigner = Depends(get_assigner),
    now: datetime = Depends(get_clock)
):
    try:
        record = await assigner.assign(request.to_domain(), now)
    except PolicyNotFoundException as e:
        return AssignResponse(ticket_id=request.id, assigned=False, reason=e.message)

    await session.commit()

    return AssignResponse(
        ticket_id=request.id,
        assigned=True,
        record=SLARecordResponse.from_domain(record)
    )


@router.get(
    "/tickets/{ticket_id}",
    response_model=SLARecordResponse,
    summary="Get ticket SLA record",
    description="""
    Get the stored SLA record of a ticket: deadlines, status, breach flags
    and milestones. Status reflects the last evaluation (lifecycle event or
    reconciliation pass).
    """,
    responses={
        200: {
            "description": "Ticket SLA record",
            "content": {
                "application/json": {
                    "example": SLA_RECORD_EXAMPLE
                }
            }
        },
        404: {
            "description": "Ticket has no SLA record"
        }
    }
)
async def get_ticket_sla(
    ticket_id: str,
    session: AsyncSession = Depends(get_session)
):
    record = await SQLAlchemySLARecordRepository(session).get(ticket_id)
    if record is None:
        raise ResourceNotFoundException("SLA record", ticket_id)
    return SLARecordResponse.from_domain(record)


@router.post(
    "/tickets/{ticket_id}/first-response",
    response_model=SLARecordResponse,
    summary="Record the first response on a ticket",
    description="""
    Record the first agent response. A response after the response
    deadline is recorded as a response breach. Only the first call has an
    effect; later calls return the record unchanged.
    """
)
async def record_first_response(
    ticket_id: str,
    event: Optional[LifecycleEventRequest] = None,
    session: AsyncSession = Depends(get_session),
    lifecycle: SLALifecycleService = Depends(get_lifecycle_service),
    now: datetime = Depends(get_clock)
):
    at = (event.at if event else None) or now
    record = await lifecycle.record_first_response(ticket_id, at)
    await session.commit()
    return SLARecordResponse.from_domain(record)


@router.post(
    "/tickets/{ticket_id}/resolve",
    response_model=SLARecordResponse,
    summary="Record ticket resolution",
    description="""
    Record resolution and freeze the SLA record. Breach flags are settled
    as of the resolution time; the final status is `breached` if either
    deadline was missed, otherwise `on_track`. Later calls return the
    frozen record unchanged.
    """
)
async def record_resolution(
    ticket_id: str,
    event: Optional[LifecycleEventRequest] = None,
    session: AsyncSession = Depends(get_session),
    lifecycle: SLALifecycleService = Depends(get_lifecycle_service),
    now: datetime = Depends(get_clock)
):
    at = (event.at if event else None) or now
    record = await lifecycle.record_resolution(ticket_id, at)
    await session.commit()
    return SLARecordResponse.from_domain(record)


# ========== Dashboard & Reconciliation ==========

@router.get(
    "/stats",
    response_model=SLAStatsResponse,
    summary="Get SLA compliance statistics",
    description="""
    Fleet-wide SLA statistics for dashboards.

    - `total`, `onTrack`, `atRisk`, `breached`: currently unresolved records
    - `responseBreaches`, `resolutionBreaches`: all-time breach counts
    - `complianceRate`: share of all records never breached, one decimal
      (`"100.0"` when there are no records)
    """,
    responses={
        200: {
            "description": "Compliance statistics",
            "content": {
                "application/json": {
                    "example": STATS_EXAMPLE
                }
            }
        }
    }
)
async def get_stats(
    stats_service: SLAStatsService = Depends(get_stats_service)
):
    stats = await stats_service.get_stats()
    return SLAStatsResponse.from_domain(stats)


@router.post(
    "/reconcile",
    response_model=ReconcileResponse,
    summary="Run an SLA reconciliation pass",
    description="""
    Backfill SLA records for tickets that lack one, then re-evaluate every
    unresolved record. Safe to run repeatedly: a second run with no new
    tickets creates nothing. Progress is committed after every batch.

    The same pass runs in the background every `SLA_RECONCILE_INTERVAL`
    seconds.
    """
)
async def reconcile(
    batch_size: Optional[int] = Query(None, ge=1, le=5000, description="Page size"),
    session: AsyncSession = Depends(get_session),
    config_provider: ISLAConfigProvider = Depends(get_config_provider),
    now: datetime = Depends(get_clock)
):
    async def commit_batch(report: ReconcileReport) -> None:
        await session.commit()

    reconciler = build_reconciler(session, config_provider, batch_size)
    report = await reconciler.reconcile_all(now, on_batch=commit_batch)
    await session.commit()

    return ReconcileResponse(**report.to_dict())


# ========== Policy Administration ==========

@router.get(
    "/policies",
    response_model=List[PolicyResponse],
    summary="List SLA policies"
)
async def list_policies(
    policy_service: PolicyService = Depends(get_policy_service)
):
    policies = await policy_service.list_policies()
    return [PolicyResponse.from_domain(p) for p in policies]


@router.post(
    "/policies",
    response_model=PolicyResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create an SLA policy",
    description="""
    Create a policy for a priority. Only one policy per priority may be
    active; creating a second active one returns 409. Existing SLA records
    keep the deadlines they were created with.
    """
)
async def create_policy(
    data: PolicyCreateDTO,
    session: AsyncSession = Depends(get_session),
    policy_service: PolicyService = Depends(get_policy_service),
    now: datetime = Depends(get_clock)
):
    policy = await policy_service.create_policy(data, now)
    await session.commit()
    return PolicyResponse.from_domain(policy)


@router.get(
    "/policies/{policy_id}",
    response_model=PolicyResponse,
    summary="Get an SLA policy"
)
async def get_policy(
    policy_id: str,
    policy_service: PolicyService = Depends(get_policy_service)
):
    policy = await policy_service.get_policy(policy_id)
    return PolicyResponse.from_domain(policy)


@router.patch(
    "/policies/{policy_id}",
    response_model=PolicyResponse,
    summary="Update an SLA policy"
)
async def update_policy(
    policy_id: str,
    data: PolicyUpdateDTO,
    session: AsyncSession = Depends(get_session),
    policy_service: PolicyService = Depends(get_policy_service)
):
    policy = await policy_service.update_policy(policy_id, data)
    await session.commit()
    return PolicyResponse.from_domain(policy)


@router.delete(
    "/policies/{policy_id}",
    response_model=PolicyResponse,
    summary="Deactivate an SLA policy",
    description="""
    Policies are never deleted; records created under them keep a valid
    reference. Deactivating leaves the priority without a policy until a
    new one is created.
    """
)
async def deactivate_policy(
    policy_id: str,
    session: AsyncSession = Depends(get_session),
    policy_service: PolicyService = Depends(get_policy_service)
):
    policy = await policy_service.deactivate_policy(policy_id)
    await session.commit()
    return PolicyResponse.from_domain(policy)


# ========== Escalation Outbox ==========

@router.get(
    "/escalations",
    response_model=EscalationListResponse,
    summary="List pending escalations",
    description="""
    Escalation events not yet delivered by the notifier, oldest first.
    Events are raised when a record first becomes at risk and when a
    deadline is breached.
    """
)
async def list_escalations(
    limit: int = Query(100, ge=1, le=1000, description="Maximum events"),
    session: AsyncSession = Depends(get_session)
):
    events = await SQLAlchemyEscalationRepository(session).list_pending(limit=limit)
    return EscalationListResponse(
        escalations=[EscalationResponse.from_domain(e) for e in events],
        count=len(events)
    )


@router.post(
    "/escalations/{escalation_id}/ack",
    response_model=EscalationResponse,
    summary="Acknowledge an escalation",
    description="Mark an escalation as delivered so it leaves the pending list."
)
async def acknowledge_escalation(
    escalation_id: str,
    session: AsyncSession = Depends(get_session),
    now: datetime = Depends(get_clock)
):
    event = await SQLAlchemyEscalationRepository(session).mark_sent(escalation_id, now)
    await session.commit()
    return EscalationResponse.from_domain(event)


# Export router for inclusion in main app
sla_router = router
