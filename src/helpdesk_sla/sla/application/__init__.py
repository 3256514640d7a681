"""
SLA Application Layer
======================

Application layer for the SLA tracking engine.

Contains:
- Services: Orchestrate business logic and coordinate with repositories
- DTOs: Data transfer objects for API serialization

This layer depends on the domain layer and repository interfaces,
but not on concrete infrastructure implementations.
"""

from helpdesk_sla.sla.application.dto import (
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
from helpdesk_sla.sla.application.services import (
    PolicyCatalog,
    SLAAssigner,
    SLAEvaluationService,
    SLALifecycleService,
    SLAReconciler,
    ReconcileReport,
    SLAStatsService,
    PolicyService,
    ITicketRepository,
    ISLARecordRepository,
    IPolicyRepository,
    IEscalationRepository,
    ISLAConfigProvider,
    IEscalationHook,
)

__all__ = [
    # DTOs
    "TicketAssignRequest",
    "LifecycleEventRequest",
    "PolicyCreateDTO",
    "PolicyUpdateDTO",
    "PolicyResponse",
    "SLARecordResponse",
    "AssignResponse",
    "SLAStatsResponse",
    "ReconcileResponse",
    "EscalationResponse",
    "EscalationListResponse",
    # Services
    "PolicyCatalog",
    "SLAAssigner",
    "SLAEvaluationService",
    "SLALifecycleService",
    "SLAReconciler",
    "ReconcileReport",
    "SLAStatsService",
    "PolicyService",
    # Repository Interfaces
    "ITicketRepository",
    "ISLARecordRepository",
    "IPolicyRepository",
    "IEscalationRepository",
    "ISLAConfigProvider",
    "IEscalationHook",
]
