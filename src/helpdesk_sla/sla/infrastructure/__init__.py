"""
SLA Infrastructure Layer
=========================

Infrastructure implementations for the SLA engine:
- Models: SQLAlchemy ORM models
- Repositories: Data access layer
- External: Config watcher, scheduler, escalation outbox hook
"""

from helpdesk_sla.sla.infrastructure.models import (
    TicketModel,
    PolicyModel,
    SLARecordModel,
    EscalationModel,
)
from helpdesk_sla.sla.infrastructure.repositories import (
    SQLAlchemyTicketRepository,
    SQLAlchemySLARecordRepository,
    SQLAlchemyPolicyRepository,
    SQLAlchemyEscalationRepository,
)
from helpdesk_sla.sla.infrastructure.external import (
    SLAConfigManager,
    SLAScheduler,
    OutboxEscalationHook,
)

__all__ = [
    "TicketModel",
    "PolicyModel",
    "SLARecordModel",
    "EscalationModel",
    "SQLAlchemyTicketRepository",
    "SQLAlchemySLARecordRepository",
    "SQLAlchemyPolicyRepository",
    "SQLAlchemyEscalationRepository",
    "SLAConfigManager",
    "SLAScheduler",
    "OutboxEscalationHook",
]
