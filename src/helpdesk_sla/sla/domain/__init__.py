"""
SLA Domain Layer
================

Domain layer for the SLA tracking engine.

Contains:
- Entities: Policy, SLARecord, TicketSnapshot, EscalationEvent, SLAStats
- Domain services: BusinessCalendar, SLAEvaluator, ComplianceAggregator
- Value Objects: SLAConfig and its parts

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from helpdesk_sla.sla.domain.entities import (
    Policy,
    SLARecord,
    TicketCursor,
    TicketSnapshot,
    EscalationEvent,
    SLAStats,
)
from helpdesk_sla.sla.domain.calendar import BusinessCalendar
from helpdesk_sla.sla.domain.evaluator import SLAEvaluator, DEFAULT_AT_RISK_LEAD
from helpdesk_sla.sla.domain.aggregator import ComplianceAggregator
from helpdesk_sla.sla.domain.value_objects import (
    SLAConfig,
    BusinessHoursConfig,
    PolicyDefinition,
)

__all__ = [
    # Entities
    "Policy",
    "SLARecord",
    "TicketCursor",
    "TicketSnapshot",
    "EscalationEvent",
    "SLAStats",
    # Domain services
    "BusinessCalendar",
    "SLAEvaluator",
    "DEFAULT_AT_RISK_LEAD",
    "ComplianceAggregator",
    # Value Objects
    "SLAConfig",
    "BusinessHoursConfig",
    "PolicyDefinition",
]
