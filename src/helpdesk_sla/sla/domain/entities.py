"""
SLA Domain Entities
====================

Pure Python domain entities for SLA tracking.

Following Domain-Driven Design principles, these entities contain
business logic and are free of infrastructure concerns. Entities are
frozen; state changes produce new instances via ``dataclasses.replace``.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional
from uuid import uuid4

from helpdesk_sla.config import (
    SLAType, SLAState, Priority, TicketStatus, CLOSED_TICKET_STATUSES
)
from helpdesk_sla.core import ValidationException


def _new_id() -> str:
    return str(uuid4())


@dataclass(frozen=True)
class Policy:
    """
    SLA policy keyed by ticket priority.

    Policies are deactivated rather than deleted so that SLA records
    keep a valid reference to the policy that was in effect when they
    were created.
    """

    id: str
    name: str
    priority: Priority
    response_time_minutes: int
    resolution_time_minutes: int
    business_hours_only: bool = True
    is_active: bool = True
    notify_before_minutes: int = 30
    escalation_enabled: bool = True
    escalation_target: Optional[str] = None
    description: Optional[str] = None
    created_at: Optional[datetime] = None

    def __post_init__(self):
        """Validate policy durations on initialization."""
        object.__setattr__(self, "priority", Priority(self.priority))

        if self.response_time_minutes <= 0:
            raise ValidationException(
                "response_time_minutes must be positive",
                {"response_time_minutes": self.response_time_minutes}
            )
        if self.resolution_time_minutes <= 0:
            raise ValidationException(
                "resolution_time_minutes must be positive",
                {"resolution_time_minutes": self.resolution_time_minutes}
            )
        if self.resolution_time_minutes < self.response_time_minutes:
            raise ValidationException(
                "resolution_time_minutes cannot be shorter than response_time_minutes",
                {
                    "response_time_minutes": self.response_time_minutes,
                    "resolution_time_minutes": self.resolution_time_minutes,
                }
            )
        if self.notify_before_minutes < 0:
            raise ValidationException(
                "notify_before_minutes cannot be negative",
                {"notify_before_minutes": self.notify_before_minutes}
            )

    @property
    def at_risk_lead(self) -> timedelta:
        """How long before a deadline a record counts as at risk."""
        return timedelta(minutes=self.notify_before_minutes)


@dataclass(frozen=True)
class SLARecord:
    """
    Per-ticket SLA tracking record.

    A ticket owns at most one record. ``policy_id`` and both deadlines are
    frozen at creation. Breach flags only ever go from False to True, and
    the whole record is frozen once ``resolved_at`` is set.
    """

    ticket_id: str
    policy_id: str
    response_deadline: datetime
    resolution_deadline: datetime
    status: SLAState = SLAState.ON_TRACK
    response_breached: bool = False
    resolution_breached: bool = False
    first_response_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    warnings_sent: int = 0
    escalated: bool = False
    escalated_at: Optional[datetime] = None

    # Persistence bookkeeping
    id: str = field(default_factory=_new_id)
    version: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        """Validate deadline ordering."""
        object.__setattr__(self, "status", SLAState(self.status))

        if self.response_deadline > self.resolution_deadline:
            raise ValidationException(
                "response_deadline cannot be after resolution_deadline",
                {"ticket_id": self.ticket_id}
            )

    @property
    def is_resolved(self) -> bool:
        """Resolved records are frozen."""
        return self.resolved_at is not None

    @property
    def is_breached(self) -> bool:
        """Check if either deadline has been breached."""
        return self.response_breached or self.resolution_breached

    @property
    def is_persisted(self) -> bool:
        """Records with version 0 have never been written to a store."""
        return self.version > 0


@dataclass(frozen=True)
class TicketCursor:
    """Keyset position in the ticket stream, ordered by (created_at, id)."""
    created_at: datetime
    ticket_id: str


@dataclass(frozen=True)
class TicketSnapshot:
    """
    Read-only view of a helpdesk ticket.

    Tickets are owned by the helpdesk; the SLA engine never writes them.
    """

    id: str
    priority: Priority
    created_at: datetime
    status: TicketStatus = TicketStatus.OPEN
    updated_at: Optional[datetime] = None
    first_response_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None

    def __post_init__(self):
        object.__setattr__(self, "priority", Priority(self.priority))
        object.__setattr__(self, "status", TicketStatus(self.status))

    @property
    def is_closed(self) -> bool:
        """Check if the helpdesk considers the ticket finished."""
        return self.status in CLOSED_TICKET_STATUSES

    @property
    def inferred_resolved_at(self) -> Optional[datetime]:
        """
        Best available resolution instant.

        Falls back from ``resolved_at`` to ``closed_at`` and, for tickets in a
        closed status with neither timestamp, to the last update.
        """
        if self.resolved_at is not None:
            return self.resolved_at
        if self.closed_at is not None:
            return self.closed_at
        if self.is_closed:
            return self.updated_at
        return None

    @property
    def cursor(self) -> TicketCursor:
        return TicketCursor(created_at=self.created_at, ticket_id=self.id)


@dataclass
class EscalationEvent:
    """
    Escalation raised when a record first becomes at risk or breaches.

    Stored in an outbox until a notifier collaborator delivers it.
    """

    ticket_id: str
    previous_status: SLAState
    new_status: SLAState
    deadline_type: SLAType
    triggered_at: datetime
    escalation_target: Optional[str] = None

    id: Optional[str] = None
    notification_sent: bool = False
    notification_sent_at: Optional[datetime] = None


@dataclass(frozen=True)
class SLAStats:
    """
    Fleet-wide compliance statistics.

    ``total``/``on_track``/``at_risk``/``breached`` count unresolved records
    only; breach counters and the compliance rate cover all records.
    """

    total: int
    on_track: int
    at_risk: int
    breached: int
    response_breaches: int
    resolution_breaches: int
    compliance_rate: float

    @property
    def compliance_rate_str(self) -> str:
        """Compliance rate with one decimal and no percent sign."""
        return f"{self.compliance_rate:.1f}"

    def to_dict(self) -> dict:
        """Convert to the dashboard JSON shape."""
        return {
            "total": self.total,
            "onTrack": self.on_track,
            "atRisk": self.at_risk,
            "breached": self.breached,
            "responseBreaches": self.response_breaches,
            "resolutionBreaches": self.resolution_breaches,
            "complianceRate": self.compliance_rate_str,
        }
