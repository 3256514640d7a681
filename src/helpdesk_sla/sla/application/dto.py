"""
SLA Application DTOs
=====================

Data Transfer Objects for SLA API layer.

These Pydantic models handle serialization/deserialization and validation
for API requests and responses. Following YAGNI - only what's needed.
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from typing import List, Optional, Any, Literal
from datetime import datetime, timezone


# ========== Type Aliases for Literals ==========
PriorityStr = Literal["critical", "high", "medium", "low"]
SLATypeStr = Literal["response", "resolution"]
SLAStateStr = Literal["on_track", "at_risk", "breached"]


def _as_utc(v: Optional[datetime]) -> Optional[datetime]:
    """Naive timestamps from clients are taken as UTC."""
    if v is not None and v.tzinfo is None:
        return v.replace(tzinfo=timezone.utc)
    return v


# ========== Request DTOs ==========

class TicketAssignRequest(BaseModel):
    """Request model for assigning an SLA to a new ticket."""
    id: str = Field(..., min_length=1, description="Ticket ID")
    priority: PriorityStr = Field(..., description="Ticket priority")
    created_at: datetime = Field(..., description="Ticket creation timestamp")

    @field_validator("created_at")
    @classmethod
    def validate_created_at(cls, v: datetime) -> datetime:
        return _as_utc(v)

    def to_domain(self) -> Any:
        """Convert to domain entity."""
        from helpdesk_sla.sla.domain import TicketSnapshot

        return TicketSnapshot(id=self.id, priority=self.priority, created_at=self.created_at)


class LifecycleEventRequest(BaseModel):
    """Request model for first-response and resolution events."""
    at: Optional[datetime] = Field(
        None,
        description="When the event happened; defaults to now"
    )

    @field_validator("at")
    @classmethod
    def validate_at(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(v)


class PolicyCreateDTO(BaseModel):
    """DTO for creating an SLA policy."""
    name: str = Field(..., min_length=1, max_length=100)
    priority: PriorityStr
    response_time_minutes: int = Field(..., gt=0, description="Time to first response")
    resolution_time_minutes: int = Field(..., gt=0, description="Time to resolution")
    business_hours_only: bool = Field(default=True, description="Count business hours only")
    is_active: bool = True
    notify_before_minutes: int = Field(default=30, ge=0, description="At-risk lead time")
    escalation_enabled: bool = True
    escalation_target: Optional[str] = Field(None, max_length=200)
    description: Optional[str] = None

    @model_validator(mode="after")
    def validate_durations(self) -> "PolicyCreateDTO":
        if self.resolution_time_minutes < self.response_time_minutes:
            raise ValueError("resolution_time_minutes cannot be shorter than response_time_minutes")
        return self


class PolicyUpdateDTO(BaseModel):
    """DTO for a partial policy update; unset fields are left alone."""
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    priority: Optional[PriorityStr] = None
    response_time_minutes: Optional[int] = Field(None, gt=0)
    resolution_time_minutes: Optional[int] = Field(None, gt=0)
    business_hours_only: Optional[bool] = None
    is_active: Optional[bool] = None
    notify_before_minutes: Optional[int] = Field(None, ge=0)
    escalation_enabled: Optional[bool] = None
    escalation_target: Optional[str] = Field(None, max_length=200)
    description: Optional[str] = None

    @field_validator(
        "name", "priority", "response_time_minutes", "resolution_time_minutes",
        "business_hours_only", "is_active", "notify_before_minutes", "escalation_enabled",
        mode="before"
    )
    @classmethod
    def reject_null(cls, v: Any) -> Any:
        # Only escalation_target and description may be cleared
        if v is None:
            raise ValueError("field cannot be null")
        return v


# ========== Response DTOs ==========

class PolicyResponse(BaseModel):
    """Response model for an SLA policy."""
    id: str
    name: str
    priority: PriorityStr
    response_time_minutes: int
    resolution_time_minutes: int
    business_hours_only: bool
    is_active: bool
    notify_before_minutes: int
    escalation_enabled: bool
    escalation_target: Optional[str] = None
    description: Optional[str] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, policy: Any) -> "PolicyResponse":
        """Create from domain entity."""
        return cls(
            id=policy.id,
            name=policy.name,
            priority=policy.priority.value,
            response_time_minutes=policy.response_time_minutes,
            resolution_time_minutes=policy.resolution_time_minutes,
            business_hours_only=policy.business_hours_only,
            is_active=policy.is_active,
            notify_before_minutes=policy.notify_before_minutes,
            escalation_enabled=policy.escalation_enabled,
            escalation_target=policy.escalation_target,
            description=policy.description,
            created_at=policy.created_at
        )


class SLARecordResponse(BaseModel):
    """Response model for a ticket's SLA record."""
    id: str = Field(..., description="SLA record ID")
    ticket_id: str = Field(..., description="Ticket ID")
    policy_id: str = Field(..., description="Policy in effect at creation")
    response_deadline: datetime
    resolution_deadline: datetime
    status: SLAStateStr = Field(..., description="Current SLA state")
    response_breached: bool
    resolution_breached: bool
    first_response_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    warnings_sent: int = 0
    escalated: bool = False
    escalated_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, record: Any) -> "SLARecordResponse":
        """Create from domain entity."""
        return cls(
            id=record.id,
            ticket_id=record.ticket_id,
            policy_id=record.policy_id,
            response_deadline=record.response_deadline,
            resolution_deadline=record.resolution_deadline,
            status=record.status.value,
            response_breached=record.response_breached,
            resolution_breached=record.resolution_breached,
            first_response_at=record.first_response_at,
            resolved_at=record.resolved_at,
            warnings_sent=record.warnings_sent,
            escalated=record.escalated,
            escalated_at=record.escalated_at
        )


class AssignResponse(BaseModel):
    """Response model for SLA assignment."""
    ticket_id: str
    assigned: bool = Field(..., description="False when no active policy matched")
    record: Optional[SLARecordResponse] = None
    reason: Optional[str] = Field(None, description="Why no record was assigned")


class SLAStatsResponse(BaseModel):
    """Dashboard statistics, serialized with camelCase keys."""
    model_config = ConfigDict(populate_by_name=True)

    total: int = Field(..., description="Unresolved records")
    on_track: int = Field(..., alias="onTrack")
    at_risk: int = Field(..., alias="atRisk")
    breached: int
    response_breaches: int = Field(..., alias="responseBreaches")
    resolution_breaches: int = Field(..., alias="resolutionBreaches")
    compliance_rate: str = Field(
        ...,
        alias="complianceRate",
        description="Percentage of non-breached records, one decimal"
    )

    @classmethod
    def from_domain(cls, stats: Any) -> "SLAStatsResponse":
        """Create from domain entity."""
        return cls.model_validate(stats.to_dict())


class ReconcileResponse(BaseModel):
    """Response model for a reconciliation run."""
    created: int = Field(..., description="Records backfilled")
    evaluated: int = Field(..., description="Records whose state changed")
    skipped: int = Field(..., description="Tickets with no active policy")
    unchanged: int = Field(default=0, description="Records already up to date")
    conflicts: int = Field(default=0, description="Records abandoned after write conflicts")


class EscalationResponse(BaseModel):
    """Response model for an escalation event."""
    id: str
    ticket_id: str
    deadline_type: SLATypeStr
    previous_status: SLAStateStr
    new_status: SLAStateStr
    triggered_at: datetime
    escalation_target: Optional[str] = None
    notification_sent: bool = False
    notification_sent_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, event: Any) -> "EscalationResponse":
        """Create from domain entity."""
        return cls(
            id=event.id,
            ticket_id=event.ticket_id,
            deadline_type=event.deadline_type.value,
            previous_status=event.previous_status.value,
            new_status=event.new_status.value,
            triggered_at=event.triggered_at,
            escalation_target=event.escalation_target,
            notification_sent=event.notification_sent,
            notification_sent_at=event.notification_sent_at
        )


class EscalationListResponse(BaseModel):
    """Response model for pending escalations."""
    escalations: List[EscalationResponse]
    count: int
