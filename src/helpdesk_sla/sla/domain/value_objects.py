"""
SLA Value Objects
==================

Immutable configuration objects for the SLA engine.

Value objects are defined by their attributes rather than an identity.
``SLAConfig`` is loaded from YAML and may be hot-reloaded; every field has
a default so a missing file yields a working engine.
"""

from datetime import timedelta
from typing import List, Literal, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, field_validator, model_validator

from helpdesk_sla.config import settings, VALID_PRIORITIES
from helpdesk_sla.sla.domain.calendar import BusinessCalendar

PriorityStr = Literal["low", "medium", "high", "critical"]


class BusinessHoursConfig(BaseModel):
    """Business hours used by business-hours-only policies."""
    start_hour: int = Field(default=9, ge=0, le=23, description="Opening hour")
    end_hour: int = Field(default=17, ge=1, le=24, description="Closing hour")
    workdays: List[int] = Field(
        default_factory=lambda: [0, 1, 2, 3, 4],
        description="Business weekdays, Monday=0"
    )
    timezone: Optional[str] = Field(
        default=None,
        description="IANA zone name; server local time when unset"
    )

    @classmethod
    def from_settings(cls) -> "BusinessHoursConfig":
        return cls(
            start_hour=settings.sla_business_start_hour,
            end_hour=settings.sla_business_end_hour,
            timezone=settings.sla_business_timezone,
        )

    @field_validator("workdays")
    @classmethod
    def validate_workdays(cls, v: List[int]) -> List[int]:
        if not v or any(day < 0 or day > 6 for day in v):
            raise ValueError("workdays must be a non-empty list of 0-6")
        return sorted(set(v))

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"unknown time zone '{v}'") from e
        return v

    @model_validator(mode="after")
    def validate_hours(self) -> "BusinessHoursConfig":
        if self.start_hour >= self.end_hour:
            raise ValueError("start_hour must be before end_hour")
        return self

    def build_calendar(self) -> BusinessCalendar:
        """Create the calendar these hours describe."""
        return BusinessCalendar(
            start_hour=self.start_hour,
            end_hour=self.end_hour,
            workdays=self.workdays,
            tz=ZoneInfo(self.timezone) if self.timezone else None,
        )


class PolicyDefinition(BaseModel):
    """Policy template seeded into an empty policy store."""
    name: str = Field(min_length=1)
    priority: PriorityStr
    response_time_minutes: int = Field(gt=0)
    resolution_time_minutes: int = Field(gt=0)
    business_hours_only: bool = True
    notify_before_minutes: int = Field(default=30, ge=0)
    escalation_enabled: bool = True
    escalation_target: Optional[str] = None
    description: Optional[str] = None

    @model_validator(mode="after")
    def validate_durations(self) -> "PolicyDefinition":
        if self.resolution_time_minutes < self.response_time_minutes:
            raise ValueError("resolution_time_minutes cannot be shorter than response_time_minutes")
        return self


DEFAULT_SEED_POLICIES = {
    "critical": {"response_time_minutes": 30, "resolution_time_minutes": 240, "business_hours_only": False},
    "high": {"response_time_minutes": 60, "resolution_time_minutes": 480, "business_hours_only": True},
    "medium": {"response_time_minutes": 240, "resolution_time_minutes": 1440, "business_hours_only": True},
    "low": {"response_time_minutes": 480, "resolution_time_minutes": 2880, "business_hours_only": True},
}


class SLAConfig(BaseModel):
    """
    SLA engine configuration loaded from YAML.

    This is a value object - immutable and defined by its attributes.
    """
    business_hours: BusinessHoursConfig = Field(
        default_factory=BusinessHoursConfig.from_settings,
        description="Business hours for business-hours-only policies"
    )
    default_notify_before_minutes: int = Field(
        default_factory=lambda: settings.sla_default_notify_before_minutes,
        ge=0,
        description="At-risk lead time when a record's policy cannot be loaded"
    )
    seed_policies: List[PolicyDefinition] = Field(
        default_factory=list,
        validate_default=True,
        description="Policies created at startup for priorities with no policy"
    )

    @field_validator("seed_policies")
    @classmethod
    def validate_seed_policies(cls, v: List[PolicyDefinition]) -> List[PolicyDefinition]:
        """One seed per priority; priorities left out get a default."""
        seen = set()
        for definition in v:
            if definition.priority in seen:
                raise ValueError(f"duplicate seed policy for priority '{definition.priority}'")
            seen.add(definition.priority)

        for priority in VALID_PRIORITIES:
            if priority.value not in seen:
                v.append(PolicyDefinition(
                    name=f"Default {priority.value}",
                    priority=priority.value,
                    **DEFAULT_SEED_POLICIES[priority.value]
                ))

        return v

    @property
    def default_at_risk_lead(self) -> timedelta:
        return timedelta(minutes=self.default_notify_before_minutes)

    def get_seed_policy(self, priority: str) -> Optional[PolicyDefinition]:
        """Get the seed definition for a priority."""
        for definition in self.seed_policies:
            if definition.priority == priority:
                return definition
        return None
