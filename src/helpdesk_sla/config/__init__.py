"""
Configuration Module
====================

Application settings and configuration management using Pydantic.
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="helpdesk-sla", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port", ge=1, le=65535)

    # ========== Database ==========
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/helpdesk",
        description="Database connection URL (async driver)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)

    # ========== SLA Engine ==========
    sla_config_path: Path = Field(
        default=Path("sla_config.yaml"),
        description="Path to SLA engine configuration YAML file"
    )
    sla_reconcile_interval: int = Field(
        default=300,
        description="Seconds between reconciliation passes (0 disables the scheduler)",
        ge=0
    )
    sla_reconcile_batch_size: int = Field(
        default=200,
        description="Tickets/records processed per reconciliation batch",
        ge=1,
        le=10000
    )
    sla_default_notify_before_minutes: int = Field(
        default=30,
        description="At-risk lead time used when a policy does not define one",
        ge=0
    )

    # ========== Business Hours ==========
    sla_business_start_hour: int = Field(
        default=9,
        description="Business day opening hour (local time)",
        ge=0,
        le=23
    )
    sla_business_end_hour: int = Field(
        default=17,
        description="Business day closing hour (local time)",
        ge=1,
        le=24
    )
    sla_business_timezone: Optional[str] = Field(
        default=None,
        description="IANA zone for business hours (server local time when unset)"
    )

    # ========== CORS ==========
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:5173"],
        description="Allowed CORS origins"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is one of allowed values."""
        allowed = {"development", "staging", "production", "test"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v

    @model_validator(mode="after")
    def validate_business_hours(self) -> "Settings":
        """Business day must open before it closes."""
        if self.sla_business_start_hour >= self.sla_business_end_hour:
            raise ValueError("sla_business_start_hour must be before sla_business_end_hour")
        return self


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()


# ========== Constants ==========

class Priority(str, Enum):
    """Ticket priority levels, lowest first."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return VALID_PRIORITIES.index(self)


class TicketStatus(str, Enum):
    """Ticket lifecycle statuses (as reported by the helpdesk)."""
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    PENDING = "pending"
    RESOLVED = "resolved"
    CLOSED = "closed"


class SLAType(str, Enum):
    """Types of SLA clocks."""
    RESPONSE = "response"
    RESOLUTION = "resolution"


class SLAState(str, Enum):
    """SLA status states."""
    ON_TRACK = "on_track"
    AT_RISK = "at_risk"
    BREACHED = "breached"


# ========== Lists for validation ==========

VALID_PRIORITIES = [
    Priority.LOW, Priority.MEDIUM,
    Priority.HIGH, Priority.CRITICAL
]
CLOSED_TICKET_STATUSES = [TicketStatus.RESOLVED, TicketStatus.CLOSED]
