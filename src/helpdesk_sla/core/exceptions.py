"""
Core Exceptions
================

Custom exceptions for the application following clean architecture principles.

These exceptions define domain-specific errors that can be caught and handled
appropriately at the application boundaries.
"""

from typing import Optional


class ApplicationException(Exception):
    """Base exception for all application errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class DomainException(ApplicationException):
    """Base exception for domain logic violations."""


class RepositoryException(ApplicationException):
    """Base exception for repository/data access errors."""


class ValidationException(ApplicationException):
    """Exception for validation errors."""


class ResourceNotFoundException(ApplicationException):
    """Exception when a requested resource is not found."""

    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[str] = None,
        details: Optional[dict] = None
    ):
        self.resource_type = resource_type
        self.resource_id = resource_id
        message = f"{resource_type}"
        if resource_id:
            message += f" with id '{resource_id}'"
        message += " not found"
        super().__init__(message, details)


class ConfigurationException(ApplicationException):
    """Exception for configuration errors."""


class PolicyNotFoundException(DomainException):
    """No active SLA policy exists for a priority."""

    def __init__(self, priority: str, details: Optional[dict] = None):
        self.priority = priority
        super().__init__(
            f"No active SLA policy for priority '{priority}'",
            details or {"priority": priority}
        )


class PolicyConflictException(ValidationException):
    """A policy write would leave two active policies for one priority."""

    def __init__(self, priority: str, existing_policy_id: str):
        self.priority = priority
        self.existing_policy_id = existing_policy_id
        super().__init__(
            f"An active SLA policy already exists for priority '{priority}'",
            {"priority": priority, "existing_policy_id": existing_policy_id}
        )


class SLARecordConflictException(RepositoryException):
    """
    Raised by the SLA store when a write loses a race.

    Either another writer already inserted a record for the same ticket,
    or the stored record's version moved on since it was read.
    """

    def __init__(self, ticket_id: str, reason: str = "duplicate"):
        self.ticket_id = ticket_id
        self.reason = reason
        super().__init__(
            f"SLA record write conflict for ticket {ticket_id} ({reason})",
            {"ticket_id": ticket_id, "reason": reason}
        )
