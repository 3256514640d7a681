"""
SLA Interfaces Layer
====================

Interface adapters (controllers) for the SLA tracking engine.

Contains:
- Controllers: FastAPI route handlers and service wiring

This is the outermost layer - handles HTTP requests/responses and
delegates to application services.
"""

from helpdesk_sla.sla.interfaces.controllers import (
    sla_router,
    build_reconciler,
    get_clock,
    get_config_provider,
)

__all__ = ["sla_router", "build_reconciler", "get_clock", "get_config_provider"]
