"""
SLA Tracking Module
===================

Bounded context for helpdesk Service Level Agreements.

Responsibilities:
- Assign response and resolution deadlines to tickets from priority policies
- Count business hours for business-hours-only policies
- Classify records as on_track, at_risk or breached; breaches are permanent
- Freeze records on resolution
- Backfill and refresh records in resumable batches
- Aggregate compliance statistics for dashboards
- Raise escalation events into an outbox
"""

__version__ = "1.0.0"
