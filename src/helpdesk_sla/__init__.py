"""
Helpdesk SLA
============

SLA tracking engine for a helpdesk, built as a FastAPI modular monolith.
"""

__version__ = "1.0.0"
