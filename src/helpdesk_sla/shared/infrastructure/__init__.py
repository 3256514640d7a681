"""
Shared Infrastructure
=====================

Low-level technical concerns shared across modules:
- Structured JSON logging
"""
