"""
Shared Kernel Module
====================

Shared infrastructure used by the SLA engine: HTTP middleware,
exception handlers and structured logging.

DO NOT add SLA business logic to the shared kernel.
"""

__version__ = "1.0.0"
