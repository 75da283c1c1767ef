"""
Agency SLA Engine
=================

SLA tracking, breach detection and escalation for agency tickets.
"""

__version__ = "1.0.0"
