"""
SLA Tracking Module
===================

Bounded Context for agency Service Level Agreements on tickets.

Responsibilities:
- Resolve the applicable SLA policy and rule for a new ticket
- Calculate response and resolution due instants in business time
- Detect overdue commitments and record breaches
- Escalate breached tickets along the agency escalation matrix
- Provide tracking, breach and escalation queries
"""

__version__ = "1.0.0"
