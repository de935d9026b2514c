"""Scheduled tasks for the consent gate.

- Consent expiry sweep (pending deadlines, lapsed permissions)
- Abandoned session cleanup
- Anchor reconciliation
"""

from consent_gate.tasks.expiry_sweep import periodic_sweep, run_expiry_sweep_task

__all__ = [
    "run_expiry_sweep_task",
    "periodic_sweep",
]
