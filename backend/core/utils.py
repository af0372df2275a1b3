"""
Utility functions for the automation engine.
"""

from datetime import datetime, timezone


def utc_now() -> datetime:
    """
    Get the current UTC datetime.

    The engine, scheduler and ledger take a ``clock`` callable defaulting
    to this function so tests can substitute a controllable one.

    Returns:
        Current datetime in UTC timezone
    """
    return datetime.now(timezone.utc)
