"""
Google Workspace integration package (Gmail, Calendar).

All Google API clients use circuit breaker protection and exponential backoff
retry for transient failures. See utils/resilience.py for implementation details.
"""

from .calendar import CalendarClient
from .gmail import GmailClient

__all__ = [
    "CalendarClient",
    "GmailClient",
]
