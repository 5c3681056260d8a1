"""
Data models for storage layer.

Defines the per-user usage counters and the telemetry event record.
"""

from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional


@dataclass(frozen=True)
class UsageRecord:
    """Consumption counters for one user on one calendar day.

    Owned by the usage ledger and changed only through its increment.
    """
    user_id: str
    day: date
    chat_count: int = 0
    token_count: int = 0
    last_updated: Optional[datetime] = None

    def __post_init__(self):
        """Validate counters are not negative."""
        if self.chat_count < 0:
            raise ValueError("chat_count cannot be negative")
        if self.token_count < 0:
            raise ValueError("token_count cannot be negative")


@dataclass(frozen=True)
class InvocationEvent:
    """Immutable record of one provider attempt for telemetry.

    Append-only events; once written, these records are never modified.
    """
    timestamp: datetime
    model: str
    outcome: str
    latency_ms: float
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    capability: Optional[str] = None
    tier: Optional[str] = None
    user_id: Optional[str] = None
    estimated_cost: Optional[float] = None
    request_id: Optional[str] = None
