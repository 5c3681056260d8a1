"""
Request and outcome values passed through the invocation core.

Both are ephemeral: nothing here is persisted.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from .errors import FailureKind
from .token_counter import Prompt, TokenUsage


class OutcomeStatus(Enum):
    """Terminal status of an invocation."""
    SUCCESS = "success"
    FAILED = "failed"        # single gateway attempt failed
    ABORTED = "aborted"      # stopped before or during candidates
    EXHAUSTED = "exhausted"  # every candidate failed


@dataclass(frozen=True)
class InvocationRequest:
    """A single caller request for an AI capability."""
    capability: str
    tier: str
    user_id: str
    prompt: Prompt
    model_override: Optional[str] = None
    estimated_tokens: Optional[int] = None

    def __post_init__(self):
        """Validate identifying fields are present."""
        if not self.capability:
            raise ValueError("capability is required and cannot be empty")
        if not self.tier:
            raise ValueError("tier is required and cannot be empty")
        if not self.user_id:
            raise ValueError("user_id is required and cannot be empty")
        if self.estimated_tokens is not None and self.estimated_tokens < 0:
            raise ValueError("estimated_tokens cannot be negative")


@dataclass
class InvocationOutcome:
    """Result of a gateway attempt or a full orchestrated request.

    ``model_used`` is the model that actually answered, which differs
    from the resolved model whenever a fallback succeeded.
    """
    status: OutcomeStatus
    model_used: Optional[str] = None
    text: Optional[str] = None
    usage: Optional[TokenUsage] = None
    failure_kind: Optional[FailureKind] = None
    message: str = ""
    attempted_models: List[str] = field(default_factory=list)
    estimated_cost: Optional[float] = None
    latency_ms: Optional[float] = None
    request_id: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == OutcomeStatus.SUCCESS

    @property
    def fallback_used(self) -> bool:
        """True when a model other than the first candidate answered."""
        return bool(
            self.ok
            and self.attempted_models
            and self.model_used != self.attempted_models[0]
        )

    @classmethod
    def success(cls, model: str, text: str, usage: TokenUsage, **kwargs) -> "InvocationOutcome":
        return cls(status=OutcomeStatus.SUCCESS, model_used=model, text=text, usage=usage, **kwargs)

    @classmethod
    def failure(
        cls,
        status: OutcomeStatus,
        kind: FailureKind,
        message: str = "",
        **kwargs
    ) -> "InvocationOutcome":
        return cls(status=status, failure_kind=kind, message=message, **kwargs)
