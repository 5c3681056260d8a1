"""
Token counting and usage tracking.

Holds provider-reported token counts and a length-based size estimate
used for token budget checks before a call is made.
"""

import math
from dataclasses import dataclass
from typing import Dict, List, Union

Prompt = Union[str, List[Dict[str, str]]]

# Rough characters per token for chat models
CHARS_PER_TOKEN = 4.0


@dataclass(frozen=True)
class TokenUsage:
    """Token usage as reported by the provider.

    Contains exact token counts without estimation or model-specific logic.
    """
    prompt_tokens: int
    completion_tokens: int

    @property
    def total_tokens(self) -> int:
        """Total tokens used (prompt + completion)."""
        return self.prompt_tokens + self.completion_tokens


def prompt_text(prompt: Prompt) -> str:
    """Flatten a prompt (plain text or chat messages) into one string."""
    if isinstance(prompt, str):
        return prompt
    return "\n".join(str(message.get("content", "")) for message in prompt)


def estimate_tokens(prompt: Prompt) -> int:
    """Estimate the token size of a prompt from its length.

    Only used to gate requests before the provider reports real counts.
    """
    text = prompt_text(prompt)
    if not text:
        return 0
    return max(1, math.ceil(len(text) / CHARS_PER_TOKEN))
