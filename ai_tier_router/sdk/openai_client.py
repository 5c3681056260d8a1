"""
OpenAI model provider.

Adapts the OpenAI chat completions API to the provider contract used by
the invocation gateway.
"""

from typing import Any, Dict, List, Optional

import openai
from openai import OpenAI

from ..core.errors import ProviderError
from ..core.gateway import ProviderResponse
from ..core.token_counter import Prompt


class OpenAIProvider:
    """Chat completion provider backed by one shared OpenAI client.

    The client is created once and injected; every call reuses it.
    Failures are loud: timeouts surface as ``TimeoutError`` and API
    errors as ``ProviderError`` with the HTTP status and error code.
    """

    def __init__(
        self,
        client: Optional[OpenAI] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        **default_params: Any
    ):
        """Initialize the provider.

        Args:
            client: OpenAI client to reuse (one is built from the
                environment if omitted)
            temperature: Sampling temperature (optional)
            max_tokens: Maximum tokens to generate (optional)
            **default_params: Additional OpenAI parameters for every call
        """
        self.client = client if client is not None else OpenAI()
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.default_params = default_params

    @staticmethod
    def to_messages(prompt: Prompt) -> List[Dict[str, str]]:
        if isinstance(prompt, str):
            return [{"role": "user", "content": prompt}]
        return list(prompt)

    def call(self, model_id: str, prompt: Prompt, timeout: float) -> ProviderResponse:
        """Create a chat completion.

        Args:
            model_id: OpenAI model name
            prompt: Text or chat messages
            timeout: Request timeout in seconds

        Returns:
            ProviderResponse with the reply text and reported token usage

        Raises:
            TimeoutError: If the request timed out
            ProviderError: For an empty prompt or any API-reported failure
        """
        messages = self.to_messages(prompt)
        if not messages:
            raise ProviderError("prompt is required and cannot be empty", code="invalid_request_error")

        try:
            response = self.client.chat.completions.create(
                model=model_id,
                messages=messages,
                temperature=self.temperature,
                max_tokens=self.max_tokens,
                timeout=timeout,
                **self.default_params
            )
        except openai.APITimeoutError as e:
            raise TimeoutError(f"OpenAI request to {model_id} timed out after {timeout}s") from e
        except openai.APIStatusError as e:
            raise ProviderError(
                str(e),
                status=e.status_code,
                code=getattr(e, "code", None)
            ) from e
        except openai.APIConnectionError as e:
            raise ProviderError(f"Connection error: {e}", code="connection_error") from e

        usage = response.usage
        if not usage:
            raise ProviderError("OpenAI response missing usage information", code="missing_usage")

        text = response.choices[0].message.content if response.choices else None
        return ProviderResponse(
            text=text or "",
            prompt_tokens=usage.prompt_tokens,
            completion_tokens=usage.completion_tokens,
            request_id=response.id,
        )
