import json
from collections.abc import Sequence
from typing import Any

import anthropic
from anthropic import Anthropic

from auto_categorizer.core.configuration import CategorizerConfig
from auto_categorizer.errors import (
    MalformedResponseError,
    ProviderAuthenticationError,
    ProviderConnectionError,
    ProviderError,
    ProviderRateLimitError,
    ProviderStatusError,
    ProviderTimeoutError,
    UnexpectedProviderError,
)
from auto_categorizer.logger import get_logger
from auto_categorizer.models import CategoryInput, ProviderName, TransactionInput
from auto_categorizer.providers.base import Completion, LLMProvider
from auto_categorizer.providers.prompts import (
    TOOL_DESCRIPTION,
    TOOL_NAME,
    build_user_message,
    categorization_schema,
)

logger = get_logger(__name__)

MAX_TOKENS = 4096


class AnthropicProvider(LLMProvider):
    """Claude models, with structured output through a forced tool call."""

    name = ProviderName.ANTHROPIC

    def __init__(self, config: CategorizerConfig, *, client: Any | None = None, **kwargs: Any):
        super().__init__(config, **kwargs)
        self.client = client or Anthropic(api_key=self.api_key, timeout=self.timeout)

    def _complete(
        self,
        instructions: str,
        transactions: Sequence[TransactionInput],
        categories: Sequence[CategoryInput],
        examples_text: str,
    ) -> Completion:
        message = build_user_message(
            transactions,
            categories,
            examples_text,
            closing=f"Use the {TOOL_NAME} tool to provide your categorizations.",
        )
        response = self.client.messages.create(
            model=self.model,
            max_tokens=MAX_TOKENS,
            system=instructions,
            messages=[{"role": "user", "content": message}],
            tools=[
                {
                    "name": TOOL_NAME,
                    "description": TOOL_DESCRIPTION,
                    "input_schema": categorization_schema(transactions, categories),
                }
            ],
            tool_choice={"type": "tool", "name": TOOL_NAME},
        )

        usage = getattr(response, "usage", None)
        prompt_tokens = getattr(usage, "input_tokens", 0) or 0
        completion_tokens = getattr(usage, "output_tokens", 0) or 0

        blocks = list(getattr(response, "content", None) or [])
        tool_block = next((b for b in blocks if getattr(b, "type", None) == "tool_use"), None)
        if tool_block is not None:
            return Completion(
                payload=getattr(tool_block, "input", None),
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
            )

        # Some models answer in text despite the forced tool.
        text_block = next((b for b in blocks if getattr(b, "type", None) == "text"), None)
        if text_block is None:
            logger.error(
                "[LLM] No tool_use or text content in anthropic response. Content types: %s",
                [getattr(b, "type", None) for b in blocks],
            )
            raise MalformedResponseError("No tool_use or text content found in response", provider=self.name.value)
        return Completion(
            text=text_block.text,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
        )

    def _translate_error(self, error: Exception) -> ProviderError:
        provider = self.name.value
        if isinstance(error, anthropic.APITimeoutError):
            return ProviderTimeoutError(f"Anthropic API request timed out: {error}", provider=provider)
        if isinstance(error, anthropic.APIConnectionError):
            return ProviderConnectionError(f"Failed to connect to Anthropic API: {error}", provider=provider)
        if isinstance(error, anthropic.RateLimitError):
            return ProviderRateLimitError(
                f"Anthropic API rate limit exceeded: {error}", provider=provider, status_code=error.status_code
            )
        if isinstance(error, (anthropic.AuthenticationError, anthropic.PermissionDeniedError)):
            return ProviderAuthenticationError(
                f"Anthropic API authentication failed: {error}", provider=provider, status_code=error.status_code
            )
        if isinstance(error, anthropic.APIStatusError):
            return ProviderStatusError(
                f"Anthropic API error ({error.status_code}): {error}",
                provider=provider,
                status_code=error.status_code,
            )
        if isinstance(error, json.JSONDecodeError):
            return MalformedResponseError(f"Invalid JSON response from Anthropic: {error}", provider=provider)
        return UnexpectedProviderError(f"Unexpected error during auto_categorize: {error}", provider=provider)
