import json
from collections.abc import Sequence
from typing import Any

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types

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
from auto_categorizer.models import CategoryInput, ProviderName, TransactionInput
from auto_categorizer.providers.base import Completion, LLMProvider
from auto_categorizer.providers.prompts import build_user_message, categorization_schema


class GeminiProvider(LLMProvider):
    name = ProviderName.GEMINI

    def __init__(self, config: CategorizerConfig, *, client: Any | None = None, **kwargs: Any):
        super().__init__(config, **kwargs)
        self.client = client or genai.Client(
            api_key=self.api_key,
            # milliseconds
            http_options=types.HttpOptions(timeout=int(self.timeout * 1000)),
        )

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
            closing='Respond with a JSON object of the form {"categorizations": [...]}.',
        )
        response = self.client.models.generate_content(
            model=self.model,
            contents=message,
            config=types.GenerateContentConfig(
                system_instruction=instructions,
                temperature=0,
                response_mime_type="application/json",
                response_schema=categorization_schema(transactions, categories, closed=False),
            ),
        )

        text = getattr(response, "text", None)
        if not text:
            raise MalformedResponseError("Empty response from Gemini", provider=self.name.value)

        usage = getattr(response, "usage_metadata", None)
        return Completion(
            text=text,
            prompt_tokens=getattr(usage, "prompt_token_count", 0) or 0,
            completion_tokens=getattr(usage, "candidates_token_count", 0) or 0,
        )

    def _translate_error(self, error: Exception) -> ProviderError:
        provider = self.name.value
        if isinstance(error, genai_errors.APIError):
            code = error.code
            if code == 429:
                return ProviderRateLimitError(
                    f"Gemini API rate limit exceeded: {error}", provider=provider, status_code=code
                )
            if code in (401, 403):
                return ProviderAuthenticationError(
                    f"Gemini API authentication failed: {error}", provider=provider, status_code=code
                )
            if code in (408, 504):
                return ProviderTimeoutError(f"Gemini API request timed out: {error}", provider=provider, status_code=code)
            return ProviderStatusError(f"Gemini API error ({code}): {error}", provider=provider, status_code=code)
        # TimeoutException subclasses TransportError.
        if isinstance(error, httpx.TimeoutException):
            return ProviderTimeoutError(f"Gemini API request timed out: {error}", provider=provider)
        if isinstance(error, httpx.TransportError):
            return ProviderConnectionError(f"Failed to connect to Gemini API: {error}", provider=provider)
        if isinstance(error, json.JSONDecodeError):
            return MalformedResponseError(f"Invalid JSON response from Gemini: {error}", provider=provider)
        return UnexpectedProviderError(f"Unexpected error during auto_categorize: {error}", provider=provider)
