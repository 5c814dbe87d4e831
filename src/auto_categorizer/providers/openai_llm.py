import json
from collections.abc import Sequence
from typing import Any

import openai
from openai import OpenAI

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
from auto_categorizer.providers.prompts import build_user_message, categorization_schema

logger = get_logger(__name__)

SCHEMA_NAME = "auto_categorize"
STRUCTURED_OUTPUT_MARKERS = ("json_schema", "response_format", "text.format", "structured output")


def _rejects_structured_output(error: openai.BadRequestError) -> bool:
    message = (getattr(error, "message", None) or str(error)).lower()
    return any(marker in message for marker in STRUCTURED_OUTPUT_MARKERS)


class OpenAIProvider(LLMProvider):
    name = ProviderName.OPENAI

    def __init__(
        self,
        config: CategorizerConfig,
        *,
        client: Any | None = None,
        base_url: str | None = None,
        **kwargs: Any,
    ):
        super().__init__(config, **kwargs)
        self.base_url = base_url or config.openai_base_url
        self.client = client or OpenAI(
            api_key=self.api_key,
            base_url=self.base_url or None,
            timeout=self.timeout,
        )
        # OpenAI-compatible servers often reject json_schema; remembered after the first refusal.
        self.structured_output = True

    def _complete(
        self,
        instructions: str,
        transactions: Sequence[TransactionInput],
        categories: Sequence[CategoryInput],
        examples_text: str,
    ) -> Completion:
        if self.structured_output:
            message = build_user_message(transactions, categories, examples_text)
            schema = categorization_schema(transactions, categories)
            try:
                response = self.client.responses.create(
                    model=self.model,
                    instructions=instructions,
                    input=message,
                    temperature=0.0,
                    text={
                        "format": {
                            "type": "json_schema",
                            "name": SCHEMA_NAME,
                            "schema": schema,
                            "strict": True,
                        }
                    },
                )
                return self._completion(response)
            except openai.BadRequestError as e:
                if not _rejects_structured_output(e):
                    raise
                logger.warning(
                    "[LLM] openai rejected structured output for %s, retrying as plain text: %s",
                    self.model,
                    e,
                )
                self.structured_output = False

        message = build_user_message(
            transactions,
            categories,
            examples_text,
            closing='Respond ONLY with a JSON object of the form {"categorizations": [...]}.',
        )
        response = self.client.responses.create(
            model=self.model,
            instructions=instructions,
            input=message,
            temperature=0.0,
        )
        return self._completion(response)

    def _completion(self, response: object) -> Completion:
        text = self._extract_output_text(response)
        if text is None:
            raise MalformedResponseError("No output text in OpenAI response", provider=self.name.value)
        usage = getattr(response, "usage", None)
        return Completion(
            text=text,
            prompt_tokens=getattr(usage, "input_tokens", 0) or 0,
            completion_tokens=getattr(usage, "output_tokens", 0) or 0,
        )

    @staticmethod
    def _extract_output_text(response: object) -> str | None:
        output_text = getattr(response, "output_text", None)
        if isinstance(output_text, str) and output_text:
            return output_text

        output = getattr(response, "output", None)
        if not output:
            return None

        parts: list[str] = []
        for item in output:
            content = getattr(item, "content", None)
            if not content:
                continue
            for block in content:
                if getattr(block, "type", None) in {"output_text", "text"}:
                    text = getattr(block, "text", None)
                    if text:
                        parts.append(text)

        if parts:
            return "".join(parts)
        return None

    def _translate_error(self, error: Exception) -> ProviderError:
        provider = self.name.value
        # APITimeoutError subclasses APIConnectionError.
        if isinstance(error, openai.APITimeoutError):
            return ProviderTimeoutError(f"OpenAI API request timed out: {error}", provider=provider)
        if isinstance(error, openai.APIConnectionError):
            return ProviderConnectionError(f"Failed to connect to OpenAI API: {error}", provider=provider)
        if isinstance(error, openai.RateLimitError):
            return ProviderRateLimitError(
                f"OpenAI API rate limit exceeded: {error}", provider=provider, status_code=error.status_code
            )
        if isinstance(error, (openai.AuthenticationError, openai.PermissionDeniedError)):
            return ProviderAuthenticationError(
                f"OpenAI API authentication failed: {error}", provider=provider, status_code=error.status_code
            )
        if isinstance(error, openai.APIStatusError):
            return ProviderStatusError(
                f"OpenAI API error ({error.status_code}): {error}", provider=provider, status_code=error.status_code
            )
        if isinstance(error, json.JSONDecodeError):
            return MalformedResponseError(f"Invalid JSON response from OpenAI: {error}", provider=provider)
        return UnexpectedProviderError(f"Unexpected error during auto_categorize: {error}", provider=provider)
