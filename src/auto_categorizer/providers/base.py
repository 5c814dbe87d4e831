from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from auto_categorizer.core.configuration import MAX_TRANSACTIONS_PER_REQUEST, CategorizerConfig
from auto_categorizer.domain.patterns import LearnedPatternIndex
from auto_categorizer.errors import (
    BatchTooLargeError,
    MalformedResponseError,
    NoCategoriesAvailableError,
    ProviderError,
)
from auto_categorizer.logger import get_logger
from auto_categorizer.models import AutoCategorization, CategoryInput, ProviderName, TransactionInput
from auto_categorizer.providers.categories import normalize_category_name
from auto_categorizer.providers.examples import build_examples, format_examples
from auto_categorizer.providers.parser import parse_json
from auto_categorizer.providers.prompts import RESULT_KEY, PromptPolicy
from auto_categorizer.providers.usage import UsageLedger

logger = get_logger(__name__)

OPERATION_AUTO_CATEGORIZE = "auto_categorize"


@dataclass
class Completion:
    """What an adapter got back: raw text to parse, or an already structured payload."""
    text: str | None = None
    payload: Any = None
    prompt_tokens: int = 0
    completion_tokens: int = 0


@dataclass
class ProviderResponse:
    success: bool
    data: list[AutoCategorization] = field(default_factory=list)
    error: ProviderError | None = None

    @classmethod
    def ok(cls, data: list[AutoCategorization]) -> "ProviderResponse":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: ProviderError) -> "ProviderResponse":
        return cls(success=False, error=error)

    def unwrap(self) -> list[AutoCategorization]:
        if self.error is not None:
            raise self.error
        return self.data


def parse_confidence(value: Any) -> float | None:
    """Accept 0-1 floats, percentages and numeric strings; anything else is None."""
    if value is None or isinstance(value, bool):
        return None
    percent = False
    if isinstance(value, str):
        value = value.strip()
        if value.endswith("%"):
            value = value[:-1].rstrip()
            percent = True
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        return None
    if confidence != confidence:  # NaN
        return None
    if percent or 1.0 < confidence <= 100.0:
        confidence = confidence / 100.0
    return min(max(confidence, 0.0), 1.0)


class LLMProvider(ABC):
    """
    One LLM backend behind the auto-categorization contract.

    Subclasses only implement the wire call (`_complete`) and the mapping of
    their SDK's exceptions onto the ProviderError taxonomy
    (`_translate_error`). Validation, prompting, parsing, name normalization
    and usage recording are shared.
    """

    name: ProviderName

    def __init__(
        self,
        config: CategorizerConfig,
        *,
        api_key: str | None = None,
        model: str | None = None,
        usage: UsageLedger | None = None,
        patterns: LearnedPatternIndex | None = None,
    ):
        self.config = config
        self.api_key = api_key or config.stored_api_key(self.name)
        self.model = model or config.model_for(self.name)
        self.timeout = config.request_timeout
        self.policy = PromptPolicy.from_config(config)
        self.usage = usage
        self.patterns = patterns

    @abstractmethod
    def _complete(
        self,
        instructions: str,
        transactions: Sequence[TransactionInput],
        categories: Sequence[CategoryInput],
        examples_text: str,
    ) -> Completion:
        """Send one request and return the model output."""

    @abstractmethod
    def _translate_error(self, error: Exception) -> ProviderError:
        """Map an SDK (or transport) exception onto the ProviderError taxonomy."""

    def auto_categorize(
        self,
        transactions: Sequence[TransactionInput],
        categories: Sequence[CategoryInput],
        family_id: str | None = None,
    ) -> ProviderResponse:
        """
        Categorize up to MAX_TRANSACTIONS_PER_REQUEST transactions.

        Oversized batches and empty category lists raise before any request is
        made. Provider failures come back as a failed ProviderResponse; every
        request is recorded in the usage ledger either way.
        """
        if len(transactions) > MAX_TRANSACTIONS_PER_REQUEST:
            raise BatchTooLargeError(len(transactions), MAX_TRANSACTIONS_PER_REQUEST)
        if not categories:
            raise NoCategoriesAvailableError()

        metadata = {
            "transaction_count": len(transactions),
            "category_count": len(categories),
        }
        examples = build_examples(categories, transactions, self.patterns, family_id)
        instructions = self.policy.build_instructions()

        try:
            completion = self._complete(instructions, transactions, categories, format_examples(examples))
            raw_results = self._extract_categorizations(completion)
        except ProviderError as e:
            return self._failed(e, family_id, metadata)
        except Exception as e:  # SDK and transport errors of any shape
            return self._failed(self._translate_error(e), family_id, metadata)

        results = self._build_results(raw_results, transactions, categories)
        logger.info(
            "[LLM] %s categorized %d/%d transactions (%d tokens).",
            self.name.value,
            sum(1 for r in results if r.category_name),
            len(transactions),
            completion.prompt_tokens + completion.completion_tokens,
        )
        if self.usage is not None:
            self.usage.record_success(
                family_id,
                self.model,
                OPERATION_AUTO_CATEGORIZE,
                completion.prompt_tokens,
                completion.completion_tokens,
                metadata,
            )
        return ProviderResponse.ok(results)

    def _failed(self, error: ProviderError, family_id: str | None, metadata: dict[str, Any]) -> ProviderResponse:
        if error.provider is None:
            error.provider = self.name.value
        logger.error("[LLM] %s request failed (%s): %s", self.name.value, error.kind.value, error)
        if self.usage is not None:
            self.usage.record_failure(family_id, self.model, OPERATION_AUTO_CATEGORIZE, error, metadata)
        return ProviderResponse.fail(error)

    def _extract_categorizations(self, completion: Completion) -> list[dict[str, Any]]:
        payload = completion.payload
        if payload is None:
            payload = parse_json(completion.text, RESULT_KEY)

        if isinstance(payload, dict):
            payload = payload.get(RESULT_KEY)
        if not isinstance(payload, list):
            raise MalformedResponseError(
                f"Expected a list of {RESULT_KEY}, got {type(payload).__name__}",
                provider=self.name.value,
            )
        return [item for item in payload if isinstance(item, dict)]

    def _build_results(
        self,
        raw_results: list[dict[str, Any]],
        transactions: Sequence[TransactionInput],
        categories: Sequence[CategoryInput],
    ) -> list[AutoCategorization]:
        requested = {transaction.id for transaction in transactions}
        seen: set[str] = set()
        results: list[AutoCategorization] = []
        for raw in raw_results:
            transaction_id = str(raw.get("transaction_id", ""))
            if transaction_id not in requested or transaction_id in seen:
                logger.debug("[LLM] Ignoring result for unexpected transaction id %r.", transaction_id)
                continue
            seen.add(transaction_id)
            results.append(
                AutoCategorization(
                    transaction_id=transaction_id,
                    category_name=normalize_category_name(raw.get("category_name"), categories),
                    confidence=parse_confidence(raw.get("confidence")),
                )
            )
        return results
