from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass, field
from typing import TypeVar

from auto_categorizer.core.configuration import CategorizerConfig
from auto_categorizer.domain.enrichment import EnrichmentStore
from auto_categorizer.domain.patterns import LearnedPatternIndex
from auto_categorizer.domain.transactions import (
    TransactionStore,
    build_category_input,
    build_transaction_input,
)
from auto_categorizer.errors import NoProviderConfiguredError, ProviderError
from auto_categorizer.logger import get_logger
from auto_categorizer.models import (
    AutoCategorization,
    CategoryInput,
    EnrichmentSource,
    Transaction,
)
from auto_categorizer.providers.registry import ProviderRegistry

logger = get_logger(__name__)

CATEGORY_ATTRIBUTE = "category_id"
DEFAULT_CONFIDENCE = 1.0

T = TypeVar("T")


def chunked(items: Sequence[T], size: int) -> Iterator[list[T]]:
    for start in range(0, len(items), size):
        yield list(items[start:start + size])


@dataclass
class AutoCategorizeRun:
    """Outcome of one orchestrator invocation."""
    family_id: str
    candidate_count: int = 0
    pattern_count: int = 0
    ai_count: int = 0
    unmatched_ids: list[str] = field(default_factory=list)
    provider: str | None = None
    no_categories: bool = False
    no_provider: bool = False
    error: ProviderError | None = None

    @property
    def modified_count(self) -> int:
        return self.pattern_count + self.ai_count


class AutoCategorizer:
    """
    Categorizes a family's uncategorized transactions.

    Learned patterns are applied first; whatever is left goes to one LLM
    provider in batches. Every successful write locks `category_id` so later
    automatic runs leave it alone.
    """

    def __init__(
        self,
        store: TransactionStore,
        enrichments: EnrichmentStore,
        patterns: LearnedPatternIndex,
        registry: ProviderRegistry,
        config: CategorizerConfig,
    ):
        self.store = store
        self.enrichments = enrichments
        self.patterns = patterns
        self.registry = registry
        self.config = config

    def candidates(self, family_id: str, transaction_ids: Iterable[str]) -> list[Transaction]:
        return [
            transaction
            for transaction in self.store.find_many(family_id, transaction_ids)
            if transaction.category_id is None
            and self.enrichments.is_enrichable(transaction, CATEGORY_ATTRIBUTE)
        ]

    def run(self, family_id: str, transaction_ids: Iterable[str]) -> AutoCategorizeRun:
        run = AutoCategorizeRun(family_id=family_id)
        candidates = self.candidates(family_id, transaction_ids)
        run.candidate_count = len(candidates)

        if not candidates:
            logger.info("[AUTO-CATEGORIZE] No transactions to auto-categorize for family %s.", family_id)
            return run
        logger.info(
            "[AUTO-CATEGORIZE] Auto-categorizing %d transactions for family %s.",
            len(candidates),
            family_id,
        )

        run.pattern_count = self.apply_learned_patterns(family_id, candidates)

        remaining = [t for t in candidates if t.category_id is None]
        if not remaining:
            logger.info("[AUTO-CATEGORIZE] All transactions categorized via learned patterns for family %s.", family_id)
            return run

        categories = [build_category_input(c) for c in self.store.categories_for(family_id)]
        if not categories:
            logger.error(
                "[AUTO-CATEGORIZE] Skipping AI pass for family %s: no categories available.",
                family_id,
            )
            run.no_categories = True
            run.unmatched_ids = [t.id for t in remaining]
            return run

        provider = self.registry.first_available()
        if provider is None:
            logger.error("[AUTO-CATEGORIZE] No LLM provider configured for family %s.", family_id)
            run.no_provider = True
            run.unmatched_ids = [t.id for t in remaining]
            return run
        run.provider = provider.name.value

        logger.info(
            "[AUTO-CATEGORIZE] Running AI categorization (%s) for %d remaining transactions.",
            provider.name.value,
            len(remaining),
        )
        for batch in chunked(remaining, self.config.request_batch_size):
            response = provider.auto_categorize(
                [build_transaction_input(t) for t in batch],
                categories,
                family_id=family_id,
            )
            if not response.success:
                run.error = response.error
                logger.error(
                    "[AUTO-CATEGORIZE] AI pass aborted for family %s: %s",
                    family_id,
                    response.error,
                )
                break
            run.ai_count += self.apply_ai_results(batch, response.data, categories)

        run.unmatched_ids = [t.id for t in remaining if t.category_id is None]
        logger.info(
            "[AUTO-CATEGORIZE] Family %s: %d via patterns, %d via AI, %d unmatched.",
            family_id,
            run.pattern_count,
            run.ai_count,
            len(run.unmatched_ids),
        )
        return run

    def auto_categorize(self, family_id: str, transaction_ids: Iterable[str]) -> int:
        """
        Run and return the number of modified transactions.

        Raises NoProviderConfiguredError when the AI pass was needed but no
        provider exists, and the provider's error when the AI pass failed
        without anything having been modified.
        """
        run = self.run(family_id, transaction_ids)
        if run.no_provider:
            raise NoProviderConfiguredError(modified_count=run.modified_count)
        if run.error is not None and run.modified_count == 0:
            raise run.error
        return run.modified_count

    def apply_learned_patterns(self, family_id: str, transactions: Iterable[Transaction]) -> int:
        modified = 0
        for transaction in transactions:
            category_id = self.patterns.category_for(family_id, transaction.merchant_label)
            if category_id is None or self.store.category(family_id, category_id) is None:
                continue
            changed = self.enrichments.enrich(
                transaction, CATEGORY_ATTRIBUTE, category_id, EnrichmentSource.LEARNED_PATTERN
            )
            self.enrichments.lock(transaction, CATEGORY_ATTRIBUTE)
            if changed:
                modified += 1
        if modified:
            logger.info("[PATTERN] Applied %d learned patterns for family %s.", modified, family_id)
        return modified

    def apply_ai_results(
        self,
        transactions: Iterable[Transaction],
        results: Sequence[AutoCategorization],
        categories: Sequence[CategoryInput],
    ) -> int:
        ids_by_name = {category.name: category.id for category in categories}
        results_by_id = {result.transaction_id: result for result in results}
        modified = 0

        for transaction in transactions:
            result = results_by_id.get(transaction.id)
            if result is None or result.category_name is None:
                continue
            category_id = ids_by_name.get(result.category_name)
            if category_id is None:
                logger.debug(
                    "[AUTO-CATEGORIZE] Unknown category '%s' for transaction %s.",
                    result.category_name,
                    transaction.id,
                )
                continue

            changed = self.enrichments.enrich(transaction, CATEGORY_ATTRIBUTE, category_id, EnrichmentSource.AI)
            if changed:
                confidence = result.confidence if result.confidence is not None else DEFAULT_CONFIDENCE
                transaction.extra.ai_categorization_confidence = confidence
                # A fresh suggestion goes back into the review queue.
                transaction.extra.ai_feedback_given = False
                transaction.extra.ai_feedback = None
                transaction.extra.ai_feedback_given_at = None
                modified += 1
            self.enrichments.lock(transaction, CATEGORY_ATTRIBUTE)
        return modified
