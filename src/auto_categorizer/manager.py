import os
from collections.abc import Iterable, Mapping
from datetime import datetime, timedelta
from typing import Any

from auto_categorizer.core.configuration import CategorizerConfig
from auto_categorizer.domain.enrichment import EnrichmentStore
from auto_categorizer.domain.patterns import LearnedPatternIndex
from auto_categorizer.domain.transactions import TransactionStore
from auto_categorizer.logger import get_logger
from auto_categorizer.models import (
    CategorizationFeedback,
    EnrichmentRecord,
    EnrichmentSource,
    LearnedPattern,
    ProviderName,
    Transaction,
)
from auto_categorizer.providers.registry import ProviderRegistry
from auto_categorizer.providers.usage import UsageLedger, estimate_auto_categorize_cost
from auto_categorizer.services.categorization import AutoCategorizer, AutoCategorizeRun
from auto_categorizer.services.feedback import FeedbackHandler

logger = get_logger(__name__)

PATTERNS_FILENAME = "learned_patterns.json"
USAGE_FILENAME = "llm_usage.jsonl"


class CategorizerService:
    """
    Wires the stores, the provider registry, the orchestrator and the
    feedback handler around one explicit configuration.
    """

    def __init__(
        self,
        config: CategorizerConfig | None = None,
        *,
        store: TransactionStore | None = None,
        persist: bool = False,
        environ: Mapping[str, str] | None = None,
        clients: Mapping[ProviderName, Any] | None = None,
    ):
        self.config = config or CategorizerConfig()
        self.store = store or TransactionStore()
        self.enrichments = EnrichmentStore()

        patterns_path = os.path.join(self.config.data_dir, PATTERNS_FILENAME) if persist else None
        usage_path = os.path.join(self.config.data_dir, USAGE_FILENAME) if persist else None
        self.patterns = LearnedPatternIndex(data_path=patterns_path)
        self.usage = UsageLedger(data_path=usage_path)

        self.registry = ProviderRegistry(
            self.config,
            environ=environ,
            usage=self.usage,
            patterns=self.patterns,
            clients=clients,
        )
        self.categorizer = AutoCategorizer(
            self.store, self.enrichments, self.patterns, self.registry, self.config
        )
        self.feedback = FeedbackHandler(self.store, self.enrichments, self.patterns)

        providers = [p.name.value for p in self.registry.list_for_concept("llm")]
        if providers:
            logger.info("LLM providers available: %s", ", ".join(providers))
        else:
            logger.warning("No LLM provider credentials found. AI categorization disabled.")

    def auto_categorize(self, family_id: str, transaction_ids: Iterable[str]) -> int:
        return self.categorizer.auto_categorize(family_id, transaction_ids)

    def run(self, family_id: str, transaction_ids: Iterable[str]) -> AutoCategorizeRun:
        return self.categorizer.run(family_id, transaction_ids)

    def auto_categorize_uncategorized(self, family_id: str) -> int:
        ids = [t.id for t in self.store.for_family(family_id) if t.category_id is None]
        return self.auto_categorize(family_id, ids)

    def approve(self, family_id: str, transaction_id: str) -> LearnedPattern | None:
        return self.feedback.approve(family_id, transaction_id)

    def reject(self, family_id: str, transaction_id: str) -> Transaction:
        return self.feedback.reject(family_id, transaction_id)

    def assign_category(self, family_id: str, transaction_id: str, category_id: str) -> LearnedPattern | None:
        return self.feedback.assign_category(family_id, transaction_id, category_id)

    def review_queue(self, family_id: str) -> list[Transaction]:
        return self.store.pending_review(family_id)

    def recent_ai_enrichments(self, hours: int = 24) -> list[EnrichmentRecord]:
        since = datetime.now() - timedelta(hours=hours)
        return self.enrichments.recent(EnrichmentSource.AI, "category_id", since)

    def accuracy(self, family_id: str, window: str = "30_days") -> dict[str, dict[str, Any]]:
        return self.feedback.accuracy_per_category(family_id, window)

    def recent_misses(self, family_id: str, category_id: str) -> list[CategorizationFeedback]:
        return self.feedback.recent_misses(family_id, category_id)

    def estimate_cost(self, family_id: str, transaction_count: int) -> float | None:
        provider = self.registry.first_available()
        model = provider.model if provider else self.config.openai_model
        category_count = len(self.store.categories_for(family_id))
        return estimate_auto_categorize_cost(transaction_count, category_count, model)

    def usage_summary(self, family_id: str) -> dict[str, Any]:
        return self.usage.summary(family_id)

    def clear_patterns(self, family_id: str | None = None) -> None:
        self.patterns.clear(family_id)
        logger.info("[PATTERN] Learned patterns cleared.")
