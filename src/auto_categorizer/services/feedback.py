from datetime import datetime, timedelta
from typing import Any

from auto_categorizer.domain.enrichment import EnrichmentStore
from auto_categorizer.domain.patterns import LearnedPatternIndex
from auto_categorizer.domain.transactions import TransactionStore
from auto_categorizer.errors import (
    CategoryNotFoundError,
    NotAICategorizedError,
    TransactionNotFoundError,
)
from auto_categorizer.logger import get_logger
from auto_categorizer.models import (
    CategorizationFeedback,
    EnrichmentSource,
    FeedbackType,
    LearnedPattern,
    Transaction,
)

logger = get_logger(__name__)

CATEGORY_ATTRIBUTE = "category_id"
RECENT_MISSES_LIMIT = 20

TIME_WINDOWS: dict[str, timedelta | None] = {
    "7_days": timedelta(days=7),
    "30_days": timedelta(days=30),
    "all_time": None,
}
DEFAULT_TIME_WINDOW = "30_days"


class FeedbackHandler:
    """
    Turns approve/reject decisions on AI suggestions into learned patterns
    and lock changes, and keeps a feedback log for accuracy reporting.
    """

    def __init__(
        self,
        store: TransactionStore,
        enrichments: EnrichmentStore,
        patterns: LearnedPatternIndex,
    ):
        self.store = store
        self.enrichments = enrichments
        self.patterns = patterns
        self.log: list[CategorizationFeedback] = []

    def _ai_categorized(self, family_id: str, transaction_id: str) -> Transaction:
        transaction = self.store.get(family_id, transaction_id)
        if transaction is None:
            raise TransactionNotFoundError(f"Transaction {transaction_id} not found for family {family_id}")
        if not transaction.ai_categorized or transaction.category_id is None:
            raise NotAICategorizedError(f"Transaction {transaction_id} was not categorized by AI")
        return transaction

    @staticmethod
    def _mark_feedback(transaction: Transaction, feedback: FeedbackType) -> None:
        transaction.extra.ai_feedback_given = True
        transaction.extra.ai_feedback = feedback
        transaction.extra.ai_feedback_given_at = datetime.now()

    def _latest_entry(self, family_id: str, transaction_id: str) -> CategorizationFeedback | None:
        for entry in reversed(self.log):
            if entry.family_id == family_id and entry.transaction_id == transaction_id:
                return entry
        return None

    def approve(self, family_id: str, transaction_id: str) -> LearnedPattern | None:
        """Accept the AI category and learn the merchant for next time."""
        transaction = self._ai_categorized(family_id, transaction_id)

        pattern = self.patterns.learn_from_transaction(transaction)
        if transaction.extra.ai_feedback == FeedbackType.APPROVED:
            logger.debug("[FEEDBACK] Transaction %s already approved.", transaction.id)
            return pattern

        self._mark_feedback(transaction, FeedbackType.APPROVED)
        self.log.append(
            CategorizationFeedback(
                family_id=family_id,
                transaction_id=transaction.id,
                suggested_category_id=transaction.category_id,
            )
        )
        logger.info("[FEEDBACK] Approved AI category %s for transaction %s.", transaction.category_id, transaction.id)
        return pattern

    def reject(self, family_id: str, transaction_id: str) -> Transaction:
        """Drop the AI category and make the attribute enrichable again."""
        transaction = self._ai_categorized(family_id, transaction_id)
        suggested = transaction.category_id
        previously_approved = transaction.extra.ai_feedback == FeedbackType.APPROVED

        self.enrichments.clear(transaction, CATEGORY_ATTRIBUTE)
        transaction.category_id = None
        transaction.extra.ai_categorization_confidence = None
        self._mark_feedback(transaction, FeedbackType.REJECTED)

        entry = self._latest_entry(family_id, transaction.id) if previously_approved else None
        if entry is not None:
            entry.rejected = True
        else:
            self.log.append(
                CategorizationFeedback(
                    family_id=family_id,
                    transaction_id=transaction.id,
                    suggested_category_id=suggested,
                    rejected=True,
                )
            )
        logger.info("[FEEDBACK] Rejected AI category %s for transaction %s.", suggested, transaction.id)
        return transaction

    def assign_category(self, family_id: str, transaction_id: str, category_id: str) -> LearnedPattern | None:
        """
        User picks a category. The write overrides any lock, the attribute is
        locked, a pattern is learned from the merchant, and the latest feedback
        entry for the transaction records the final category. A pending AI
        suggestion is settled by the assignment.
        """
        transaction = self.store.get(family_id, transaction_id)
        if transaction is None:
            raise TransactionNotFoundError(f"Transaction {transaction_id} not found for family {family_id}")
        if self.store.category(family_id, category_id) is None:
            raise CategoryNotFoundError(f"Category {category_id} not found for family {family_id}")

        suggested = transaction.category_id
        if transaction.ai_categorized and suggested is not None and not transaction.ai_feedback_given:
            self.log.append(
                CategorizationFeedback(
                    family_id=family_id,
                    transaction_id=transaction.id,
                    suggested_category_id=suggested,
                )
            )
            if suggested == category_id:
                self._mark_feedback(transaction, FeedbackType.APPROVED)
            else:
                transaction.extra.ai_categorization_confidence = None
                self._mark_feedback(transaction, FeedbackType.REJECTED)
            logger.info(
                "[FEEDBACK] User assigned %s over AI category %s for transaction %s.",
                category_id,
                suggested,
                transaction.id,
            )

        self.enrichments.enrich(transaction, CATEGORY_ATTRIBUTE, category_id, EnrichmentSource.USER)
        self.enrichments.lock(transaction, CATEGORY_ATTRIBUTE)

        entry = self._latest_entry(family_id, transaction_id)
        if entry is not None:
            entry.final_category_id = category_id

        return self.patterns.learn(family_id, transaction.merchant_label, category_id)

    def entries(self, family_id: str, window: str = DEFAULT_TIME_WINDOW) -> list[CategorizationFeedback]:
        span = TIME_WINDOWS.get(window, TIME_WINDOWS[DEFAULT_TIME_WINDOW])
        cutoff = datetime.now() - span if span is not None else None
        return [
            entry
            for entry in self.log
            if entry.family_id == family_id and (cutoff is None or entry.created_at >= cutoff)
        ]

    def accuracy_per_category(self, family_id: str, window: str = DEFAULT_TIME_WINDOW) -> dict[str, dict[str, Any]]:
        totals: dict[str, dict[str, Any]] = {}
        for entry in self.entries(family_id, window):
            stats = totals.setdefault(entry.suggested_category_id, {"correct": 0, "total": 0})
            stats["total"] += 1
            if entry.was_correct:
                stats["correct"] += 1
        for stats in totals.values():
            stats["accuracy"] = round(stats["correct"] / stats["total"], 2) if stats["total"] else 0.0
        return totals

    def recent_misses(
        self,
        family_id: str,
        category_id: str,
        limit: int = RECENT_MISSES_LIMIT,
    ) -> list[CategorizationFeedback]:
        misses = [
            entry
            for entry in self.log
            if entry.family_id == family_id
            and entry.suggested_category_id == category_id
            and not entry.was_correct
        ]
        misses.sort(key=lambda entry: entry.created_at, reverse=True)
        return misses[:limit]
