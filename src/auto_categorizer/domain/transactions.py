from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from auto_categorizer.models import (
    Category,
    CategoryInput,
    Transaction,
    TransactionInput,
)

REVIEW_QUEUE_LIMIT = 50


class TransactionStore:
    """
    In-memory stand-in for the host application's transaction and category
    tables. Transactions are mutated in place; nothing is ever deleted.
    """

    def __init__(
        self,
        transactions: Iterable[Transaction] = (),
        categories: Iterable[Category] = (),
    ) -> None:
        self._transactions: dict[str, Transaction] = {}
        self._categories: dict[str, Category] = {}
        for transaction in transactions:
            self.add_transaction(transaction)
        for category in categories:
            self.add_category(category)

    def add_transaction(self, transaction: Transaction) -> Transaction:
        self._transactions[transaction.id] = transaction
        return transaction

    def add_category(self, category: Category) -> Category:
        self._categories[category.id] = category
        return category

    def get(self, family_id: str, transaction_id: str) -> Transaction | None:
        transaction = self._transactions.get(transaction_id)
        if transaction is None or transaction.family_id != family_id:
            return None
        return transaction

    def find_many(self, family_id: str, transaction_ids: Iterable[str]) -> list[Transaction]:
        found: list[Transaction] = []
        seen: set[str] = set()
        for transaction_id in transaction_ids:
            if transaction_id in seen:
                continue
            seen.add(transaction_id)
            transaction = self.get(family_id, transaction_id)
            if transaction is not None:
                found.append(transaction)
        return found

    def for_family(self, family_id: str) -> list[Transaction]:
        return [t for t in self._transactions.values() if t.family_id == family_id]

    def categories_for(self, family_id: str) -> list[Category]:
        return [c for c in self._categories.values() if c.family_id == family_id]

    def category(self, family_id: str, category_id: str | None) -> Category | None:
        if category_id is None:
            return None
        category = self._categories.get(category_id)
        if category is None or category.family_id != family_id:
            return None
        return category

    def pending_review(self, family_id: str, limit: int = REVIEW_QUEUE_LIMIT) -> list[Transaction]:
        """AI-categorized transactions still waiting for approve/reject, newest first."""
        pending = [
            t for t in self.for_family(family_id)
            if t.category_id is not None and t.ai_categorized and not t.ai_feedback_given
        ]
        pending.sort(key=lambda t: t.date.timestamp() if t.date else 0.0, reverse=True)
        return pending[:limit]


def build_transaction_input(transaction: Transaction) -> TransactionInput:
    description = " ".join(
        part for part in (transaction.description, transaction.notes) if part
    )
    return TransactionInput(
        id=transaction.id,
        amount=abs(transaction.amount),
        classification=transaction.classification,
        description=description,
        merchant=transaction.merchant_name,
    )


def build_category_input(category: Category) -> CategoryInput:
    return CategoryInput(
        id=category.id,
        name=category.name,
        classification=category.classification,
        parent_id=category.parent_id,
        is_subcategory=category.is_subcategory,
    )


def serialize_inputs(items: Iterable[TransactionInput | CategoryInput]) -> list[dict[str, Any]]:
    return [item.model_dump(mode="json") for item in items]
