from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from auto_categorizer.domain.patterns import LearnedPatternIndex
from auto_categorizer.models import CategoryInput, TransactionInput

MAX_DYNAMIC_EXAMPLES = 3


@dataclass(frozen=True)
class FewShotExample:
    description: str
    category: str

    def format(self) -> str:
        return f"Transaction: {self.description} → Category: {self.category}"


STATIC_EXAMPLES: tuple[FewShotExample, ...] = (
    FewShotExample("WHOLE FOODS MARKET", "Groceries"),
    FewShotExample("SHELL SERVICE STATION", "Gas & Fuel"),
    FewShotExample("STARBUCKS", "Coffee Shops"),
    FewShotExample("NETFLIX", "Streaming Services"),
    FewShotExample("CHIPOTLE", "Restaurants"),
)


def static_examples(categories: Sequence[CategoryInput]) -> list[FewShotExample]:
    """Well-known merchants, only for categories the family actually has."""
    names = {category.name for category in categories}
    return [example for example in STATIC_EXAMPLES if example.category in names]


def dynamic_examples(
    patterns: LearnedPatternIndex | None,
    family_id: str | None,
    transactions: Iterable[TransactionInput],
    categories: Sequence[CategoryInput],
    limit: int = MAX_DYNAMIC_EXAMPLES,
) -> list[FewShotExample]:
    """
    Learned patterns most relevant to the merchants in this batch.

    At most one example per category so a single busy category does not
    crowd out the rest.
    """
    if patterns is None or family_id is None or not patterns.has_patterns(family_id):
        return []

    names_by_id = {category.id: category.name for category in categories}
    merchants: list[str] = []
    for transaction in transactions:
        merchants.append(transaction.merchant or transaction.description)

    examples: list[FewShotExample] = []
    used_categories: set[str] = set()
    for pattern in patterns.rank(family_id, merchants):
        category_name = names_by_id.get(pattern.category_id)
        if category_name is None or pattern.category_id in used_categories:
            continue
        used_categories.add(pattern.category_id)
        examples.append(FewShotExample(pattern.merchant_name, category_name))
        if len(examples) >= limit:
            break
    return examples


def build_examples(
    categories: Sequence[CategoryInput],
    transactions: Sequence[TransactionInput],
    patterns: LearnedPatternIndex | None = None,
    family_id: str | None = None,
) -> list[FewShotExample]:
    return static_examples(categories) + dynamic_examples(patterns, family_id, transactions, categories)


def format_examples(examples: Sequence[FewShotExample]) -> str:
    if not examples:
        return ""
    lines = "\n".join(example.format() for example in examples)
    return f"EXAMPLES:\n{lines}\n"
