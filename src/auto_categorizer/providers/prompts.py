"""
Prompt policy shared by every provider.

The rules (one result per transaction, subcategory preference, classification
matching, null tolerance, confidence threshold) live here once; adapters only
decide how the resulting text and schema are put on the wire.
"""
import json
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from auto_categorizer.core.configuration import CategorizerConfig
from auto_categorizer.domain.transactions import serialize_inputs
from auto_categorizer.models import CategoryInput, NullTolerance, TransactionInput

RESULT_KEY = "categorizations"
TOOL_NAME = "categorize_transactions"
TOOL_DESCRIPTION = "Categorize the provided transactions into the user's categories"

NULL_TOLERANCE_RULES: dict[NullTolerance, tuple[str, ...]] = {
    NullTolerance.PESSIMISTIC: (
        'You should always favor "null" over false positives',
        "Be slightly pessimistic. Only match a category if you're {threshold}%+ confident it is the correct one.",
    ),
    NullTolerance.BALANCED: (
        'Return "null" when the transaction could reasonably belong to several categories',
        "Match a category when you're {threshold}%+ confident it is the correct one.",
    ),
    NullTolerance.OPTIMISTIC: (
        'Only return "null" when no category is a plausible fit',
        "Attempt a match whenever you're at least {threshold}% confident; a likely category beats none.",
    ),
}


@dataclass(frozen=True)
class PromptPolicy:
    confidence_threshold: int = 60
    null_tolerance: NullTolerance = NullTolerance.PESSIMISTIC
    prefer_subcategories: bool = True
    enforce_classification: bool = True

    @classmethod
    def from_config(cls, config: CategorizerConfig) -> "PromptPolicy":
        return cls(
            confidence_threshold=config.confidence_threshold,
            null_tolerance=config.null_tolerance,
            prefer_subcategories=config.prefer_subcategories,
            enforce_classification=config.enforce_classification,
        )

    def rules(self) -> list[str]:
        rules = [
            "- Return 1 result per transaction",
            "- Correlate each transaction by ID (transaction_id)",
        ]
        if self.prefer_subcategories:
            rules.append(
                "- Attempt to match the most specific category possible (i.e. subcategory over parent category)"
            )
        if self.enforce_classification:
            rules.append(
                '- Category and transaction classifications should match (i.e. if transaction is an "expense", '
                'the category must have classification of "expense")'
            )
        rules.append('- If you don\'t know the category, return "null"')
        for line in NULL_TOLERANCE_RULES[self.null_tolerance]:
            rules.append("  - " + line.format(threshold=self.confidence_threshold))
        rules.append(
            '- Include a "confidence" between 0 and 1 for every result that is not "null"'
        )
        return rules

    def build_instructions(self) -> str:
        header = (
            "You are an assistant to a consumer personal finance app. You will be provided a list\n"
            "of the user's transactions and a list of the user's categories. Your job is to auto-categorize\n"
            "each transaction.\n\n"
            "Closely follow ALL the rules below while auto-categorizing:\n\n"
        )
        return header + "\n".join(self.rules())


def build_user_message(
    transactions: Sequence[TransactionInput],
    categories: Sequence[CategoryInput],
    examples_text: str = "",
    closing: str = "",
) -> str:
    parts = [
        "Here are the user's available categories in JSON format:",
        "",
        "```json",
        json.dumps(serialize_inputs(categories)),
        "```",
        "",
    ]
    if examples_text:
        parts.extend([examples_text.rstrip("\n"), ""])
    parts.extend([
        "Use the available categories to auto-categorize the following transactions:",
        "",
        "```json",
        json.dumps(serialize_inputs(transactions)),
        "```",
    ])
    if closing:
        parts.extend(["", closing])
    return "\n".join(parts)


def categorization_schema(
    transactions: Sequence[TransactionInput],
    categories: Sequence[CategoryInput],
    *,
    closed: bool = True,
) -> dict[str, Any]:
    """
    JSON schema for `{"categorizations": [...]}` with ids and names limited to
    the request. `closed=False` omits `additionalProperties` for APIs that
    reject it.
    """
    item: dict[str, Any] = {
        "type": "object",
        "properties": {
            "transaction_id": {
                "type": "string",
                "description": "The internal ID of the original transaction",
                "enum": [transaction.id for transaction in transactions],
            },
            "category_name": {
                "type": "string",
                "description": "The matched category name of the transaction, or null if no match",
                "enum": [category.name for category in categories] + ["null"],
            },
            "confidence": {
                "type": "number",
                "description": "Confidence between 0 and 1 that the category is correct",
            },
        },
        "required": ["transaction_id", "category_name", "confidence"],
    }
    schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            RESULT_KEY: {
                "type": "array",
                "description": "An array of auto-categorizations for each transaction",
                "items": item,
            }
        },
        "required": [RESULT_KEY],
    }
    if closed:
        item["additionalProperties"] = False
        schema["additionalProperties"] = False
    return schema
