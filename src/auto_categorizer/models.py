from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Classification(str, Enum):
    EXPENSE = "expense"
    INCOME = "income"
    TRANSFER = "transfer"


class EnrichmentSource(str, Enum):
    USER = "user"
    AI = "ai"
    LEARNED_PATTERN = "learned_pattern"
    SYNC = "sync"


class FeedbackType(str, Enum):
    APPROVED = "approved"
    REJECTED = "rejected"


class NullTolerance(str, Enum):
    PESSIMISTIC = "pessimistic"
    BALANCED = "balanced"
    OPTIMISTIC = "optimistic"


class ProviderName(str, Enum):
    # Declaration order is the registry's natural order.
    OPENAI = "openai"
    GEMINI = "gemini"
    ANTHROPIC = "anthropic"


class Category(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    family_id: str
    classification: Classification = Classification.EXPENSE
    parent_id: str | None = None

    @property
    def is_subcategory(self) -> bool:
        return self.parent_id is not None


class TransactionExtra(BaseModel):
    """
    Metadata bag stored alongside a transaction.

    Keys keep their persisted JSON names; unknown keys written by other
    producers (sync providers, imports) are preserved.
    """
    model_config = ConfigDict(extra="allow")

    ai_categorization_confidence: float | None = None
    ai_feedback_given: bool = False
    ai_feedback: FeedbackType | None = None
    ai_feedback_given_at: datetime | None = None


class Transaction(BaseModel):
    id: str
    family_id: str
    description: str
    amount: float
    classification: Classification = Classification.EXPENSE
    notes: str | None = None
    merchant_name: str | None = None
    category_id: str | None = None
    date: datetime | None = None
    extra: TransactionExtra = Field(default_factory=TransactionExtra)

    @property
    def merchant_label(self) -> str:
        """Name used for pattern matching: merchant if linked, else the entry name."""
        return self.merchant_name or self.description

    @property
    def ai_categorized(self) -> bool:
        return self.extra.ai_categorization_confidence is not None

    @property
    def ai_feedback_given(self) -> bool:
        return self.extra.ai_feedback_given


class EnrichmentRecord(BaseModel):
    entity_id: str
    attribute_name: str
    value: Any = None
    source: EnrichmentSource | None = None
    locked: bool = False
    updated_at: datetime = Field(default_factory=datetime.now)


class LearnedPattern(BaseModel):
    model_config = ConfigDict(frozen=True)

    family_id: str
    merchant_name: str
    normalized_merchant: str
    category_id: str
    created_at: datetime = Field(default_factory=datetime.now)


class TransactionInput(BaseModel):
    """Transaction as sent to a provider."""
    id: str
    amount: float
    classification: Classification
    description: str
    merchant: str | None = None


class CategoryInput(BaseModel):
    """Category as sent to a provider."""
    id: str
    name: str
    classification: Classification
    parent_id: str | None = None
    is_subcategory: bool = False


class AutoCategorization(BaseModel):
    transaction_id: str
    category_name: str | None = None
    confidence: float | None = None

    @field_validator("confidence")
    @classmethod
    def _clamp_confidence(cls, value: float | None) -> float | None:
        if value is None:
            return None
        return min(max(value, 0.0), 1.0)


class UsageRecord(BaseModel):
    family_id: str | None
    provider: str
    model: str
    operation: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    estimated_cost: float | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=datetime.now)


class CategorizationFeedback(BaseModel):
    family_id: str
    transaction_id: str
    suggested_category_id: str
    final_category_id: str | None = None
    rejected: bool = False
    created_at: datetime = Field(default_factory=datetime.now)

    @property
    def was_correct(self) -> bool:
        if self.rejected:
            return False
        return self.final_category_id is None or self.final_category_id == self.suggested_category_id
