import json
from datetime import datetime
from unittest.mock import MagicMock

import pytest

from auto_categorizer.core.configuration import CategorizerConfig
from auto_categorizer.domain.transactions import TransactionStore
from auto_categorizer.models import Category, Classification, Transaction

FAMILY = "family-a"
OTHER_FAMILY = "family-b"


def make_transaction(
    transaction_id: str,
    description: str,
    *,
    family_id: str = FAMILY,
    amount: float = -12.5,
    merchant_name: str | None = None,
    classification: Classification = Classification.EXPENSE,
) -> Transaction:
    return Transaction(
        id=transaction_id,
        family_id=family_id,
        description=description,
        amount=amount,
        merchant_name=merchant_name,
        classification=classification,
        date=datetime(2025, 1, 15),
    )


def openai_response(payload: object, input_tokens: int = 120, output_tokens: int = 30) -> MagicMock:
    response = MagicMock()
    response.output_text = payload if isinstance(payload, str) else json.dumps(payload)
    response.usage.input_tokens = input_tokens
    response.usage.output_tokens = output_tokens
    return response


@pytest.fixture
def config() -> CategorizerConfig:
    return CategorizerConfig(openai_api_key="sk-test", preferred_provider="openai")


@pytest.fixture
def categories() -> list[Category]:
    return [
        Category(id="cat-groceries", name="Groceries", family_id=FAMILY),
        Category(id="cat-dining", name="Dining", family_id=FAMILY),
        Category(id="cat-fuel", name="Gas & Fuel", family_id=FAMILY),
        Category(id="cat-coffee", name="Coffee Shops", family_id=FAMILY, parent_id="cat-dining"),
        Category(
            id="cat-salary",
            name="Salary",
            family_id=FAMILY,
            classification=Classification.INCOME,
        ),
        Category(id="cat-b-dining", name="Dining", family_id=OTHER_FAMILY),
    ]


@pytest.fixture
def store(categories: list[Category]) -> TransactionStore:
    return TransactionStore(categories=categories)
