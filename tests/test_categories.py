import pytest

from auto_categorizer.models import CategoryInput, Classification
from auto_categorizer.providers.categories import normalize_category_name


@pytest.fixture
def category_inputs():
    names = ["Groceries", "Gas & Fuel", "Restaurants", "Coffee Shops", "Streaming Services"]
    return [
        CategoryInput(id=f"cat-{i}", name=name, classification=Classification.EXPENSE)
        for i, name in enumerate(names)
    ]


def test_exact_match(category_inputs):
    assert normalize_category_name("Groceries", category_inputs) == "Groceries"


def test_case_insensitive_match(category_inputs):
    assert normalize_category_name("  gas & fuel ", category_inputs) == "Gas & Fuel"


def test_alphanumeric_containment(category_inputs):
    assert normalize_category_name("GasFuel", category_inputs) == "Gas & Fuel"
    assert normalize_category_name("Coffee-Shops", category_inputs) == "Coffee Shops"


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("grocery", "Groceries"),
        ("supermarket", "Groceries"),
        ("fuel", "Gas & Fuel"),
        ("dining", "Restaurants"),
        ("Dining Out", "Restaurants"),
    ],
)
def test_synonym_match(category_inputs, raw, expected):
    assert normalize_category_name(raw, category_inputs) == expected


def test_typo_match(category_inputs):
    assert normalize_category_name("Streaming Servces", category_inputs) == "Streaming Services"


@pytest.mark.parametrize("raw", [None, "", "   ", "null", "NULL"])
def test_null_like_values(category_inputs, raw):
    assert normalize_category_name(raw, category_inputs) is None


def test_unknown_name_passes_through(category_inputs):
    assert normalize_category_name(" Pet Supplies ", category_inputs) == "Pet Supplies"
