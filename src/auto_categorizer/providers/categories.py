import re
from collections.abc import Sequence

from rapidfuzz import fuzz, process

from auto_categorizer.models import CategoryInput

_NON_ALNUM = re.compile(r"[^a-z0-9]")

# Names within one group are interchangeable.
CATEGORY_SYNONYMS: tuple[frozenset[str], ...] = (
    frozenset({"gas", "gas & fuel", "gas and fuel", "fuel", "gasoline", "auto & transport fuel"}),
    frozenset({"restaurants", "restaurant", "dining", "dining out", "food & dining"}),
    frozenset({"groceries", "grocery", "supermarket", "food store"}),
    frozenset({"streaming", "streaming services", "streaming service"}),
    frozenset({"rideshare", "ride share", "ride-share", "uber", "lyft", "taxi"}),
    frozenset({"coffee", "coffee shops", "coffee shop", "cafe"}),
    frozenset({"fast food", "fastfood", "quick service"}),
    frozenset({"gym", "gym & fitness", "fitness", "gym and fitness"}),
    frozenset({"flights", "flight", "airline", "airlines", "airfare"}),
    frozenset({"hotels", "hotel", "lodging", "accommodation"}),
)

# Minimum rapidfuzz ratio for the typo tier.
TYPO_SCORE_CUTOFF = 90.0


def _compact(value: str) -> str:
    return _NON_ALNUM.sub("", value.lower())


def _are_synonyms(left: str, right: str) -> bool:
    left_lower = left.strip().lower()
    right_lower = right.strip().lower()
    return any(left_lower in group and right_lower in group for group in CATEGORY_SYNONYMS)


def find_fuzzy_category_match(name: str, categories: Sequence[CategoryInput]) -> str | None:
    compact_name = _compact(name)

    for category in categories:
        compact_category = _compact(category.name)
        if compact_name and compact_category and (
            compact_name in compact_category or compact_category in compact_name
        ):
            return category.name
        if _are_synonyms(name, category.name):
            return category.name

    match = process.extractOne(
        name.lower(),
        {category.name: category.name.lower() for category in categories},
        scorer=fuzz.ratio,
        score_cutoff=TYPO_SCORE_CUTOFF,
    )
    if match:
        _, _, category_name = match
        return category_name
    return None


def normalize_category_name(raw_name: object, categories: Sequence[CategoryInput]) -> str | None:
    """
    Map a model-returned category name onto one of `categories`.

    Exact, then case-insensitive, then fuzzy (containment, synonyms, typos).
    Unresolvable names are returned stripped so the caller can treat them as
    unmatched; "null" and blanks become None.
    """
    if raw_name is None:
        return None
    name = str(raw_name).strip()
    if not name or name.lower() == "null":
        return None

    for category in categories:
        if category.name == name:
            return category.name

    lowered = name.lower()
    for category in categories:
        if category.name.lower() == lowered:
            return category.name

    fuzzy = find_fuzzy_category_match(name, categories)
    if fuzzy:
        return fuzzy

    return name
