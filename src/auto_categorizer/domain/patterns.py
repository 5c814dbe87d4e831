import json
import os
from collections.abc import Iterable

from pydantic import ValidationError

from auto_categorizer.domain.merchants import normalize_merchant, overlap_score
from auto_categorizer.logger import get_logger
from auto_categorizer.models import LearnedPattern, Transaction

logger = get_logger(__name__)


class LearnedPatternIndex:
    """
    Family-scoped `normalized merchant -> category` rules.

    Patterns are only created or deleted, never edited. When `data_path` is
    set the index is loaded from and saved to that JSON file.
    """

    def __init__(self, data_path: str | None = None):
        self.data_path = data_path
        # family_id -> normalized_merchant -> pattern (insertion ordered)
        self.patterns: dict[str, dict[str, LearnedPattern]] = {}
        self.load()

    def load(self) -> None:
        if not self.data_path or not os.path.exists(self.data_path):
            return
        try:
            with open(self.data_path, encoding="utf-8") as f:
                raw = json.load(f)
        except json.JSONDecodeError:
            logger.warning("[PATTERN] Could not read %s; starting empty.", self.data_path)
            self.patterns = {}
            return

        self.patterns = {}
        for family_id, entries in raw.items():
            family_patterns: dict[str, LearnedPattern] = {}
            for entry in entries:
                try:
                    pattern = LearnedPattern.model_validate(entry)
                except ValidationError as e:
                    logger.warning("[PATTERN] Skipping invalid pattern for family %s: %s", family_id, e)
                    continue
                family_patterns[pattern.normalized_merchant] = pattern
            self.patterns[family_id] = family_patterns

    def save(self) -> None:
        if not self.data_path:
            return
        payload = {
            family_id: [pattern.model_dump(mode="json") for pattern in family_patterns.values()]
            for family_id, family_patterns in self.patterns.items()
        }
        with open(self.data_path, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2)

    def for_family(self, family_id: str) -> list[LearnedPattern]:
        return list(self.patterns.get(family_id, {}).values())

    def has_patterns(self, family_id: str) -> bool:
        return bool(self.patterns.get(family_id))

    def find(self, family_id: str, merchant_name: str | None) -> LearnedPattern | None:
        normalized = normalize_merchant(merchant_name)
        if not normalized:
            return None

        family_patterns = self.patterns.get(family_id)
        if not family_patterns:
            return None

        # 1. Exact match
        exact = family_patterns.get(normalized)
        if exact:
            return exact

        # 2. Substring match, first hit in creation order
        for candidate in family_patterns.values():
            if overlap_score(normalized, candidate.normalized_merchant):
                return candidate

        return None

    def category_for(self, family_id: str, merchant_name: str | None) -> str | None:
        pattern = self.find(family_id, merchant_name)
        return pattern.category_id if pattern else None

    def rank(
        self,
        family_id: str,
        merchant_names: Iterable[str | None],
        limit: int | None = None,
    ) -> list[LearnedPattern]:
        """
        Patterns relevant to any of `merchant_names`, best first.

        A pattern scores the length of the shorter string of its best overlap
        with one of the merchants; ties keep creation order.
        """
        targets = [name for name in (normalize_merchant(m) for m in merchant_names) if name]
        if not targets:
            return []

        scored: list[tuple[int, LearnedPattern]] = []
        for pattern in self.for_family(family_id):
            score = max(overlap_score(target, pattern.normalized_merchant) for target in targets)
            if score > 0:
                scored.append((score, pattern))

        scored.sort(key=lambda item: item[0], reverse=True)
        ranked = [pattern for _, pattern in scored]
        return ranked[:limit] if limit is not None else ranked

    def learn(self, family_id: str, merchant_name: str | None, category_id: str) -> LearnedPattern | None:
        """
        Create a pattern unless the normalized merchant is already known for
        the family, in which case the existing pattern is returned unchanged.
        """
        normalized = normalize_merchant(merchant_name)
        if not normalized or merchant_name is None:
            logger.info("[PATTERN] Not learning blank merchant for family %s.", family_id)
            return None

        family_patterns = self.patterns.setdefault(family_id, {})
        existing = family_patterns.get(normalized)
        if existing:
            logger.debug("[PATTERN] '%s' already learned for family %s.", normalized, family_id)
            return existing

        pattern = LearnedPattern(
            family_id=family_id,
            merchant_name=merchant_name.strip(),
            normalized_merchant=normalized,
            category_id=category_id,
        )
        family_patterns[normalized] = pattern
        self.save()
        logger.info(
            "[PATTERN] Learned '%s' -> %s for family %s.",
            pattern.merchant_name,
            category_id,
            family_id,
        )
        return pattern

    def learn_from_transaction(self, transaction: Transaction) -> LearnedPattern | None:
        if transaction.category_id is None:
            return None
        return self.learn(transaction.family_id, transaction.merchant_label, transaction.category_id)

    def forget(self, family_id: str, merchant_name: str) -> bool:
        normalized = normalize_merchant(merchant_name)
        family_patterns = self.patterns.get(family_id)
        if not family_patterns or normalized not in family_patterns:
            return False
        del family_patterns[normalized]
        self.save()
        return True

    def clear(self, family_id: str | None = None) -> None:
        if family_id is None:
            self.patterns = {}
        else:
            self.patterns.pop(family_id, None)
        self.save()
