import json
import os
import re
from typing import Any

from auto_categorizer.logger import get_logger
from auto_categorizer.models import ProviderName, UsageRecord

logger = get_logger(__name__)

# USD per 1M tokens: (prompt, completion). Looked up by longest model prefix.
MODEL_PRICING: dict[str, tuple[float, float]] = {
    "gpt-4.1": (2.00, 8.00),
    "gpt-4.1-mini": (0.40, 1.60),
    "gpt-4.1-nano": (0.10, 0.40),
    "gpt-4o": (2.50, 10.00),
    "gpt-4o-mini": (0.15, 0.60),
    "gpt-5": (1.25, 10.00),
    "gpt-5-mini": (0.25, 2.00),
    "gpt-5-nano": (0.05, 0.40),
    "o3": (2.00, 8.00),
    "o4-mini": (1.10, 4.40),
    "claude-opus-4": (15.00, 75.00),
    "claude-sonnet-4": (3.00, 15.00),
    "claude-haiku-4": (1.00, 5.00),
    "claude-3-7-sonnet": (3.00, 15.00),
    "claude-3-5-sonnet": (3.00, 15.00),
    "claude-3-5-haiku": (0.80, 4.00),
    "gemini-2.5-pro": (1.25, 10.00),
    "gemini-2.5-flash": (0.30, 2.50),
    "gemini-2.5-flash-lite": (0.10, 0.40),
    "gemini-2.0-flash": (0.10, 0.40),
    "gemini-2.0-flash-lite": (0.075, 0.30),
}

BASE_PROMPT_TOKENS = 150
PROMPT_TOKENS_PER_TRANSACTION = 100
PROMPT_TOKENS_PER_CATEGORY = 50
COMPLETION_TOKENS_PER_TRANSACTION = 50

_STATUS_IN_MESSAGE = re.compile(r"\b([1-5]\d{2})\b")


def find_pricing(model: str | None) -> tuple[float, float] | None:
    if not model:
        return None
    if model in MODEL_PRICING:
        return MODEL_PRICING[model]
    matches = [prefix for prefix in MODEL_PRICING if model.startswith(prefix)]
    if not matches:
        return None
    return MODEL_PRICING[max(matches, key=len)]


def calculate_cost(model: str | None, prompt_tokens: int, completion_tokens: int) -> float | None:
    """Estimated USD cost, or None when the model has no known pricing."""
    pricing = find_pricing(model)
    if pricing is None:
        return None
    prompt_price, completion_price = pricing
    cost = (prompt_tokens * prompt_price + completion_tokens * completion_price) / 1_000_000
    return round(cost, 6)


def infer_provider(model: str | None) -> str:
    name = (model or "").lower()
    if name.startswith("claude"):
        return ProviderName.ANTHROPIC.value
    if name.startswith("gemini"):
        return ProviderName.GEMINI.value
    return ProviderName.OPENAI.value


def estimate_auto_categorize_cost(
    transaction_count: int,
    category_count: int,
    model: str | None,
) -> float | None:
    if transaction_count <= 0:
        return 0.0
    prompt_tokens = (
        BASE_PROMPT_TOKENS
        + transaction_count * PROMPT_TOKENS_PER_TRANSACTION
        + category_count * PROMPT_TOKENS_PER_CATEGORY
    )
    completion_tokens = transaction_count * COMPLETION_TOKENS_PER_TRANSACTION
    return calculate_cost(model, prompt_tokens, completion_tokens)


def extract_http_status_code(error: BaseException) -> int | None:
    for attribute in ("status_code", "code", "http_status"):
        value = getattr(error, attribute, None)
        if isinstance(value, int):
            return value

    response = getattr(error, "response", None)
    status = getattr(response, "status_code", None)
    if isinstance(status, int):
        return status

    match = _STATUS_IN_MESSAGE.search(str(error))
    if match:
        return int(match.group(1))
    return None


class UsageLedger:
    """
    Append-only log of provider calls.

    Records are kept in memory and, when `data_path` is set, appended to a
    JSON-lines file. Recording never raises into the caller.
    """

    def __init__(self, data_path: str | None = None):
        self.data_path = data_path
        self.records: list[UsageRecord] = []
        self.load()

    def load(self) -> None:
        if not self.data_path or not os.path.exists(self.data_path):
            return
        with open(self.data_path, encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    self.records.append(UsageRecord.model_validate_json(line))
                except ValueError as e:
                    logger.warning("[USAGE] Skipping unreadable ledger line: %s", e)

    def _append(self, record: UsageRecord) -> None:
        if self.data_path:
            with open(self.data_path, "a", encoding="utf-8") as f:
                f.write(record.model_dump_json() + "\n")
        self.records.append(record)

    def record_success(
        self,
        family_id: str | None,
        model: str,
        operation: str,
        prompt_tokens: int,
        completion_tokens: int,
        metadata: dict[str, Any] | None = None,
    ) -> UsageRecord | None:
        try:
            estimated_cost = calculate_cost(model, prompt_tokens, completion_tokens)
            if estimated_cost is None:
                logger.info("[USAGE] Recording usage without cost estimate for unknown model: %s", model)
            record = UsageRecord(
                family_id=family_id,
                provider=infer_provider(model),
                model=model,
                operation=operation,
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=prompt_tokens + completion_tokens,
                estimated_cost=estimated_cost,
                metadata=dict(metadata or {}),
            )
            self._append(record)
        except (OSError, ValueError) as e:
            logger.error("[USAGE] Failed to record usage: %s", e)
            return None
        logger.info("[USAGE] Operation: %s, Cost: %s", operation, estimated_cost)
        return record

    def record_failure(
        self,
        family_id: str | None,
        model: str,
        operation: str,
        error: BaseException,
        metadata: dict[str, Any] | None = None,
    ) -> UsageRecord | None:
        status_code = extract_http_status_code(error)
        error_metadata = dict(metadata or {})
        error_metadata.update({"error": str(error), "http_status_code": status_code})
        try:
            record = UsageRecord(
                family_id=family_id,
                provider=infer_provider(model),
                model=model,
                operation=operation,
                metadata=error_metadata,
            )
            self._append(record)
        except (OSError, ValueError) as e:
            logger.error("[USAGE] Failed to record usage error: %s", e)
            return None
        logger.info("[USAGE] Failed call recorded - Operation: %s, Status: %s", operation, status_code)
        return record

    def for_family(self, family_id: str) -> list[UsageRecord]:
        return [record for record in self.records if record.family_id == family_id]

    def summary(self, family_id: str) -> dict[str, Any]:
        records = self.for_family(family_id)
        return {
            "calls": len(records),
            "failed_calls": sum(1 for r in records if "error" in r.metadata),
            "total_tokens": sum(r.total_tokens for r in records),
            "total_cost": round(sum(r.estimated_cost or 0.0 for r in records), 6),
        }
