from dataclasses import dataclass
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from auto_categorizer.core.settings import LoadedSettings
from auto_categorizer.logger import get_logger
from auto_categorizer.models import NullTolerance, ProviderName

ValueType = Literal["string", "int", "float", "bool"]

logger = get_logger(__name__)

MAX_TRANSACTIONS_PER_REQUEST = 25

DEFAULT_OPENAI_MODEL = "gpt-4.1-mini"
DEFAULT_ANTHROPIC_MODEL = "claude-sonnet-4-5-20250929"
DEFAULT_GEMINI_MODEL = "gemini-2.0-flash"


class CategorizerConfig(BaseModel):
    """
    Explicit configuration passed to the registry, the adapters and the
    orchestrator at construction time.
    """
    model_config = ConfigDict(frozen=True)

    preferred_provider: ProviderName | None = None
    confidence_threshold: int = Field(default=60, ge=0, le=100)
    batch_size: int = Field(default=25, ge=10, le=200)
    null_tolerance: NullTolerance = NullTolerance.PESSIMISTIC
    prefer_subcategories: bool = True
    enforce_classification: bool = True

    openai_api_key: str | None = None
    openai_model: str = DEFAULT_OPENAI_MODEL
    openai_base_url: str | None = None
    anthropic_api_key: str | None = None
    anthropic_model: str = DEFAULT_ANTHROPIC_MODEL
    gemini_api_key: str | None = None
    gemini_model: str = DEFAULT_GEMINI_MODEL

    request_timeout: float = Field(default=60.0, gt=0)
    data_dir: str = "."

    @property
    def request_batch_size(self) -> int:
        """Transactions per provider call; never above the per-request cap."""
        return min(self.batch_size, MAX_TRANSACTIONS_PER_REQUEST)

    def stored_api_key(self, provider: ProviderName) -> str | None:
        return getattr(self, f"{provider.value}_api_key")

    def model_for(self, provider: ProviderName) -> str:
        return getattr(self, f"{provider.value}_model")


@dataclass(frozen=True)
class ConfigField:
    key: str
    attribute: str
    description: str
    value_type: ValueType = "string"
    sensitive: bool = False
    options: tuple[str, ...] | None = None
    min_value: float | int | None = None
    max_value: float | int | None = None


CONFIG_FIELDS: tuple[ConfigField, ...] = (
    ConfigField(
        key="PREFERRED_LLM_PROVIDER",
        attribute="preferred_provider",
        description="Provider tried first when it is configured.",
        options=tuple(name.value for name in ProviderName),
    ),
    ConfigField(
        key="CONFIDENCE_THRESHOLD",
        attribute="confidence_threshold",
        description="Minimum confidence (percent) the model is asked to reach before matching.",
        value_type="int",
        min_value=0,
        max_value=100,
    ),
    ConfigField(
        key="BATCH_SIZE",
        attribute="batch_size",
        description="Transactions handled per batch (provider calls are capped at 25).",
        value_type="int",
        min_value=10,
        max_value=200,
    ),
    ConfigField(
        key="NULL_TOLERANCE",
        attribute="null_tolerance",
        description="How readily the model returns null instead of guessing.",
        options=tuple(policy.value for policy in NullTolerance),
    ),
    ConfigField(
        key="PREFER_SUBCATEGORIES",
        attribute="prefer_subcategories",
        description="Ask for the most specific subcategory.",
        value_type="bool",
    ),
    ConfigField(
        key="ENFORCE_CLASSIFICATION",
        attribute="enforce_classification",
        description="Require category and transaction classification to match.",
        value_type="bool",
    ),
    ConfigField(
        key="OPENAI_API_KEY",
        attribute="openai_api_key",
        description="OpenAI API key.",
        sensitive=True,
    ),
    ConfigField(
        key="OPENAI_MODEL",
        attribute="openai_model",
        description="OpenAI model used for categorization.",
    ),
    ConfigField(
        key="OPENAI_BASE_URL",
        attribute="openai_base_url",
        description="Override OpenAI base URL for compatible providers.",
    ),
    ConfigField(
        key="ANTHROPIC_API_KEY",
        attribute="anthropic_api_key",
        description="Anthropic API key.",
        sensitive=True,
    ),
    ConfigField(
        key="ANTHROPIC_MODEL",
        attribute="anthropic_model",
        description="Anthropic model used for categorization.",
    ),
    ConfigField(
        key="GEMINI_API_KEY",
        attribute="gemini_api_key",
        description="Gemini API key.",
        sensitive=True,
    ),
    ConfigField(
        key="GEMINI_MODEL",
        attribute="gemini_model",
        description="Gemini model used for categorization.",
    ),
    ConfigField(
        key="REQUEST_TIMEOUT",
        attribute="request_timeout",
        description="Seconds before a provider request times out.",
        value_type="float",
        min_value=1,
    ),
    ConfigField(
        key="DATA_DIR",
        attribute="data_dir",
        description="Directory for learned patterns and the usage ledger.",
    ),
)

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def _validate_value(field: ConfigField, raw_value: str) -> tuple[object, str | None]:
    value = raw_value.strip()
    if not value:
        return None, None

    if "\n" in value or "\r" in value:
        return value, "Value must be a single line."

    if field.options:
        normalized = value.lower()
        if normalized not in field.options:
            return value, f"Must be one of: {', '.join(field.options)}."
        return normalized, None

    if field.value_type == "bool":
        lowered = value.lower()
        if lowered in _TRUE_VALUES:
            return True, None
        if lowered in _FALSE_VALUES:
            return False, None
        return value, "Must be true or false."

    if field.value_type == "int":
        try:
            parsed_int = int(value)
        except ValueError:
            return value, "Must be a whole number."
        if field.min_value is not None and parsed_int < field.min_value:
            return value, f"Must be at least {field.min_value}."
        if field.max_value is not None and parsed_int > field.max_value:
            return value, f"Must be at most {field.max_value}."
        return parsed_int, None

    if field.value_type == "float":
        try:
            parsed_float = float(value)
        except ValueError:
            return value, "Must be a number."
        if field.min_value is not None and parsed_float < field.min_value:
            return value, f"Must be at least {field.min_value}."
        if field.max_value is not None and parsed_float > field.max_value:
            return value, f"Must be at most {field.max_value}."
        return parsed_float, None

    return value, None


def parse_config_values(values: dict[str, str]) -> tuple[dict[str, object], dict[str, str]]:
    """Validate raw string settings; returns (config kwargs, per-key errors)."""
    errors: dict[str, str] = {}
    kwargs: dict[str, object] = {}

    for field in CONFIG_FIELDS:
        raw_value = values.get(field.key)
        if raw_value is None:
            continue
        cleaned, error = _validate_value(field, raw_value)
        if error:
            errors[field.key] = error
            continue
        if cleaned is not None:
            kwargs[field.attribute] = cleaned

    return kwargs, errors


def build_config(settings: LoadedSettings, **overrides: object) -> CategorizerConfig:
    kwargs, errors = parse_config_values(settings.values)
    for key, error in errors.items():
        logger.warning("[CONFIG] Ignoring %s: %s Using default.", key, error)
    kwargs.update(overrides)
    return CategorizerConfig(**kwargs)
