import os
from collections.abc import Mapping
from dataclasses import dataclass, field

from dotenv import find_dotenv, load_dotenv

from auto_categorizer.logger import get_logger

logger = get_logger(__name__)


CONFIG_FILENAME = "config.yaml"

CONFIG_KEYS = (
    "LOG_LEVEL",
    "LOG_DIR",
    "DATA_DIR",
    "OPENAI_API_KEY",
    "OPENAI_MODEL",
    "OPENAI_BASE_URL",
    "ANTHROPIC_API_KEY",
    "ANTHROPIC_MODEL",
    "GEMINI_API_KEY",
    "GEMINI_MODEL",
    "PREFERRED_LLM_PROVIDER",
    "CONFIDENCE_THRESHOLD",
    "BATCH_SIZE",
    "NULL_TOLERANCE",
    "PREFER_SUBCATEGORIES",
    "ENFORCE_CLASSIFICATION",
    "REQUEST_TIMEOUT",
)


@dataclass(frozen=True)
class LoadedSettings:
    """Raw settings resolved from the environment and the config file."""
    values: dict[str, str]
    config_path: str | None = None
    stored: dict[str, str] = field(default_factory=dict)
    env_keys: frozenset[str] = frozenset()

    def get(self, key: str, default: str | None = None) -> str | None:
        return self.values.get(key, default)

    def is_env_override(self, name: str) -> bool:
        return name in self.env_keys


def _resolve_dotenv_path(config_dir: str | None) -> str | None:
    if config_dir:
        candidate = os.path.join(config_dir, ".env")
        if os.path.exists(candidate):
            return candidate
    resolved = find_dotenv(usecwd=True)
    return resolved or None


def _resolve_config_path(config_dir: str | None) -> str:
    if config_dir:
        return os.path.join(config_dir, CONFIG_FILENAME)
    cwd = os.getcwd()
    candidate = os.path.join(cwd, "config", CONFIG_FILENAME)
    if os.path.exists(candidate):
        return candidate
    return os.path.join(cwd, CONFIG_FILENAME)


def _strip_inline_comment(raw_value: str) -> str:
    in_single = False
    in_double = False
    escaped = False
    for index, char in enumerate(raw_value):
        if escaped:
            escaped = False
            continue
        if char == "\\":
            escaped = True
            continue
        if char == '"' and not in_single:
            in_double = not in_double
            continue
        if char == "'" and not in_double:
            in_single = not in_single
            continue
        if char == "#" and not in_single and not in_double:
            return raw_value[:index].rstrip()
    return raw_value


def _unquote_value(raw_value: str) -> str:
    if len(raw_value) < 2:
        return raw_value
    if raw_value[0] == raw_value[-1] == '"':
        value = raw_value[1:-1]
        return value.replace('\\"', '"').replace("\\\\", "\\")
    if raw_value[0] == raw_value[-1] == "'":
        value = raw_value[1:-1]
        return value.replace("\\'", "'").replace("\\\\", "\\")
    return raw_value


def read_config_file(path: str | None) -> dict[str, str]:
    if not path or not os.path.exists(path):
        return {}

    values: dict[str, str] = {}
    with open(path, encoding="utf-8") as handle:
        for line in handle:
            stripped = line.strip()
            if not stripped or stripped.startswith("#"):
                continue
            if ":" not in stripped:
                continue
            key, raw_value = stripped.split(":", 1)
            key = key.strip()
            if not key:
                continue
            cleaned = _strip_inline_comment(raw_value).strip()
            if not cleaned:
                continue
            value = _unquote_value(cleaned)
            if value:
                values[key] = value
    return values


def load_settings(
    config_dir: str | None = None,
    *,
    environ: Mapping[str, str] | None = None,
    use_dotenv: bool = True,
) -> LoadedSettings:
    """
    Resolve settings: the real environment wins over config.yaml values.

    `.env` is loaded into the process environment without overriding
    existing variables. Nothing is written back to `os.environ`.
    """
    if environ is None:
        config_dir = config_dir or os.getenv("CONFIG_DIR")
        if use_dotenv:
            dotenv_path = _resolve_dotenv_path(config_dir)
            if dotenv_path:
                load_dotenv(dotenv_path=dotenv_path, override=False)
        environ = os.environ

    config_path = _resolve_config_path(config_dir)
    stored = {key: value for key, value in read_config_file(config_path).items() if key in CONFIG_KEYS}

    values = dict(stored)
    env_keys: set[str] = set()
    for key in CONFIG_KEYS:
        raw = environ.get(key)
        if raw:
            values[key] = raw
            env_keys.add(key)

    return LoadedSettings(
        values=values,
        config_path=config_path,
        stored=stored,
        env_keys=frozenset(env_keys),
    )


def ensure_dir(path: str | None) -> None:
    if path and path not in {".", "./"}:
        os.makedirs(path, exist_ok=True)


_SENSITIVE_ENV_KEYS = (
    "KEY",
    "TOKEN",
    "SECRET",
    "PASSWORD",
    "PASS",
    "AUTH",
    "BEARER",
    "PRIVATE",
)


def _should_mask_env_value(name: str, value: str) -> bool:
    upper_name = name.upper()
    if any(marker in upper_name for marker in _SENSITIVE_ENV_KEYS):
        return True
    if value.startswith("sk-") or value.startswith("rk-"):
        return True
    if value.startswith("Bearer ") or value.startswith("bearer "):
        return True
    if value.startswith("eyJ") and value.count(".") == 2:
        return True
    return False


def mask_value(name: str, value: str) -> str:
    sanitized = value.replace("\r", "\\r").replace("\n", "\\n")
    if not _should_mask_env_value(name, sanitized):
        return sanitized
    if len(sanitized) <= 4:
        return "****"
    return f"{sanitized[:2]}...{sanitized[-2:]}"


def log_environment(settings: LoadedSettings) -> None:
    logger.info("[ENV] Logging resolved settings (masked where needed).")
    logger.info("[ENV] CONFIG_PATH=%s", settings.config_path or "<unset>")
    for key in CONFIG_KEYS:
        raw_value = settings.get(key)
        value = "<unset>" if raw_value is None else mask_value(key, raw_value)
        origin = "env" if settings.is_env_override(key) else "config"
        if raw_value is None:
            origin = "default"
        logger.info("[ENV] %s=%s (%s)", key, value, origin)
