from collections.abc import Mapping
from typing import Any

from auto_categorizer.core import settings
from auto_categorizer.core.configuration import build_config
from auto_categorizer.domain.transactions import TransactionStore
from auto_categorizer.logger import get_logger, setup_logging
from auto_categorizer.manager import CategorizerService

logger = get_logger(__name__)


def create_service(
    config_dir: str | None = None,
    *,
    environ: Mapping[str, str] | None = None,
    store: TransactionStore | None = None,
    **overrides: Any,
) -> CategorizerService:
    """Load settings, configure logging and build a persistent CategorizerService."""
    loaded = settings.load_settings(config_dir, environ=environ)
    setup_logging(loaded.get("LOG_LEVEL"), loaded.get("LOG_DIR"))

    logger.info("Initializing services...")
    settings.log_environment(loaded)

    config = build_config(loaded, **overrides)
    settings.ensure_dir(config.data_dir)

    service = CategorizerService(config, store=store, persist=True, environ=environ)
    logger.info("Services initialized.")
    return service
