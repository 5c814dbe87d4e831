import logging
import logging.config
import os


class ColourizedFormatter(logging.Formatter):
    """
    Formatter that colours the level name of each record.
    """
    GREY = "\x1b[90m"
    GREEN = "\x1b[32m"
    YELLOW = "\x1b[33m"
    RED = "\x1b[31m"
    BOLD_RED = "\x1b[31;1m"
    RESET = "\x1b[0m"

    LEVEL_COLORS = {
        logging.DEBUG: GREY,
        logging.INFO: GREEN,
        logging.WARNING: YELLOW,
        logging.ERROR: RED,
        logging.CRITICAL: BOLD_RED,
    }

    def format(self, record: logging.LogRecord) -> str:
        orig_levelname = record.levelname

        if record.levelno in self.LEVEL_COLORS:
            record.levelname = f"{self.LEVEL_COLORS[record.levelno]}{record.levelname}{self.RESET}"

        result = super().format(record)

        # Other handlers share the same record.
        record.levelname = orig_levelname
        return result


# SDK loggers are chatty at INFO (one line per HTTP request).
_QUIET_LOGGERS = ("httpx", "httpcore", "openai", "anthropic", "google_genai")


def get_logging_config(level: str | None = None, log_dir: str | None = None) -> dict:
    log_level_name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    log_dir = log_dir if log_dir is not None else os.getenv("LOG_DIR")
    handlers: dict[str, dict[str, str]] = {
        "console": {
            "class": "logging.StreamHandler",
            "stream": "ext://sys.stdout",
            "formatter": "default",
        },
    }
    root_handlers = ["console"]
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        handlers["file"] = {
            "class": "logging.FileHandler",
            "filename": os.path.join(log_dir, "app.log"),
            "formatter": "plain",
        }
        root_handlers.append("file")

    loggers: dict[str, dict[str, object]] = {
        "": {
            "handlers": root_handlers,
            "level": log_level_name,
        },
    }
    for name in _QUIET_LOGGERS:
        loggers[name] = {
            "handlers": root_handlers,
            "level": "WARNING",
            "propagate": False,
        }

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {
                "()": "auto_categorizer.logger.ColourizedFormatter",
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            },
            "plain": {
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            },
        },
        "handlers": handlers,
        "loggers": loggers,
    }


def setup_logging(level: str | None = None, log_dir: str | None = None) -> None:
    logging.config.dictConfig(get_logging_config(level, log_dir))


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
