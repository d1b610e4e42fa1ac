from __future__ import annotations

import logging
import logging.config


def configure(level: str = "info") -> None:
    """Install the process-wide logging setup."""
    lvl = level.strip().upper()
    if lvl == "WARN":
        lvl = "WARNING"
    if lvl not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
        raise ValueError(f"Invalid log level: {level}")

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "standard": {
                    "format": "%(asctime)s %(levelname)s %(name)s: %(message)s",
                },
            },
            "handlers": {
                "default": {
                    "formatter": "standard",
                    "class": "logging.StreamHandler",
                    "stream": "ext://sys.stderr",
                },
            },
            "loggers": {
                "": {"level": "WARNING", "handlers": ["default"]},
                "pfcc": {"level": lvl, "handlers": ["default"], "propagate": False},
                "uvicorn": {"level": "INFO", "handlers": ["default"], "propagate": False},
            },
        }
    )


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
