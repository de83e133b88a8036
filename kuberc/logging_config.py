"""
Logging configuration for the kuberc command line tools
"""

import logging
import logging.config
from typing import Any, Dict


class ResponseBodyFilter(logging.Filter):
    """Filter to suppress kubernetes client response body dumps."""

    def filter(self, record: logging.LogRecord) -> bool:
        """Drop 'response body' debug records from the kubernetes REST client."""
        if record.name.startswith("kubernetes.client"):
            message = record.getMessage()
            if message.startswith("response body"):
                return False
        return True


def get_logging_config(level: str = "INFO") -> Dict[str, Any]:
    """Get logging configuration for kuberc and its kubernetes client."""
    level = level.upper()
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {
            "response_body_filter": {
                "()": ResponseBodyFilter
            }
        },
        "formatters": {
            "default": {
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
            }
        },
        "handlers": {
            "default": {
                "class": "logging.StreamHandler",
                "formatter": "default",
                "stream": "ext://sys.stderr"
            },
            "client": {
                "class": "logging.StreamHandler",
                "formatter": "default",
                "stream": "ext://sys.stderr",
                "filters": ["response_body_filter"]
            }
        },
        "loggers": {
            "kuberc": {
                "handlers": ["default"],
                "level": level,
                "propagate": False
            },
            "kubernetes": {
                "handlers": ["client"],
                "level": "WARNING",
                "propagate": False
            },
            "websocket": {
                "handlers": ["client"],
                "level": "WARNING",
                "propagate": False
            }
        },
        "root": {
            "level": "WARNING",
            "handlers": ["default"]
        }
    }


def configure_logging(level: str = "INFO") -> None:
    """Apply the kuberc logging configuration."""
    logging.config.dictConfig(get_logging_config(level))
