import json
import logging
from logging.config import dictConfig

# Third-party loggers that log every request at DEBUG/INFO
_QUIET_LOGGERS = ("botocore", "boto3", "s3transfer", "urllib3")


def setup_logging(level: str = "INFO") -> None:
    """Send store logs to stderr as JSON lines and backend errors as plain text.

    Importing the package configures nothing. The embedding application calls
    this once at startup, or sets ``LOG_CONFIGURE`` so that ``build_file_store``
    does it.
    """
    loggers: dict[str, dict] = {
        "bucketfs.backend": {
            "handlers": ["backend_console"],
            "level": level,
            "propagate": False,
        }
    }
    for name in _QUIET_LOGGERS:
        loggers[name] = {"level": "WARNING"}

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "json": {
                    "()": JsonFormatter,
                },
                "plain": {
                    "format": "%(asctime)s %(levelname)s %(name)s: %(message)s",
                },
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "json",
                },
                "backend_console": {
                    "class": "logging.StreamHandler",
                    "formatter": "plain",
                },
            },
            "root": {
                "level": level,
                "handlers": ["console"],
            },
            "loggers": loggers,
        }
    )


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        # Structured fields passed as extra={"extra": {...}}
        extra = getattr(record, "extra", None)
        if isinstance(extra, dict):
            payload.update(extra)
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)
