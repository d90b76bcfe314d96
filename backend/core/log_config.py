import logging
import logging.config


LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Install a console handler for the app loggers and uvicorn."""
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {"format": LOG_FORMAT},
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                    "level": level.upper(),
                },
            },
            "root": {"handlers": ["console"], "level": level.upper()},
            "loggers": {
                # sqlalchemy echo is controlled by DATABASE_ECHO
                "sqlalchemy.engine": {"level": "WARNING"},
            },
        }
    )
