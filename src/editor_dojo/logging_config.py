"""Logging configuration for the CLI and local API."""
import logging
import logging.handlers

from .config import Settings
from .errors import ConfigurationError


def setup_logging(settings: Settings) -> None:
    """Set up root logging from resolved settings."""
    if settings.log_file:
        settings.log_file.parent.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    try:
        root_logger.setLevel(settings.log_level)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Unknown log level: {settings.log_level}", level=str(settings.log_level)) from exc
    formatter = logging.Formatter(settings.log_format)

    # Repeated calls (tests, API reloads) must not stack handlers.
    for handler in list(root_logger.handlers):
        if getattr(handler, "_editor_dojo", False):
            root_logger.removeHandler(handler)
            handler.close()

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    console_handler._editor_dojo = True  # type: ignore[attr-defined]
    root_logger.addHandler(console_handler)

    if settings.log_file:
        file_handler = logging.handlers.RotatingFileHandler(
            settings.log_file,
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        file_handler._editor_dojo = True  # type: ignore[attr-defined]
        root_logger.addHandler(file_handler)

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger(__name__).debug("Logging configured")
