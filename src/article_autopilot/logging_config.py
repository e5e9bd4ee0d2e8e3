import logging

from .config import get_settings


def setup_logging(level: str | None = None) -> None:
    """Configure root logging; the level comes from LOG_LEVEL unless given (default: INFO)."""
    log_level = (level or get_settings().log_level or "INFO").upper()
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logger = logging.getLogger(__name__)
    logger.debug("Logging configured with level: %s", log_level)
