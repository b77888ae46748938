import logging

from app.config import settings

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(level: str | None = None) -> None:
    """Configure root logging once for API, CLI and scheduler processes."""
    resolved = (level or settings.log_level or "INFO").upper()
    logging.basicConfig(level=getattr(logging, resolved, logging.INFO), format=LOG_FORMAT)
    # routeros_api logs every sentence at DEBUG
    logging.getLogger("routeros_api").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
