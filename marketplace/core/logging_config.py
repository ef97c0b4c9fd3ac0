import logging
import sys

from marketplace.core.config import settings

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"


def setup_logging(level: str | None = None):
    """Configure the root logger once for the whole service."""
    log_level = (level or settings.LOG_LEVEL).upper()
    logging.basicConfig(
        level=log_level,
        format=LOG_FORMAT,
        stream=sys.stderr,
        force=True,
    )
    # Twilio logs every HTTP request at INFO
    logging.getLogger("twilio.http_client").setLevel(logging.WARNING)
    logging.getLogger(__name__).info(f"✅ Logging configured. Level: {log_level}")
