"""
CLI entrypoint for purging expired server-side sessions (SESSION_BACKEND=database). Run from cron, e.g.:

  python -m cinecriticas.retention

Or hourly: 0 * * * * cd /path/to/cinecriticas && .venv/bin/python -m cinecriticas.retention
"""

import logging
import sys

from cinecriticas.core.config import get_settings
from cinecriticas.core.database import SessionLocal
from cinecriticas.services.session_store import SqlSessionStore
from cinecriticas.services.user_store import StoreUnavailableError

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%SZ",
)
logger = logging.getLogger(__name__)


def main() -> int:
    """Delete web_sessions rows whose absolute expiry has passed."""
    settings = get_settings()
    if settings.SESSION_BACKEND != "database":
        logger.info("SESSION_BACKEND=%s keeps sessions in-process; nothing to purge.", settings.SESSION_BACKEND)
        return 0
    try:
        deleted = SqlSessionStore(SessionLocal).purge_expired()
    except StoreUnavailableError as e:
        logger.error("Session purge failed: %s", e.message)
        return 1
    logger.info("Session purge completed: sessions_deleted=%s", deleted)
    return 0


if __name__ == "__main__":
    sys.exit(main())
