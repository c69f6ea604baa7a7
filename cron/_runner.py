"""Shared main() body for the cycle scripts: build resources, run one action, map outcome to exit code."""

from apps.embedding.services.actions import run_action
from cron.db import get_database, get_providers
from cron.logging import get_logger


def run_cycle(action: str) -> int:
    """0 when every tenant succeeded, 1 on any tenant failure or a pass-level error."""
    logger = get_logger(action)
    logger.info("%s start", action)
    db = get_database()
    try:
        summary = run_action(action, db, get_providers())
    except Exception as e:
        logger.exception("%s failed: %s", action, e)
        return 1
    finally:
        db.dispose()
    logger.info("%s done %s", action, summary)
    return 1 if summary.get("tenants_failed") else 0
