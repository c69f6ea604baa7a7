"""Cron package: entry points for the scheduled pipeline cycles."""

from apps.embedding.config import config
from cron.db import get_database, get_providers
from cron.logging import get_logger

__all__ = ["config", "get_database", "get_logger", "get_providers"]
