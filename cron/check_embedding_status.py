#!/usr/bin/env python3
"""Check-status cycle (every 5 minutes): reconcile provider batches for tenants with pending company requests.

Run from project root: python -m cron.check_embedding_status
"""

import sys

from apps.embedding.services.actions import CHECK_EMBEDDING_STATUS
from cron._runner import run_cycle


def main() -> int:
    return run_cycle(CHECK_EMBEDDING_STATUS)


if __name__ == "__main__":
    sys.exit(main())
