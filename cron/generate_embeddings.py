#!/usr/bin/env python3
"""Generate cycle (every 3 minutes): embed pending rows for every tenant with pending modification requests.

Run from project root: python -m cron.generate_embeddings
"""

import sys

from apps.embedding.services.actions import GENERATE_EMBEDDINGS
from cron._runner import run_cycle


def main() -> int:
    return run_cycle(GENERATE_EMBEDDINGS)


if __name__ == "__main__":
    sys.exit(main())
