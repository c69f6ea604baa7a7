"""Cron logging: stdout + logs/cron_<name>.log, shared by the script logger and the pipeline services."""

import logging
import os
from pathlib import Path

PIPELINE_LOGGER = "apps.embedding"


def _level() -> int:
    return getattr(logging, (os.getenv("LOG_LEVEL") or "INFO").strip().upper(), logging.INFO)


def get_logger(script_name: str) -> logging.Logger:
    """Return cron.<script_name>; its handlers are also attached to the apps.embedding logger tree."""
    log_dir = Path(os.getenv("CRON_LOG_DIR") or "logs")
    log_dir.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(f"cron.{script_name}")
    logger.setLevel(_level())
    if logger.handlers:
        return logger

    fmt = logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s")
    sh = logging.StreamHandler()
    sh.setFormatter(fmt)
    fh = logging.FileHandler(log_dir / f"cron_{script_name}.log", encoding="utf-8")
    fh.setFormatter(fmt)

    logger.addHandler(sh)
    logger.addHandler(fh)

    # Pipeline records go to the first cron script's handlers only
    pipeline = logging.getLogger(PIPELINE_LOGGER)
    pipeline.setLevel(_level())
    if not pipeline.handlers:
        pipeline.addHandler(sh)
        pipeline.addHandler(fh)
    return logger
