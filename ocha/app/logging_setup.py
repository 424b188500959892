# -*- coding: utf-8 -*-
from __future__ import annotations
import logging, logging.handlers
from pathlib import Path

LOG_FILE_NAME = "ocha.log"


class _ExtraFormatter(logging.Formatter):
    """Ajoute les champs `extra=` (événements de transition) en fin de ligne."""

    _RESERVED = set(vars(logging.makeLogRecord({})).keys()) | {"message", "asctime"}

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        extras = {k: v for k, v in vars(record).items() if k not in self._RESERVED}
        if not extras:
            return base
        fields = " ".join(f"{k}={v}" for k, v in sorted(extras.items()))
        return f"{base} | {fields}"


def setup_logging(settings) -> Path:
    """Configure rotating file logging under LOG_DIR/ocha.log"""
    log_dir = Path(settings.LOG_DIR).expanduser()
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / LOG_FILE_NAME
    level = getattr(logging, str(settings.LOG_LEVEL).upper(), logging.INFO)

    fmt = _ExtraFormatter("%(asctime)s %(levelname)s %(name)s - %(message)s")
    handler = logging.handlers.RotatingFileHandler(log_path, maxBytes=5_000_000, backupCount=3, encoding="utf-8")
    handler.setFormatter(fmt)
    handler.setLevel(level)

    logger = logging.getLogger()  # root
    logger.setLevel(level)
    # avoid duplicate handlers
    if not any(isinstance(h, logging.handlers.RotatingFileHandler) and getattr(h, 'baseFilename', '').endswith(LOG_FILE_NAME) for h in logger.handlers):
        logger.addHandler(handler)

    # also wire uvicorn loggers (if present)
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access", "fastapi"):
        lg = logging.getLogger(name)
        lg.setLevel(level)
        if not any(getattr(h, 'baseFilename', '').endswith(LOG_FILE_NAME) for h in lg.handlers if hasattr(h, 'baseFilename')):
            lg.addHandler(handler)

    return log_path
