"""
Transaction helpers.

- `unit_of_work` : une opération workflow = une transaction (commit / rollback).
- `with_store_retry` : retry borné avec backoff exponentiel, réservé aux appels
  unitaires du RecordStore (jamais autour d'une opération multi-étapes).
"""
from __future__ import annotations

import functools
import logging
import time
from contextlib import contextmanager
from typing import Callable, Iterator, TypeVar

from sqlalchemy.exc import DBAPIError, OperationalError, TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session

from ocha.app.settings import settings
from ocha.services.errors import TransientStoreError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_transient(exc: BaseException) -> bool:
    """Timeout, verrou, connexion perdue -> rejouable."""
    if isinstance(exc, (OperationalError, PoolTimeoutError)):
        return True
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return True
    return False


@contextmanager
def unit_of_work(db: Session) -> Iterator[Session]:
    """
    Usage:
        with unit_of_work(db):
            ...
        # commit si OK, rollback sinon
    """
    try:
        yield db
        db.commit()
    except Exception as exc:
        db.rollback()
        if is_transient(exc):
            logger.warning("transient store failure, transaction rolled back: %s", exc)
            raise TransientStoreError(f"Record store unavailable: {exc.__class__.__name__}") from exc
        raise


def with_store_retry(
    fn: Callable[..., T] | None = None,
    *,
    attempts: int | None = None,
    backoff: float | None = None,
):
    """Décorateur : rejoue `fn` sur erreur transitoire, puis TransientStoreError."""

    def decorate(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> T:
            max_attempts = attempts or settings.STORE_RETRY_ATTEMPTS
            base = settings.STORE_RETRY_BACKOFF_SECONDS if backoff is None else backoff
            for attempt in range(1, max_attempts + 1):
                try:
                    return func(*args, **kwargs)
                except (DBAPIError, PoolTimeoutError) as exc:
                    if not is_transient(exc):
                        raise
                    if attempt == max_attempts:
                        raise TransientStoreError(
                            f"Record store call {func.__name__} failed after {attempt} attempts",
                            attempts=attempt,
                        ) from exc
                    delay = base * (2 ** (attempt - 1))
                    logger.warning(
                        "transient store error in %s (attempt %s/%s), retrying in %.2fs: %s",
                        func.__name__, attempt, max_attempts, delay, exc,
                    )
                    time.sleep(delay)
            raise AssertionError("unreachable")

        return wrapper

    if fn is not None:
        return decorate(fn)
    return decorate
