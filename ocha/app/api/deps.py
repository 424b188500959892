from __future__ import annotations

from typing import Callable, Generator

from fastapi import Depends
from sqlalchemy.orm import Session

from ocha.app.db.session import SessionLocal
from ocha.services.notifications import Notifier, StoreNotifier


def get_db() -> Generator:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_session_factory() -> Callable[[], Session]:
    # sessions courtes : RecordStore, notifier, analytics
    return SessionLocal


def get_notifier(session_factory: Callable[[], Session] = Depends(get_session_factory)) -> Notifier:
    return StoreNotifier(session_factory)
