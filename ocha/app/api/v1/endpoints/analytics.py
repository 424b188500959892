from __future__ import annotations

from typing import Callable

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ocha.app.api.deps import get_session_factory
from ocha.services.analytics import REPORTS, AnalyticsProjector
from ocha.services.errors import NotFound

router = APIRouter(prefix="/analytics")


def get_projector(session_factory: Callable[[], Session] = Depends(get_session_factory)) -> AnalyticsProjector:
    return AnalyticsProjector.from_session_factory(session_factory)


@router.get("/dashboard")
def dashboard(projector: AnalyticsProjector = Depends(get_projector)):
    return projector.dashboard()


@router.get("/low-stock")
def low_stock(projector: AnalyticsProjector = Depends(get_projector)):
    return projector.low_stock()


@router.get("/reports/{name}")
def report(name: str, projector: AnalyticsProjector = Depends(get_projector)):
    if name not in REPORTS:
        raise NotFound("Report", name)
    return REPORTS[name](projector)
