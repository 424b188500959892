from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from ocha.services.errors import OchaError

logger = logging.getLogger(__name__)


async def ocha_error_handler(request: Request, exc: OchaError) -> JSONResponse:
    """Erreur métier -> {"kind", "message", **details} + code HTTP de l'erreur."""
    if exc.retryable:
        logger.warning("%s %s -> %s: %s", request.method, request.url.path, exc.kind, exc.message)
    else:
        logger.info("%s %s -> %s: %s", request.method, request.url.path, exc.kind, exc.message)
    return JSONResponse(status_code=exc.http_status, content=jsonable_encoder(exc.to_dict()))


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(OchaError, ocha_error_handler)
