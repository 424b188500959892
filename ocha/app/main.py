from fastapi import FastAPI

from ocha.app.api.errors import register_error_handlers
from ocha.app.api.v1.router import router as v1_router
from ocha.app.logging_setup import setup_logging
from ocha.app.settings import settings

setup_logging(settings)

app = FastAPI(title=settings.APP_TITLE, version="0.1.0")
register_error_handlers(app)
app.include_router(v1_router, prefix="/v1")
