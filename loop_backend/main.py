import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from loop_backend.config import ensure_dev_database_schema, settings
from loop_backend.db import session as db_session
from loop_backend.errors import LoopError
from loop_backend.logging_config import configure_logging
from loop_backend.modules.story.router import router as story_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def _lifespan(_app: FastAPI):
    configure_logging()
    if settings.env == "dev":
        ensure_dev_database_schema(str(db_session.engine.url))
    yield


app = FastAPI(title="Loop Story Backend", lifespan=_lifespan)


@app.exception_handler(LoopError)
async def _loop_error_handler(_request: Request, exc: LoopError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_detail()})


@app.exception_handler(SQLAlchemyError)
async def _store_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.error("store failure path=%s", request.url.path, exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={"detail": {"code": "INTERNAL_ERROR", "message": "Unexpected storage error. Please try again."}},
    )


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


app.include_router(story_router)
