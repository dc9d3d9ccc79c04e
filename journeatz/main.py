from __future__ import annotations
import logging
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from . import api, views
from .auth import DatabaseAuthProvider
from .config import APP_NAME, LOG_LEVEL, SEED_DEMO_ACCOUNTS
from .db import engine as default_engine, init_db
from .errors import AuthError, JournEatzError
from .logging_setup import configure_logging
from .seed import ensure_bootstrap_admin, seed_demo_accounts
from .storage import Storage

log = logging.getLogger(__name__)

STATIC_DIR = Path(__file__).parent / "static"


def create_app(
    engine: Optional[Engine] = None,
    seed_demo: bool = SEED_DEMO_ACCOUNTS,
    **provider_options,
) -> FastAPI:
    """Build the application around ``engine`` (the configured database by default)."""
    configure_logging(LOG_LEVEL)
    bind = engine if engine is not None else default_engine

    app = FastAPI(title=APP_NAME)
    app.state.storage = Storage(bind)
    app.state.auth_provider = DatabaseAuthProvider(app.state.storage, **provider_options)

    app.mount("/static", StaticFiles(directory=str(STATIC_DIR)), name="static")
    app.include_router(api.router)
    app.include_router(views.router)

    @app.on_event("startup")
    def on_startup() -> None:
        init_db(bind)
        ensure_bootstrap_admin(app.state.storage)
        if seed_demo:
            seed_demo_accounts(app.state.auth_provider)
        log.info("%s ready", APP_NAME)

    @app.exception_handler(JournEatzError)
    def handle_app_error(request: Request, exc: JournEatzError) -> JSONResponse:
        body = {"error": exc.message}
        if isinstance(exc, AuthError):
            body["kind"] = exc.kind
        if exc.status_code >= 500:
            log.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(body, status_code=exc.status_code)

    @app.exception_handler(SQLAlchemyError)
    def handle_db_error(request: Request, exc: SQLAlchemyError) -> JSONResponse:
        log.error("%s %s: database error", request.method, request.url.path, exc_info=exc)
        return JSONResponse({"error": str(exc)}, status_code=500)

    return app


app = create_app()


if __name__ == "__main__":
    import os
    import uvicorn

    uvicorn.run("journeatz.main:app", host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
