# 📂 backend/cuca/main.py — FastAPI application + accrual scheduler
# -----------------------------------------------------------------------------
# What it does:
#   1) Builds and configures the FastAPI app (create_app).
#   2) CORS for the web frontend.
#   3) Registers the API routers: user_routes, admin_routes (prefix API_PREFIX).
#   4) Lifespan:
#       - startup: tables (when DB_CREATE_TABLES), health check, accrual scheduler;
#       - shutdown: scheduler stop, engine dispose.
#   5) Maps CucaError to its http_status with the to_dict() body.
#   6) Info endpoints: GET / and GET /healthz.
#
# Where it runs:
#   - uvicorn locally (python -m cuca.main) or `uvicorn --factory cuca.main:create_app`.
# -----------------------------------------------------------------------------

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __version__
from .admin_routes import router as admin_router
from .config import Settings, configure_logging, get_settings
from .database import Database, on_shutdown_dispose, on_startup_init_db
from .errors import CucaError
from .scheduler import AccrualScheduler
from .services import build_services
from .user_routes import router as user_router

log = logging.getLogger("cuca.api")


def create_app(settings: Optional[Settings] = None, database: Optional[Database] = None) -> FastAPI:
    """
    Creates the application. settings / database can be injected (tests);
    otherwise the cached settings and a Database built from them are used.
    """
    settings = settings or get_settings()
    database = database or Database.from_settings(settings)
    services = build_services(database, settings)
    scheduler = AccrualScheduler(database, settings, services.ledger)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        log.info("starting %s (%s)", settings.PROJECT_NAME, settings.ENV)
        await on_startup_init_db(database, settings)
        if settings.SCHEDULER_ENABLED:
            scheduler.start()
        try:
            yield
        finally:
            scheduler.shutdown()
            await on_shutdown_dispose(database)
            log.info("shutdown complete")

    app = FastAPI(
        title=settings.PROJECT_NAME,
        version=__version__,
        description="Cuca Ledger API (FastAPI + SQLAlchemy + APScheduler)",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.database = database
    app.state.services = services
    app.state.scheduler = scheduler

    # -------------------
    # CORS
    # -------------------
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # -------------------
    # Errors
    # -------------------
    @app.exception_handler(CucaError)
    async def cuca_error_handler(request: Request, exc: CucaError):
        log.info("%s %s → %s %s", request.method, request.url.path, exc.code, exc.message)
        return JSONResponse(status_code=exc.http_status, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = [
            {"field": ".".join(str(p) for p in e.get("loc", ())), "message": e.get("msg"), "type": e.get("type")}
            for e in exc.errors()
        ]
        body = {"error": {"code": "VALIDATION_ERROR", "message": "Invalid input", "details": {"errors": errors}}}
        return JSONResponse(status_code=400, content=body)

    # -------------------
    # Routers
    # -------------------
    app.include_router(user_router, prefix=settings.API_PREFIX, tags=["user"])
    app.include_router(admin_router, prefix=settings.API_PREFIX, tags=["admin"])

    @app.get("/")
    async def root():
        return {"ok": True, "name": settings.PROJECT_NAME, "version": __version__}

    @app.get("/healthz")
    async def healthz():
        db_ok = await database.check_connection()
        return JSONResponse(
            status_code=200 if db_ok else 503,
            content={"ok": db_ok, "db": db_ok, "scheduler": scheduler.running},
        )

    return app


def run() -> None:
    settings = get_settings()
    configure_logging(settings.DEBUG)
    uvicorn.run(create_app(settings), host="0.0.0.0", port=8000)


if __name__ == "__main__":
    run()
