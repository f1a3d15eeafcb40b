import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app import db as app_db
from app import models as _models  # noqa: F401 - register SQLAlchemy models before create_all
from app.config import get_settings
from app.errors import RiskWorkflowError
from app.routers import risk_workflow

try:
    from risk_lifecycle import get_runtime_version
except ModuleNotFoundError:  # pragma: no cover - compatibility for non-editable local runs
    from src.risk_lifecycle import get_runtime_version


def _initialize_db_schema(database_url: str) -> None:
    active_engine = app_db.configure_database(database_url)
    app_db.Base.metadata.create_all(bind=active_engine)


async def _workflow_error_handler(request: Request, exc: RiskWorkflowError) -> JSONResponse:
    return JSONResponse(status_code=exc.http_status, content=exc.to_payload())


def create_app() -> FastAPI:
    # Respect runtime env overrides (tests, launcher, temporary runs).
    get_settings.cache_clear()
    settings = get_settings()

    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    app = FastAPI(title=settings.app_name)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allowed_origins or ["http://127.0.0.1", "http://localhost"],
        allow_origin_regex=settings.cors_allow_origin_regex,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(RiskWorkflowError, _workflow_error_handler)

    _initialize_db_schema(settings.database_url)

    app.include_router(risk_workflow.router)

    @app.get("/healthz")
    def healthz():
        return {"status": "ok"}

    @app.get("/api/health")
    def api_health():
        return {"status": "ok", "version": get_runtime_version(), "env": settings.app_env}

    return app


app = create_app()
