from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.audit.router import router as audit_router
from app.core.errors import DomainError
from app.core.incidents.router import public_router, router as incidents_router
from app.core.monitoring.router import router as monitoring_router
from app.core.notifications.router import router as notifications_router
from app.core.rbac.router import router as rbac_router
from app.core.scheduling.router import router as scheduling_router
from app.core.teams.router import router as teams_router
from app.core.workorders.router import router as workorders_router
from app.db.session import create_engine, create_session_factory
from app.services import build_services
from app.settings import Settings, get_settings
from app.utils.logging import get_logger, setup_logging

logger = get_logger(__name__)


def create_app(
    settings: Settings | None = None,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> FastAPI:
    settings = settings or get_settings()
    setup_logging(debug=settings.APP_DEBUG, json_logs=settings.LOG_JSON)

    engine = None
    if session_factory is None:
        engine = create_engine(settings)
        session_factory = create_session_factory(engine)
    services = build_services(session_factory, settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if services.scheduler.config.enabled:
            await services.scheduler.start()
        logger.info("app_started", env=settings.APP_ENV, scheduler=services.scheduler.is_running)
        yield
        await services.scheduler.stop()
        if engine is not None:
            await engine.dispose()
        logger.info("app_stopped")

    app = FastAPI(
        title="Sewer Operations API",
        version="0.1.0",
        docs_url="/docs" if settings.APP_DEBUG else None,
        redoc_url="/redoc" if settings.APP_DEBUG else None,
        lifespan=lifespan,
    )
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.APP_DEBUG else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(DomainError)
    async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
        if exc.category.value in ("integrity", "system"):
            logger.error("request_failed", path=request.url.path, code=exc.code.value, message=exc.message)
        return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_response()))

    app.include_router(public_router)
    app.include_router(incidents_router)
    app.include_router(teams_router)
    app.include_router(workorders_router)
    app.include_router(notifications_router)
    app.include_router(monitoring_router)
    app.include_router(scheduling_router)
    app.include_router(rbac_router)
    app.include_router(audit_router)

    @app.get("/health")
    async def health():
        return {"status": "ok", "scheduler": services.scheduler.is_running}

    return app


app = create_app()
