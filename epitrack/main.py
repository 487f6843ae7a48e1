import os
import structlog
from fastapi import APIRouter, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from .config import settings
from .db import Base, engine
from .errors import register_exception_handlers
from .logging import setup_logging, RequestIdMiddleware
from .services.time_rules import now_utc, iso
from .auth.router import router as auth_router
from .routes.users import router as users_router
from .routes.epi_types import router as epi_types_router
from .routes.checklists import router as checklists_router
from .routes.executions import router as executions_router
from .routes.anomalies import router as anomalies_router
from .routes.reports import router as reports_router


logger = structlog.get_logger(__name__)


def create_app() -> FastAPI:
    setup_logging()
    app = FastAPI(title=settings.app_name)

    # Middlewares
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    limiter = Limiter(
        key_func=get_remote_address,
        default_limits=[settings.rate_limit],
        enabled=settings.rate_limit_enabled,
    )
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    register_exception_handlers(app)

    # Routers
    api = APIRouter(prefix="/api")
    api.include_router(auth_router)
    api.include_router(users_router)
    api.include_router(epi_types_router)
    api.include_router(checklists_router)
    api.include_router(executions_router)
    api.include_router(anomalies_router)
    api.include_router(reports_router)

    @api.get("/health", tags=["health"])
    def health():
        return {"status": "ok", "timestamp": iso(now_utc()), "environment": settings.environment}

    app.include_router(api)

    # Metrics
    if settings.metrics_enabled:
        Instrumentator().instrument(app).expose(app)

    @app.on_event("startup")
    def _startup():
        logger.info("startup", environment=settings.environment)
        # Ensure local SQLite directory exists
        if settings.database_url.startswith("sqlite:///./"):
            os.makedirs("var", exist_ok=True)
        if settings.auto_create_db:
            Base.metadata.create_all(bind=engine)
            logger.info("tables_verified", count=len(Base.metadata.tables))

    return app


app = create_app()
