# backend/app.py
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from sqlalchemy.orm import Session

from .config import settings
from .db import Base, SessionLocal, engine, get_db
from .errors import register_exception_handlers
from .logging_config import configure_logging
from .middleware.rate_limit import RateLimitMiddleware, build_store
from .middleware.request_id import RequestIDMiddleware
from .middleware.timeout import TimeoutMiddleware

# Import models so SQLAlchemy registers them
from . import models  # noqa: F401
from .routers import admin as admin_router
from .routers import auth as auth_router
from .routers import authority as authority_router
from .routers import notifications as notifications_router
from .routers import points as points_router
from .routers import reports as reports_router
from .routers import stats as stats_router
from .services import ledger
from .services.catalog import seed_catalog

logger = logging.getLogger(__name__)


def init_db() -> None:
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        seed_catalog(db)
    finally:
        db.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    scheduler = None
    if settings.RETENTION_SWEEP_ENABLED:
        from .workers.retention import start_scheduler

        scheduler = start_scheduler()
    yield
    if scheduler is not None:
        scheduler.shutdown(wait=False)


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(title="EcoReports API", version="1.0.0", lifespan=lifespan)

    if settings.RATE_LIMIT_ENABLED:
        app.state.rate_limit_store = build_store()
        app.add_middleware(RateLimitMiddleware, store=app.state.rate_limit_store)
    app.add_middleware(TimeoutMiddleware, timeout_seconds=settings.REQUEST_TIMEOUT_SECONDS)
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    # Ensure DB tables and catalog rows exist after models are imported
    init_db()

    # --- Routers ---
    app.include_router(auth_router.router)
    app.include_router(reports_router.router)
    app.include_router(authority_router.router)
    app.include_router(points_router.router)
    app.include_router(notifications_router.router)
    app.include_router(admin_router.router)
    app.include_router(stats_router.router)

    # Serve locally hosted report photos
    if settings.IMAGE_HOST == "local":
        uploads_dir = Path(settings.UPLOAD_DIR)
        uploads_dir.mkdir(parents=True, exist_ok=True)
        app.mount(settings.UPLOAD_BASE_URL, StaticFiles(directory=str(uploads_dir)), name="uploads")

    @app.get("/health")
    def health():
        return {"status": "ok", "environment": settings.ENVIRONMENT}

    @app.get("/health/ledger")
    def ledger_health(db: Session = Depends(get_db)):
        mismatches = ledger.reconcile(db)
        return {
            "status": "ok" if not mismatches else "inconsistent",
            "mismatches": len(mismatches),
        }

    logger.info("EcoReports API ready (%s)", settings.ENVIRONMENT)
    return app


app = create_app()
