from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import get_settings
from .database import Base, engine
from .observability import RequestTimingLoggingMiddleware, add_exception_handlers, configure_logging
from .routers import health
from .routers import appointments as appointments_router
from .routers import calendar as calendar_router
from .routers import cron as cron_router
from .routers import invoices as invoices_router
from .routers import pending_appointments as pending_appointments_router
from .routers import pending_client_profiles as pending_client_profiles_router

# Ensure schema is present when the module is imported (helps tests using TestClient without lifespan)
Base.metadata.create_all(bind=engine)


@asynccontextmanager
async def lifespan(app: FastAPI):
    Base.metadata.create_all(bind=engine)
    yield


def create_app() -> FastAPI:
    settings = get_settings()
    configure_logging()
    application = FastAPI(title="TrainerDesk API", version="0.1.0", lifespan=lifespan)

    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    application.add_middleware(RequestTimingLoggingMiddleware)

    add_exception_handlers(application)

    application.include_router(health.router)
    application.include_router(appointments_router.router)
    application.include_router(calendar_router.router)
    application.include_router(pending_appointments_router.router)
    application.include_router(pending_client_profiles_router.router)
    application.include_router(invoices_router.router)
    application.include_router(cron_router.router)

    return application


app = create_app()
