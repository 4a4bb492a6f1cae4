from opentelemetry.instrumentation import auto_instrumentation

auto_instrumentation.initialize()

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi_errors_rfc9457 import RFC9457Config, setup_rfc9457_handlers

from app.api.v1 import api as api_v1
from app.core.config import settings
from app.core.database import async_session_maker, create_db_and_tables
from app.core.events import close_redis, init_redis, publish
from app.services.sync_scheduler import start_periodic_sync, stop_periodic_sync
from app.services.vms_sync_service import (
    build_ezyvet_pipeline,
    close_pipelines,
    register_pipeline,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Gère le cycle de vie de l'application:
    - Crée les tables de base de données.
    - Initialise la publication d'événements (Redis Pub/Sub) si activée.
    - Enregistre le pipeline ezyVet et démarre la synchronisation périodique.
    - Arrête proprement les services.
    """
    logger.info("=== Application Startup ===")

    # 1. Créer les tables de base de données
    await create_db_and_tables()
    logger.info("Tables de base de données créées")

    # 2. Événements Redis (optionnels)
    publisher = None
    if settings.EVENTS_ENABLED:
        await init_redis()
        publisher = publish

    try:
        # 3. Pipelines de synchronisation VMS
        register_pipeline(build_ezyvet_pipeline(async_session_maker, publisher=publisher))

        # 4. Synchronisation périodique en background
        await start_periodic_sync(settings.VMS_SYNC_INTERVAL_SECONDS, settings.VMS_SYNC_SYSTEMS)

        logger.info("=== Application Startup Complete ===")
        yield

    finally:
        logger.info("=== Application Shutdown ===")
        await stop_periodic_sync()
        await close_pipelines()
        logger.info("Clients VMS fermés")
        if settings.EVENTS_ENABLED:
            await close_redis()
        logger.info("=== Application Shutdown Complete ===")


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    description=settings.DESCRIPTION,
    lifespan=lifespan,
    openapi_url=f"{settings.get_api_prefix()}/openapi.json",
    docs_url="/docs",
    redoc_url="/redoc",
)

# Exception handlers RFC 9457 Problem Details
config_rfc9457 = RFC9457Config(
    base_url="about:blank",  # Auto-detect request domain
    include_trace_id=True,  # Include OpenTelemetry trace_id
    expose_internal_errors=settings.DEBUG,  # Show detailed errors in dev
    include_error_pages=False,
)
setup_rfc9457_handlers(app, config=config_rfc9457)

# Middleware CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=[str(origin) for origin in settings.ALLOWED_ORIGINS],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Middleware Trusted Hosts
if settings.ENVIRONMENT != "development":
    app.add_middleware(
        TrustedHostMiddleware,
        allowed_hosts=settings.TRUSTED_HOSTS,
    )

app.include_router(api_v1.router, prefix=settings.get_api_prefix("v1"))
