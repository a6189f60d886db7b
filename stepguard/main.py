# stepguard/main.py

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from stepguard.core.config import settings
from stepguard.core.errors import DeviceTrustError
from stepguard.core.rate_limit import RequestThrottler
from stepguard.db.mongodb import (
    UnitOfWork,
    close_mongo_connection,
    connect_to_mongo,
    ensure_indexes,
    get_client,
)
from stepguard.db.redis_client import connect_to_redis
from stepguard.services.background_worker import BackgroundDispatcher
from stepguard.services.email_service import EmailNotifier
from stepguard.services.engine import DeviceTrustEngine
from stepguard.services.identity_provider import HttpIdentityProvider

from stepguard.api.v1.routes.account_event_route import router as account_event_router
from stepguard.api.v1.routes.backup_code_route import router as backup_code_router
from stepguard.api.v1.routes.device_session_route import router as device_session_router
from stepguard.api.v1.routes.device_verification_route import router as device_verification_router
from stepguard.api.v1.routes.step_up_route import router as step_up_router

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


# -----------------------------
# STARTUP / SHUTDOWN
# -----------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting %s", settings.PROJECT_NAME)
    await connect_to_mongo()

    client = get_client()
    db = client[settings.MONGO_DB_NAME]
    await ensure_indexes(db)
    logger.info("Indexes created")

    rc = await connect_to_redis(settings.REDIS_URL)
    app.state.auth_throttler = RequestThrottler(
        rc, settings.AUTH_RATE_LIMIT, settings.AUTH_RATE_WINDOW_SECONDS, prefix="auth"
    )
    app.state.api_throttler = RequestThrottler(
        rc, settings.API_RATE_LIMIT, settings.API_RATE_WINDOW_SECONDS, prefix="api"
    )

    dispatcher = BackgroundDispatcher()
    dispatcher.start()

    identity_provider = HttpIdentityProvider(
        settings.IDENTITY_PROVIDER_URL,
        api_key=settings.IDENTITY_PROVIDER_API_KEY,
        timeout=settings.IDENTITY_PROVIDER_TIMEOUT_SECONDS,
    )

    app.state.engine = DeviceTrustEngine(
        db,
        settings.device_trust_policy(),
        identity_provider,
        EmailNotifier(settings),
        dispatcher,
        uow=UnitOfWork(client, settings.MONGO_USE_TRANSACTIONS),
    )

    yield

    logger.info("Shutting down %s", settings.PROJECT_NAME)
    await dispatcher.stop()
    await identity_provider.aclose()
    if rc is not None:
        await rc.aclose()
    await close_mongo_connection()


# -----------------------------
# FASTAPI APP
# -----------------------------
app = FastAPI(
    title=settings.PROJECT_NAME,
    version="1.0.0",
    description="Device trust scoring and step-up verification API",
    lifespan=lifespan,
)

# -----------------------------
# CORS MIDDLEWARE
# -----------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# -----------------------------
# ERRORS
# -----------------------------
@app.exception_handler(DeviceTrustError)
async def device_trust_error_handler(request: Request, exc: DeviceTrustError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_response())


# -----------------------------
# ROUTERS
# -----------------------------
app.include_router(device_session_router, prefix="/api/v1")
app.include_router(device_verification_router, prefix="/api/v1")
app.include_router(step_up_router, prefix="/api/v1")
app.include_router(backup_code_router, prefix="/api/v1")
app.include_router(account_event_router, prefix="/api/v1")


# -----------------------------
# ROOT ENDPOINT
# -----------------------------
@app.get("/", tags=["Health"])
def root():
    return {
        "message": "Stepguard device trust service running",
        "version": "1.0.0",
        "docs": "/docs"
    }
