"""
otpauth/main.py

Purpose: Application entry point

- Initializes FastAPI app
- Loads configuration and logging
- Registers API routes (auth, me)
- No business logic should be written here
- Manages application lifecycle (startup/shutdown, OTP cleanup task)
"""

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import asyncio
import time

from otpauth.core.config import settings, validate_settings
from otpauth.core.container import build_container
from otpauth.core.errors import add_exception_handlers
from otpauth.core.logging import setup_logging, get_logger
from otpauth.db.indexes import create_indexes
from otpauth.db.kv_store import InMemoryKeyValueStore
from otpauth.db.mongo import connect_to_mongo, close_mongo_connection
from otpauth.api import auth, me

VERSION = "1.0.0"

# Initialize logging first
setup_logging()
logger = get_logger(__name__)


async def run_cleanup_loop(container, interval_seconds: int):
    """
    Periodically removes expired OTP sessions until cancelled.
    """
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await container.otp.cleanup_expired()
            if isinstance(container.kv, InMemoryKeyValueStore):
                container.kv.purge_expired()
        except Exception as e:
            logger.error(f"OTP cleanup failed: {str(e)}", exc_info=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    Handles startup and shutdown events.
    """
    # Startup
    logger.info("🚀 Starting OTP auth service...")
    connected_mongo = False

    try:
        logger.info("Validating configuration...")
        validate_settings()
        logger.info("✅ Configuration validated")

        # Tests install their own container before startup
        if getattr(app.state, "container", None) is None:
            if settings.USER_DIRECTORY_BACKEND == "mongo":
                logger.info("Connecting to MongoDB...")
                await connect_to_mongo()
                connected_mongo = True
                logger.info("✅ MongoDB connected")

                logger.info("Creating database indexes...")
                await create_indexes()
                logger.info("✅ Database indexes created")

            app.state.container = build_container(settings)

        app.state.cleanup_task = asyncio.create_task(
            run_cleanup_loop(app.state.container, settings.OTP_CLEANUP_INTERVAL_SECONDS)
        )

        logger.info("🎉 OTP auth service started successfully!")
        logger.info(f"Environment: {settings.ENVIRONMENT}")
        logger.info(f"Debug Mode: {settings.DEBUG}")

    except Exception as e:
        logger.critical(f"Failed to start application: {str(e)}", exc_info=True)
        raise

    yield  # Application runs here

    # Shutdown
    logger.info("🛑 Shutting down OTP auth service...")

    try:
        app.state.cleanup_task.cancel()
        try:
            await app.state.cleanup_task
        except asyncio.CancelledError:
            pass
        logger.info("✅ OTP cleanup task stopped")

        await app.state.container.close()
        logger.info("✅ SMS gateway and session store closed")

        if connected_mongo:
            await close_mongo_connection()
            logger.info("✅ MongoDB connection closed")

        logger.info("👋 OTP auth service shut down successfully")

    except Exception as e:
        logger.error(f"Error during shutdown: {str(e)}", exc_info=True)


# Create FastAPI app with lifespan
app = FastAPI(
    title="OTP Auth Service",
    description="Phone OTP login with identity reconciliation",
    version=VERSION,
    lifespan=lifespan,
    debug=settings.DEBUG,
    docs_url="/docs" if settings.is_development else None,  # Disable docs in production
    redoc_url="/redoc" if settings.is_development else None,
)

# CORS Middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Request timing middleware
@app.middleware("http")
async def add_process_time_header(request: Request, call_next):
    """Add processing time header to all responses."""
    start_time = time.time()
    response = await call_next(request)
    process_time = time.time() - start_time
    response.headers["X-Process-Time"] = str(process_time)

    # Log slow requests
    if process_time > 5.0:  # More than 5 seconds
        logger.warning(
            f"Slow request detected: {request.method} {request.url.path}",
            extra={"process_time": process_time}
        )

    return response


add_exception_handlers(app)

app.include_router(auth.router, prefix=settings.API_PREFIX)
app.include_router(me.router, prefix=settings.API_PREFIX)


# Root endpoint
@app.get("/", tags=["Health"])
async def root():
    """Root endpoint - basic info."""
    return {
        "name": "OTP Auth API",
        "version": VERSION,
        "description": "Phone OTP login with identity reconciliation",
        "status": "running",
        "environment": settings.ENVIRONMENT
    }


# Health check endpoint
@app.get("/health", tags=["Health"])
async def health_check(request: Request):
    """
    Comprehensive health check endpoint.
    Checks the session store, user directory and SMS backend.
    """
    container = request.app.state.container
    health_status = {
        "status": "healthy",
        "timestamp": time.time(),
        "environment": settings.ENVIRONMENT,
        "version": VERSION,
        "checks": {}
    }

    try:
        kv_healthy = await container.kv.ping()
        health_status["checks"]["session_store"] = "healthy" if kv_healthy else "unhealthy"
        if kv_healthy:
            health_status["checks"]["active_otp_sessions"] = await container.otp.active_session_count()

        directory_healthy = await container.directory.ping()
        health_status["checks"]["user_directory"] = "healthy" if directory_healthy else "unhealthy"

        if not (kv_healthy and directory_healthy):
            health_status["status"] = "degraded"
    except Exception as e:
        logger.error(f"Health check failed: {str(e)}")
        health_status["status"] = "unhealthy"

    health_status["checks"]["sms_backend"] = container.gateway.backend_name

    status_code = 200 if health_status["status"] == "healthy" else 503
    return JSONResponse(content=health_status, status_code=status_code)


# Readiness probe (for Kubernetes/orchestration)
@app.get("/ready", tags=["Health"])
async def readiness_check(request: Request):
    """
    Readiness probe - indicates if app is ready to receive traffic.
    """
    container = getattr(request.app.state, "container", None)
    if container is None:
        return JSONResponse(
            status_code=503,
            content={"status": "not_ready", "reason": "starting"}
        )
    try:
        if not await container.kv.ping():
            return JSONResponse(
                status_code=503,
                content={"status": "not_ready", "reason": "session_store_unavailable"}
            )
        if not await container.directory.ping():
            return JSONResponse(
                status_code=503,
                content={"status": "not_ready", "reason": "user_directory_unavailable"}
            )
        return {"status": "ready"}
    except Exception as e:
        return JSONResponse(
            status_code=503,
            content={"status": "not_ready", "reason": str(e)}
        )


# Liveness probe (for Kubernetes/orchestration)
@app.get("/live", tags=["Health"])
async def liveness_check():
    """
    Liveness probe - indicates if app is alive.
    """
    return {"status": "alive"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "otpauth.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.is_development,
        log_level=settings.LOG_LEVEL.lower()
    )
