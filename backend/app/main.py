from datetime import datetime, timezone

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import settings
from app.utils.logger import logger

from app.api import (
    calls,
    transcript,
    nudges,
    leads,
    sessions,
    websocket,
)

app = FastAPI(title="Live Call Coach Backend", version="1.0.0")


@app.on_event("startup")
async def startup_event():
    logger.info("Live Call Coach Backend Starting...")

    # Validate configuration (don't raise in dev mode)
    from app.config import validate_config, ConfigValidationError

    try:
        result = validate_config(raise_on_error=settings.ENVIRONMENT == "production")
        for warning in result.get("warnings", []):
            logger.warning(f"Config warning: {warning}")
        if result.get("errors"):
            for error in result["errors"]:
                logger.error(f"Config error: {error}")
    except ConfigValidationError as e:
        logger.critical(f"FATAL: {e}")
        raise SystemExit(1)

    # Push live call events to connected CSR screens
    from app.services.call_session_manager import get_call_manager
    get_call_manager().on_event = websocket.manager.broadcast

    logger.info("Live Call Coach Backend Started")


@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup resources on shutdown."""
    logger.info("Live Call Coach Backend Shutting Down...")

    try:
        from app.services.call_session_manager import get_call_manager
        session = await get_call_manager().shutdown()
        if session is not None:
            logger.info(f"Archived active call {session.call_id} on shutdown")
    except Exception as e:
        logger.error(f"Error ending active call: {e}")

    try:
        from app.services.openai_service import OpenAIService
        await OpenAIService.close_client()
    except Exception as e:
        logger.error(f"Error closing OpenAI client: {e}")

    logger.info("Live Call Coach Backend Shutdown Complete")


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routers
app.include_router(calls.router)
app.include_router(transcript.router)
app.include_router(nudges.router)
app.include_router(leads.router)
app.include_router(sessions.router)
app.include_router(websocket.router)


@app.get("/")
async def root():
    return {"message": "Live Call Coach API", "status": "running", "version": "1.0.0"}


@app.get("/health")
async def health():
    """
    Health check endpoint.

    Returns configuration status, active call state and the number of
    connected event sockets.
    """
    from app.config import get_config_status
    from app.services.call_session_manager import get_call_manager

    config_status = get_config_status()
    health_status = {
        "status": "healthy" if config_status.get("openai_configured") else "degraded",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": "1.0.0",
        "checks": {
            "config": config_status,
            "call": get_call_manager().status(),
            "websocket_connections": websocket.get_connection_count(),
            "websocket_events_published": websocket.manager.published,
        },
    }
    return health_status


@app.get("/health/simple")
async def health_simple():
    """Simple health check for load balancers."""
    return {"status": "ok"}
