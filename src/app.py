"""Messaging FastAPI application.

Processes commands synchronously via HTTP. Every request is wrapped in the
messaging domain context.

Usage:
    uvicorn src.app:app --host 0.0.0.0 --port 8000 --reload
"""

# ---------------------------------------------------------------------------
# Domain initialization
# ---------------------------------------------------------------------------
# The domain is initialized at module level so uvicorn workers share it.
# PROTEAN_ENV controls which config overlay is applied:
#   - "test"       → event_processing = "sync"  (projectors fire in UoW)
#   - "production" → event_processing = "async" (projectors fire via Engine)
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from messaging.domain import messaging  # noqa: E402

messaging.init()

# ---------------------------------------------------------------------------
# Route prefixes served by the messaging domain
# ---------------------------------------------------------------------------
_DOMAIN_PREFIXES = (
    "/messages",
    "/journeys",
    "/preferences",
    "/events",
    "/inbox",
    "/maintenance",
)


# ---------------------------------------------------------------------------
# FastAPI app
# ---------------------------------------------------------------------------
app = FastAPI(
    title="Messaging API",
    description="Multi-channel messaging and lifecycle journeys",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def domain_context_middleware(request: Request, call_next):
    """Push the messaging domain context for domain routes."""
    if request.url.path.startswith(_DOMAIN_PREFIXES):
        with messaging.domain_context():
            response = await call_next(request)
        return response
    # No domain match, pass through (health check, docs)
    return await call_next(request)


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------
from messaging.api import (  # noqa: E402
    event_router,
    inbox_router,
    journey_router,
    maintenance_router,
    message_router,
    preference_router,
    register_error_handlers,
)

app.include_router(message_router)
app.include_router(journey_router)
app.include_router(preference_router)
app.include_router(event_router)
app.include_router(inbox_router)
app.include_router(maintenance_router)
register_error_handlers(app)


# ---------------------------------------------------------------------------
# Health / root
# ---------------------------------------------------------------------------
@app.get("/health")
async def health():
    with messaging.domain_context():
        from messaging.services import get_services

        services = get_services()
        return JSONResponse(
            content={
                "status": "ok",
                "domain": messaging.name,
                "queued_messages": len(services.queue),
            }
        )
