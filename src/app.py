"""Warehouse fulfillment FastAPI application.

Processes commands synchronously via HTTP. Each request runs inside the
warehouse domain context.

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
from warehouse.domain import warehouse  # noqa: E402
from warehouse.utils.logging import bind_request_context, clear_request_context

warehouse.init()

# Paths served without a domain context
_PASSTHROUGH_PREFIXES = ("/health", "/docs", "/redoc", "/openapi.json")


# ---------------------------------------------------------------------------
# FastAPI app
# ---------------------------------------------------------------------------
app = FastAPI(
    title="Warehouse Fulfillment API",
    description="Inventory allocation, pick lists and pick sessions for a single facility",
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
    """Push the warehouse domain context for each request."""
    if request.url.path.startswith(_PASSTHROUGH_PREFIXES):
        return await call_next(request)
    bind_request_context(method=request.method, path=request.url.path)
    try:
        with warehouse.domain_context():
            response = await call_next(request)
    finally:
        clear_request_context()
    return response


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------
from warehouse.api import (  # noqa: E402
    inventory_router,
    maintenance_router,
    order_router,
    pick_list_router,
    session_router,
)
from warehouse.api.errors import register_exception_handlers  # noqa: E402

app.include_router(inventory_router)
app.include_router(order_router)
app.include_router(pick_list_router)
app.include_router(session_router)
app.include_router(maintenance_router)
register_exception_handlers(app)


# ---------------------------------------------------------------------------
# Health / root
# ---------------------------------------------------------------------------
@app.get("/health")
async def health():
    return JSONResponse(
        content={
            "status": "ok",
            "domains": {
                "warehouse": {"name": warehouse.name},
            },
        }
    )
