"""HTTP mapping for warehouse errors.

Protean's handlers cover the generic cases (``ValidationError`` → 400,
``ObjectNotFoundError`` → 404). The warehouse errors below are registered
on top; Starlette picks the most specific handler along the exception's MRO.
"""

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from protean.integrations.fastapi import register_exception_handlers as register_protean_handlers

from warehouse.exceptions import (
    ConcurrentModification,
    InsufficientInventory,
    InvalidAdjustment,
    InvalidStateTransition,
    SessionNotActive,
)

logger = structlog.get_logger(__name__)


def _problem(status_code: int, exc: Exception, **details) -> JSONResponse:
    messages = getattr(exc, "messages", None) or {"error": [str(exc)]}
    return JSONResponse(
        status_code=status_code,
        content={"error": messages, "type": type(exc).__name__, **details},
    )


async def _insufficient_inventory(request: Request, exc: InsufficientInventory) -> JSONResponse:
    return _problem(
        409,
        exc,
        sku=exc.sku,
        bin_id=exc.bin_id,
        requested=exc.requested,
        available=exc.available,
    )


async def _invalid_adjustment(request: Request, exc: InvalidAdjustment) -> JSONResponse:
    return _problem(422, exc, sku=exc.sku, bin_id=exc.bin_id)


async def _invalid_state_transition(request: Request, exc: InvalidStateTransition) -> JSONResponse:
    return _problem(409, exc, current=exc.current, target=exc.target, expected=exc.expected)


async def _session_not_active(request: Request, exc: SessionNotActive) -> JSONResponse:
    return _problem(409, exc, session_id=exc.session_id, current=exc.status)


async def _concurrent_modification(request: Request, exc: ConcurrentModification) -> JSONResponse:
    logger.warning("Concurrent modification surfaced", resource=exc.resource, key=exc.key, attempts=exc.attempts)
    return _problem(409, exc, resource=exc.resource, key=exc.key)


def register_exception_handlers(app: FastAPI) -> None:
    register_protean_handlers(app)
    app.add_exception_handler(InsufficientInventory, _insufficient_inventory)
    app.add_exception_handler(InvalidAdjustment, _invalid_adjustment)
    app.add_exception_handler(InvalidStateTransition, _invalid_state_transition)
    app.add_exception_handler(SessionNotActive, _session_not_active)
    app.add_exception_handler(ConcurrentModification, _concurrent_modification)
