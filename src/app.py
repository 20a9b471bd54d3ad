"""Settlement FastAPI application.

Web server that processes commands synchronously via HTTP. Every request
runs inside the settlement domain context.

Usage:
    uvicorn app:app --app-dir src --host 0.0.0.0 --port 8000 --reload
"""

import uuid

# ---------------------------------------------------------------------------
# Domain initialization
# ---------------------------------------------------------------------------
# The domain is initialized at module level so uvicorn workers share it.
# PROTEAN_ENV controls which config overlay is applied (memory store by
# default, PostgreSQL under "production").
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from settlement.domain import settlement
from settlement.utils.logging import add_context, clear_context, configure_logging

configure_logging()
settlement.init()

# ---------------------------------------------------------------------------
# FastAPI app
# ---------------------------------------------------------------------------
app = FastAPI(
    title="Settlement API",
    description="Marketplace order lifecycle, payments, refunds and disputes",
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
    """Push the settlement domain context and bind a request id for logging."""
    clear_context()
    add_context(request_id=request.headers.get("x-request-id") or str(uuid.uuid4()), path=request.url.path)
    try:
        with settlement.domain_context():
            response = await call_next(request)
    finally:
        clear_context()
    return response


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------
from settlement.api import (  # noqa: E402
    dispute_router,
    inventory_router,
    maintenance_router,
    order_router,
    payment_router,
    refund_router,
)

app.include_router(order_router)
app.include_router(payment_router)
app.include_router(refund_router)
app.include_router(inventory_router)
app.include_router(dispute_router)
app.include_router(maintenance_router)


# ---------------------------------------------------------------------------
# Health / root
# ---------------------------------------------------------------------------
@app.get("/health")
async def health():
    return JSONResponse(content={"status": "ok", "domain": {"name": settlement.name}})
