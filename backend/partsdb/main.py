# backend/partsdb/main.py
import logging
import os
from typing import List

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from .errors import ProcurementError

from .apps.audit.router import router as audit_router
from .apps.inventory.router import router as inventory_router
from .apps.purchasing.router import router as purchasing_router
from .apps.parts_requests.router import router as parts_requests_router
from .apps.transfers.router import router as transfers_router

logger = logging.getLogger(__name__)


def _allowed_origins() -> List[str]:
    """
    Parse CORS_ALLOWED_ORIGINS from env.

    Accepts comma-separated origins. If unset, defaults to local dev ports.
    """
    raw = os.getenv("CORS_ALLOWED_ORIGINS", "")
    if raw:
        origins = [origin.strip() for origin in raw.split(",") if origin.strip()]
        if origins:
            return origins
    return [
        "http://127.0.0.1:5173",
        "http://localhost:5173",
    ]


app = FastAPI(title="Parts Procurement API", version="1.0.0")
cors_origins = _allowed_origins()
allow_credentials = "*" not in cors_origins

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=allow_credentials,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ProcurementError)
def handle_procurement_error(request: Request, exc: ProcurementError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(IntegrityError)
def handle_integrity_error(request: Request, exc: IntegrityError):
    # Unique / check constraints are the last line behind the service checks.
    logger.error(
        "Integrity error on %s %s",
        request.method,
        request.url.path,
        exc_info=exc,
        extra={"error": str(exc.orig)},
    )
    return JSONResponse(
        status_code=409,
        content={
            "kind": "integrity",
            "message": "The change conflicts with existing data.",
            "field": None,
            "line_id": None,
        },
    )


@app.get("/", tags=["health"])
def read_root():
    return {"status": "ok", "message": "Parts procurement backend is running"}


@app.get("/health", tags=["health"])
def health():
    return {"status": "ok"}


app.include_router(inventory_router)
app.include_router(purchasing_router)
app.include_router(parts_requests_router)
app.include_router(transfers_router)
app.include_router(audit_router)
