"""FastAPI Application Entry Point.

Configures the app, lifespan, CORS, engine error mapping, and includes all
route modules.
"""

from __future__ import annotations

import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from hybridflow.config import API_HOST, API_PORT, DISPATCH_MODE, SEED_TEMPLATES
from hybridflow.engine.errors import (
    EngineError,
    ExecutionNotFoundError,
    ProtocolError,
    StateConflictError,
    WorkflowNotFoundError,
    WorkflowValidationError,
)
from hybridflow.logging_config import get_api_logger, get_engine_logger

from .database import close_db, init_db
from .seeds import seed_templates
from .temporal_adapter import close_temporal_client, init_temporal_client

# Ensure node types are registered at import time
import hybridflow.nodes  # noqa: F401

logger = get_api_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage database, template seeding and Temporal client lifecycle."""
    get_engine_logger()
    await init_db()
    if SEED_TEMPLATES:
        created = await seed_templates()
        if created:
            logger.info(f"Seeded {created} workflow template(s)")

    if DISPATCH_MODE == "temporal":
        await init_temporal_client()
    else:
        logger.info("Dispatch mode is inline; advance cycles run within requests")

    yield
    await close_temporal_client()
    await close_db()


app = FastAPI(title="HybridFlow API", version="2.0.0", lifespan=lifespan)

# CORS configuration, configurable via CORS_ORIGINS env var (comma-separated)
_default_origins = "http://localhost:3000,http://127.0.0.1:3000"
CORS_ORIGINS = [
    o.strip() for o in os.getenv("CORS_ORIGINS", _default_origins).split(",") if o.strip()
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _status_code_for(exc: EngineError) -> int:
    if isinstance(exc, (WorkflowNotFoundError, ExecutionNotFoundError)):
        return 404
    if isinstance(exc, StateConflictError):
        return 409
    if isinstance(exc, ProtocolError):
        return 400
    if isinstance(exc, WorkflowValidationError):
        return 422
    return 500


@app.exception_handler(EngineError)
async def engine_error_handler(request: Request, exc: EngineError):
    """Map engine errors to `{error}` bodies with a matching status code."""
    status_code = _status_code_for(exc)
    body = {"error": str(exc)}
    if isinstance(exc, WorkflowValidationError) and exc.result is not None:
        body["details"] = exc.result.to_dict()
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=status_code, content=body)


# Include routers
from .routes.workflows import router as workflows_router  # noqa: E402
from .routes.executions import router as executions_router  # noqa: E402
from .routes.nodes import router as nodes_router  # noqa: E402

app.include_router(workflows_router)
app.include_router(executions_router)
app.include_router(nodes_router)


@app.get("/health")
async def health_check():
    """Health check endpoint for container orchestration."""
    return {"status": "ok", "dispatchMode": DISPATCH_MODE}


def run() -> None:
    """Serve the API with uvicorn (console script `hybridflow-api`)."""
    import uvicorn

    uvicorn.run("app.main:app", host=API_HOST, port=API_PORT)
