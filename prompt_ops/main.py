"""FastAPI application entry point."""

from __future__ import annotations

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from prompt_ops.api.router import api_router
from prompt_ops.config import get_settings
from prompt_ops.db.client import StoreClient
from prompt_ops.utils.logging import setup_logging

logger = structlog.get_logger()

VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: owns the store connection."""
    settings = get_settings()
    setup_logging(settings.log_level)
    logger.info("prompt_ops.starting", port=settings.port)

    store = StoreClient(settings).connect()
    app.state.store = store

    yield

    store.disconnect()
    logger.info("prompt_ops.shutdown")


app = FastAPI(
    title="Prompt Ops",
    description="Prompt versioning, test result recording and metrics aggregation",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router, prefix="/api/v1")


@app.get("/")
async def root():
    """Service info endpoint."""
    return {"service": "prompt-ops", "version": VERSION}


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy", "service": "prompt-ops", "version": VERSION}
