from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from dotenv import load_dotenv

# Load environment from optional .env file before instantiating settings
_SERVER_ENV_FILE = os.getenv("MAGIC_SERVER_ENV_FILE", ".env.server")
if _SERVER_ENV_FILE and Path(_SERVER_ENV_FILE).is_file():
    load_dotenv(_SERVER_ENV_FILE)

from magic_server.app.config import get_settings

settings = get_settings()
from magic_server.app.deps import get_runtime_client
from magic_server.app.errors import WorkspaceError
from magic_server.app.logging_setup import initialize_from_env
from magic_server.app.routers import templates, workspaces

logger = logging.getLogger("magic_workspaces")
_LOG_PATH = initialize_from_env(service_name="magic_workspaces")
logger.info(f"Magic workspaces logging to file: {_LOG_PATH}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # The engine may come up after the service; requests report engine_unavailable until it does.
    runtime = get_runtime_client()
    try:
        await runtime.ping()
        logger.info(f"Container engine reachable at {settings.docker_base_url}")
    except WorkspaceError as e:
        logger.warning(f"Container engine not reachable at {settings.docker_base_url}: {e}")
    logger.info("Magic workspaces startup complete.")
    try:
        yield
    finally:
        runtime.close()
        logger.info("Magic workspaces shutdown complete.")


app = FastAPI(
    title="Magic Workspaces",
    version=settings.service_version,
    description="Stateless manager for template-based, containerized workspaces.",
    lifespan=lifespan,
)

# CORS: permissive by default; lock down in deployment via env vars if needed
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(workspaces.router, prefix="/workspaces", tags=["workspaces"])
app.include_router(templates.router, prefix="/templates", tags=["templates"])


@app.exception_handler(WorkspaceError)
async def workspace_error_handler(request: Request, exc: WorkspaceError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.kind.value}: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected: {exc.kind.value}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.get("/health")
async def health() -> dict:
    """
    Basic health probe; intentionally unauthenticated.
    """
    return {
        "status": "ok",
        "service": "magic-workspaces",
        "version": app.version,
    }
