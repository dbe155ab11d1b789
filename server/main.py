"""
FastAPI Main Application
========================

HTTP surface over the use case manager core.

The application is built by create_app(); the service (and through it the
configured backend) is created once and attached to app.state.
"""

import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Load environment variables from .env file if present
load_dotenv()

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ucm.repository_factory import create_service
from ucm.service import UseCaseService

from .dependencies import get_service
from .exceptions import register_exception_handlers
from .routers import actors_router, scenarios_router, use_cases_router

_logger = logging.getLogger(__name__)

PROJECT_DIR_ENV = "UCM_PROJECT_DIR"


def create_app(
    project_dir: Optional[Path] = None,
    service: Optional[UseCaseService] = None,
) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        project_dir: Initialized project directory; defaults to $UCM_PROJECT_DIR
            or the current directory
        service: Pre-built service (tests); when given, project_dir is unused
    """
    if service is None:
        project_dir = Path(project_dir or os.environ.get(PROJECT_DIR_ENV, ".")).resolve()
        service = create_service(project_dir)
        _logger.info("Serving project %s (%s backend)", project_dir, service.backend_name)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        app.state.service.repository.close()

    app = FastAPI(
        title="Use Case Manager",
        description="Use cases, scenarios and actors with consistent cross references",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.service = service

    # {"error_code": "ERROR_TYPE", "message": "Human-readable message", "details": {...}}
    register_exception_handlers(app)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:5173",      # Vite dev server
            "http://127.0.0.1:5173",
            "http://localhost:8888",
            "http://127.0.0.1:8888",
        ],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(use_cases_router)
    app.include_router(scenarios_router)
    app.include_router(actors_router)

    @app.get("/api/health")
    def health_check(service: UseCaseService = Depends(get_service)):
        """Health check endpoint; also probes the storage backend."""
        service.repository.health_check()
        return {"status": "healthy", "backend": service.backend_name}

    @app.get("/api/validate")
    def validate_project(service: UseCaseService = Depends(get_service)):
        """Run the whole-project consistency check."""
        return service.validate_project().to_dict()

    return app


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        create_app(),
        host="127.0.0.1",  # Localhost only
        port=8888,
    )
