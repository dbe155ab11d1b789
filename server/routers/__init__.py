"""
API Routers
===========

FastAPI routers for different API endpoints.
"""

from .actors import router as actors_router
from .scenarios import router as scenarios_router
from .use_cases import router as use_cases_router

__all__ = [
    "actors_router",
    "scenarios_router",
    "use_cases_router",
]
