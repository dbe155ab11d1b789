"""
Request Dependencies
====================

FastAPI dependencies shared by the routers.
"""

from fastapi import Request

from ucm.service import UseCaseService


def get_service(request: Request) -> UseCaseService:
    """Return the use case service attached to the application at startup."""
    return request.app.state.service
