"""
API Dependencies
Common dependencies for FastAPI routes.
"""

from fastapi import Request

from app.workers.runtime import Runtime


def get_runtime(request: Request) -> Runtime:
    """The process runtime built in the application lifespan."""
    return request.app.state.runtime
