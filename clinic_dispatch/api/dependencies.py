"""FastAPI dependencies."""

from fastapi import Request

from clinic_dispatch.core.container import DependencyContainer


def get_container(request: Request) -> DependencyContainer:
    """Container attached to the running app by the factory."""
    return request.app.state.container
