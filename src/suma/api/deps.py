"""FastAPI dependencies."""

from fastapi import Request

from suma.services.container import Services


def get_services(request: Request) -> Services:
    """Services built at app construction (overridable in tests)."""
    return request.app.state.services
