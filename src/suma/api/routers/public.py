"""Ingress routes mounted for every role (APP_ROLE=public and worker)."""

from fastapi import APIRouter

router = APIRouter(tags=["health"])


@router.get("/health")
def health() -> dict:
    """Liveness check. Touches no dependency, so the provider webhook stays cheap."""
    return {"status": "ok"}
