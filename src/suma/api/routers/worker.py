"""Worker-only routes (APP_ROLE=worker).

Neither check reaches Postgres or the broker; both report wiring only.
"""

from fastapi import APIRouter, Depends

from suma.api.deps import get_services
from suma.services.container import Services

router = APIRouter(tags=["health"])


@router.get("/tasks/health")
def tasks_health(services: Services = Depends(get_services)) -> dict:
    """Delivery side is up; reports which tasks backend the ingress publishes to."""
    return {"status": "ok", "subsystem": "tasks", "backend": services.tasks_client.backend}


@router.get("/internal/health")
def internal_health(services: Services = Depends(get_services)) -> dict:
    return {
        "status": "ok",
        "subsystem": "internal",
        "claim_lease_seconds": services.settings.claim_lease_seconds,
    }
