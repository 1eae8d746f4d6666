"""Worker routes for WhatsApp task handling.

Called by the broker only, once per queued unit delivery attempt. A 500 or
503 answer makes the broker retry the unit.

Security:
- Broker signature verified over the raw body
- Payload carries sender and text (needed to process and reply); logs NEVER do
"""

from __future__ import annotations

import json

from fastapi import APIRouter, Depends, Request, Response
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from suma.api.deps import get_services
from suma.api.task_auth import extract_signature
from suma.observability.correlation import get_correlation_id
from suma.observability.logging import get_logger
from suma.observability.redaction import id_prefix, safe_log_context
from suma.services.container import Services
from suma.services.pipeline import PipelineError
from suma.tasks.contracts import QueuedUnit

router = APIRouter(prefix="/tasks/whatsapp", tags=["tasks"])

logger = get_logger(__name__)


@router.post("/process-message")
async def process_message(
    request: Request,
    services: Services = Depends(get_services),
) -> Response:
    """Process one queued WhatsApp message.

    Returns:
        200 {"status": "processed" | "duplicate", "id"} on success.
        401 on a bad broker signature.
        400 on an unreadable payload (not retried).
        500 {"error", "id"} on pipeline failure (retried by the broker).
        503 {"error": "in_flight", "id"} while another attempt holds the claim
            (retried by the broker once the claim lease expires).
    """
    correlation_id = get_correlation_id()
    raw_body = await request.body()

    if not services.broker_verifier.verify(raw_body, extract_signature(request)):
        logger.warning(
            "task auth failed",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return JSONResponse(status_code=401, content={"error": "unauthorized"})

    try:
        unit = QueuedUnit.from_dict(json.loads(raw_body))
    except ValueError as e:
        logger.warning(
            "invalid task payload",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id, error=str(e))},
        )
        return JSONResponse(status_code=400, content={"error": "invalid payload"})

    logger.info(
        "process-message task received",
        extra={
            "extra_fields": safe_log_context(
                correlationId=correlation_id,
                message_id_prefix=id_prefix(unit.message_id),
                kind=unit.message.kind if unit.message else None,
            )
        },
    )

    try:
        result = await run_in_threadpool(services.pipeline.process, unit)
    except PipelineError as e:
        return JSONResponse(
            status_code=500,
            content={"error": "processing failed", "id": e.message_id},
        )
    except Exception:
        logger.exception(
            "unexpected worker failure",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return JSONResponse(
            status_code=500,
            content={"error": "processing failed", "id": unit.message_id},
        )

    if result.status == "in_flight":
        return JSONResponse(
            status_code=503,
            content={"error": "in_flight", "id": result.message_id},
        )

    return JSONResponse(
        status_code=200,
        content={"status": result.status, "id": result.message_id},
    )
