"""WhatsApp webhook routes - Meta Cloud API integration.

The ingress only verifies, fans out and enqueues. Extraction, persistence
and notification never run here: the provider expects an answer within
about a second, so each message becomes its own queued unit processed by
the worker.

Security:
- Signature verified over the raw body before any JSON decoding
- Logs contain NO PII (no sender, no text)
"""

from __future__ import annotations

import asyncio
import json
from typing import Any

from fastapi import APIRouter, Depends, Header, Query, Request, Response
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, PlainTextResponse

from suma.api.deps import get_services
from suma.infra.time import utc_now_iso
from suma.observability.correlation import get_correlation_id
from suma.observability.logging import get_logger
from suma.observability.redaction import id_prefix, safe_log_context
from suma.services.container import Services
from suma.tasks.client import TasksClient
from suma.tasks.contracts import QueuedUnit
from suma.whatsapp.meta_adapter import EXPECTED_OBJECT, extract_messages, is_valid_signature

router = APIRouter(prefix="/webhooks/whatsapp", tags=["webhooks"])

logger = get_logger(__name__)

PROCESS_MESSAGE_PATH = "/tasks/whatsapp/process-message"


def _ack(status: str, count: int) -> JSONResponse:
    return JSONResponse(status_code=200, content={"status": status, "count": count})


async def enqueue_units(
    tasks_client: TasksClient,
    units: list[QueuedUnit],
    correlation_id: str,
    timeout: float,
) -> int:
    """Submit every unit concurrently and count the confirmed enqueues.

    Each unit runs in its own task; a failure in one never cancels the
    others. Submissions still running when the timeout fires are counted as
    not confirmed (their worker threads finish on their own).
    """

    async def submit(unit: QueuedUnit) -> bool:
        return await run_in_threadpool(
            tasks_client.enqueue_http,
            unit.message_id,
            PROCESS_MESSAGE_PATH,
            unit.to_dict(),
            correlation_id,
        )

    tasks = [asyncio.create_task(submit(unit)) for unit in units]
    done, pending = await asyncio.wait(tasks, timeout=timeout)

    count = 0
    for unit, task in zip(units, tasks):
        context = safe_log_context(
            correlationId=correlation_id,
            message_id_prefix=id_prefix(unit.message_id),
        )
        if task in pending:
            task.cancel()
            logger.warning("enqueue not confirmed before timeout", extra={"extra_fields": context})
            continue

        error = task.exception()
        if error is not None:
            logger.error(
                "enqueue failed",
                extra={"extra_fields": {**context, "error_type": type(error).__name__}},
            )
        elif task.result():
            count += 1
        else:
            logger.info("message already enqueued", extra={"extra_fields": context})

    return count


@router.get("/meta")
async def meta_webhook_verify(
    hub_mode: str = Query(None, alias="hub.mode"),
    hub_verify_token: str = Query(None, alias="hub.verify_token"),
    hub_challenge: str = Query(None, alias="hub.challenge"),
    services: Services = Depends(get_services),
) -> Response:
    """Meta webhook verification endpoint.

    Meta sends GET request during webhook setup to verify ownership.
    We must return hub.challenge if hub.verify_token matches.

    Returns:
        200 with hub.challenge if valid.
        403 if invalid.
    """
    expected_token = services.settings.whatsapp_verify_token

    if hub_mode == "subscribe" and expected_token and hub_verify_token == expected_token:
        logger.info(
            "meta webhook verification successful",
            extra={"extra_fields": safe_log_context(hub_mode=hub_mode)},
        )
        return PlainTextResponse(status_code=200, content=hub_challenge or "")

    logger.warning(
        "meta webhook verification failed",
        extra={"extra_fields": safe_log_context(hub_mode=hub_mode or "missing")},
    )
    return PlainTextResponse(status_code=403, content="verification failed")


@router.post("/meta")
async def meta_webhook(
    request: Request,
    x_hub_signature_256: str | None = Header(None, alias="X-Hub-Signature-256"),
    services: Services = Depends(get_services),
) -> Response:
    """Receive Meta Cloud API webhook.

    Returns:
        401 on a bad signature.
        200 {"status": "ignored" | "no_messages" | "queued", "count": n} otherwise.
    """
    correlation_id = get_correlation_id()

    # 1. Raw body first; the signature covers these exact bytes
    body_bytes = await request.body()

    # 2. Verify signature
    if not is_valid_signature(body_bytes, x_hub_signature_256, services.settings.whatsapp_app_secret):
        logger.warning(
            "meta signature verification failed",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return JSONResponse(status_code=401, content={"error": "invalid signature"})

    # 3. Parse JSON and check the schema tag
    try:
        payload: Any = json.loads(body_bytes)
    except ValueError:
        logger.warning(
            "invalid json body",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return _ack("ignored", 0)

    obj_type = payload.get("object") if isinstance(payload, dict) else None
    if obj_type != EXPECTED_OBJECT:
        logger.debug(
            "non-whatsapp webhook ignored",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=correlation_id,
                    object_type=obj_type or "missing",
                )
            },
        )
        return _ack("ignored", 0)

    # 4. Fan out every message across entries/changes
    extracted = extract_messages(payload)
    if not extracted:
        return _ack("no_messages", 0)

    received_at = utc_now_iso()
    units = [
        QueuedUnit(
            message=item.message,
            phone_number_id=item.phone_number_id,
            display_phone_number=item.display_phone_number,
            received_at=received_at,
        )
        for item in extracted
    ]

    # 5. Enqueue concurrently, bounded by the latency budget
    count = await enqueue_units(
        services.tasks_client,
        units,
        correlation_id,
        services.settings.ingress_enqueue_timeout_s,
    )

    logger.info(
        "meta webhook received",
        extra={
            "extra_fields": safe_log_context(
                correlationId=correlation_id,
                messages=len(units),
                queued=count,
                provider="meta",
            )
        },
    )
    return _ack("queued", count)
