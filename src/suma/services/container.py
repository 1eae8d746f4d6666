"""Process-wide collaborators, constructed once at startup from Settings."""

from __future__ import annotations

from dataclasses import dataclass

from suma.api.task_auth import BrokerSignatureVerifier
from suma.domain.extraction import ExpenseExtractor
from suma.infra.db import Database
from suma.infra.gemini import GeminiExpenseModel
from suma.infra.idempotency import IdempotencyLedger
from suma.infra.settings import Settings
from suma.services.ledger_writer import LedgerWriter
from suma.services.pipeline import MessagePipeline
from suma.tasks.client import TasksClient
from suma.tasks.qstash_backend import QStashPublisher
from suma.whatsapp.media import MetaMediaFetcher
from suma.whatsapp.meta_sender import MetaNotifier


@dataclass
class Services:
    """Everything the routes need. Routes read it from app.state.services."""

    settings: Settings
    tasks_client: TasksClient
    broker_verifier: BrokerSignatureVerifier
    pipeline: MessagePipeline


def build_services(settings: Settings) -> Services:
    """Wire concrete clients from configuration. No network calls happen here."""
    db = Database(settings.database_url, password=settings.db_password)

    publisher = None
    if settings.tasks_backend == "qstash":
        publisher = QStashPublisher(
            token=settings.qstash_token,
            base_url=settings.qstash_url,
            retries=settings.qstash_retries,
        )

    llm = None
    if settings.gemini_api_key:
        llm = GeminiExpenseModel(settings.gemini_api_key, model=settings.gemini_model)

    pipeline = MessagePipeline(
        ledger=IdempotencyLedger(db, lease_seconds=settings.claim_lease_seconds),
        extractor=ExpenseExtractor(llm),
        writer=LedgerWriter(db),
        notifier=MetaNotifier(
            settings.whatsapp_phone_number_id,
            settings.whatsapp_api_token,
            api_version=settings.graph_api_version,
        ),
        media_fetcher=MetaMediaFetcher(
            settings.whatsapp_api_token,
            api_version=settings.graph_api_version,
            attempts=settings.media_fetch_attempts,
            base_delay=settings.media_fetch_base_delay_s,
        ),
    )

    return Services(
        settings=settings,
        tasks_client=TasksClient(
            backend=settings.tasks_backend,
            worker_base_url=settings.worker_base_url,
            publisher=publisher,
        ),
        broker_verifier=BrokerSignatureVerifier(
            settings.qstash_current_signing_key,
            settings.qstash_next_signing_key,
            url=settings.worker_process_url,
        ),
        pipeline=pipeline,
    )
