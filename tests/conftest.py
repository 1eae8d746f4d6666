"""Shared pytest fixtures for Suma tests."""
import logging
import sys
sys.dont_write_bytecode = True

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from suma.api.factory import create_app  # noqa: E402
from suma.api.task_auth import BrokerSignatureVerifier  # noqa: E402
from suma.domain.extraction import ExpenseExtractor  # noqa: E402
from suma.services.container import Services  # noqa: E402
from suma.services.pipeline import MessagePipeline  # noqa: E402
from suma.tasks.client import TasksClient  # noqa: E402

from helpers import (  # noqa: E402
    CURRENT_SIGNING_KEY,
    NEXT_SIGNING_KEY,
    WORKER_URL,
    FakeLedger,
    FakeMediaFetcher,
    FakeNotifier,
    FakeWriter,
    make_settings,
)


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def writer():
    return FakeWriter()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def media_fetcher():
    return FakeMediaFetcher()


@pytest.fixture
def extractor():
    """Regex-only extractor (no language model configured)."""
    return ExpenseExtractor()


@pytest.fixture
def pipeline(ledger, extractor, writer, notifier, media_fetcher):
    return MessagePipeline(
        ledger=ledger,
        extractor=extractor,
        writer=writer,
        notifier=notifier,
        media_fetcher=media_fetcher,
    )


@pytest.fixture
def tasks_client():
    return TasksClient(backend="inline")


@pytest.fixture
def services(tasks_client, pipeline):
    return Services(
        settings=make_settings(),
        tasks_client=tasks_client,
        broker_verifier=BrokerSignatureVerifier(CURRENT_SIGNING_KEY, NEXT_SIGNING_KEY, url=WORKER_URL),
        pipeline=pipeline,
    )


@pytest.fixture
def public_client(services):
    return TestClient(create_app(role="public", services=services))


@pytest.fixture
def worker_client(services):
    return TestClient(create_app(role="worker", services=services))


class _ListHandler(logging.Handler):
    def __init__(self) -> None:
        super().__init__(logging.DEBUG)
        self.records: list[logging.LogRecord] = []

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(record)


@pytest.fixture
def captured_logs():
    """Records emitted by every suma.* logger during the test.

    suma loggers do not propagate to root, so caplog cannot see them.
    """
    handler = _ListHandler()
    names = [name for name in logging.root.manager.loggerDict if name.startswith("suma.")]
    loggers = [logging.getLogger(name) for name in names]
    levels = [lg.level for lg in loggers]
    for lg in loggers:
        lg.addHandler(handler)
        lg.setLevel(logging.DEBUG)
    yield handler.records
    for lg, level in zip(loggers, levels):
        lg.removeHandler(handler)
        lg.setLevel(level)
