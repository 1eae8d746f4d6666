"""Tests for the tasks client, the QStash publisher and the queued-unit contract."""

from __future__ import annotations

import json

import pytest
import requests

from suma.tasks.client import TaskEnqueueError, TasksClient
from suma.tasks.contracts import QueuedUnit
from suma.tasks.qstash_backend import QStashPublisher
from suma.whatsapp.models import InboundMessage, MediaRef

from helpers import FakeResponse, FakeSession

DEST = "https://worker.example.com/tasks/whatsapp/process-message"


def publisher(*responses, **kwargs) -> tuple[QStashPublisher, FakeSession]:
    session = FakeSession(*responses)
    return QStashPublisher("qs-token", session=session, **kwargs), session


class TestQStashPublisher:
    def test_publish_headers_and_body(self):
        pub, session = publisher(FakeResponse(201, json_data={"messageId": "msg_1"}), retries=5)

        result = pub.publish("wamid.1", DEST, {"version": "v1", "text": "gasté 5000"}, "corr-1")

        assert result == "msg_1"
        call = session.calls[0]
        assert call["url"] == f"https://qstash.upstash.io/v2/publish/{DEST}"
        assert call["headers"]["Authorization"] == "Bearer qs-token"
        assert call["headers"]["Upstash-Retries"] == "5"
        assert call["headers"]["Upstash-Deduplication-Id"] == "wamid.1"
        assert call["headers"]["Upstash-Forward-X-Correlation-ID"] == "corr-1"
        assert json.loads(call["data"].decode("utf-8")) == {"version": "v1", "text": "gasté 5000"}
        assert call["timeout"] == pytest.approx(0.7)

    def test_no_correlation_header_when_absent(self):
        pub, session = publisher(FakeResponse(200, json_data={}))
        pub.publish("wamid.1", DEST, {})
        assert "Upstash-Forward-X-Correlation-ID" not in session.calls[0]["headers"]

    def test_non_json_response_tolerated(self):
        pub, _ = publisher(FakeResponse(200))
        assert pub.publish("wamid.1", DEST, {}) is None

    def test_error_status_raises(self):
        pub, _ = publisher(FakeResponse(500))
        with pytest.raises(requests.HTTPError):
            pub.publish("wamid.1", DEST, {})

    def test_custom_base_url(self):
        pub, session = publisher(FakeResponse(200, json_data={}), base_url="http://localhost:8080/")
        pub.publish("wamid.1", DEST, {})
        assert session.calls[0]["url"] == f"http://localhost:8080/v2/publish/{DEST}"

    def test_missing_token_rejected(self):
        with pytest.raises(RuntimeError):
            QStashPublisher("")


class TestTasksClientInline:
    def test_enqueue_records_task(self):
        client = TasksClient()
        assert client.enqueue_http("wamid.1", "/tasks/x", {"a": 1}, "corr") is True
        assert client.get_scheduled_tasks() == [
            {"task_id": "wamid.1", "url_path": "/tasks/x", "payload": {"a": 1}, "correlation_id": "corr"}
        ]
        assert client.was_enqueued("wamid.1")

    def test_same_id_enqueued_once(self):
        client = TasksClient()
        assert client.enqueue_http("wamid.1", "/tasks/x", {}) is True
        assert client.enqueue_http("wamid.1", "/tasks/x", {}) is False
        assert len(client.get_scheduled_tasks()) == 1

    def test_clear(self):
        client = TasksClient()
        client.enqueue_http("wamid.1", "/tasks/x", {})
        client.clear()
        assert client.get_scheduled_tasks() == []
        assert not client.was_enqueued("wamid.1")

    def test_memory_bounded_by_max_tracked_ids(self):
        client = TasksClient(max_tracked_ids=100)
        for i in range(1000):
            assert client.enqueue_http(f"wamid.{i}", "/tasks/x", {}) is True

        assert len(client.get_scheduled_tasks()) == 100
        assert client.get_scheduled_tasks()[0]["task_id"] == "wamid.900"
        assert client.was_enqueued("wamid.999")
        assert not client.was_enqueued("wamid.0")

    def test_recent_duplicate_kept_while_older_ids_evicted(self):
        client = TasksClient(max_tracked_ids=2)
        client.enqueue_http("wamid.1", "/tasks/x", {})
        client.enqueue_http("wamid.2", "/tasks/x", {})
        assert client.enqueue_http("wamid.1", "/tasks/x", {}) is False
        client.enqueue_http("wamid.3", "/tasks/x", {})

        assert client.was_enqueued("wamid.1")
        assert not client.was_enqueued("wamid.2")

    def test_non_positive_bound_rejected(self):
        with pytest.raises(ValueError):
            TasksClient(max_tracked_ids=0)

    def test_unknown_backend_rejected(self):
        with pytest.raises(ValueError):
            TasksClient(backend="cloud_tasks")

    def test_qstash_backend_requires_publisher(self):
        with pytest.raises(ValueError):
            TasksClient(backend="qstash")


class TestTasksClientQStash:
    def test_publishes_to_worker_url(self):
        pub, session = publisher(FakeResponse(200, json_data={"messageId": "m"}))
        client = TasksClient(backend="qstash", worker_base_url="https://worker.example.com/", publisher=pub)

        assert client.enqueue_http("wamid.1", "/tasks/whatsapp/process-message", {}, "c") is True
        assert session.calls[0]["url"].endswith(f"/v2/publish/{DEST}")
        assert client.get_scheduled_tasks() == []

    def test_memory_bounded_across_many_publishes(self):
        ok = FakeResponse(200, json_data={"messageId": "m"})
        pub, session = publisher(*[ok] * 500)
        client = TasksClient(
            backend="qstash",
            worker_base_url="https://worker.example.com",
            publisher=pub,
            max_tracked_ids=50,
        )

        for i in range(500):
            client.enqueue_http(f"wamid.{i}", "/tasks/whatsapp/process-message", {})

        assert len(session.calls) == 500
        assert sum(client.was_enqueued(f"wamid.{i}") for i in range(500)) == 50

    def test_publish_failure_raises_and_allows_retry(self):
        pub, session = publisher(
            requests.ConnectionError("broker down"),
            FakeResponse(200, json_data={"messageId": "m"}),
        )
        client = TasksClient(backend="qstash", worker_base_url="https://worker.example.com", publisher=pub)

        with pytest.raises(TaskEnqueueError):
            client.enqueue_http("wamid.1", "/tasks/whatsapp/process-message", {})
        assert not client.was_enqueued("wamid.1")

        assert client.enqueue_http("wamid.1", "/tasks/whatsapp/process-message", {}) is True
        assert len(session.calls) == 2


class TestQueuedUnit:
    def test_roundtrip_preserves_message(self):
        unit = QueuedUnit(
            message=InboundMessage(
                message_id="wamid.1",
                sender="541122334455",
                kind="image",
                text="ticket",
                media=MediaRef(media_id="m-1", mime_type="image/jpeg"),
                timestamp="1760000000",
            ),
            phone_number_id="123",
            display_phone_number="54911",
            received_at="2026-10-19T12:00:00+00:00",
        )

        data = json.loads(json.dumps(unit.to_dict()))
        assert data["version"] == "v1"
        assert QueuedUnit.from_dict(data) == unit
        assert unit.message_id == "wamid.1"

    @pytest.mark.parametrize(
        "data",
        [
            [],
            {"version": "v2", "message": {"id": "x", "sender": "y", "kind": "text"}},
            {"version": "v1"},
            {"version": "v1", "message": {"sender": "y", "kind": "text"}},
            {"version": "v1", "message": {"id": "x", "kind": "text"}},
        ],
    )
    def test_invalid_payload_rejected(self, data):
        with pytest.raises(ValueError):
            QueuedUnit.from_dict(data)

    def test_version_not_settable(self):
        with pytest.raises(TypeError):
            QueuedUnit(version="v2")  # type: ignore[call-arg]
