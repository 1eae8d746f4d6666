"""Tests for outbound WhatsApp replies (HTTP mocked)."""

import pytest
import requests

from suma.whatsapp.meta_sender import MetaNotifier, OutboundSendError

from helpers import FakeResponse, FakeSession, RecordingSleep


def notifier(*responses, sleep=None):
    session = FakeSession(*responses)
    return MetaNotifier("PNID", "tok", session=session, sleep=sleep or RecordingSleep()), session


def test_send_posts_text_payload():
    sender, session = notifier(FakeResponse(200, json_data={"messages": [{"id": "wamid.out"}]}))

    sender.send("541122334455", "✅ Gasto registrado")

    call = session.calls[0]
    assert call["url"] == "https://graph.facebook.com/v21.0/PNID/messages"
    assert call["headers"] == {"Authorization": "Bearer tok"}
    assert call["json"] == {
        "messaging_product": "whatsapp",
        "recipient_type": "individual",
        "to": "541122334455",
        "type": "text",
        "text": {"body": "✅ Gasto registrado"},
    }


def test_transient_failure_retried_once():
    sleep = RecordingSleep()
    sender, session = notifier(requests.ConnectionError("reset"), FakeResponse(200), sleep=sleep)

    sender.send("541122334455", "hola")

    assert len(session.calls) == 2
    assert sleep.delays == [0.2]


def test_second_transient_failure_raises():
    sender, session = notifier(FakeResponse(503), FakeResponse(503))
    with pytest.raises(OutboundSendError):
        sender.send("541122334455", "hola")
    assert len(session.calls) == 2


def test_client_error_not_retried():
    sender, session = notifier(FakeResponse(400))
    with pytest.raises(OutboundSendError):
        sender.send("541122334455", "hola")
    assert len(session.calls) == 1


def test_logs_hash_and_length_only(captured_logs):
    sender, _ = notifier(FakeResponse(200))
    sender.send("541122334455", "texto privado")

    sent = [r for r in captured_logs if r.getMessage() == "whatsapp message sent"][0]
    assert set(sent.extra_fields) == {"correlationId", "to_hash", "text_len"}
    assert sent.extra_fields["text_len"] == str(len("texto privado"))


def test_missing_config_rejected():
    with pytest.raises(RuntimeError):
        MetaNotifier("", "tok")
