from __future__ import annotations

from fakes import FakeMessage, feed_message

from apcsplitter._redact import describe_message, redact_for_log


def test_redact_for_log_redacts_sensitive_keys() -> None:
    payload = {
        "service_url": "pulsar+ssl://pulsar.example:6651",
        "private_key": "file:///secrets/key.json",
        "nested": {"client_secret": "s3cr3t", "audience": "urn:sn:pulsar:tenant"},
    }

    redacted = redact_for_log(payload)
    assert redacted["service_url"] == "pulsar+ssl://pulsar.example:6651"
    assert redacted["private_key"] == "<redacted>"
    assert redacted["nested"]["client_secret"] == "<redacted>"
    assert redacted["nested"]["audience"] == "urn:sn:pulsar:tenant"


def test_redact_for_log_truncates_long_strings() -> None:
    long_value = "x" * 600
    redacted = redact_for_log({"value": long_value}, max_string=10)
    assert redacted["value"].startswith("x" * 10)
    assert "<truncated>" in redacted["value"]


def test_describe_message_summarizes_binary_payload() -> None:
    message = feed_message([("1", 1667406731)], props={"originMessageId": "1:2:-1:0"}, publish_time=5, msg_id="4:2:-1:0")
    message.payload = b"\xff" + message.payload

    described = describe_message(message)

    assert described["topic"] == message.topic
    assert described["message_id"] == "4:2:-1:0"
    assert described["event_timestamp"] == 5
    assert described["properties"] == {"originMessageId": "1:2:-1:0"}
    assert described["data"] == f"<bytes:{len(message.payload)}b>"


def test_describe_message_keeps_text_payload() -> None:
    message = FakeMessage(topic="registry", payload=b'[{"operatorId": "6903"}]')

    assert describe_message(message)["data"] == '[{"operatorId": "6903"}]'
