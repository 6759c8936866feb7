import json
import logging

from storefront.core.logging_config import RedactionFilter, StructuredFormatter, request_id_var, actor_var


def make_record(msg, extra_fields=None):
    record = logging.LogRecord("storefront.test", logging.INFO, __file__, 1, msg, None, None)
    if extra_fields is not None:
        record.extra_fields = extra_fields
    return record


def test_phone_numbers_in_messages_are_masked():
    record = make_record("Lookup for 09171234567 failed")
    RedactionFilter().filter(record)
    assert record.msg == "Lookup for *******4567 failed"


def test_order_ids_are_not_masked():
    record = make_record("GET /orders/3f2a9c1e-ab12-4c5d-9e8f-000000000001")
    RedactionFilter().filter(record)
    assert record.msg.endswith("000000000001")


def test_sensitive_fields_are_redacted():
    record = make_record("Order placed", {"contact_number": "09171234567", "order_id": "abc"})
    RedactionFilter().filter(record)
    assert record.extra_fields == {"contact_number": "***REDACTED***", "order_id": "abc"}


def test_formatter_emits_json_with_trace_context():
    request_token = request_id_var.set("req-1")
    actor_token = actor_var.set("admin@store.test")
    try:
        line = StructuredFormatter("storefront-orders", "test", "1.0.0").format(
            make_record("Order placed", {"order_id": "abc"})
        )
    finally:
        request_id_var.reset(request_token)
        actor_var.reset(actor_token)

    body = json.loads(line)
    assert body["message"] == "Order placed"
    assert body["service"] == "storefront-orders"
    assert body["custom"] == {"order_id": "abc"}
    assert body["trace"]["request_id"] == "req-1"
    assert body["trace"]["actor"] == "admin@store.test"
