"""
Tests for the event classifier.

Tests cover:
- Text, interactive and status extraction
- Self-loop detection against our own identities
- Rejection of malformed envelopes
"""

import pytest

from whatsapp_relay.classifier import EventClassifier
from whatsapp_relay.errors import InvalidPayload

from tests.payloads import (
    BUSINESS_ID,
    BUSINESS_PHONE,
    CUSTOMER,
    OTHER_CUSTOMER,
    button_reply,
    envelope,
    image_message,
    list_reply,
    status_update,
    text_message,
)


@pytest.fixture
def classifier() -> EventClassifier:
    return EventClassifier({BUSINESS_ID, BUSINESS_PHONE})


class TestMessageExtraction:
    """Inbound message events."""

    def test_text_message(self, classifier):
        notification = classifier.classify(text_message("Hi there", message_id="wamid.A"))

        assert notification.status is None
        assert notification.self_loop is False
        message = notification.message
        assert message.sender_phone == CUSTOMER
        assert message.provider_message_id == "wamid.A"
        assert message.type == "text"
        assert message.text_body == "Hi there"
        assert message.timestamp == "1700000000"
        assert message.ledger_type == "text"
        assert message.selection_type is None

    def test_raw_keeps_original_message_object(self, classifier):
        payload = text_message("Hi there")
        notification = classifier.classify(payload)
        assert notification.message.raw == payload["entry"][0]["changes"][0]["value"]["messages"][0]

    def test_list_reply_selection(self, classifier):
        notification = classifier.classify(list_reply({"id": "second_option", "title": "Second option"}))

        message = notification.message
        assert message.type == "interactive"
        assert message.selection_type == "list_reply"
        assert message.selection == {"id": "second_option", "title": "Second option"}

    def test_button_reply_selection(self, classifier):
        notification = classifier.classify(button_reply({"id": "first_button", "title": "First Button"}))

        assert notification.message.selection_type == "button_reply"
        assert notification.message.selection == {"id": "first_button", "title": "First Button"}

    def test_unknown_interactive_subtype_has_no_selection(self, classifier):
        payload = envelope({
            "messages": [{
                "from": CUSTOMER,
                "id": "wamid.flow",
                "type": "interactive",
                "interactive": {"type": "nfm_reply", "nfm_reply": {"response_json": "{}"}},
            }]
        })
        notification = classifier.classify(payload)
        assert notification.message.selection_type is None
        assert notification.message.ledger_type == "interactive"

    def test_other_types_collapse_to_other(self, classifier):
        notification = classifier.classify(image_message())
        assert notification.message.type == "image"
        assert notification.message.ledger_type == "other"
        assert notification.message.text_body is None


class TestStatusExtraction:
    """Delivery status callbacks."""

    def test_status_event(self, classifier):
        notification = classifier.classify(status_update("wamid.out.9", status="read"))

        assert notification.message is None
        status = notification.status
        assert status.provider_message_id == "wamid.out.9"
        assert status.status == "read"
        assert status.recipient_phone == CUSTOMER
        assert status.raw["statuses"][0]["id"] == "wamid.out.9"

    def test_status_and_message_in_one_change(self, classifier):
        payload = text_message("Hello")
        payload["entry"][0]["changes"][0]["value"]["statuses"] = [
            {"id": "wamid.out.1", "status": "sent", "recipient_id": CUSTOMER}
        ]
        notification = classifier.classify(payload)

        assert notification.status.provider_message_id == "wamid.out.1"
        assert notification.message.provider_message_id == "wamid.in.1"

    def test_contact_phone_is_recipient(self, classifier):
        status = classifier.classify(status_update("wamid.out.9")).status
        assert status.contact_phone == CUSTOMER
        assert status.sender_phone is None

    def test_contact_phone_falls_back_to_status_sender(self, classifier):
        payload = envelope({"statuses": [{"id": "wamid.out.9", "status": "read", "from": OTHER_CUSTOMER}]})

        status = classifier.classify(payload).status

        assert status.recipient_phone is None
        assert status.contact_phone == OTHER_CUSTOMER

    def test_contact_phone_falls_back_to_message_sender(self, classifier):
        payload = text_message("Hello")
        payload["entry"][0]["changes"][0]["value"]["statuses"] = [{"id": "wamid.out.1", "status": "sent"}]

        status = classifier.classify(payload).status

        assert status.recipient_phone is None
        assert status.contact_phone == CUSTOMER


class TestSelfLoop:
    """Echoes of our own sends are flagged."""

    def test_sender_is_phone_number_id(self, classifier):
        notification = classifier.classify(text_message("echo", sender=BUSINESS_ID))
        assert notification.self_loop is True

    def test_sender_is_business_phone(self, classifier):
        notification = classifier.classify(text_message("echo", sender=BUSINESS_PHONE))
        assert notification.self_loop is True

    def test_customer_is_not_self_loop(self, classifier):
        assert classifier.classify(text_message("hi")).self_loop is False

    def test_no_identities_configured(self):
        notification = EventClassifier().classify(text_message("hi", sender=BUSINESS_ID))
        assert notification.self_loop is False


class TestInvalidPayload:
    """Malformed bodies are rejected before any processing."""

    @pytest.mark.parametrize("payload", [
        None,
        [],
        "entry",
        {},
        {"entry": []},
        {"entry": [{}]},
        {"entry": [{"changes": []}]},
        {"entry": [{"changes": [{}]}]},
        {"entry": [{"changes": [{"value": "nope"}]}]},
    ])
    def test_malformed_envelope(self, classifier, payload):
        with pytest.raises(InvalidPayload):
            classifier.classify(payload)

    def test_neither_status_nor_message(self, classifier):
        with pytest.raises(InvalidPayload):
            classifier.classify(envelope({"contacts": []}))

    def test_empty_lists(self, classifier):
        with pytest.raises(InvalidPayload):
            classifier.classify(envelope({"statuses": [], "messages": []}))

    def test_message_without_id(self, classifier):
        payload = envelope({"messages": [{"from": CUSTOMER, "type": "text", "text": {"body": "hi"}}]})
        with pytest.raises(InvalidPayload):
            classifier.classify(payload)

    def test_status_without_status_value(self, classifier):
        payload = envelope({"statuses": [{"id": "wamid.out.1", "recipient_id": CUSTOMER}]})
        with pytest.raises(InvalidPayload):
            classifier.classify(payload)
