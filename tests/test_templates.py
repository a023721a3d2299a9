"""Tests for outbound message content."""

import pytest

from whatsapp_relay.events import InboundMessage
from whatsapp_relay.templates import (
    SAMPLE_INTERACTIVES,
    cta_url_interactive,
    interactive_body_text,
    sample_buttons_interactive,
    sample_list_interactive,
    selection_ack,
)


class TestSamplePayloads:

    def test_list_rows(self):
        payload = sample_list_interactive()

        assert payload["type"] == "list"
        rows = [row["id"] for section in payload["action"]["sections"] for row in section["rows"]]
        assert rows == ["first_option", "second_option", "third_option"]

    def test_buttons(self):
        payload = sample_buttons_interactive()

        assert payload["type"] == "button"
        assert [b["reply"]["id"] for b in payload["action"]["buttons"]] == ["first_button", "second_button"]

    def test_registry(self):
        assert SAMPLE_INTERACTIVES["list"]() == sample_list_interactive()
        assert SAMPLE_INTERACTIVES["buttons"]() == sample_buttons_interactive()

    def test_fresh_copy_each_call(self):
        payload = sample_list_interactive()
        payload["body"]["text"] = "changed"
        assert sample_list_interactive()["body"]["text"] == "This is a interactive list message"

    @pytest.mark.parametrize("selection_type,builder,row", [
        ("list_reply", sample_list_interactive, lambda p: p["action"]["sections"][1]["rows"][0]),
        ("button_reply", sample_buttons_interactive, lambda p: p["action"]["buttons"][1]["reply"]),
    ])
    def test_reply_to_sample_is_acknowledged(self, selection_type, builder, row):
        choice = row(builder())
        reply = InboundMessage(
            sender_phone="15551234567",
            provider_message_id="wamid.in.1",
            type="interactive",
            interactive={"type": selection_type, selection_type: {"id": choice["id"], "title": choice["title"]}},
        )

        assert reply.selection_type == selection_type
        assert selection_ack(reply.selection_type, reply.selection) == (
            f"You selected the {'option' if selection_type == 'list_reply' else 'button'} "
            f"with ID {choice['id']} - Title {choice['title']}"
        )


class TestCallToAction:

    def test_payload(self):
        payload = cta_url_interactive("Come back", "Visit website", "https://shop.example.com")

        assert payload["type"] == "cta_url"
        assert payload["action"]["parameters"] == {"display_text": "Visit website", "url": "https://shop.example.com"}
        assert interactive_body_text(payload) == "Come back"

    def test_body_text_missing(self):
        assert interactive_body_text({"type": "list"}) is None
