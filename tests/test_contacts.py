"""
Tests for the conversation state store.

Tests cover:
- Upsert create/merge semantics and the message counter
- Partial success when the counter increment fails
- has_prior_reply, rename and listing
"""

import threading

import pytest

from whatsapp_relay.contacts import ContactStore
from whatsapp_relay.errors import PersistenceError
from whatsapp_relay.storage import InMemoryStore


@pytest.fixture
def contacts(any_store) -> ContactStore:
    return ContactStore(any_store)


def incoming_delta(message_id="m1", body="hi"):
    return {
        "last_message_id": message_id,
        "last_body": body,
        "last_type": "text",
        "last_kind": "incoming",
        "last_direction": "incoming",
        "last_sender_id": "111",
    }


class TestUpsert:

    def test_first_event_creates_contact(self, contacts):
        contact = contacts.upsert("111", incoming_delta())

        assert contact["phone"] == "111"
        assert contact["total_messages"] == 1
        assert contact["last_kind"] == "incoming"
        assert contact["last_timestamp"] is not None
        assert contact["updated_at"] is not None

    def test_later_events_merge_and_count(self, contacts):
        contacts.upsert("111", incoming_delta("m1", "hi"))
        contacts.upsert("111", {
            "last_message_id": "r1",
            "last_body": "Welcome",
            "last_type": "text",
            "last_kind": "reply",
            "last_direction": "reply",
            "last_sender_id": "biz",
            "last_recipient_phone": "111",
        })

        stored = contacts.get("111")
        assert stored["total_messages"] == 2
        assert stored["last_message_id"] == "r1"
        assert stored["last_kind"] == "reply"
        assert stored["last_recipient_phone"] == "111"

    def test_name_is_never_set_by_upsert(self, contacts):
        contacts.upsert("111", dict(incoming_delta(), name="From message"))
        assert contacts.get("111")["name"] is None

    def test_name_survives_upsert(self, contacts):
        contacts.rename("111", "Ada")
        contacts.upsert("111", incoming_delta())

        stored = contacts.get("111")
        assert stored["name"] == "Ada"
        assert stored["total_messages"] == 1

    def test_phones_are_independent(self, contacts):
        contacts.upsert("111", incoming_delta())
        contacts.upsert("222", incoming_delta())
        contacts.upsert("222", incoming_delta())

        assert contacts.get("111")["total_messages"] == 1
        assert contacts.get("222")["total_messages"] == 2


class TestCounterFailure:

    def test_snapshot_commits_when_increment_fails(self, store):
        contacts = ContactStore(store)
        contacts.upsert("111", incoming_delta("m1"))
        store.failing.add("increment_counter:contacts")

        contact = contacts.upsert("111", incoming_delta("m2", "second"))

        assert contact["last_message_id"] == "m2"
        stored = contacts.get("111")
        assert stored["last_body"] == "second"
        assert stored["total_messages"] == 1

    def test_snapshot_failure_raises(self, store):
        store.failing.add("upsert:contacts")
        with pytest.raises(PersistenceError):
            ContactStore(store).upsert("111", incoming_delta())


class TestConcurrentIncrements:

    def test_no_lost_updates(self):
        contacts = ContactStore(InMemoryStore())
        workers, per_worker = 8, 25

        def hammer():
            for _ in range(per_worker):
                contacts.upsert("111", incoming_delta())

        threads = [threading.Thread(target=hammer) for _ in range(workers)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert contacts.get("111")["total_messages"] == workers * per_worker


class TestReads:

    def test_has_prior_reply(self, contacts):
        assert contacts.has_prior_reply("111") is False

        contacts.upsert("111", incoming_delta())
        assert contacts.has_prior_reply("111") is False

        contacts.upsert("111", dict(incoming_delta(), last_kind="reply"))
        assert contacts.has_prior_reply("111") is True

        contacts.upsert("111", dict(incoming_delta(), last_kind="status"))
        assert contacts.has_prior_reply("111") is False

    def test_get_missing(self, contacts):
        assert contacts.get("nobody") is None

    def test_rename_creates_contact(self, contacts):
        contact = contacts.rename("333", "Grace")
        assert contact["name"] == "Grace"
        assert contact["total_messages"] == 0

    def test_rename_can_clear(self, contacts):
        contacts.rename("333", "Grace")
        assert contacts.rename("333", None)["name"] is None

    def test_list_most_recent_first(self, contacts):
        contacts.upsert("111", incoming_delta())
        contacts.upsert("222", incoming_delta())
        contacts.upsert("111", incoming_delta())

        rows, total = contacts.list()
        assert total == 2
        assert [row["phone"] for row in rows] == ["111", "222"]

    def test_list_pages(self, contacts):
        for phone in ("111", "222", "333"):
            contacts.upsert(phone, incoming_delta())
        rows, total = contacts.list(page=2, limit=2)
        assert total == 3
        assert len(rows) == 1
