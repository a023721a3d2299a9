"""
Conversation state store: one rolling summary record per phone number.
"""

import logging
from datetime import datetime, timezone
from typing import Optional, Tuple

from whatsapp_relay.errors import PersistenceError
from whatsapp_relay.ledger import DEFAULT_PAGE_SIZE, REPLY, clamp_pagination
from whatsapp_relay.metrics import record_persistence_error
from whatsapp_relay.models import CONTACTS_TABLE
from whatsapp_relay.storage import Record, Store

logger = logging.getLogger(__name__)

# Descriptive fields an upsert may carry; name and the counter are excluded
SNAPSHOT_FIELDS = (
    "last_message_id",
    "last_body",
    "last_type",
    "last_kind",
    "last_direction",
    "last_sender_id",
    "last_recipient_phone",
    "last_timestamp",
)


class ContactStore:
    def __init__(self, store: Store):
        self.store = store

    def upsert(self, phone: str, delta: Record) -> Record:
        """
        Create or update the contact for a phone and count one more message.

        Descriptive fields are last-write-wins. total_messages is bumped by
        a separate atomic increment after the snapshot commits; if that
        increment fails the snapshot stays and the failure is only logged.

        Raises:
            PersistenceError: the snapshot upsert failed.
        """
        now = datetime.now(timezone.utc)
        record = {field: delta.get(field) for field in SNAPSHOT_FIELDS}
        record["last_timestamp"] = record["last_timestamp"] or now
        record["phone"] = phone
        record["updated_at"] = now

        contact = self.store.upsert(CONTACTS_TABLE, record, conflict_key="phone")

        try:
            self.store.increment_counter(CONTACTS_TABLE, "phone", phone, "total_messages")
            contact["total_messages"] = (contact.get("total_messages") or 0) + 1
        except PersistenceError as e:
            record_persistence_error("contact_increment")
            logger.warning(f"Message counter increment failed for {phone}: {e}")

        return contact

    def get(self, phone: str) -> Optional[Record]:
        rows, _ = self.store.select(
            CONTACTS_TABLE,
            filters={"phone": phone},
            order_by="updated_at",
            range_start=0,
            range_end=0,
        )
        return rows[0] if rows else None

    def has_prior_reply(self, phone: str) -> bool:
        """True iff the last recorded interaction with this phone was our reply."""
        contact = self.get(phone)
        return contact is not None and contact.get("last_kind") == REPLY

    def rename(self, phone: str, name: Optional[str]) -> Record:
        """Operator action: set the display name, creating the contact if needed."""
        logger.info(f"Renaming contact {phone}")
        return self.store.upsert(
            CONTACTS_TABLE,
            {"phone": phone, "name": name, "updated_at": datetime.now(timezone.utc)},
            conflict_key="phone",
        )

    def list(self, page: int = 1, limit: int = DEFAULT_PAGE_SIZE) -> Tuple[list[Record], int]:
        """Contacts ordered by most recent activity."""
        page, limit = clamp_pagination(page, limit)
        start = (page - 1) * limit
        return self.store.select(
            CONTACTS_TABLE,
            order_by="updated_at",
            descending=True,
            range_start=start,
            range_end=start + limit - 1,
        )
