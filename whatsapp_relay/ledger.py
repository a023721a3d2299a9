"""
Message ledger: append-only log of every inbound, outbound and status event.

Rows are never deleted. The only in-place mutation is the delivery status
of a message, so a message that goes sent -> delivered -> read keeps a
single row.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Optional, Tuple

from whatsapp_relay.models import MESSAGES_TABLE
from whatsapp_relay.storage import Record, Store

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 200

INCOMING = "incoming"
STATUS = "status"
REPLY = "reply"
BROADCAST = "broadcast"


def clamp_pagination(page: Optional[int], limit: Optional[int]) -> Tuple[int, int]:
    """Normalize a 1-indexed page and a page size capped at MAX_PAGE_SIZE."""
    limit = limit if limit and limit > 0 else DEFAULT_PAGE_SIZE
    return max(page or 1, 1), min(limit, MAX_PAGE_SIZE)


def counterparty(record: Record) -> Optional[str]:
    """The phone on the other side: the sender for incoming rows, else the recipient."""
    if record.get("kind") == INCOMING:
        return record.get("from")
    return record.get("to")


class MessageLedger:
    def __init__(self, store: Store):
        self.store = store

    def append(self, record: Record) -> Record:
        """
        Insert a new ledger row.

        `created_at` is assigned here and never changes afterwards.

        Raises:
            PersistenceError: the store rejected the insert.
        """
        row = dict(record)
        row["phone"] = counterparty(row)
        row["created_at"] = datetime.now(timezone.utc)
        row.pop("updated_at", None)
        logger.debug(f"Appending ledger row: kind={row.get('kind')}, message_id={row.get('message_id')}")
        return self.store.insert(MESSAGES_TABLE, row)

    def find_by_message_id(self, provider_message_id: str) -> Optional[Record]:
        """Oldest row carrying the given provider message id."""
        rows, _ = self.store.select(
            MESSAGES_TABLE,
            filters={"message_id": provider_message_id},
            order_by="created_at",
            descending=False,
            range_start=0,
            range_end=0,
        )
        return rows[0] if rows else None

    def reconcile_status(
        self,
        provider_message_id: str,
        status: str,
        recipient_phone: Optional[str] = None,
        sender_id: Optional[str] = None,
        raw: Any = None,
    ) -> Tuple[Record, bool]:
        """
        Record a delivery status for a message.

        If a row for the message exists its status is overwritten in place
        (matched by surrogate id, so exactly one row changes). Otherwise a
        kind=status row is appended with the raw event.

        Two callbacks racing for a message the ledger has never seen may
        both append; this is not guarded against.

        Returns:
            Tuple of (row, appended)
        """
        existing = self.find_by_message_id(provider_message_id)
        if existing is not None:
            patch = {"status": status, "updated_at": datetime.now(timezone.utc)}
            self.store.update(MESSAGES_TABLE, patch, {"id": existing["id"]})
            existing.update(patch)
            logger.info(f"Status reconciled in place: message_id={provider_message_id}, status={status}")
            return existing, False

        row = self.append({
            "kind": STATUS,
            "from": sender_id,
            "to": recipient_phone,
            "message_id": provider_message_id,
            "status": status,
            "raw": raw,
        })
        logger.info(f"Status logged as new row: message_id={provider_message_id}, status={status}")
        return row, True

    def query(
        self,
        phone: Optional[str] = None,
        kind: Optional[str] = None,
        type_: Optional[str] = None,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> Tuple[list[Record], int]:
        """
        Page through the ledger, newest first.

        Args:
            phone: matches the sender, the recipient or the normalized phone
            kind: incoming | status | reply | broadcast
            type_: text | interactive | other
            page: 1-indexed page number
            limit: page size, capped at MAX_PAGE_SIZE

        Returns:
            Tuple of (rows on the page, total rows matching filters)
        """
        page, limit = clamp_pagination(page, limit)
        filters = {}
        if kind:
            filters["kind"] = kind
        if type_:
            filters["type"] = type_
        any_of = {"from": phone, "to": phone, "phone": phone} if phone else None

        start = (page - 1) * limit
        rows, total = self.store.select(
            MESSAGES_TABLE,
            filters=filters,
            any_of=any_of,
            order_by="created_at",
            descending=True,
            range_start=start,
            range_end=start + limit - 1,
        )
        logger.debug(f"Ledger query returned {len(rows)} of {total} rows (page={page}, limit={limit})")
        return rows, total
