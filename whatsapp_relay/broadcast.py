import logging
import time
from typing import Any, Callable, Iterable, Optional, Tuple

from whatsapp_relay.contacts import ContactStore
from whatsapp_relay.dispatcher import Dispatcher
from whatsapp_relay.errors import PersistenceError, ProviderError
from whatsapp_relay.events import INTERACTIVE, TEXT
from whatsapp_relay.ledger import BROADCAST, REPLY, MessageLedger
from whatsapp_relay.metrics import record_persistence_error
from whatsapp_relay.templates import interactive_body_text

logger = logging.getLogger(__name__)


class Broadcaster:
    """Operator-initiated sends, one recipient at a time with a pause in between."""

    def __init__(
        self,
        ledger: MessageLedger,
        contacts: ContactStore,
        dispatcher: Dispatcher,
        business_id: str,
        delay_seconds: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.ledger = ledger
        self.contacts = contacts
        self.dispatcher = dispatcher
        self.business_id = business_id
        self.delay_seconds = delay_seconds
        self.sleep = sleep

    def send_one(self, to: str, body: str) -> str:
        """
        Send one text and log it as kind=broadcast.

        Raises:
            ProviderError: the provider rejected the send; nothing is logged.
        """
        sent_id = self.dispatcher.send(to, body)
        self._record_send(to, sent_id, TEXT, body)
        return sent_id

    def send_interactive(self, to: str, interactive: dict[str, Any]) -> str:
        """
        Send one interactive message (list, buttons, call-to-action) and log
        it as kind=broadcast.

        Raises:
            ProviderError: the provider rejected the send; nothing is logged.
        """
        sent_id = self.dispatcher.send_interactive(to, interactive)
        self._record_send(to, sent_id, INTERACTIVE, interactive_body_text(interactive), interactive)
        return sent_id

    def broadcast(self, recipients: Iterable[str], body: str) -> Tuple[list[str], list[str]]:
        """
        Send the same text to every recipient.

        A failed recipient does not stop the run.

        Returns:
            Tuple of (sent recipients, failed recipients)
        """
        sent, failed = [], []
        for index, to in enumerate(recipients):
            if index and self.delay_seconds > 0:
                self.sleep(self.delay_seconds)
            try:
                self.send_one(to, body)
                sent.append(to)
            except ProviderError as e:
                logger.error(f"Broadcast to {to} failed: {e}")
                failed.append(to)
        logger.info(f"Broadcast finished: sent={len(sent)}, failed={len(failed)}")
        return sent, failed

    def _record_send(
        self,
        to: str,
        sent_id: str,
        type_: str,
        body: Optional[str],
        interactive: Optional[dict[str, Any]] = None,
    ) -> None:
        # Ledger and contact writes fail independently
        try:
            self.ledger.append({
                "kind": BROADCAST,
                "from": self.business_id,
                "to": to,
                "type": type_,
                "body": body,
                "interactive": interactive,
                "message_id": sent_id,
            })
        except PersistenceError as e:
            record_persistence_error("broadcast_log")
            logger.error(f"Broadcast to {to} sent but not logged: {e}")

        try:
            self.contacts.upsert(to, {
                "last_message_id": sent_id,
                "last_body": body,
                "last_type": type_,
                "last_kind": BROADCAST,
                "last_direction": REPLY,
                "last_sender_id": self.business_id,
                "last_recipient_phone": to,
            })
        except PersistenceError as e:
            record_persistence_error("broadcast_contact")
            logger.error(f"Contact {to} not updated after broadcast: {e}")
