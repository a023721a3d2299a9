"""
Reply decision engine.

Every inbound event is mapped onto exactly one Decision variant and each
variant has one handler:

    SelfLoop          -> nothing at all
    FirstContactText  -> welcome text quoting the inbound message
    ReturningText     -> call-to-action interactive message
    SelectionReply    -> plain text acknowledging the list/button choice
    StatusUpdate      -> ledger status reconciliation, no send
    Unclassified      -> ledger and contact bookkeeping, no send

Ledger and contact writes are best-effort: a PersistenceError is logged and
counted at the call site and the remaining steps still run. A ProviderError
from the dispatcher aborts the reply of that event and propagates.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from whatsapp_relay.classifier import EventClassifier
from whatsapp_relay.contacts import ContactStore
from whatsapp_relay.dispatcher import Dispatcher
from whatsapp_relay.errors import PersistenceError
from whatsapp_relay.events import (
    INTERACTIVE,
    TEXT,
    Decision,
    FirstContactText,
    InboundMessage,
    Notification,
    ReturningText,
    SelectionReply,
    SelfLoop,
    StatusUpdate,
    Unclassified,
)
from whatsapp_relay.ledger import INCOMING, REPLY, STATUS, MessageLedger
from whatsapp_relay.metrics import record_decision, record_persistence_error
from whatsapp_relay.templates import interactive_body_text, selection_ack

logger = logging.getLogger(__name__)


def provider_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Convert the provider's epoch-seconds string to an aware datetime."""
    if not value:
        return None
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        logger.warning(f"Ignoring unparseable provider timestamp: {value!r}")
        return None


class ReplyDecisionEngine:
    def __init__(
        self,
        ledger: MessageLedger,
        contacts: ContactStore,
        dispatcher: Dispatcher,
        business_id: str,
        welcome_message: str,
        call_to_action: dict[str, Any],
    ):
        self.ledger = ledger
        self.contacts = contacts
        self.dispatcher = dispatcher
        self.business_id = business_id
        self.welcome_message = welcome_message
        self.call_to_action = call_to_action
        self._handlers: dict[type, Callable[[Any], None]] = {
            SelfLoop: self._absorb_self_loop,
            FirstContactText: self._send_welcome,
            ReturningText: self._send_call_to_action,
            SelectionReply: self._acknowledge_selection,
            StatusUpdate: self._reconcile_status,
            Unclassified: self._bookkeep_only,
        }

    # -------------------------------------------------------------------------
    # Decisions
    # -------------------------------------------------------------------------

    def decide(self, message: InboundMessage, self_loop: bool = False) -> Decision:
        """
        Pick the branch for an inbound message.

        For text messages the contact state is read fresh from the store on
        every call, before any bookkeeping for this message is written.
        """
        if self_loop:
            return SelfLoop(message)
        if message.selection_type:
            return SelectionReply(message, message.selection_type, message.selection)
        if message.type == TEXT:
            if self._has_prior_reply(message.sender_phone):
                return ReturningText(message)
            return FirstContactText(message)
        return Unclassified(message)

    def handle(self, decision: Decision) -> Decision:
        """Run the handler for a decision.

        Raises:
            ProviderError: the outbound send failed; the reply was not logged.
        """
        logger.info(f"Handling decision: {decision.name}")
        record_decision(decision.name)
        self._handlers[type(decision)](decision)
        return decision

    def _has_prior_reply(self, phone: str) -> bool:
        try:
            return self.contacts.has_prior_reply(phone)
        except PersistenceError as e:
            # Without state we cannot tell; greet rather than stay silent
            record_persistence_error("contact_read")
            logger.error(f"Contact state lookup failed for {phone}, treating as first contact: {e}")
            return False

    # -------------------------------------------------------------------------
    # Handlers
    # -------------------------------------------------------------------------

    def _absorb_self_loop(self, decision: SelfLoop) -> None:
        logger.debug(f"Ignoring echo of our own message: {decision.message.provider_message_id}")

    def _send_welcome(self, decision: FirstContactText) -> None:
        message = decision.message
        self._record_incoming(message)
        sent_id = self.dispatcher.send_with_context(
            message.sender_phone, self.welcome_message, message.provider_message_id
        )
        self._record_reply(
            message,
            sent_id,
            type_=TEXT,
            body=self.welcome_message,
            reply_to=message.provider_message_id,
        )

    def _send_call_to_action(self, decision: ReturningText) -> None:
        message = decision.message
        self._record_incoming(message)
        sent_id = self.dispatcher.send_interactive(message.sender_phone, self.call_to_action)
        self._record_reply(
            message,
            sent_id,
            type_=INTERACTIVE,
            body=interactive_body_text(self.call_to_action),
            reply_to=message.provider_message_id,
            interactive=self.call_to_action,
        )

    def _acknowledge_selection(self, decision: SelectionReply) -> None:
        message = decision.message
        self._record_incoming(message)
        body = selection_ack(decision.selection_type, decision.selection)
        sent_id = self.dispatcher.send(message.sender_phone, body)
        self._record_reply(
            message,
            sent_id,
            type_=TEXT,
            body=body,
            selection=decision.selection,
        )

    def _reconcile_status(self, decision: StatusUpdate) -> None:
        status = decision.status
        self._best_effort(
            "ledger_status",
            self.ledger.reconcile_status,
            status.provider_message_id,
            status.status,
            recipient_phone=status.recipient_phone,
            sender_id=self.business_id,
            raw=status.raw,
        )
        # No recipient: fall back to the status sender, then the message sender
        phone = status.contact_phone
        if not phone:
            logger.warning(f"Status {status.provider_message_id} has no recipient, contact not updated")
            return
        self._best_effort("contact_upsert", self.contacts.upsert, phone, {
            "last_message_id": status.provider_message_id,
            "last_body": status.status,
            "last_type": STATUS,
            "last_kind": STATUS,
            "last_direction": INCOMING,
            "last_sender_id": self.business_id,
            "last_recipient_phone": status.recipient_phone,
        })

    def _bookkeep_only(self, decision: Unclassified) -> None:
        logger.info(f"No reply for message type {decision.message.type}: {decision.message.provider_message_id}")
        self._record_incoming(decision.message)

    # -------------------------------------------------------------------------
    # Bookkeeping
    # -------------------------------------------------------------------------

    def _best_effort(self, operation: str, fn: Callable, *args, **kwargs) -> Any:
        try:
            return fn(*args, **kwargs)
        except PersistenceError as e:
            record_persistence_error(operation)
            logger.error(f"{operation} failed, continuing: {e}")
            return None

    def _record_incoming(self, message: InboundMessage) -> None:
        self._best_effort("ledger_append", self.ledger.append, {
            "kind": INCOMING,
            "from": message.sender_phone,
            "to": message.recipient,
            "type": message.ledger_type,
            "body": message.text_body,
            "interactive": message.interactive,
            "message_id": message.provider_message_id,
            "timestamp": message.timestamp,
            "raw": message.raw,
        })
        self._best_effort("contact_upsert", self.contacts.upsert, message.sender_phone, {
            "last_message_id": message.provider_message_id,
            "last_body": message.text_body,
            "last_type": message.type,
            "last_kind": INCOMING,
            "last_direction": INCOMING,
            "last_sender_id": message.sender_phone,
            "last_recipient_phone": None,
            "last_timestamp": provider_timestamp(message.timestamp),
        })

    def _record_reply(
        self,
        message: InboundMessage,
        sent_id: str,
        type_: str,
        body: Optional[str],
        reply_to: Optional[str] = None,
        interactive: Optional[dict[str, Any]] = None,
        selection: Optional[dict[str, Any]] = None,
    ) -> None:
        phone = message.sender_phone
        self._best_effort("ledger_append", self.ledger.append, {
            "kind": REPLY,
            "from": self.business_id,
            "to": phone,
            "type": type_,
            "body": body,
            "message_id": sent_id,
            "reply_to_message_id": reply_to,
            "interactive": interactive,
            "interactive_selection": selection,
        })
        self._best_effort("contact_upsert", self.contacts.upsert, phone, {
            "last_message_id": sent_id,
            "last_body": body,
            "last_type": type_,
            "last_kind": REPLY,
            "last_direction": REPLY,
            "last_sender_id": self.business_id,
            "last_recipient_phone": phone,
        })


class WebhookProcessor:
    """
    Processes one webhook delivery to completion: classify, then handle the
    status event (if any) and the message event (if any), in that order.
    """

    def __init__(self, classifier: EventClassifier, engine: ReplyDecisionEngine):
        self.classifier = classifier
        self.engine = engine

    def process(self, payload: Any) -> list[Decision]:
        """
        Raises:
            InvalidPayload: the body was rejected before any processing.
            ProviderError: see handle().
        """
        return self.handle(self.classifier.classify(payload))

    def handle(self, notification: Notification) -> list[Decision]:
        """
        Raises:
            ProviderError: the reply send failed; the status event and the
                inbound bookkeeping have already been handled.
        """
        decisions = []

        if notification.status is not None:
            decisions.append(self.engine.handle(StatusUpdate(notification.status)))

        if notification.message is not None:
            decision = self.engine.decide(notification.message, self_loop=notification.self_loop)
            decisions.append(self.engine.handle(decision))

        return decisions
