import logging
from typing import Any, Iterable

from pydantic import ValidationError

from whatsapp_relay.errors import InvalidPayload
from whatsapp_relay.events import InboundMessage, Notification, StatusEvent
from whatsapp_relay.schemas import WebhookEnvelope

logger = logging.getLogger(__name__)


class EventClassifier:
    """
    Turns one raw webhook body into a Notification.

    The provider batches at most one status and one message per change, and
    only the first change of the first entry is read. A message sent by one
    of our own identities is flagged as a self-loop so that echoes of our
    outbound sends never trigger another reply.
    """

    def __init__(self, own_identities: Iterable[str] = ()):
        self.own_identities = frozenset(own_identities)

    def classify(self, payload: Any) -> Notification:
        """
        Classify a decoded webhook body.

        Raises:
            InvalidPayload: the envelope is malformed or carries neither a
                status nor a message.
        """
        if not isinstance(payload, dict):
            raise InvalidPayload("webhook body must be a JSON object")

        try:
            envelope = WebhookEnvelope.model_validate(payload)
        except ValidationError as e:
            logger.warning(f"Rejected webhook envelope: {e.error_count()} validation errors")
            raise InvalidPayload(str(e)) from e

        value = envelope.entry[0].changes[0].value
        raw_value = payload["entry"][0]["changes"][0]["value"]

        status = None
        if value.statuses:
            status_payload = value.statuses[0]
            status = StatusEvent(
                provider_message_id=status_payload.id,
                status=status_payload.status,
                recipient_phone=status_payload.recipient_id,
                sender_phone=status_payload.from_msisdn or (value.messages[0].from_msisdn if value.messages else None),
                raw=raw_value,
            )
            logger.debug(f"Status event: id={status.provider_message_id}, status={status.status}")

        message = None
        if value.messages:
            message_payload = value.messages[0]
            message = InboundMessage(
                sender_phone=message_payload.from_msisdn,
                recipient=message_payload.to,
                provider_message_id=message_payload.id,
                type=message_payload.type,
                text_body=message_payload.text.body if message_payload.text else None,
                interactive=message_payload.interactive,
                timestamp=message_payload.timestamp,
                raw=raw_value["messages"][0],
            )
            logger.debug(f"Message event: id={message.provider_message_id}, type={message.type}")

        if status is None and message is None:
            raise InvalidPayload("webhook carries neither a status nor a message")

        return Notification(
            status=status,
            message=message,
            self_loop=message is not None and self.is_self_loop(message),
        )

    def is_self_loop(self, message: InboundMessage) -> bool:
        return message.sender_phone in self.own_identities
