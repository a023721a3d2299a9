import logging
from typing import Any, Optional, Protocol

import httpx

from whatsapp_relay.errors import ProviderError
from whatsapp_relay.metrics import record_outbound_send

logger = logging.getLogger(__name__)


class Dispatcher(Protocol):
    """Outbound side of the messaging provider. Each call returns the provider message id."""

    def send(self, to: str, body: str) -> str: ...

    def send_with_context(self, to: str, body: str, in_reply_to: str) -> str: ...

    def send_interactive(self, to: str, interactive: dict[str, Any]) -> str: ...

    def close(self) -> None: ...


class WhatsAppDispatcher:
    """
    Sends messages through the WhatsApp Cloud API.

    POST {base_url}/{api_version}/{phone_number_id}/messages with a bearer
    token. Any transport error, non-2xx answer or answer without a message
    id raises ProviderError.
    """

    def __init__(
        self,
        access_token: str,
        phone_number_id: str,
        base_url: str = "https://graph.facebook.com",
        api_version: str = "v21.0",
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.phone_number_id = phone_number_id
        self.client = httpx.Client(
            base_url=f"{base_url.rstrip('/')}/{api_version}/{phone_number_id}",
            headers={
                "Authorization": f"Bearer {access_token}",
                "Content-Type": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    def close(self) -> None:
        self.client.close()

    def _post(self, endpoint: str, data: dict[str, Any]) -> dict[str, Any]:
        try:
            response = self.client.post(f"/{endpoint}", json=data)
        except httpx.HTTPError as e:
            record_outbound_send("failed")
            logger.error(f"WhatsApp API Error ({endpoint}): {e}")
            raise ProviderError(f"request to {endpoint} failed: {e}") from e

        if response.is_error:
            record_outbound_send("failed")
            try:
                details = response.json()
            except ValueError:
                details = response.text
            logger.error(f"WhatsApp API Error ({endpoint}): status={response.status_code}, details={details}")
            raise ProviderError(
                f"provider answered {response.status_code}",
                status_code=response.status_code,
                details=details,
            )

        try:
            result = response.json()
        except ValueError as e:
            record_outbound_send("failed")
            raise ProviderError("provider response is not JSON", status_code=response.status_code) from e

        record_outbound_send("sent")
        return result

    def _send_message(self, to: str, payload: dict[str, Any]) -> str:
        data = {"messaging_product": "whatsapp", "to": to, **payload}
        result = self._post("messages", data)
        messages = result.get("messages") or []
        if not messages or not messages[0].get("id"):
            raise ProviderError("provider response carries no message id", details=result)
        message_id = messages[0]["id"]
        logger.info(f"Message accepted by provider: to={to}, message_id={message_id}")
        return message_id

    def send(self, to: str, body: str) -> str:
        return self._send_message(to, {"type": "text", "text": {"body": body}})

    def send_with_context(self, to: str, body: str, in_reply_to: str) -> str:
        """Text reply quoting the message it answers."""
        return self._send_message(to, {
            "type": "text",
            "text": {"body": body},
            "context": {"message_id": in_reply_to},
        })

    def send_interactive(self, to: str, interactive: dict[str, Any]) -> str:
        return self._send_message(to, {"type": "interactive", "interactive": interactive})
