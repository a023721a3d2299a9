"""
Classified webhook events and the reply decisions taken for them.

Events are what the classifier extracts from one notification. Decisions
are the closed set of branches the reply engine dispatches on:

    SelfLoop, FirstContactText, ReturningText, SelectionReply,
    StatusUpdate, Unclassified
"""

from dataclasses import dataclass, field
from typing import Any, Optional


# Selection sub-types of an inbound interactive message
SELECTION_TYPES = ("list_reply", "button_reply")

# Normalized ledger message types
TEXT = "text"
INTERACTIVE = "interactive"
OTHER = "other"


@dataclass(frozen=True)
class StatusEvent:
    provider_message_id: str
    status: str
    recipient_phone: Optional[str]
    raw: dict[str, Any] = field(default_factory=dict)
    sender_phone: Optional[str] = None

    @property
    def contact_phone(self) -> Optional[str]:
        """Phone whose contact record the status belongs to."""
        return self.recipient_phone or self.sender_phone


@dataclass(frozen=True)
class InboundMessage:
    sender_phone: str
    provider_message_id: str
    type: str
    recipient: Optional[str] = None
    text_body: Optional[str] = None
    interactive: Optional[dict[str, Any]] = None
    timestamp: Optional[str] = None
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def ledger_type(self) -> str:
        """Provider type collapsed onto text | interactive | other."""
        return self.type if self.type in (TEXT, INTERACTIVE) else OTHER

    @property
    def selection_type(self) -> Optional[str]:
        """list_reply or button_reply when this is a usable selection."""
        if self.type != INTERACTIVE or not self.interactive:
            return None
        sub_type = self.interactive.get("type")
        if sub_type in SELECTION_TYPES and isinstance(self.interactive.get(sub_type), dict):
            return sub_type
        return None

    @property
    def selection(self) -> Optional[dict[str, Any]]:
        sub_type = self.selection_type
        return self.interactive[sub_type] if sub_type else None


@dataclass(frozen=True)
class Notification:
    """At most one status and one message from a single webhook delivery."""
    status: Optional[StatusEvent] = None
    message: Optional[InboundMessage] = None
    self_loop: bool = False


# =============================================================================
# Decisions
# =============================================================================

@dataclass(frozen=True)
class Decision:
    name = "decision"


@dataclass(frozen=True)
class SelfLoop(Decision):
    message: InboundMessage
    name = "self_loop"


@dataclass(frozen=True)
class FirstContactText(Decision):
    message: InboundMessage
    name = "first_contact_text"


@dataclass(frozen=True)
class ReturningText(Decision):
    message: InboundMessage
    name = "returning_text"


@dataclass(frozen=True)
class SelectionReply(Decision):
    message: InboundMessage
    selection_type: str
    selection: dict[str, Any]
    name = "selection_reply"


@dataclass(frozen=True)
class StatusUpdate(Decision):
    status: StatusEvent
    name = "status_update"


@dataclass(frozen=True)
class Unclassified(Decision):
    message: InboundMessage
    name = "unclassified"
