from datetime import UTC, datetime
from typing import Any, ClassVar, Literal

from pydantic import BaseModel, ConfigDict, Field


class TextMessage(BaseModel):
    """Free-text body"""

    body: str


class ButtonMessage(BaseModel):
    """Quick-reply button tapped on a template"""

    text: str | None = None
    payload: str | None = None


class ButtonReply(BaseModel):
    """Interactive button reply"""

    id: str
    title: str


class ListReply(BaseModel):
    """Interactive list reply"""

    id: str
    title: str
    description: str | None = None


class InteractiveContent(BaseModel):
    """Interactive content (button or list reply)"""

    type: Literal["button_reply", "list_reply"]
    button_reply: ButtonReply | None = None
    list_reply: ListReply | None = None


class MessageContext(BaseModel):
    """Reference to the outbound message being answered"""

    id: str | None = None
    from_: str | None = Field(None, alias="from")

    model_config: ClassVar[ConfigDict] = ConfigDict(populate_by_name=True, extra="ignore")


class WhatsAppMessage(BaseModel):
    """Inbound WhatsApp message"""

    from_: str = Field(..., alias="from")
    id: str
    timestamp: str | None = None
    type: str
    text: TextMessage | None = None
    button: ButtonMessage | None = None
    interactive: InteractiveContent | None = None
    context: MessageContext | None = None

    model_config: ClassVar[ConfigDict] = ConfigDict(populate_by_name=True, extra="ignore")

    @property
    def sent_at(self) -> datetime | None:
        if not self.timestamp:
            return None
        try:
            return datetime.fromtimestamp(int(self.timestamp), tz=UTC)
        except (TypeError, ValueError):
            return None


class StatusError(BaseModel):
    """Error attached to a failed delivery receipt"""

    code: int | None = None
    title: str | None = None
    message: str | None = None
    error_data: dict[str, Any] | None = None

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="allow")


class MessageStatusReceipt(BaseModel):
    """Delivery receipt (sent, delivered, read, failed)"""

    id: str
    status: str
    timestamp: str | None = None
    recipient_id: str | None = None
    errors: list[StatusError] = Field(default_factory=list)

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="ignore")


class Contact(BaseModel):
    """Sender contact"""

    wa_id: str
    profile: dict[str, str] = Field(default_factory=dict)


class ChangeValue(BaseModel):
    """Payload of one change"""

    messaging_product: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    contacts: list[Contact] = Field(default_factory=list)
    messages: list[WhatsAppMessage] = Field(default_factory=list)
    statuses: list[MessageStatusReceipt] = Field(default_factory=list)

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="ignore")


class Change(BaseModel):
    """Change inside a webhook entry"""

    value: ChangeValue
    field: str = "messages"


class Entry(BaseModel):
    """Webhook entry"""

    id: str | None = None
    changes: list[Change] = Field(default_factory=list)


class WhatsAppWebhookRequest(BaseModel):
    """WhatsApp webhook envelope"""

    object: str | None = None
    entry: list[Entry] = Field(default_factory=list)

    def iter_messages(self) -> list[WhatsAppMessage]:
        """All inbound messages across entries and changes."""
        return [message for entry in self.entry for change in entry.changes for message in change.value.messages]

    def iter_statuses(self) -> list[MessageStatusReceipt]:
        """All delivery receipts across entries and changes."""
        return [status for entry in self.entry for change in entry.changes for status in change.value.statuses]

    def get_contact(self) -> Contact | None:
        for entry in self.entry:
            for change in entry.changes:
                if change.value.contacts:
                    return change.value.contacts[0]
        return None
