"""Contact form relay.

Visitors send a message about a listing; it is emailed to the site's
inbox through SES with ``Reply-To`` set to the visitor.
"""

from __future__ import annotations

import asyncio
import re
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from realty_listings.logging_config import get_logger

if TYPE_CHECKING:
    from realty_listings.config import Config

logger = get_logger(__name__)

MAX_NAME_LENGTH = 200
MAX_MESSAGE_LENGTH = 5000

_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class ContactValidationError(ValueError):
    """A contact form field is missing or malformed."""

    def __init__(self, field: str, message: str | None = None) -> None:
        super().__init__(message or f"Invalid value for {field}")
        self.field = field


@dataclass(frozen=True)
class ContactMessage:
    """One contact form submission."""

    name: str
    email: str
    message: str
    listing_id: str | None = None

    @classmethod
    def from_body(cls, body: Mapping[str, Any]) -> ContactMessage:
        """Validate a request body.

        Raises:
            ContactValidationError: If a field is missing, too long or malformed
        """

        def text(key: str, limit: int) -> str:
            value = body.get(key)
            if not isinstance(value, str) or not value.strip():
                raise ContactValidationError(key)
            value = value.strip()
            if len(value) > limit:
                raise ContactValidationError(key, f"{key} is too long")
            return value

        name = text("name", MAX_NAME_LENGTH)
        email = text("email", MAX_NAME_LENGTH)
        if not _EMAIL_PATTERN.match(email):
            raise ContactValidationError("email")
        message = text("message", MAX_MESSAGE_LENGTH)

        listing_id = body.get("listingId")
        if listing_id is not None and not isinstance(listing_id, str):
            raise ContactValidationError("listingId")

        return cls(name=name, email=email, message=message, listing_id=listing_id or None)

    @property
    def subject(self) -> str:
        if self.listing_id:
            return f"Listing enquiry ({self.listing_id}) from {self.name}"
        return f"Enquiry from {self.name}"

    def body_text(self) -> str:
        lines = [f"From: {self.name} <{self.email}>"]
        if self.listing_id:
            lines.append(f"Listing: {self.listing_id}")
        lines.extend(["", self.message])
        return "\n".join(lines)


class ContactRelay(ABC):
    """Delivers contact messages to the site owner."""

    @abstractmethod
    async def send(self, message: ContactMessage) -> None:
        """Deliver one message."""


class SESContactRelay(ContactRelay):
    """Sends contact messages as plain-text email through SES."""

    def __init__(self, ses_client: Any, sender: str, recipient: str) -> None:
        """Initialize the relay.

        Args:
            ses_client: boto3 SES client
            sender: Verified sender address
            recipient: Inbox that receives the messages
        """
        self._ses = ses_client
        self._sender = sender
        self._recipient = recipient

    @classmethod
    def from_config(cls, config: Config) -> SESContactRelay:
        import boto3

        if not config.contact_sender or not config.contact_recipient:
            msg = "contact_sender and contact_recipient must be configured"
            raise ValueError(msg)
        return cls(
            boto3.client("ses", region_name=config.region),
            sender=config.contact_sender,
            recipient=config.contact_recipient,
        )

    def _send_email(self, message: ContactMessage) -> str:
        response = self._ses.send_email(
            Source=self._sender,
            Destination={"ToAddresses": [self._recipient]},
            ReplyToAddresses=[message.email],
            Message={
                "Subject": {"Data": message.subject, "Charset": "UTF-8"},
                "Body": {"Text": {"Data": message.body_text(), "Charset": "UTF-8"}},
            },
        )
        return str(response.get("MessageId", ""))

    async def send(self, message: ContactMessage) -> None:
        message_id = await asyncio.to_thread(self._send_email, message)
        logger.info("Relayed contact message %s", message_id or "(no id)")
