# =============================================================================
# Message Model
# =============================================================================
# Represents what Kestrel learns about a message from a FETCH response.
#
# The interesting part is the ENVELOPE: a fixed ten-field summary of the
# message headers that the server has already parsed for us:
#
#   (date subject from sender reply-to to cc bcc in-reply-to message-id)
#
# where each address field is a list of four-slot address tuples:
#
#   (display-name source-route mailbox host)
#
# We never download bodies; the envelope is enough for routing decisions
# in downstream automation (who sent it, what is it about, which thread).
# =============================================================================

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass(frozen=True)
class Address:
    """
    A single email address from an envelope.

    The server sends the local part and the domain separately. Both the
    split form and the combined "mailbox@host" form are available, so
    nothing is lost whichever one the caller needs.

    Attributes:
        name: Display name, with RFC 2047 encoded-words decoded.
        mailbox: Local part of the address (before the "@").
        host: Domain part of the address (after the "@").

    Example:
        >>> addr = Address(name="Jane", mailbox="jane", host="example.com")
        >>> addr.email
        'jane@example.com'
    """
    name: str | None
    mailbox: str | None
    host: str | None

    @property
    def email(self) -> str:
        """The combined "mailbox@host" form."""
        if self.mailbox and self.host:
            return f"{self.mailbox}@{self.host}"
        return self.mailbox or ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "mailbox": self.mailbox,
            "host": self.host,
            "email": self.email,
        }

    def __str__(self) -> str:
        if self.name:
            return f"{self.name} <{self.email}>"
        return self.email


@dataclass
class Envelope:
    """
    Parsed ENVELOPE of a message.

    Address fields are None when the server sent NIL for them, and an
    empty list never occurs for a present field.

    Attributes:
        date: Date header as an aware datetime in UTC, None if unparseable.
        subject: Decoded subject line.
        from_: Authors ("from" is a Python keyword).
        sender: Actual sender, if different from the author.
        reply_to: Where replies should go.
        to: Primary recipients.
        cc: Carbon-copy recipients.
        bcc: Blind carbon-copy recipients (rarely visible).
        in_reply_to: Message-ID of the parent message, raw.
        message_id: Message-ID header, raw (including angle brackets).
    """
    date: datetime | None = None
    subject: str | None = None
    from_: list[Address] | None = None
    sender: list[Address] | None = None
    reply_to: list[Address] | None = None
    to: list[Address] | None = None
    cc: list[Address] | None = None
    bcc: list[Address] | None = None
    in_reply_to: str | None = None
    message_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        def addresses(value: list[Address] | None) -> list[dict[str, Any]] | None:
            if value is None:
                return None
            return [a.to_dict() for a in value]

        return {
            "date": self.date.isoformat() if self.date else None,
            "subject": self.subject,
            "from": addresses(self.from_),
            "sender": addresses(self.sender),
            "reply_to": addresses(self.reply_to),
            "to": addresses(self.to),
            "cc": addresses(self.cc),
            "bcc": addresses(self.bcc),
            "in_reply_to": self.in_reply_to,
            "message_id": self.message_id,
        }


@dataclass
class FetchedMessage:
    """
    One untagged FETCH record.

    Attributes:
        sequence_number: Position of the message in the selected mailbox.
                         Sequence numbers shift when messages are expunged;
                         use the UID for a stable identity.
        envelope: Parsed envelope, or None if ENVELOPE was not requested.
        attributes: Every attribute of the record, keyed by upper-cased name,
                    exactly as parsed. Kept so callers can read attributes
                    Kestrel does not interpret.
    """
    sequence_number: int
    envelope: Envelope | None = None
    attributes: dict[str, Any] = field(default_factory=dict)

    @property
    def uid(self) -> int | None:
        value = self.attributes.get("UID")
        if isinstance(value, str) and value.isdigit():
            return int(value)
        return None

    @property
    def flags(self) -> list[str]:
        """Message flags without the leading backslash."""
        value = self.attributes.get("FLAGS")
        if not isinstance(value, list):
            return []
        return [f.lstrip("\\") for f in value if isinstance(f, str)]

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"seq": self.sequence_number}
        if self.uid is not None:
            data["uid"] = self.uid
        if "FLAGS" in self.attributes:
            data["flags"] = self.flags
        data["envelope"] = self.envelope.to_dict() if self.envelope else None
        return data

    def __str__(self) -> str:
        subject = self.envelope.subject if self.envelope else None
        return f"#{self.sequence_number}: {subject or '(no subject)'}"
