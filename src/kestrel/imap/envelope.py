# =============================================================================
# Fetch Record Extraction
# =============================================================================
# Turns an untagged FETCH response into a FetchedMessage.
#
# A FETCH record looks like this once parsed:
#
#   * 12 FETCH (UID 4827 FLAGS (\Seen) ENVELOPE (...))
#   -> number=12, attributes=[["UID", "4827", "FLAGS", ["\\Seen"],
#                              "ENVELOPE", [...]]]
#
# i.e. exactly one list of alternating names and values. The ENVELOPE value
# has ten positions (RFC 3501, section 7.4.2):
#
#   0 date  1 subject  2 from  3 sender  4 reply-to  5 to  6 cc  7 bcc
#   8 in-reply-to  9 message-id
#
# Address lists are lists of (name route mailbox host) tuples.
#
# Servers and mail software get this wrong often enough that a bad record
# must not kill the whole fetch: anything that doesn't have the expected
# shape raises MalformedRecord internally and the record is skipped.
# =============================================================================

import email.errors
import email.header
import email.utils
import logging
from datetime import datetime, timezone
from typing import Any

from kestrel.core import Address, Envelope, FetchedMessage
from kestrel.imap.parser import Untagged

logger = logging.getLogger(__name__)

ENVELOPE_FIELDS = 10
ADDRESS_FIELDS = 4


class MalformedRecord(ValueError):
    """A FETCH record does not have the expected shape."""
    pass


def decode_words(value: str | None) -> str | None:
    """
    Decode RFC 2047 encoded-words ("=?utf-8?Q?Jane?=" -> "Jane").

    Text that is not encoded is returned unchanged, and so is text whose
    encoding we can't handle (unknown charset, broken base64).
    """
    if not value:
        return value
    try:
        return str(email.header.make_header(email.header.decode_header(value)))
    except (email.errors.HeaderParseError, LookupError, UnicodeError, ValueError):
        logger.debug(f"Could not decode header value: {value!r}")
        return value


def _text(value: Any) -> str | None:
    """A NIL, string or literal value as text."""
    if value is None:
        return None
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    if isinstance(value, str):
        return value
    raise MalformedRecord(f"Expected a string, got {value!r}")


def _parse_date(value: Any) -> datetime | None:
    text = _text(value)
    if not text:
        return None
    try:
        parsed = email.utils.parsedate_to_datetime(text)
    except (TypeError, ValueError):
        logger.debug(f"Unparseable envelope date: {text!r}")
        return None
    # Normalize to UTC; a date without a zone is taken to be UTC already
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def parse_address(value: Any) -> Address:
    """
    Parse one (name route mailbox host) address tuple.

    Raises:
        MalformedRecord: If the tuple does not have four slots.
    """
    if not isinstance(value, list) or len(value) != ADDRESS_FIELDS:
        raise MalformedRecord(f"Bad address: {value!r}")
    name, _route, mailbox, host = value
    return Address(
        name=decode_words(_text(name)),
        mailbox=_text(mailbox),
        host=_text(host),
    )


def parse_address_list(value: Any) -> list[Address] | None:
    """
    Parse an envelope address list. NIL gives None.

    RFC 2822 group syntax shows up as marker tuples with a NIL host
    ("undisclosed-recipients:;"); those carry no address and are dropped.
    The result can therefore be shorter than the list the server sent,
    and a list made only of group markers gives [] rather than None.
    """
    if value is None:
        return None
    if not isinstance(value, list):
        raise MalformedRecord(f"Bad address list: {value!r}")

    addresses = []
    for item in value:
        address = parse_address(item)
        if address.host is None:
            continue
        addresses.append(address)
    return addresses


def parse_envelope(value: Any) -> Envelope:
    """
    Parse the ten-field ENVELOPE structure.

    Raises:
        MalformedRecord: If the envelope doesn't have exactly ten fields.
    """
    if not isinstance(value, list) or len(value) != ENVELOPE_FIELDS:
        raise MalformedRecord(f"Envelope has wrong shape: {value!r}")

    return Envelope(
        date=_parse_date(value[0]),
        subject=decode_words(_text(value[1])),
        from_=parse_address_list(value[2]),
        sender=parse_address_list(value[3]),
        reply_to=parse_address_list(value[4]),
        to=parse_address_list(value[5]),
        cc=parse_address_list(value[6]),
        bcc=parse_address_list(value[7]),
        in_reply_to=_text(value[8]),
        message_id=_text(value[9]),
    )


def _attribute_map(response: Untagged) -> dict[str, Any]:
    if len(response.attributes) != 1 or not isinstance(response.attributes[0], list):
        raise MalformedRecord(f"Expected one attribute list, got {len(response.attributes)} values")

    items = response.attributes[0]
    if len(items) % 2:
        raise MalformedRecord("Odd number of items in attribute list")

    attributes: dict[str, Any] = {}
    for name, value in zip(items[::2], items[1::2]):
        if not isinstance(name, str):
            raise MalformedRecord(f"Bad attribute name: {name!r}")
        attributes[name.upper()] = value
    return attributes


def is_fetch_record(response: Untagged) -> bool:
    """True for "* <n> FETCH ..." responses."""
    return response.verb == "FETCH" and response.number is not None


def extract_message(response: Untagged) -> FetchedMessage | None:
    """
    Decode one FETCH record.

    Args:
        response: An untagged FETCH response.

    Returns:
        The FetchedMessage, or None if the record is malformed and should
        be skipped.
    """
    if not is_fetch_record(response):
        return None

    try:
        attributes = _attribute_map(response)
        envelope = None
        if "ENVELOPE" in attributes:
            envelope = parse_envelope(attributes["ENVELOPE"])
    except MalformedRecord as e:
        logger.warning(f"Skipping malformed FETCH record #{response.number}: {e}")
        return None

    return FetchedMessage(
        sequence_number=response.number,
        envelope=envelope,
        attributes=attributes,
    )
