# =============================================================================
# IMAP Module
# =============================================================================
# Everything that talks IMAP:
#   - Framing the byte stream into protocol lines (literals included)
#   - Parsing lines into tagged/untagged responses
#   - The session state machine: LOGIN, SELECT and streaming FETCH
#   - Decoding SELECT metadata and FETCH envelopes
#   - The poller that runs scheduled poll cycles
#
# The engine is plain asyncio on top of a small Transport interface, so it
# can be driven by a real socket or by a scripted fake in tests.
# =============================================================================

from kestrel.imap.errors import (
    ConnectionClosedError,
    FetchError,
    IMAPAuthenticationError,
    IMAPConnectionError,
    IMAPError,
    IMAPTimeoutError,
    MailboxError,
    ParseError,
    ProtocolError,
    StateError,
)
from kestrel.imap.framing import LineFramer
from kestrel.imap.parser import (
    Continuation,
    Response,
    ResponseParser,
    Status,
    TaggedCompletion,
    Untagged,
    parse_response,
)
from kestrel.imap.session import (
    Command,
    CommandKind,
    ConnectionState,
    IMAPSession,
)
from kestrel.imap.poller import (
    Poller,
    PollResult,
    PollStatus,
    load_password,
)

__all__ = [
    # Errors
    "IMAPError",
    "IMAPConnectionError",
    "ConnectionClosedError",
    "IMAPTimeoutError",
    "IMAPAuthenticationError",
    "MailboxError",
    "ProtocolError",
    "ParseError",
    "FetchError",
    "StateError",
    # Protocol engine
    "LineFramer",
    "ResponseParser",
    "parse_response",
    "Response",
    "Continuation",
    "Untagged",
    "TaggedCompletion",
    "Status",
    # Session
    "IMAPSession",
    "ConnectionState",
    "Command",
    "CommandKind",
    # Poller
    "Poller",
    "PollResult",
    "PollStatus",
    "load_password",
]
