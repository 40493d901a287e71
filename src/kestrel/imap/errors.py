# =============================================================================
# IMAP Exceptions
# =============================================================================
# Every failure of the protocol engine is an IMAPError, so callers that only
# want "did the poll work" can catch one type:
#
#   IMAPError
#   ├── IMAPConnectionError      transport failure, bad greeting
#   │   ├── ConnectionClosedError    stream ended or was closed mid-read
#   │   └── IMAPTimeoutError         no data within the read deadline
#   ├── IMAPAuthenticationError  LOGIN rejected
#   ├── MailboxError             SELECT rejected
#   ├── FetchError               FETCH rejected (NO)
#   ├── ProtocolError            unexpected response, BAD completion
#   │   └── ParseError               line does not match the grammar
#   └── StateError               command not valid in the current state
# =============================================================================


class IMAPError(Exception):
    """Base exception for IMAP operations."""
    pass


class IMAPConnectionError(IMAPError):
    """Raised when unable to connect to, or talk to, the IMAP server."""
    pass


class ConnectionClosedError(IMAPConnectionError):
    """Raised when the connection closes while a response is expected."""
    pass


class IMAPTimeoutError(IMAPConnectionError):
    """Raised when the server sends nothing within the read deadline."""
    pass


class IMAPAuthenticationError(IMAPError):
    """Raised when IMAP authentication fails."""
    pass


class MailboxError(IMAPError):
    """Raised when the server refuses to select a mailbox."""
    pass


class ProtocolError(IMAPError):
    """Raised on a malformed or unexpected response, including BAD."""
    pass


class ParseError(ProtocolError):
    """
    Raised when a line does not match the response grammar.

    Attributes:
        line: The offending raw line.
    """

    def __init__(self, message: str, line: str | bytes = "") -> None:
        super().__init__(f"{message}: {line!r}")
        self.line = line


class FetchError(IMAPError):
    """
    Raised when the server rejects a FETCH with NO.

    Attributes:
        query: The FETCH command as sent (without the tag).
        last_response: The last raw line received for the command.
    """

    def __init__(self, message: str, query: str, last_response: str | None = None) -> None:
        super().__init__(f"{message} (query: {query!r}, last response: {last_response!r})")
        self.query = query
        self.last_response = last_response


class StateError(IMAPError):
    """Raised when a command is not valid in the session's current state."""
    pass
