# =============================================================================
# IMAP Session
# =============================================================================
# Drives one IMAP connection: sends tagged commands, reads the responses and
# works out which command they belong to.
#
# Connection lifecycle:
#
#   DISCONNECTED --connect()--> CONNECTED --login()--> AUTHENTICATING
#        ^                                                   |
#        |  close() / auth failure / transport error         v
#        +--------------------------------------- IDLE <--> SELECTED
#                                                      select()
#
# Key responsibilities:
#   - Turning bytes into responses (LineFramer + ResponseParser)
#   - Correlating responses with the one outstanding command
#   - LOGIN, SELECT (-> Mailbox) and streaming FETCH (-> FetchedMessage)
#
# Design notes:
#   - Strictly one command at a time. Each command kind uses a fixed tag,
#     so two commands of the same kind could not be told apart anyway;
#     sending while a command is outstanding raises StateError.
#   - fetch() streams: records are decoded as their lines arrive and handed
#     to the caller one by one. Bytes are only read when the caller asks for
#     the next record.
#   - A fetch iterator abandoned before its tagged completion leaves the
#     command outstanding. The rest of its responses are still on the wire,
#     so the only safe thing to do with the session is close() it.
# =============================================================================

import asyncio
import logging
import re
from collections import deque
from dataclasses import dataclass
from enum import Enum, auto
from typing import AsyncIterator, Sequence

from kestrel.core import FetchedMessage, Mailbox
from kestrel.imap.envelope import extract_message, is_fetch_record
from kestrel.imap.errors import (
    ConnectionClosedError,
    FetchError,
    IMAPAuthenticationError,
    IMAPConnectionError,
    IMAPTimeoutError,
    MailboxError,
    ParseError,
    ProtocolError,
    StateError,
)
from kestrel.imap.framing import LineFramer
from kestrel.imap.mailbox import extract_mailbox
from kestrel.imap.parser import (
    Continuation,
    Response,
    Status,
    TaggedCompletion,
    Untagged,
    parse_response,
)
from kestrel.imap.transport import Transport, TransportOpener, open_transport

# Set up logging for this module
logger = logging.getLogger(__name__)

# What fetch() asks for when the caller doesn't say
DEFAULT_FETCH_ATTRIBUTES = ("ENVELOPE",)

# "1", "5:*", "1:3,7,10:12" ...
SEQUENCE_SET_RE = re.compile(r"^(\d+|\*)(:(\d+|\*))?(,(\d+|\*)(:(\d+|\*))?)*$")


class ConnectionState(Enum):
    """Where an IMAPSession is in its lifecycle."""
    DISCONNECTED = auto()       # No transport
    CONNECTED = auto()          # Greeting received, not logged in
    AUTHENTICATING = auto()     # LOGIN sent, waiting for the answer
    IDLE = auto()               # Logged in, no mailbox selected
    SELECTED = auto()           # Mailbox selected, FETCH allowed


class CommandKind(Enum):
    """Commands we send, each with its fixed tag."""
    LOGIN = "A1"
    SELECT = "A2"
    FETCH = "A3"


@dataclass
class Command:
    """
    A tagged command.

    Attributes:
        kind: Which command this is (determines tag and verb).
        arguments: Everything after the verb, already quoted.
        redacted: Hide the arguments in logs (credentials).
    """
    kind: CommandKind
    arguments: str = ""
    redacted: bool = False

    @property
    def tag(self) -> str:
        return self.kind.value

    @property
    def verb(self) -> str:
        return self.kind.name

    @property
    def query(self) -> str:
        """The command without its tag, for error reports."""
        if self.redacted:
            return f"{self.verb} ***"
        return f"{self.verb} {self.arguments}".rstrip()

    def to_bytes(self) -> bytes:
        line = f"{self.tag} {self.verb} {self.arguments}".rstrip()
        return f"{line}\r\n".encode("utf-8")

    def __str__(self) -> str:
        return f"{self.tag} {self.query}"


def quote_string(value: str, *, always: bool = False) -> str:
    """
    Quote an IMAP string argument if it contains special characters.

    Args:
        value: The string to send.
        always: Quote even if the value would be a valid atom.

    Returns:
        The value, wrapped in double quotes with backslashes and quotes
        escaped when needed.

    Raises:
        ValueError: If the value contains CR or LF, which can't be quoted.
    """
    if "\r" in value or "\n" in value:
        raise ValueError("CR and LF cannot be sent in a quoted string")
    if always or not value or any(c in value for c in ' "\\(){}[]%*'):
        escaped = value.replace("\\", "\\\\").replace('"', '\\"')
        return f'"{escaped}"'
    return value


class IMAPSession:
    """
    One IMAP connection, used by one asyncio task.

    Usage:
        >>> session = IMAPSession("imap.example.com")
        >>> await session.connect()
        >>> await session.login("user@example.com", password)
        >>> mailbox = await session.select("INBOX")
        >>> async for message in session.fetch("1:*"):
        ...     print(message.envelope.subject)
        >>> await session.close()

    Attributes:
        host: Server hostname.
        port: Server port.
        security: "ssl" or "plain", passed to the transport opener.
        read_timeout: Seconds to wait for data before giving up on the
                      connection (None waits forever).
        state: Current ConnectionState.
        mailbox: Snapshot of the selected mailbox (only in SELECTED).
        capabilities: Capabilities the server announced.
    """

    # Default read deadline (seconds)
    TIMEOUT = 30

    def __init__(
        self,
        host: str,
        port: int = 993,
        *,
        security: str = "ssl",
        read_timeout: float | None = TIMEOUT,
        opener: TransportOpener = open_transport,
    ) -> None:
        self.host = host
        self.port = port
        self.security = security
        self.read_timeout = read_timeout
        self.state = ConnectionState.DISCONNECTED
        self.mailbox: Mailbox | None = None
        self.capabilities: set[str] = set()

        self._opener = opener
        self._transport: Transport | None = None
        self._framer = LineFramer()
        self._lines: deque[str] = deque()
        self._outstanding: Command | None = None

    @property
    def is_connected(self) -> bool:
        return self._transport is not None and self.state is not ConnectionState.DISCONNECTED

    @property
    def outstanding(self) -> Command | None:
        """The command still waiting for its tagged completion, if any."""
        return self._outstanding

    async def __aenter__(self) -> "IMAPSession":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # =========================================================================
    # Connection Management
    # =========================================================================

    async def connect(self) -> None:
        """
        Open the transport and read the server greeting.

        Raises:
            StateError: If the session is already connected.
            IMAPTimeoutError: If the connection is not up within read_timeout.
            IMAPConnectionError: If the connection fails or the server
                                 refuses us in its greeting.
        """
        self._require("connect", ConnectionState.DISCONNECTED)

        opening = self._opener(self.host, self.port, self.security)
        try:
            if self.read_timeout is None:
                self._transport = await opening
            else:
                self._transport = await asyncio.wait_for(opening, timeout=self.read_timeout)
        except asyncio.TimeoutError as e:
            raise IMAPTimeoutError(
                f"Timed out connecting to {self.host}:{self.port} after {self.read_timeout} seconds"
            ) from e

        self._framer.reset()
        self._lines.clear()
        # Counts as connected while the greeting is read, so a failure
        # below goes through close()
        self.state = ConnectionState.CONNECTED

        try:
            greeting = await self._read_response()
        except ParseError as e:
            await self.close()
            raise IMAPConnectionError(f"Unexpected greeting from {self.host}: {e.line!r}") from e

        if not isinstance(greeting, Untagged) or greeting.verb not in ("OK", "PREAUTH"):
            await self.close()
            raise IMAPConnectionError(f"Server {self.host} refused connection: {greeting.raw}")

        if greeting.code_name == "CAPABILITY":
            self._record_capabilities(greeting.code[1:])

        if greeting.verb == "PREAUTH":
            logger.info(f"Connected to {self.host}, pre-authenticated")
            self.state = ConnectionState.IDLE
        else:
            logger.info(f"Connected to {self.host}")

    async def close(self) -> None:
        """
        Close the connection.

        Any read in progress, now or later, fails with ConnectionClosedError.
        Safe to call more than once.
        """
        transport, self._transport = self._transport, None
        self.state = ConnectionState.DISCONNECTED
        self.mailbox = None
        self._outstanding = None
        self._lines.clear()
        self._framer.reset()
        if transport is not None:
            logger.debug(f"Closing connection to {self.host}")
            await transport.close()

    # =========================================================================
    # Commands
    # =========================================================================

    async def login(self, user: str, password: str) -> None:
        """
        Authenticate with LOGIN.

        Raises:
            StateError: If not in CONNECTED state.
            IMAPAuthenticationError: If the server rejects the credentials.
                                     The connection is closed.
        """
        self._require("LOGIN", ConnectionState.CONNECTED)

        command = Command(
            CommandKind.LOGIN,
            f"{quote_string(user)} {quote_string(password)}",
            redacted=True,
        )
        await self._send(command)
        self.state = ConnectionState.AUTHENTICATING
        logger.debug(f"Authenticating as {user}")

        completion = None
        async for response in self._responses(command):
            if isinstance(response, TaggedCompletion):
                completion = response
            elif response.verb == "CAPABILITY":
                self._record_capabilities(response.attributes)

        if completion.status is Status.OK:
            if completion.code_name == "CAPABILITY":
                self._record_capabilities(completion.code[1:])
            self.state = ConnectionState.IDLE
            logger.debug("Authentication successful")
            return

        # A rejected session is not reused
        await self.close()
        raise IMAPAuthenticationError(
            f"Authentication failed for {user}: {completion.status.value} {completion.text}"
        )

    async def select(self, path: str) -> Mailbox:
        """
        Select a mailbox.

        Args:
            path: Mailbox name, e.g. "INBOX".

        Returns:
            A fresh Mailbox snapshot, also stored as self.mailbox.

        Raises:
            StateError: If not logged in.
            MailboxError: If the server refuses (NO). The session is left
                          logged in with no mailbox selected.
            ProtocolError: If the server answers BAD.
        """
        self._require("SELECT", ConnectionState.IDLE, ConnectionState.SELECTED)

        command = Command(CommandKind.SELECT, quote_string(path, always=True))
        await self._send(command)
        # The previous selection ends as soon as SELECT is issued
        self.mailbox = None
        self.state = ConnectionState.IDLE
        logger.debug(f"Selecting mailbox: {path}")

        untagged: list[Untagged] = []
        completion = None
        async for response in self._responses(command):
            if isinstance(response, TaggedCompletion):
                completion = response
            else:
                untagged.append(response)

        if completion.status is Status.NO:
            raise MailboxError(f"Failed to select mailbox '{path}': {completion.text}")
        if completion.status is Status.BAD:
            raise ProtocolError(f"Server rejected SELECT for '{path}': {completion.text}")

        self.mailbox = extract_mailbox(path, untagged, completion)
        self.state = ConnectionState.SELECTED
        logger.debug(f"Selected mailbox: {self.mailbox}")
        return self.mailbox

    def fetch(
        self,
        sequence_set: str,
        attributes: Sequence[str] = DEFAULT_FETCH_ATTRIBUTES,
    ) -> AsyncIterator[FetchedMessage]:
        """
        Fetch messages from the selected mailbox.

        The command is sent when iteration starts; messages are yielded as
        their FETCH records arrive.

        Args:
            sequence_set: Messages to fetch, e.g. "1:*" or "5,7:9".
            attributes: FETCH attribute names, e.g. ("UID", "ENVELOPE").

        Returns:
            An async iterator of FetchedMessage. Iterating raises
            FetchError if the server answers NO (even after some messages
            were yielded) and ProtocolError if it answers BAD.

        Raises:
            StateError: If no mailbox is selected.
            ValueError: If the sequence set or an attribute is malformed.
        """
        self._require("FETCH", ConnectionState.SELECTED)

        if not SEQUENCE_SET_RE.match(sequence_set):
            raise ValueError(f"Invalid sequence set: {sequence_set!r}")
        if not attributes:
            raise ValueError("At least one FETCH attribute is required")
        for attribute in attributes:
            if not attribute or any(c in attribute for c in "\r\n\""):
                raise ValueError(f"Invalid FETCH attribute: {attribute!r}")

        command = Command(CommandKind.FETCH, f"{sequence_set} ({' '.join(attributes)})")
        return self._fetch(command)

    async def _fetch(self, command: Command) -> AsyncIterator[FetchedMessage]:
        self._require("FETCH", ConnectionState.SELECTED)
        await self._send(command)

        highest: int | None = None
        async for response in self._responses(command):
            if isinstance(response, TaggedCompletion):
                if response.status is Status.OK:
                    logger.debug(f"FETCH complete: {response.text}")
                    return
                if response.status is Status.NO:
                    raise FetchError("Server rejected FETCH", command.query, response.raw)
                raise ProtocolError(f"Server reported BAD for {command.query}: {response.text}")

            if not is_fetch_record(response):
                logger.debug(f"Ignoring during FETCH: {response.raw}")
                continue

            message = extract_message(response)
            if message is None:
                continue

            # Passed through as-is; callers decide what to do with it
            if highest is not None and message.sequence_number <= highest:
                logger.warning(
                    f"FETCH record #{message.sequence_number} arrived after #{highest}"
                )
            highest = max(highest or 0, message.sequence_number)
            yield message

    # =========================================================================
    # Response Handling
    # =========================================================================

    async def _responses(self, command: Command) -> AsyncIterator[Untagged | TaggedCompletion]:
        """
        Yield the responses belonging to an outstanding command.

        Untagged responses are yielded as they come; the tagged completion
        is yielded last and clears the outstanding command. Untagged lines
        that don't parse are logged and dropped.
        """
        while True:
            try:
                response = await self._read_response()
            except ParseError as e:
                if isinstance(e.line, str) and e.line.startswith("* "):
                    logger.warning(f"Ignoring unparseable response: {e.line!r}")
                    continue
                raise

            if isinstance(response, TaggedCompletion):
                if response.tag != command.tag:
                    raise ProtocolError(
                        f"Completion for unknown tag {response.tag!r} "
                        f"while waiting for {command.tag}: {response.raw}"
                    )
                self._outstanding = None
                yield response
                return

            if isinstance(response, Continuation):
                raise ProtocolError(f"Unexpected continuation request: {response.raw}")

            if response.verb == "BYE":
                logger.warning(f"Server is closing the connection: {response.text}")
            yield response

    async def _read_response(self) -> Response:
        line = await self._read_line()
        logger.debug(f"S: {line}")
        return parse_response(line)

    async def _read_line(self) -> str:
        while not self._lines:
            chunk = await self._read_chunk()
            self._lines.extend(self._framer.feed(chunk))
        return self._lines.popleft()

    async def _read_chunk(self) -> bytes:
        transport = self._transport
        if transport is None:
            raise ConnectionClosedError(f"Connection to {self.host} is closed")

        try:
            if self.read_timeout is None:
                chunk = await transport.read()
            else:
                chunk = await asyncio.wait_for(transport.read(), timeout=self.read_timeout)
        except asyncio.TimeoutError as e:
            await self.close()
            raise IMAPTimeoutError(
                f"No data from {self.host} within {self.read_timeout} seconds"
            ) from e
        except OSError as e:
            await self.close()
            raise IMAPConnectionError(f"Connection to {self.host} failed: {e}") from e

        if not chunk:
            truncated = self._framer.pending
            await self.close()
            if truncated:
                raise ConnectionClosedError(f"Connection to {self.host} closed mid-response")
            raise ConnectionClosedError(f"Connection to {self.host} closed")
        return chunk

    async def _send(self, command: Command) -> None:
        if self._outstanding is not None:
            raise StateError(
                f"Cannot send {command.verb} while {self._outstanding} is outstanding"
            )
        if self._transport is None:
            raise ConnectionClosedError(f"Connection to {self.host} is closed")

        logger.debug(f"C: {command}")
        try:
            await self._transport.write(command.to_bytes())
        except OSError as e:
            await self.close()
            raise IMAPConnectionError(f"Failed to send {command.verb} to {self.host}: {e}") from e
        self._outstanding = command

    # =========================================================================
    # Helpers
    # =========================================================================

    def _require(self, action: str, *states: ConnectionState) -> None:
        if self.state not in states:
            expected = " or ".join(s.name for s in states)
            raise StateError(f"{action} requires state {expected}, session is {self.state.name}")

    def _record_capabilities(self, values: Sequence) -> None:
        self.capabilities = {v.upper() for v in values if isinstance(v, str)}
        logger.debug(f"Server capabilities: {sorted(self.capabilities)}")
