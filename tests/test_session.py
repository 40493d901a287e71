from __future__ import annotations

import asyncio
import logging

import pytest

from kestrel.imap import (
    Command,
    CommandKind,
    ConnectionClosedError,
    ConnectionState,
    FetchError,
    IMAPAuthenticationError,
    IMAPConnectionError,
    IMAPSession,
    IMAPTimeoutError,
    MailboxError,
    ProtocolError,
    StateError,
)
from kestrel.imap.session import quote_string
from tests.helpers import (
    FETCH_OK,
    GREETING,
    LOGIN_OK,
    SELECT_INBOX,
    FakeTransport,
    chunked,
    fetch_record,
    make_session,
    script,
)

LITERAL_RECORD = (
    b"* 4 FETCH (UID 14 BODY[HEADER.FIELDS (SUBJECT)] {20}\r\n"
    b"Subject: Literal\r\n\r\n ENVELOPE (NIL \"Literal\" NIL NIL NIL NIL NIL NIL NIL NIL))\r\n"
)


async def selected_session(*after_select: bytes, hang: bool = False, chunk_size: int | None = None):
    data = script(GREETING, LOGIN_OK, SELECT_INBOX, *after_select)
    chunks = chunked(data, chunk_size) if chunk_size else [data]
    transport = FakeTransport(chunks, hang=hang)
    session = make_session(transport)
    await session.connect()
    await session.login("jane@example.com", "secret")
    await session.select("INBOX")
    return session, transport


async def collect(iterator) -> list:
    return [message async for message in iterator]


# =============================================================================
# Happy path
# =============================================================================

@pytest.mark.parametrize("chunk_size", [1, 5, 4096])
async def test_end_to_end(chunk_size: int) -> None:
    session, transport = await selected_session(
        fetch_record(1, "One", uid=11),
        fetch_record(2, "Two", uid=12),
        fetch_record(3, "Three", uid=13),
        FETCH_OK,
        chunk_size=chunk_size,
    )

    assert session.mailbox.exists == 3
    assert session.mailbox.recent == 0
    assert session.mailbox.flags == ["Seen"]
    assert session.mailbox.permanent_flags == ["Seen", "*"]
    assert session.mailbox.uidvalidity == 3857529045

    messages = await collect(session.fetch("1:*", ("UID", "FLAGS", "ENVELOPE")))

    assert [m.sequence_number for m in messages] == [1, 2, 3]
    assert [m.uid for m in messages] == [11, 12, 13]
    assert [m.envelope.subject for m in messages] == ["One", "Two", "Three"]
    assert messages[0].envelope.from_[0].email == "jane@example.com"
    assert session.outstanding is None
    assert session.state is ConnectionState.SELECTED
    assert transport.commands == [
        "A1 LOGIN jane@example.com secret",
        'A2 SELECT "INBOX"',
        "A3 FETCH 1:* (UID FLAGS ENVELOPE)",
    ]


async def test_connect_records_capabilities() -> None:
    session = make_session(FakeTransport([GREETING]))

    await session.connect()

    assert session.state is ConnectionState.CONNECTED
    assert session.is_connected
    assert {"IMAP4REV1", "AUTH=PLAIN"} <= session.capabilities


async def test_preauth_greeting_skips_login() -> None:
    session = make_session(FakeTransport([b"* PREAUTH [CAPABILITY IMAP4rev1] Logged in\r\n"]))

    await session.connect()

    assert session.state is ConnectionState.IDLE


async def test_literal_inside_record() -> None:
    session, _ = await selected_session(LITERAL_RECORD, FETCH_OK, chunk_size=3)

    [message] = await collect(session.fetch("4", ("UID", "BODY.PEEK[HEADER.FIELDS (SUBJECT)]", "ENVELOPE")))

    assert message.uid == 14
    assert message.attributes["BODY[HEADER.FIELDS (SUBJECT)]"] == b"Subject: Literal\r\n\r\n"
    assert message.envelope.subject == "Literal"


async def test_select_replaces_mailbox() -> None:
    session, _ = await selected_session(
        b"* 7 EXISTS\r\n* 2 RECENT\r\nA2 OK [READ-ONLY] SELECT completed\r\n",
    )

    mailbox = await session.select("Archive/2024")

    assert mailbox.path == "Archive/2024"
    assert mailbox.exists == 7
    assert mailbox.flags == []
    assert mailbox.read_only is True
    assert session.mailbox is mailbox


async def test_select_with_alert_text_ending_in_braces() -> None:
    session, _ = await selected_session(
        b"* OK [ALERT] Quota {2}\r\n* 3 EXISTS\r\nA2 OK [READ-WRITE] SELECT completed\r\n",
    )

    mailbox = await session.select("Shared")

    assert mailbox.exists == 3
    assert session.state is ConnectionState.SELECTED


async def test_async_context_manager_closes() -> None:
    transport = FakeTransport([GREETING])

    async with make_session(transport) as session:
        await session.connect()

    assert transport.closed
    assert session.state is ConnectionState.DISCONNECTED


# =============================================================================
# Command failures
# =============================================================================

async def test_login_rejected_closes_session() -> None:
    transport = FakeTransport([GREETING, b"A1 NO [AUTHENTICATIONFAILED] Invalid credentials\r\n"])
    session = make_session(transport)
    await session.connect()

    with pytest.raises(IMAPAuthenticationError):
        await session.login("jane", "wrong")

    assert transport.closed
    assert session.state is ConnectionState.DISCONNECTED
    with pytest.raises(StateError):
        await session.select("INBOX")


async def test_refused_greeting() -> None:
    transport = FakeTransport([b"* BYE Too many connections\r\n"])
    session = make_session(transport)

    with pytest.raises(IMAPConnectionError):
        await session.connect()

    assert transport.closed
    assert session.state is ConnectionState.DISCONNECTED


async def test_select_no_reverts_to_idle() -> None:
    session, _ = await selected_session(
        b"A2 NO Mailbox doesn't exist: Nope\r\n",
        SELECT_INBOX,
    )

    with pytest.raises(MailboxError):
        await session.select("Nope")

    assert session.state is ConnectionState.IDLE
    assert session.mailbox is None

    mailbox = await session.select("INBOX")
    assert mailbox.exists == 3
    assert session.state is ConnectionState.SELECTED


async def test_select_bad_is_protocol_error() -> None:
    session, _ = await selected_session(b"A2 BAD Missing argument\r\n")

    with pytest.raises(ProtocolError):
        await session.select("")


async def test_fetch_no_after_records() -> None:
    session, _ = await selected_session(
        fetch_record(1),
        b"A3 NO [SERVERBUG] Some messages could not be fetched\r\n",
    )
    received = []

    with pytest.raises(FetchError) as exc_info:
        async for message in session.fetch("1:*"):
            received.append(message)

    assert [m.sequence_number for m in received] == [1]
    assert exc_info.value.query == "FETCH 1:* (ENVELOPE)"
    assert exc_info.value.last_response == "A3 NO [SERVERBUG] Some messages could not be fetched"
    assert session.outstanding is None


async def test_fetch_no_without_records() -> None:
    session, _ = await selected_session(b"A3 NO Invalid messageset\r\n")

    with pytest.raises(FetchError):
        await collect(session.fetch("9:*"))


async def test_fetch_bad_is_protocol_error() -> None:
    session, _ = await selected_session(b"A3 BAD Error in IMAP command FETCH\r\n")

    with pytest.raises(ProtocolError):
        await collect(session.fetch("1:*", ("ENVELOPE", "X-UNKNOWN")))


async def test_unknown_tag_is_protocol_error() -> None:
    session, _ = await selected_session(b"A9 OK Who asked\r\n")

    with pytest.raises(ProtocolError):
        await collect(session.fetch("1:*"))


async def test_continuation_during_fetch_is_protocol_error() -> None:
    session, _ = await selected_session(b"+ go ahead\r\n")

    with pytest.raises(ProtocolError):
        await collect(session.fetch("1:*"))


# =============================================================================
# Record handling
# =============================================================================

async def test_malformed_records_are_skipped() -> None:
    session, _ = await selected_session(
        fetch_record(1),
        b"* 2 FETCH (UID 2 FLAGS)\r\n",
        b"* 3 FETCH (UID 3\r\n",
        b"* 4 EXISTS\r\n",
        fetch_record(5),
        FETCH_OK,
    )

    messages = await collect(session.fetch("1:*"))

    assert [m.sequence_number for m in messages] == [1, 5]


async def test_out_of_order_records_pass_through(caplog) -> None:
    session, _ = await selected_session(fetch_record(2), fetch_record(1), FETCH_OK)

    with caplog.at_level(logging.WARNING, logger="kestrel.imap.session"):
        messages = await collect(session.fetch("1:*"))

    assert [m.sequence_number for m in messages] == [2, 1]
    assert "arrived after" in caplog.text


# =============================================================================
# State rules
# =============================================================================

async def test_fetch_requires_selected_mailbox() -> None:
    transport = FakeTransport([GREETING, LOGIN_OK])
    session = make_session(transport)
    await session.connect()
    await session.login("jane", "secret")

    with pytest.raises(StateError):
        session.fetch("1:*")

    assert transport.commands == ["A1 LOGIN jane secret"]


async def test_login_requires_connection() -> None:
    session = make_session(FakeTransport())

    with pytest.raises(StateError):
        await session.login("jane", "secret")


async def test_connect_twice() -> None:
    session = make_session(FakeTransport([GREETING]))
    await session.connect()

    with pytest.raises(StateError):
        await session.connect()


@pytest.mark.parametrize(
    "sequence_set, attributes",
    [
        ("1:*; DROP", ("ENVELOPE",)),
        ("", ("ENVELOPE",)),
        ("1:*", ()),
        ("1:*", ('BODY[HEADER] "x"',)),
        ("1:*", ("ENVELOPE\r\nA9 LOGOUT",)),
    ],
)
async def test_fetch_arguments_are_validated(sequence_set: str, attributes: tuple) -> None:
    session, transport = await selected_session()

    with pytest.raises(ValueError):
        session.fetch(sequence_set, attributes)

    assert len(transport.commands) == 2


async def test_abandoned_fetch_leaves_command_outstanding() -> None:
    session, transport = await selected_session(
        fetch_record(1), fetch_record(2), fetch_record(3), FETCH_OK,
    )

    async for message in session.fetch("1:*"):
        break

    assert session.outstanding is not None
    assert session.outstanding.kind is CommandKind.FETCH
    with pytest.raises(StateError):
        await session.select("INBOX")

    await session.close()
    assert session.outstanding is None
    assert transport.closed


# =============================================================================
# Connection loss
# =============================================================================

async def test_eof_during_fetch() -> None:
    session, transport = await selected_session(fetch_record(1))
    received = []

    with pytest.raises(ConnectionClosedError):
        async for message in session.fetch("1:*"):
            received.append(message)

    assert len(received) == 1
    assert transport.closed
    assert session.state is ConnectionState.DISCONNECTED


async def test_eof_mid_line() -> None:
    session, _ = await selected_session(b"* 2 FETCH (UID 2 ENVEL")

    with pytest.raises(ConnectionClosedError, match="mid-response"):
        await collect(session.fetch("1:*"))


async def test_close_during_read() -> None:
    session, _ = await selected_session(fetch_record(1), hang=True)
    iterator = session.fetch("1:*").__aiter__()

    first = await iterator.__anext__()
    pending = asyncio.ensure_future(iterator.__anext__())
    await asyncio.sleep(0.01)
    await session.close()

    assert first.sequence_number == 1
    with pytest.raises(ConnectionClosedError):
        await pending


async def test_read_timeout() -> None:
    transport = FakeTransport(hang=True)
    session = make_session(transport, read_timeout=0.05)

    with pytest.raises(IMAPTimeoutError):
        await session.connect()

    assert transport.closed
    assert session.state is ConnectionState.DISCONNECTED


async def test_connect_timeout() -> None:
    async def opener(host: str, port: int, security: str) -> FakeTransport:
        await asyncio.sleep(10)
        return FakeTransport([GREETING])

    session = IMAPSession("imap.example.com", opener=opener, read_timeout=0.05)

    with pytest.raises(IMAPTimeoutError, match="connecting"):
        await session.connect()

    assert session.state is ConnectionState.DISCONNECTED


# =============================================================================
# Wire format
# =============================================================================

async def test_login_arguments_are_quoted() -> None:
    transport = FakeTransport([GREETING, LOGIN_OK])
    session = make_session(transport)
    await session.connect()

    await session.login("jane doe", 'pa"ss\\word')

    assert transport.commands == ['A1 LOGIN "jane doe" "pa\\"ss\\\\word"']


def test_quote_string() -> None:
    assert quote_string("INBOX") == "INBOX"
    assert quote_string("INBOX", always=True) == '"INBOX"'
    assert quote_string("") == '""'
    assert quote_string("Sent Items") == '"Sent Items"'
    with pytest.raises(ValueError):
        quote_string("a\r\nb")


def test_login_command_is_redacted() -> None:
    command = Command(CommandKind.LOGIN, "jane secret", redacted=True)

    assert command.tag == "A1"
    assert command.query == "LOGIN ***"
    assert "secret" not in str(command)
    assert command.to_bytes() == b"A1 LOGIN jane secret\r\n"
