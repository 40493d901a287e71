"""Scripted IMAP server pieces shared by the test modules."""

from __future__ import annotations

import asyncio
from collections import deque
from typing import Iterable

from kestrel.imap import IMAPSession

GREETING = b"* OK [CAPABILITY IMAP4rev1 AUTH=PLAIN] Dovecot ready.\r\n"
LOGIN_OK = b"A1 OK LOGIN completed\r\n"
SELECT_INBOX = (
    b"* 3 EXISTS\r\n"
    b"* 0 RECENT\r\n"
    b"* FLAGS (\\Seen)\r\n"
    b"* OK [PERMANENTFLAGS (\\Seen \\*)] Limited\r\n"
    b"* OK [UIDVALIDITY 3857529045] UIDs valid\r\n"
    b"* OK [UIDNEXT 4] Predicted next UID\r\n"
    b"A2 OK [READ-WRITE] SELECT completed\r\n"
)
FETCH_OK = b"A3 OK FETCH completed\r\n"


class FakeTransport:
    """
    Replays scripted server bytes and records what the client writes.

    Chunks are handed out one per read(), in order. Once they run out the
    transport reports end of stream, or with hang=True blocks until
    close() is called.
    """

    def __init__(self, chunks: Iterable[bytes] = (), *, hang: bool = False) -> None:
        self.chunks: deque[bytes] = deque(chunks)
        self.written: list[bytes] = []
        self.closed = False
        self.hang = hang
        self._close_event = asyncio.Event()

    async def read(self) -> bytes:
        if self.closed:
            return b""
        if self.chunks:
            return self.chunks.popleft()
        if self.hang:
            await self._close_event.wait()
        return b""

    async def write(self, data: bytes) -> None:
        if self.closed:
            raise OSError("write on closed transport")
        self.written.append(bytes(data))

    async def close(self) -> None:
        self.closed = True
        self._close_event.set()

    @property
    def commands(self) -> list[str]:
        """Written command lines, without their CRLF."""
        return [data.decode("utf-8").rstrip("\r\n") for data in self.written]


def chunked(data: bytes, size: int) -> list[bytes]:
    """Split data into chunks of at most size bytes."""
    return [data[i:i + size] for i in range(0, len(data), size)]


def make_session(transport: FakeTransport, **kwargs) -> IMAPSession:
    """An IMAPSession whose connect() opens the given fake transport."""

    async def opener(host: str, port: int, security: str) -> FakeTransport:
        return transport

    kwargs.setdefault("read_timeout", 1)
    return IMAPSession("imap.example.com", opener=opener, **kwargs)


def fetch_record(
    seq: int,
    subject: str = "Hello",
    *,
    uid: int | None = None,
    date: str = "Mon, 7 Feb 1994 21:52:25 -0800",
) -> bytes:
    """One "* <seq> FETCH (...)" line with an ENVELOPE."""
    uid_part = f"UID {uid} " if uid is not None else ""
    line = (
        f'* {seq} FETCH ({uid_part}FLAGS (\\Seen) ENVELOPE ("{date}" "{subject}" '
        f'(("Jane" NIL "jane" "example.com")) NIL NIL '
        f'((NIL NIL "bob" "example.org")) NIL NIL NIL "<{seq}@example.com>"))\r\n'
    )
    return line.encode("utf-8")


def script(*parts: bytes) -> bytes:
    return b"".join(parts)
