# =============================================================================
# Transport
# =============================================================================
# The byte pipe underneath an IMAPSession.
#
# The session only needs three things from a transport: read the next chunk
# of whatever size the network delivered, write bytes, and close. Keeping it
# that small lets tests replace the network with a scripted fake.
#
# Security modes:
#   - "ssl":   TLS from the first byte (implicit TLS, usually port 993)
#   - "plain": no encryption (usually port 143; only for trusted networks)
#
# STARTTLS is not supported: upgrading mid-stream is the job of whatever
# hands us the stream, and every mainstream provider offers port 993.
# =============================================================================

import asyncio
import logging
import ssl
from typing import Awaitable, Callable, Protocol

from kestrel.imap.errors import IMAPConnectionError

logger = logging.getLogger(__name__)

# Size of each read from the socket
READ_SIZE = 65536


class Transport(Protocol):
    """What IMAPSession needs from a connection."""

    async def read(self) -> bytes:
        """Return the next chunk of data, or b"" once the stream has ended."""
        ...

    async def write(self, data: bytes) -> None:
        ...

    async def close(self) -> None:
        ...


# Opens a transport to (host, port, security)
TransportOpener = Callable[[str, int, str], Awaitable[Transport]]


class StreamTransport:
    """
    Transport over an asyncio StreamReader/StreamWriter pair.

    Reads are pull-driven: nothing is read from the socket until the
    session asks for the next chunk, and asyncio pauses the socket when
    its internal buffer fills up.
    """

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self._reader = reader
        self._writer = writer
        self._closed = False

    async def read(self) -> bytes:
        if self._closed:
            return b""
        return await self._reader.read(READ_SIZE)

    async def write(self, data: bytes) -> None:
        self._writer.write(data)
        await self._writer.drain()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        # Wake up a read that is still waiting on the socket
        self._reader.feed_eof()
        self._writer.close()
        try:
            await self._writer.wait_closed()
        except OSError as e:
            logger.debug(f"Error while closing connection: {e}")


async def open_transport(host: str, port: int, security: str = "ssl") -> StreamTransport:
    """
    Open a TCP connection to the IMAP server.

    Args:
        host: Server hostname.
        port: Server port.
        security: "ssl" for implicit TLS, "plain" for no encryption.

    Returns:
        A connected StreamTransport.

    Raises:
        IMAPConnectionError: If the connection cannot be established.
    """
    if security == "ssl":
        ssl_context: ssl.SSLContext | None = ssl.create_default_context()
    elif security == "plain":
        ssl_context = None
        logger.warning(f"Connecting to {host}:{port} without encryption")
    else:
        raise ValueError(f"Unsupported security mode: {security!r}")

    logger.info(f"Connecting to {host}:{port} ({security})")
    try:
        reader, writer = await asyncio.open_connection(host, port, ssl=ssl_context)
    except OSError as e:
        raise IMAPConnectionError(f"Failed to connect to {host}:{port}: {e}") from e

    return StreamTransport(reader, writer)
