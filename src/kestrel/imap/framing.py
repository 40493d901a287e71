# =============================================================================
# Line Framing
# =============================================================================
# Turns the raw byte stream from the server into logical protocol lines.
#
# The network hands us chunks of arbitrary size: a chunk may end in the
# middle of a line, or even between the CR and LF of a line terminator.
# The framer keeps whatever it could not use yet and picks up where it left
# off on the next chunk.
#
# Literals need special care. A server may send a string as
#
#   * 12 FETCH (BODY[HEADER] {342}\r\n<342 raw bytes>)\r\n
#
# The 342 bytes can contain CRLFs of their own, which are NOT line
# terminators. After a segment ending in {N} we copy exactly N bytes through
# untouched, then continue the same logical line. The emitted line therefore
# keeps the "{N}\r\n" marker and the literal, which the parser needs anyway.
#
# Lines are decoded as UTF-8 with "surrogateescape": invalid bytes survive
# as lone surrogates, and line.encode("utf-8", "surrogateescape") gives back
# the exact bytes. Joining the emitted lines with CRLF reproduces the stream.
# =============================================================================

import logging
import re

logger = logging.getLogger(__name__)

CRLF = b"\r\n"

# A line segment that announces a literal ends with {size}
LITERAL_MARKER_RE = re.compile(rb"\{(\d+)\}$")

# Status responses (tagged or untagged) end in free-form text, which never
# carries a literal. "* OK [ALERT] Quota {2}" is a complete line.
STATUS_RESPONSE_RE = re.compile(
    rb"^(?:\*|[^ ]+) (?:OK|NO|BAD|PREAUTH|BYE)(?: |$)", re.IGNORECASE
)


def decode_line(data: bytes) -> str:
    """Decode raw line bytes to text, keeping undecodable bytes recoverable."""
    return data.decode("utf-8", errors="surrogateescape")


def encode_line(line: str) -> bytes:
    """Inverse of decode_line()."""
    return line.encode("utf-8", errors="surrogateescape")


class LineFramer:
    """
    Splits an arbitrarily chunked byte stream into logical protocol lines.

    Usage:
        >>> framer = LineFramer()
        >>> framer.feed(b"* OK ready\\r\\nA1 OK do")
        ['* OK ready']
        >>> framer.feed(b"ne\\r\\n")
        ['A1 OK done']

    The result never depends on where the chunk boundaries fall.
    """

    def __init__(self) -> None:
        # Bytes received but not yet assigned to a line
        self._buffer = bytearray()
        # Logical line being assembled (segments and literals so far)
        self._line = bytearray()
        # Literal bytes still to copy through verbatim
        self._literal_remaining = 0

    @property
    def pending(self) -> bool:
        """True if a partial line or literal is waiting for more data."""
        return bool(self._buffer or self._line or self._literal_remaining)

    def feed(self, data: bytes) -> list[str]:
        """
        Add a chunk of received bytes.

        Args:
            data: The next chunk, of any size (may be empty).

        Returns:
            The logical lines completed by this chunk, in order, without
            their terminators.
        """
        self._buffer.extend(data)
        lines: list[str] = []

        while True:
            if self._literal_remaining:
                if not self._buffer:
                    break
                # Copy literal bytes through without looking for CRLF
                take = min(self._literal_remaining, len(self._buffer))
                self._line.extend(self._buffer[:take])
                del self._buffer[:take]
                self._literal_remaining -= take
                continue

            # A CR at the very end of the buffer stays put until its LF
            # (or something else) arrives with the next chunk.
            index = self._buffer.find(CRLF)
            if index < 0:
                break

            segment = bytes(self._buffer[:index])
            del self._buffer[:index + len(CRLF)]
            first_segment = not self._line
            self._line.extend(segment)

            match = LITERAL_MARKER_RE.search(segment)
            if match and first_segment and STATUS_RESPONSE_RE.match(segment):
                match = None
            if match:
                # The CRLF after {N} belongs to the literal syntax, not to
                # the end of the line.
                self._line.extend(CRLF)
                self._literal_remaining = int(match.group(1))
                logger.debug(f"Literal of {self._literal_remaining} bytes announced")
                continue

            lines.append(decode_line(bytes(self._line)))
            self._line.clear()

        return lines

    def reset(self) -> None:
        """Drop all buffered state (used when a connection is replaced)."""
        self._buffer.clear()
        self._line.clear()
        self._literal_remaining = 0
