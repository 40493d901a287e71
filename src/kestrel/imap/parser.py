# =============================================================================
# Response Parser
# =============================================================================
# Parses one logical line from the LineFramer into a Response.
#
# There are three kinds of server responses (RFC 3501, section 7):
#
#   + Ready for literal data                 -> Continuation
#   * 12 FETCH (FLAGS (\Seen) UID 4827)      -> Untagged
#   A3 OK FETCH completed                    -> TaggedCompletion
#
# The data part of a response is a tree of:
#
#   atom            FLAGS, \Seen, 4827, BODY[HEADER]<0>   -> str
#   NIL                                                   -> None
#   quoted string   "Hello \"world\""                     -> str
#   literal         {5}\r\nHello                          -> bytes
#   list            (a (b c) "d")                         -> list
#
# Lists nest as deep as the server likes; an ENVELOPE is three levels deep.
# Status responses (OK, NO, BAD, PREAUTH, BYE) are different: they carry an
# optional bracketed response code followed by free human-readable text,
# which we keep as-is instead of tokenizing.
#
# Both extractors (mailbox metadata and fetch records) work on the trees
# produced here, so there is one grammar implementation.
# =============================================================================

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from kestrel.imap.errors import ParseError
from kestrel.imap.framing import decode_line, encode_line


class Status(Enum):
    """Completion status of a tagged response."""
    OK = "OK"
    NO = "NO"
    BAD = "BAD"


# Untagged verbs that carry "[code] text" instead of data
STATUS_VERBS = frozenset({"OK", "NO", "BAD", "PREAUTH", "BYE"})

LITERAL_RE = re.compile(rb"\{(\d+)\}\r\n")

# Characters that end an atom (outside of a [section])
ATOM_SPECIALS = frozenset(b' ()"]')


@dataclass
class Continuation:
    """Command continuation request ("+ ...")."""
    text: str = ""
    raw: str = ""


@dataclass
class Untagged:
    """
    Untagged response ("* ...").

    Attributes:
        verb: Upper-cased response name (FETCH, EXISTS, FLAGS, OK, ...).
        attributes: Parsed data following the verb.
        number: Leading number for message data ("* 12 FETCH" -> 12).
        code: Bracketed response code of status responses, as a list
              ("[UIDNEXT 4392]" -> ["UIDNEXT", "4392"]).
        text: Human-readable text of status responses.
        raw: The line this response was parsed from.
    """
    verb: str
    attributes: list[Any] = field(default_factory=list)
    number: int | None = None
    code: list[Any] | None = None
    text: str = ""
    raw: str = ""

    @property
    def code_name(self) -> str | None:
        """Upper-cased name of the response code, if any."""
        if self.code and isinstance(self.code[0], str):
            return self.code[0].upper()
        return None


@dataclass
class TaggedCompletion:
    """Tagged completion ("A1 OK ...") ending a command."""
    tag: str
    status: Status
    text: str = ""
    code: list[Any] | None = None
    raw: str = ""

    @property
    def code_name(self) -> str | None:
        if self.code and isinstance(self.code[0], str):
            return self.code[0].upper()
        return None


Response = Continuation | Untagged | TaggedCompletion


class ResponseParser:
    """
    Recursive-descent parser for a single response line.

    Works on the raw bytes of the line so that literal sizes, which count
    bytes, line up. Text values are decoded as UTF-8 as they are produced.

    Usage:
        >>> ResponseParser("* 3 EXISTS").parse()
        Untagged(verb='EXISTS', attributes=[], number=3, code=None, text='', raw='* 3 EXISTS')
    """

    def __init__(self, line: str | bytes) -> None:
        if isinstance(line, str):
            self.raw = line
            self.data = encode_line(line)
        else:
            self.raw = decode_line(line)
            self.data = bytes(line)
        self.pos = 0

    def parse(self) -> Response:
        """Parse the line. Raises ParseError if it is not a valid response."""
        if not self.data:
            raise ParseError("Empty response line", self.raw)

        if self.data.startswith(b"+"):
            self.pos = 1
            self._skip_space()
            return Continuation(text=self._rest(), raw=self.raw)

        tag = self._read_word()
        if not tag:
            raise ParseError("Missing tag", self.raw)
        if not self._skip_space():
            raise ParseError("Missing response name", self.raw)

        if tag == "*":
            return self._parse_untagged()
        return self._parse_tagged(tag)

    # -------------------------------------------------------------------------
    # Response kinds
    # -------------------------------------------------------------------------

    def _parse_untagged(self) -> Untagged:
        word = self._read_word()
        number = None
        if word.isdigit():
            number = int(word)
            self._skip_space()
            word = self._read_word()
        if not word:
            raise ParseError("Missing response name", self.raw)

        verb = word.upper()
        if verb in STATUS_VERBS and number is None:
            code, text = self._read_status_tail()
            return Untagged(verb=verb, code=code, text=text, raw=self.raw)

        return Untagged(
            verb=verb,
            attributes=self._read_values_to_end(),
            number=number,
            raw=self.raw,
        )

    def _parse_tagged(self, tag: str) -> TaggedCompletion:
        word = self._read_word().upper()
        try:
            status = Status(word)
        except ValueError:
            raise ParseError(f"Unknown completion status {word!r}", self.raw) from None

        code, text = self._read_status_tail()
        return TaggedCompletion(tag=tag, status=status, text=text, code=code, raw=self.raw)

    def _read_status_tail(self) -> tuple[list[Any] | None, str]:
        """Read an optional "[code]" and the remaining text."""
        self._skip_space()
        code = None
        if self._peek() == b"[":
            code = self._read_code()
            self._skip_space()
        return code, self._rest()

    # -------------------------------------------------------------------------
    # Values
    # -------------------------------------------------------------------------

    def _read_values_to_end(self) -> list[Any]:
        values = []
        while True:
            self._skip_space()
            if self._at_end():
                return values
            if self._peek() == b")":
                raise ParseError("Unbalanced ')'", self.raw)
            values.append(self._read_value())

    def _read_value(self) -> Any:
        char = self._peek()
        if char == b"(":
            return self._read_list()
        if char == b'"':
            return self._read_quoted()
        if char == b"{":
            return self._read_literal()

        atom = self._read_atom()
        if not atom:
            raise ParseError(f"Unexpected character {char!r}", self.raw)
        if atom == "NIL":
            return None
        return atom

    def _read_list(self) -> list[Any]:
        self.pos += 1  # opening "("
        items = []
        while True:
            self._skip_space()
            if self._at_end():
                raise ParseError("Unterminated list", self.raw)
            if self._peek() == b")":
                self.pos += 1
                return items
            items.append(self._read_value())

    def _read_code(self) -> list[Any]:
        self.pos += 1  # opening "["
        items = []
        while True:
            self._skip_space()
            if self._at_end():
                raise ParseError("Unterminated response code", self.raw)
            if self._peek() == b"]":
                self.pos += 1
                return items
            items.append(self._read_value())

    def _read_quoted(self) -> str:
        self.pos += 1  # opening quote
        value = bytearray()
        while not self._at_end():
            char = self.data[self.pos]
            if char == 0x5C and self.pos + 1 < len(self.data):  # backslash escape
                value.append(self.data[self.pos + 1])
                self.pos += 2
            elif char == 0x22:  # closing quote
                self.pos += 1
                return value.decode("utf-8", errors="replace")
            else:
                value.append(char)
                self.pos += 1
        raise ParseError("Unterminated quoted string", self.raw)

    def _read_literal(self) -> bytes:
        match = LITERAL_RE.match(self.data, self.pos)
        if not match:
            raise ParseError("Malformed literal", self.raw)
        size = int(match.group(1))
        start = match.end()
        if start + size > len(self.data):
            raise ParseError(f"Literal shorter than announced {size} bytes", self.raw)
        self.pos = start + size
        return self.data[start:self.pos]

    def _read_atom(self) -> str:
        """
        Read an atom. A "[...]" section is part of the atom, spaces and
        parentheses included: BODY[HEADER.FIELDS (SUBJECT)]<0> is one atom.
        """
        start = self.pos
        depth = 0
        while not self._at_end():
            char = self.data[self.pos]
            if depth:
                if char == 0x5B:
                    depth += 1
                elif char == 0x5D:
                    depth -= 1
            elif char == 0x5B:
                depth = 1
            elif char in ATOM_SPECIALS:
                break
            self.pos += 1
        if depth:
            raise ParseError("Unterminated section", self.raw)
        return self.data[start:self.pos].decode("utf-8", errors="replace")

    # -------------------------------------------------------------------------
    # Low-level helpers
    # -------------------------------------------------------------------------

    def _read_word(self) -> str:
        """Read up to the next space (tags and response names)."""
        end = self.data.find(b" ", self.pos)
        if end < 0:
            end = len(self.data)
        word = self.data[self.pos:end]
        self.pos = end
        return word.decode("utf-8", errors="replace")

    def _skip_space(self) -> bool:
        start = self.pos
        while self.pos < len(self.data) and self.data[self.pos] == 0x20:
            self.pos += 1
        return self.pos > start

    def _peek(self) -> bytes:
        return self.data[self.pos:self.pos + 1]

    def _at_end(self) -> bool:
        return self.pos >= len(self.data)

    def _rest(self) -> str:
        text = self.data[self.pos:].decode("utf-8", errors="replace")
        self.pos = len(self.data)
        return text


def parse_response(line: str | bytes) -> Response:
    """
    Parse one logical protocol line.

    Args:
        line: A line as produced by LineFramer (text), or raw bytes.

    Returns:
        Continuation, Untagged or TaggedCompletion.

    Raises:
        ParseError: If the line does not match the response grammar.
    """
    return ResponseParser(line).parse()
