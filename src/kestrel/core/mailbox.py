# =============================================================================
# Mailbox Model
# =============================================================================
# Snapshot of a selected mailbox, built from the untagged responses a server
# sends while answering SELECT:
#
#   * 172 EXISTS
#   * 1 RECENT
#   * FLAGS (\Answered \Flagged \Deleted \Seen \Draft)
#   * OK [PERMANENTFLAGS (\Deleted \Seen \*)] Limited
#   * OK [UIDVALIDITY 3857529045] UIDs valid
#   A2 OK [READ-WRITE] SELECT completed
#
# A snapshot is only meaningful while its mailbox stays selected; every new
# SELECT produces a fresh one.
# =============================================================================

from dataclasses import dataclass, field

# Values of the extra response codes: numeric ones are coerced to int
ExtraValue = int | str


@dataclass
class Mailbox:
    """
    State of the currently selected mailbox.

    Attributes:
        path: Mailbox name as passed to SELECT (e.g., "INBOX").
        exists: Number of messages in the mailbox.
        recent: Number of messages with the \\Recent flag.
        flags: Flags defined for the mailbox, without the leading backslash.
        permanent_flags: Flags the client may change permanently.
        extra: Other bracketed response codes (UIDVALIDITY, UIDNEXT, UNSEEN,
               HIGHESTMODSEQ, ...), keyed by lower-cased name.
        read_only: True when the server opened the mailbox READ-ONLY.
    """
    path: str
    exists: int = 0
    recent: int = 0
    flags: list[str] = field(default_factory=list)
    permanent_flags: list[str] = field(default_factory=list)
    extra: dict[str, ExtraValue] = field(default_factory=dict)
    read_only: bool = False

    @property
    def uidvalidity(self) -> int | None:
        value = self.extra.get("uidvalidity")
        return value if isinstance(value, int) else None

    @property
    def uidnext(self) -> int | None:
        value = self.extra.get("uidnext")
        return value if isinstance(value, int) else None

    def __str__(self) -> str:
        return f"{self.path} ({self.exists} messages, {self.recent} recent)"
