# =============================================================================
# Account Model
# =============================================================================
# Represents a mailbox account to poll: where the IMAP server lives, who to
# log in as and which mailbox to watch.
#
# IMPORTANT: Passwords are NOT stored here. They are retrieved from the system
# keyring at runtime using the 'keyring' library. This keeps credentials secure
# and out of config files.
# =============================================================================

from dataclasses import dataclass

# Supported values for Account.imap_security
SECURITY_MODES = ("ssl", "plain")


@dataclass
class Account:
    """
    Represents an IMAP account that Kestrel polls.

    Attributes:
        name: A unique identifier for this account (e.g., "billing", "support").
              Used as the key in config files, keyring lookups and checkpoints.
        username: Login name sent with the LOGIN command (often the address).

        imap_host: Hostname of the IMAP server (e.g., "imap.example.com").
        imap_port: Port for the IMAP connection. Standard ports:
                   - 993 for IMAP over implicit TLS (recommended)
                   - 143 for plaintext IMAP
        imap_security: "ssl" for implicit TLS, "plain" for no encryption.

        mailbox: Mailbox to select and poll.
        enabled: Whether this account is active. Disabled accounts are skipped.

    Example:
        >>> account = Account(
        ...     name="billing",
        ...     username="billing@example.com",
        ...     imap_host="imap.example.com",
        ... )
    """

    # Account identification
    name: str                           # Unique account identifier
    username: str                       # Login name

    # IMAP connection
    imap_host: str = ""
    imap_port: int = 993                # Default to implicit TLS port
    imap_security: str = "ssl"          # "ssl" or "plain"

    # Polling
    mailbox: str = "INBOX"
    enabled: bool = True

    def __post_init__(self) -> None:
        if self.imap_security not in SECURITY_MODES:
            raise ValueError(
                f"imap_security must be one of {SECURITY_MODES}, got {self.imap_security!r}"
            )

    @property
    def keyring_service(self) -> str:
        """
        Returns the service name used for keyring password storage.

        We use a consistent naming scheme so passwords can be easily
        managed via the keyring CLI if needed:
            keyring set kestrel:billing billing@example.com
        """
        return f"kestrel:{self.name}"

    @property
    def checkpoint_key(self) -> str:
        """Key under which the last processed sequence number is stored."""
        return f"{self.name}:{self.mailbox}:last_seq"

    def __str__(self) -> str:
        return f"{self.name} <{self.username}>"

    def __repr__(self) -> str:
        return (
            f"Account(name={self.name!r}, username={self.username!r}, "
            f"imap={self.imap_host}:{self.imap_port}, mailbox={self.mailbox!r})"
        )
