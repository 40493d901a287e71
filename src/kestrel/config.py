# =============================================================================
# Configuration
# =============================================================================
# Where Kestrel keeps its settings and state, and how they are read.
#
# Locations follow the XDG Base Directory layout
# (https://specifications.freedesktop.org/basedir-spec/):
#   - $XDG_CONFIG_HOME/kestrel/config.toml   accounts and poll settings
#   - $XDG_DATA_HOME/kestrel/kestrel.db      checkpoint database
#
# with ~/.config and ~/.local/share as the fallbacks.
#
# A minimal config.toml:
#
#   [general]
#   default_account = "billing"
#
#   [poll]
#   interval_minutes = 5
#   attributes = ["UID", "FLAGS", "ENVELOPE"]
#   read_timeout = 30          # seconds, 0 = no deadline
#
#   [accounts.billing]
#   username = "billing@example.com"
#   imap_host = "imap.example.com"
#   imap_port = 993
#   imap_security = "ssl"      # or "plain"
#   mailbox = "INBOX"
#
# Passwords never go in this file; see kestrel.imap.poller.load_password().
# =============================================================================

import os
import tomllib  # Read-only TOML parser from the standard library
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import tomli_w  # tomllib can't write

from kestrel.core import Account

APP_NAME = "kestrel"

DEFAULT_ATTRIBUTES = ("UID", "FLAGS", "ENVELOPE")


# =============================================================================
# XDG Locations
# =============================================================================

def _xdg_home(variable: str, fallback: Path) -> Path:
    value = os.environ.get(variable)
    return (Path(value) if value else fallback) / APP_NAME


def get_xdg_config_home() -> Path:
    """Kestrel's config directory ($XDG_CONFIG_HOME/kestrel)."""
    return _xdg_home("XDG_CONFIG_HOME", Path.home() / ".config")


def get_xdg_data_home() -> Path:
    """Kestrel's data directory ($XDG_DATA_HOME/kestrel), home of the database."""
    return _xdg_home("XDG_DATA_HOME", Path.home() / ".local" / "share")


def ensure_directories() -> dict[str, Path]:
    """
    Create the config and data directories.

    Returns:
        {"config": ..., "data": ...}
    """
    dirs = {"config": get_xdg_config_home(), "data": get_xdg_data_home()}
    for path in dirs.values():
        path.mkdir(parents=True, exist_ok=True)
    return dirs


# =============================================================================
# Settings
# =============================================================================

@dataclass
class PollConfig:
    """
    The [poll] section.

    Attributes:
        interval_minutes: Pause between cycles in --watch mode.
        attributes: FETCH attributes requested for each new message.
        read_timeout: Seconds to wait for server data (0 = wait forever).
    """
    interval_minutes: float = 5
    attributes: list[str] = field(default_factory=lambda: list(DEFAULT_ATTRIBUTES))
    read_timeout: float = 30

    @property
    def interval_seconds(self) -> float:
        return self.interval_minutes * 60

    @property
    def timeout(self) -> float | None:
        """read_timeout as IMAPSession expects it (None = no deadline)."""
        return self.read_timeout or None


@dataclass
class Config:
    """
    Everything in config.toml.

    Attributes:
        default_account: Account polled when --account isn't given.
        accounts: Configured accounts by name.
        poll: The [poll] section.

    Usage:
        >>> config = Config.load()
        >>> config.get_account("billing").imap_host
        'imap.example.com'
    """
    default_account: str = ""
    accounts: dict[str, Account] = field(default_factory=dict)
    poll: PollConfig = field(default_factory=PollConfig)

    @staticmethod
    def config_file_path() -> Path:
        return get_xdg_config_home() / "config.toml"

    @staticmethod
    def database_path() -> Path:
        return get_xdg_data_home() / "kestrel.db"

    def get_account(self, name: str | None = None) -> Account:
        """
        Resolve the account to poll.

        An explicit name wins, then default_account. Without either, the
        only enabled account is used. Disabled accounts are never polled.

        Raises:
            ConfigError: If the name is unknown or disabled, or the choice
                         is ambiguous.
        """
        name = name or self.default_account
        if name:
            account = self.accounts.get(name)
            if account is None:
                raise ConfigError(f"Unknown account: {name!r}")
            if not account.enabled:
                raise ConfigError(f"Account {name!r} is disabled")
            return account

        enabled = [a for a in self.accounts.values() if a.enabled]
        if not enabled:
            if self.accounts:
                raise ConfigError(f"All accounts in {self.config_file_path()} are disabled")
            raise ConfigError(f"No accounts configured in {self.config_file_path()}")
        if len(enabled) > 1:
            raise ConfigError("Several accounts configured; pick one with --account")
        return enabled[0]

    # -------------------------------------------------------------------------
    # Reading and writing config.toml
    # -------------------------------------------------------------------------

    @classmethod
    def load(cls, path: Path | None = None) -> "Config":
        """
        Read config.toml.

        A missing file is not an error: the defaults (no accounts) are
        returned and get_account() reports what is missing.

        Raises:
            ConfigError: If the file is not valid TOML or has bad values.
        """
        path = path or cls.config_file_path()
        if not path.exists():
            return cls()

        try:
            data = tomllib.loads(path.read_text(encoding="utf-8"))
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"Invalid config file {path}: {e}") from e

        return cls._from_dict(data)

    def save(self, path: Path | None = None) -> None:
        """Write config.toml, creating its directory if needed."""
        path = path or self.config_file_path()
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(tomli_w.dumps(self._to_dict()), encoding="utf-8")

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> "Config":
        general = data.get("general", {})
        poll = data.get("poll", {})

        config = cls(
            default_account=general.get("default_account", ""),
            poll=PollConfig(
                interval_minutes=poll.get("interval_minutes", 5),
                attributes=list(poll.get("attributes", DEFAULT_ATTRIBUTES)),
                read_timeout=poll.get("read_timeout", 30),
            ),
        )
        if config.poll.interval_minutes <= 0:
            raise ConfigError("poll.interval_minutes must be positive")
        if not config.poll.attributes:
            raise ConfigError("poll.attributes must not be empty")

        for name, section in data.get("accounts", {}).items():
            try:
                account = Account(
                    name=name,
                    username=section.get("username", ""),
                    imap_host=section.get("imap_host", ""),
                    imap_port=section.get("imap_port", 993),
                    imap_security=section.get("imap_security", "ssl"),
                    mailbox=section.get("mailbox", "INBOX"),
                    enabled=section.get("enabled", True),
                )
            except ValueError as e:
                raise ConfigError(f"Invalid account {name!r}: {e}") from e
            if not account.imap_host:
                raise ConfigError(f"Account {name!r} has no imap_host")
            config.accounts[name] = account

        return config

    def _to_dict(self) -> dict[str, Any]:
        return {
            "general": {"default_account": self.default_account},
            "poll": {
                "interval_minutes": self.poll.interval_minutes,
                "attributes": list(self.poll.attributes),
                "read_timeout": self.poll.read_timeout,
            },
            "accounts": {
                name: {
                    "username": account.username,
                    "imap_host": account.imap_host,
                    "imap_port": account.imap_port,
                    "imap_security": account.imap_security,
                    "mailbox": account.mailbox,
                    "enabled": account.enabled,
                }
                for name, account in self.accounts.items()
            },
        }


class ConfigError(Exception):
    """Raised when config.toml can't be read or has invalid values."""
    pass


def print_paths() -> None:
    """Show where Kestrel looks for its files (--paths)."""
    print(f"Config:  {get_xdg_config_home()}")
    print(f"Data:    {get_xdg_data_home()}")
    print()
    print(f"Config file:  {Config.config_file_path()}")
    print(f"Database:     {Config.database_path()}")
