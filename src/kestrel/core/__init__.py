# =============================================================================
# Kestrel Core Module
# =============================================================================
# This module contains the core domain models for Kestrel. These are pure
# Python dataclasses with no external dependencies, so they can be imported
# anywhere without causing circular dependency issues.
#
# The core models represent what the poller works with:
#   - Account: An IMAP account to poll
#   - Mailbox: Metadata of the selected mailbox
#   - FetchedMessage: One FETCH record with its parsed Envelope
#   - Address: One address from an envelope
# =============================================================================

from kestrel.core.account import Account
from kestrel.core.mailbox import ExtraValue, Mailbox
from kestrel.core.message import Address, Envelope, FetchedMessage

__all__ = [
    "Account",
    "Mailbox",
    "ExtraValue",
    "Address",
    "Envelope",
    "FetchedMessage",
]
