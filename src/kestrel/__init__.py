# =============================================================================
# Kestrel: A Mailbox Poller for Mail Automation
# =============================================================================
#
#   "Hovers over the inbox, strikes on new mail."
#
# Kestrel periodically polls an IMAP mailbox, picks up the messages that
# arrived since the last run and hands their envelope metadata (sender,
# recipients, subject, message ids) to downstream automation.
#
# Features:
#   - Small asyncio IMAP engine (LOGIN, SELECT, FETCH) with its own framing
#   - Streaming FETCH: records are decoded and delivered as they arrive
#   - Checkpointing of the last processed message in SQLite
#   - XDG Base Directory compliant configuration
#
# =============================================================================

__version__ = "0.1.0"
__author__ = "Kord"
__app_name__ = "kestrel"

__all__ = ["__version__", "__app_name__"]
