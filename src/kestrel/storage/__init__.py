# =============================================================================
# Storage Module
# =============================================================================
# Handles persistent storage using SQLite.
#
# Provides:
#   - Checkpoints: the last processed message per account and mailbox
#   - Async operations via aiosqlite
#
# The database is stored in the XDG data directory (~/.local/share/kestrel/).
# =============================================================================

from kestrel.storage.checkpoints import CheckpointStore

__all__ = ["CheckpointStore"]
