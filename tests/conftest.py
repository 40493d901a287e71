# =============================================================================
# Pytest Configuration and Fixtures
# =============================================================================
# Shared fixtures for the Kestrel test suite.
# =============================================================================

import pytest
import tempfile
from pathlib import Path

from kestrel.core import Account
from kestrel.storage import CheckpointStore


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def sample_account():
    """Create a sample Account for testing."""
    return Account(
        name="test",
        username="test@example.com",
        imap_host="imap.example.com",
        imap_port=993,
        imap_security="ssl",
        mailbox="INBOX",
    )


@pytest.fixture
async def checkpoint_store(temp_dir):
    """A connected CheckpointStore in a temporary database."""
    store = CheckpointStore(temp_dir / "kestrel.db")
    await store.connect()
    yield store
    await store.close()


@pytest.fixture
def xdg_dirs(temp_dir, monkeypatch):
    """Point the XDG directories at a temporary location."""
    monkeypatch.setenv("XDG_CONFIG_HOME", str(temp_dir / "config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(temp_dir / "data"))
    return temp_dir
