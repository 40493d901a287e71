# =============================================================================
# Mailbox Poller
# =============================================================================
# Runs poll cycles: pick up the messages that arrived since the last cycle
# and hand them to a handler.
#
# One cycle:
#   1. Read the checkpoint (last processed sequence number) for the account
#   2. Connect, LOGIN, SELECT the mailbox
#   3. FETCH "<checkpoint + 1>:*" and pass each message to the handler
#   4. Write the highest processed sequence number back, close
#
# Key concepts:
#   - "N:*" always matches at least one message: if N is larger than the
#     mailbox, "*" (the last message) still matches. We skip the FETCH when
#     the mailbox is too small and drop records below N.
#   - Sequence numbers shift down when messages are expunged. A mailbox
#     that is cleaned up between cycles can make the poller skip messages;
#     for mailboxes that only grow (the automation use case) they are fine.
#   - The checkpoint is written even when a cycle fails half-way, so
#     messages already handed to the handler are not handed over again.
# =============================================================================

import asyncio
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, auto
from typing import Awaitable, Callable, Sequence

import keyring

from kestrel.core import Account, FetchedMessage, Mailbox
from kestrel.imap.errors import IMAPAuthenticationError
from kestrel.imap.session import DEFAULT_FETCH_ATTRIBUTES, ConnectionState, IMAPSession
from kestrel.storage import CheckpointStore

logger = logging.getLogger(__name__)

# Environment variable that overrides the keyring (containers, CI)
PASSWORD_ENV = "KESTREL_PASSWORD"


class PollStatus(Enum):
    """Current status of a poll cycle."""
    IDLE = auto()           # Not polling
    CONNECTING = auto()     # Connecting and logging in
    SELECTING = auto()      # Selecting the mailbox
    FETCHING = auto()       # Receiving messages
    COMPLETE = auto()       # Cycle completed successfully
    ERROR = auto()          # Cycle failed


@dataclass
class PollResult:
    """
    Result of one poll cycle.

    Attributes:
        success: True if the cycle completed without errors.
        mailbox: Mailbox snapshot from SELECT, if we got that far.
        start_seq: First sequence number that was asked for.
        last_seq: Highest sequence number handled (None if none).
        messages: Number of messages handed to the handler.
        errors: Error messages encountered.
        duration_seconds: Time taken for the cycle.
    """
    success: bool = True
    mailbox: Mailbox | None = None
    start_seq: int = 1
    last_seq: int | None = None
    messages: int = 0
    errors: list[str] = field(default_factory=list)
    duration_seconds: float = 0.0


# Receives each new message
MessageHandler = Callable[[FetchedMessage], Awaitable[None]]

# Builds the session for a cycle (tests replace the network here)
SessionFactory = Callable[[Account], IMAPSession]


def load_password(account: Account) -> str:
    """
    Look up the account password.

    $KESTREL_PASSWORD wins if set; otherwise the system keyring is asked.

    Raises:
        IMAPAuthenticationError: If no password can be found.
    """
    password = os.environ.get(PASSWORD_ENV)
    if password:
        return password

    password = keyring.get_password(account.keyring_service, account.username)
    if not password:
        raise IMAPAuthenticationError(
            f"No password found in keyring for {account.username}. "
            f"Set it with: keyring set {account.keyring_service} {account.username}"
        )
    return password


class Poller:
    """
    Polls one account's mailbox for new messages.

    Usage:
        >>> poller = Poller(account, store, password)
        >>> result = await poller.poll_once(handle_message)
        >>> # or, every five minutes until stop() is called:
        >>> await poller.run_forever(handle_message, interval=300)

    Attributes:
        account: Account being polled.
        store: Where the checkpoint lives.
        attributes: FETCH attributes to request.
        status: What the current (or last) cycle is doing.
    """

    def __init__(
        self,
        account: Account,
        store: CheckpointStore,
        password: str,
        *,
        attributes: Sequence[str] = DEFAULT_FETCH_ATTRIBUTES,
        read_timeout: float | None = IMAPSession.TIMEOUT,
        session_factory: SessionFactory | None = None,
    ) -> None:
        self.account = account
        self.store = store
        self.attributes = tuple(attributes)
        self.read_timeout = read_timeout
        self.status = PollStatus.IDLE
        self._password = password
        self._session_factory = session_factory or self._default_session
        self._stop_event = asyncio.Event()

    def _default_session(self, account: Account) -> IMAPSession:
        return IMAPSession(
            account.imap_host,
            account.imap_port,
            security=account.imap_security,
            read_timeout=self.read_timeout,
        )

    async def read_checkpoint(self) -> int | None:
        """Last processed sequence number, or None if nothing was processed."""
        stored = await self.store.get(self.account.checkpoint_key)
        if stored is None:
            return None
        if not stored.isdigit():
            logger.warning(f"Ignoring corrupt checkpoint {stored!r} for {self.account.name}")
            return None
        return int(stored)

    async def poll_once(self, handler: MessageHandler) -> PollResult:
        """
        Run one poll cycle.

        Args:
            handler: Awaited with each new message, in server order.

        Returns:
            PollResult with statistics and any errors.

        Raises:
            IMAPAuthenticationError: If the server rejects the credentials;
                                     retrying won't help.
        """
        start_time = datetime.now()
        result = PollResult()
        session = self._session_factory(self.account)
        last_processed: int | None = None

        try:
            checkpoint = await self.read_checkpoint()
            start = checkpoint + 1 if checkpoint is not None else 1
            result.start_seq = start

            self.status = PollStatus.CONNECTING
            await session.connect()
            if session.state is ConnectionState.CONNECTED:
                await session.login(self.account.username, self._password)

            self.status = PollStatus.SELECTING
            mailbox = await session.select(self.account.mailbox)
            result.mailbox = mailbox

            if mailbox.exists < start:
                logger.info(f"No new messages in {self.account.mailbox} (last seen #{start - 1})")
            else:
                self.status = PollStatus.FETCHING
                logger.info(
                    f"Fetching messages {start}:{mailbox.exists} from {self.account.mailbox}"
                )
                async for message in session.fetch(f"{start}:*", self.attributes):
                    if message.sequence_number < start:
                        logger.debug(f"Dropping already processed message #{message.sequence_number}")
                        continue
                    await handler(message)
                    result.messages += 1
                    if last_processed is None or message.sequence_number > last_processed:
                        last_processed = message.sequence_number

            self.status = PollStatus.COMPLETE
            logger.info(f"Poll complete for {self.account.name}: {result.messages} new")

        except IMAPAuthenticationError:
            # Re-raise authentication errors so the caller can stop polling
            self.status = PollStatus.ERROR
            raise
        except Exception as e:
            error_msg = f"Poll failed for {self.account.name}: {e}"
            logger.error(error_msg, exc_info=True)
            self.status = PollStatus.ERROR
            result.success = False
            result.errors.append(error_msg)
        finally:
            if last_processed is not None:
                await self.store.put(self.account.checkpoint_key, str(last_processed))
                result.last_seq = last_processed
            await session.close()

        result.duration_seconds = (datetime.now() - start_time).total_seconds()
        return result

    async def run_forever(self, handler: MessageHandler, interval: float) -> None:
        """
        Run poll cycles every `interval` seconds until stop() is called.

        A failed cycle is logged and retried on the next interval.
        Authentication errors end the loop.
        """
        self._stop_event.clear()
        logger.info(f"Polling {self.account.name} every {interval:g} seconds")

        while not self._stop_event.is_set():
            result = await self.poll_once(handler)
            if not result.success:
                logger.warning(f"Poll cycle failed, retrying in {interval:g} seconds")

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass

        logger.info(f"Stopped polling {self.account.name}")

    def stop(self) -> None:
        """Ask run_forever() to return after the current cycle."""
        self._stop_event.set()

    @property
    def is_stopped(self) -> bool:
        return self._stop_event.is_set()
