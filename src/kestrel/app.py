# =============================================================================
# Kestrel Command Line
# =============================================================================
# Runs a poll cycle (or keeps polling with --watch) and prints each new
# message as one JSON object per line on stdout, ready to be piped into
# whatever automation consumes it:
#
#   $ kestrel --account billing
#   {"seq": 41, "uid": 4827, "flags": [], "envelope": {"subject": ...}}
#
# Logging goes to stderr so stdout stays machine-readable.
# =============================================================================

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from kestrel import __app_name__, __version__
from kestrel.config import Config, ConfigError, ensure_directories, print_paths
from kestrel.core import FetchedMessage
from kestrel.imap import IMAPError, Poller, load_password
from kestrel.storage import CheckpointStore

logger = logging.getLogger(__name__)


async def print_message(message: FetchedMessage) -> None:
    """Default message handler: one JSON line per message."""
    print(json.dumps(message.to_dict(), ensure_ascii=False), flush=True)


def configure_logging(debug: bool = False, verbose: bool = False) -> None:
    """Send log output to stderr at the level the flags ask for."""
    if debug:
        level = logging.DEBUG
    elif verbose:
        level = logging.INFO
    else:
        level = logging.WARNING

    logging.basicConfig(
        level=level,
        stream=sys.stderr,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    )


# =============================================================================
# CLI Entry Point
# =============================================================================

def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Command-line flags; argv defaults to sys.argv[1:]."""
    parser = argparse.ArgumentParser(
        prog=__app_name__,
        description="Kestrel: poll an IMAP mailbox and print new messages as JSON",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    parser.add_argument(
        "--paths",
        action="store_true",
        help="Print configuration paths and exit",
    )

    parser.add_argument(
        "--config",
        type=Path,
        help="Path to config file (default: XDG config location)",
    )

    parser.add_argument(
        "--account",
        help="Account to poll (default: the configured default account)",
    )

    parser.add_argument(
        "--watch",
        action="store_true",
        help="Keep polling at the configured interval",
    )

    parser.add_argument(
        "--reset",
        action="store_true",
        help="Forget the checkpoint so the next poll starts from the first message",
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Log progress information",
    )

    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug mode (verbose logging, including protocol traffic)",
    )

    return parser.parse_args(argv)


async def run(args: argparse.Namespace, config: Config) -> int:
    """
    Poll the selected account.

    Returns:
        Exit code (0 for success, 1 if the poll cycle failed).
    """
    account = config.get_account(args.account)

    async with CheckpointStore(Config.database_path()) as store:
        if args.reset:
            if await store.delete(account.checkpoint_key):
                logger.info(f"Checkpoint for {account.name} removed")
            return 0

        poller = Poller(
            account,
            store,
            load_password(account),
            attributes=config.poll.attributes,
            read_timeout=config.poll.timeout,
        )

        if args.watch:
            await poller.run_forever(print_message, config.poll.interval_seconds)
            return 0

        result = await poller.poll_once(print_message)
        for error in result.errors:
            print(error, file=sys.stderr)
        return 0 if result.success else 1


def main(argv: list[str] | None = None) -> int:
    """
    The `kestrel` command.

    Exit codes:
        0    poll succeeded (or --paths / --reset)
        1    the poll cycle or the IMAP session failed
        2    configuration problem
        130  interrupted
    """
    args = parse_args(argv)

    if args.paths:
        print_paths()
        return 0

    configure_logging(debug=args.debug, verbose=args.verbose)

    try:
        ensure_directories()
        config = Config.load(args.config)
        return asyncio.run(run(args, config))
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2
    except IMAPError as e:
        print(f"IMAP error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
