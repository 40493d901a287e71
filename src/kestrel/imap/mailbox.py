# =============================================================================
# Mailbox Metadata Extraction
# =============================================================================
# Builds a Mailbox snapshot from the untagged responses of a SELECT.
#
# Recognised responses:
#   * 172 EXISTS                          -> exists
#   * 1 RECENT                            -> recent
#   * FLAGS (\Seen \Answered)             -> flags
#   * OK [PERMANENTFLAGS (\Seen \*)] ...  -> permanent_flags
#   * OK [UIDVALIDITY 3857529045] ...     -> extra["uidvalidity"] = 3857529045
#   A2 OK [READ-ONLY] ...                 -> read_only
#
# Anything else is ignored so that servers sending extensions we don't know
# about (HIGHESTMODSEQ without CONDSTORE, vendor codes, ...) keep working.
# =============================================================================

import logging
from typing import Any, Iterable

from kestrel.core import ExtraValue, Mailbox
from kestrel.imap.parser import TaggedCompletion, Untagged

logger = logging.getLogger(__name__)


def _flag_names(values: Any) -> list[str]:
    """Turn a parsed flag list into names without the leading backslash."""
    if not isinstance(values, list):
        return []
    names: list[str] = []
    for value in values:
        if not isinstance(value, str):
            continue
        name = value.lstrip("\\")
        if name and name not in names:
            names.append(name)
    return names


def _coerce(value: Any) -> ExtraValue:
    """Integer if the value is numeric, otherwise its text."""
    if isinstance(value, bytes):
        value = value.decode("utf-8", errors="replace")
    if value is None:
        return ""
    if isinstance(value, list):
        return " ".join(str(v) for v in value)
    text = str(value)
    try:
        return int(text)
    except ValueError:
        return text


def extract_mailbox(
    path: str,
    responses: Iterable[Untagged],
    completion: TaggedCompletion | None = None,
) -> Mailbox:
    """
    Interpret the untagged responses collected during SELECT.

    Args:
        path: The mailbox name that was selected.
        responses: Untagged responses received before the completion.
        completion: The tagged OK, if available (for READ-ONLY/READ-WRITE).

    Returns:
        A new Mailbox snapshot.
    """
    mailbox = Mailbox(path=path)

    for response in responses:
        if response.number is not None and response.verb == "EXISTS":
            mailbox.exists = response.number
        elif response.number is not None and response.verb == "RECENT":
            mailbox.recent = response.number
        elif response.verb == "FLAGS" and response.attributes:
            mailbox.flags = _flag_names(response.attributes[0])
        elif response.verb == "OK" and response.code_name:
            code = response.code
            if response.code_name == "PERMANENTFLAGS":
                mailbox.permanent_flags = _flag_names(code[1] if len(code) > 1 else None)
            elif len(code) == 2:
                mailbox.extra[response.code_name.lower()] = _coerce(code[1])
            else:
                logger.debug(f"Ignoring response code: {response.raw}")
        else:
            logger.debug(f"Ignoring SELECT response: {response.raw}")

    if completion is not None and completion.code_name == "READ-ONLY":
        mailbox.read_only = True

    return mailbox
