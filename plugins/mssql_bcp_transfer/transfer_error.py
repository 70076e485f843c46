"""
Transfer Error Module

Error types raised by the transfer pipeline, and the redaction helpers used
to keep bcp credentials out of anything that is logged or shown to a user.

Every step-level function raises one of these errors; the owning pipeline
converts the first one into the job's failed TransferResult.
"""

import re
from typing import List, Optional, Sequence

REDACTED = "******"

# "-P", "secret"  (argument list rendered with repr/str)
_QUOTED_PASSWORD_PATTERN = re.compile(r'''(["']-P["']\s*,\s*["'])(.*?)(["'])''')
# -P secret  (argument list rendered as a shell-like command line)
_BARE_PASSWORD_PATTERN = re.compile(r'(?<![\w"\'-])(-P\s+)(?!["\'])(\S+)')


def redact_args(args: Sequence[str]) -> List[str]:
    """
    Return a copy of a bcp argument list with every -P value masked.

    Args:
        args: Command-line arguments as passed to the bcp process

    Returns:
        New list where the element following each "-P" is replaced
    """
    redacted = list(args)
    for i, arg in enumerate(redacted[:-1]):
        if arg == "-P":
            redacted[i + 1] = REDACTED
    return redacted


def redact_message(message: str) -> str:
    """
    Mask the value following a -P flag anywhere inside a message.

    Handles both quoted list fragments (``"-P", "secret"``) and plain
    command-line fragments (``-P secret``).

    Examples:
        >>> redact_message('["-U", "sa", "-P", "secret123"]')
        '["-U", "sa", "-P", "******"]'
        >>> redact_message('bcp x out y -U sa -P secret123 -T')
        'bcp x out y -U sa -P ****** -T'
    """
    if not message:
        return message
    message = _QUOTED_PASSWORD_PATTERN.sub(
        lambda m: f"{m.group(1)}{REDACTED}{m.group(3)}", message
    )
    return _BARE_PASSWORD_PATTERN.sub(
        lambda m: f"{m.group(1)}{REDACTED}", message
    )


class TransferError(Exception):
    """Base error for all transfer pipeline failures."""

    def __init__(self, message: str):
        self.message = redact_message(str(message))
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message

    @classmethod
    def from_bcp_error(cls, message: str, detail: Optional[str] = None) -> "TransferError":
        """
        Build an error from a bcp failure and its low-level detail.

        The detail often embeds the command line, so it is redacted
        before being joined into the message.
        """
        if detail:
            return cls(f"{message}, message: {redact_message(str(detail))}")
        return cls(message)


class DiscoveryError(TransferError):
    """Table discovery failed: all dialect queries failed or a row was malformed."""


class RunnerError(TransferError):
    """The external bulk-copy process could not complete."""


class RunnerSpawnError(RunnerError):
    """The bcp executable was not found or the OS refused to start it."""


class RunnerProcessError(RunnerError):
    """bcp exited abnormally, or its output could not be read or post-processed."""


class ArchiveError(TransferError):
    """Missing or malformed archive entry, zip structural error or archive I/O failure."""


class PathError(TransferError):
    """A file name or directory could not be derived or prepared."""
