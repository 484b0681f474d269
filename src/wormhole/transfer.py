"""Push-based file transfer over a session's stdin.

Implements the sink side of the scp protocol: the remote host runs
``scp -qt <dir>`` and we stream a single file into its stdin. No handshake is
read back from the receiver.

Wire format:
    C<mode> <size> <basename>\\n     header line, mode in octal
    <size raw bytes>                 file contents
    \\x00                             terminator

Example:
    await send_file(session, f, size, "/etc/motd", mode="0644")
"""

import logging
import posixpath
import re
import shlex
from typing import BinaryIO, Protocol

import asyncssh

from .exceptions import SessionError, TransferError

logger = logging.getLogger(__name__)

DEFAULT_MODE = "0644"
CHUNK_SIZE = 32 * 1024
TERMINATOR = b"\x00"

_MODE_RE = re.compile(r"^[0-7]{3,4}$")


class StdinWriter(Protocol):
    """The part of a stream writer the protocol needs."""

    def write(self, data: bytes) -> None: ...

    async def drain(self) -> None: ...


class TransferSession(Protocol):
    """The part of a session the protocol needs."""

    @property
    def stdin(self) -> StdinWriter: ...

    def close_stdin(self) -> None: ...


def receiver_command(dest: str) -> str:
    """Command that starts the scp receiver for ``dest`` on the remote host."""
    directory = posixpath.dirname(dest) or "."
    return f"scp -qt {shlex.quote(directory)}"


def normalize_mode(mode: str | int | None) -> str:
    """Return ``mode`` as a four digit octal string.

    Args:
        mode: Octal mode such as ``"0644"``, ``"644"`` or ``0o644``; None
            selects the default

    Raises:
        TransferError: If mode is not a valid octal permission string
    """
    if mode is None or mode == "":
        return DEFAULT_MODE
    if isinstance(mode, int):
        if not 0 <= mode <= 0o7777:
            raise TransferError(f"invalid file mode: {mode:o}")
        return f"{mode:04o}"
    text = str(mode).strip()
    if not _MODE_RE.match(text):
        raise TransferError(f"invalid file mode: {mode!r}")
    return text.zfill(4)


def header_line(mode: str, size: int, dest: str) -> bytes:
    """Build the ``C<mode> <size> <name>`` header for ``dest``."""
    return f"C{mode} {size} {posixpath.basename(dest)}\n".encode("utf-8")


async def _write(stdin: StdinWriter, data: bytes) -> None:
    stdin.write(data)
    await stdin.drain()


async def send_file(
    session: TransferSession,
    source: BinaryIO,
    size: int,
    dest: str,
    mode: str = DEFAULT_MODE,
) -> None:
    """Stream ``size`` bytes from ``source`` to the scp receiver on ``session``.

    Stdin is closed exactly once whether the transfer succeeds or fails, so
    the remote receiver is never left waiting for more input.

    Args:
        session: Session whose remote command is the scp receiver
        source: Binary file object positioned at the start of the data
        size: Number of bytes to send
        dest: Destination path on the remote host (only its base name is sent)
        mode: Octal file mode

    Raises:
        TransferError: If the header, contents or terminator cannot be written,
            or source holds fewer than ``size`` bytes
    """
    try:
        stdin = session.stdin

        try:
            await _write(stdin, header_line(mode, size, dest))
        except (asyncssh.Error, OSError) as e:
            raise TransferError(f"failed to create remote file: {e}") from e

        sent = 0
        try:
            while sent < size:
                data = source.read(min(CHUNK_SIZE, size - sent))
                if not data:
                    raise TransferError(
                        f"failed to write remote file contents: source ended after {sent} of {size} bytes"
                    )
                await _write(stdin, data)
                sent += len(data)
        except (asyncssh.Error, OSError) as e:
            raise TransferError(
                f"failed to write remote file contents after {sent} of {size} bytes: {e}"
            ) from e

        try:
            await _write(stdin, TERMINATOR)
        except (asyncssh.Error, OSError) as e:
            raise TransferError(f"failed to close remote file: {e}") from e

        logger.debug(f"Sent {size} bytes for {dest}")
    finally:
        try:
            session.close_stdin()
        except SessionError as e:
            logger.warning(f"Failed to close stdin after sending {dest}: {e}")
