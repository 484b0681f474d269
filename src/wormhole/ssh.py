"""Async SSH transport for wormhole.

Provides the connection and session abstractions the actions run on:

- :func:`dial` opens one password-authenticated asyncssh connection per host
- :meth:`Connection.exec` runs a single remote command through a
  :class:`Session`, optionally alongside one concurrent side task (such as
  streaming file bytes into the remote process), and always releases the
  session afterwards
- :class:`CancellationWatcher` forwards context cancellation to the remote
  process as an interrupt byte followed by end-of-input

Example:
    conn = await dial(server, connect_timeout=5)
    try:
        async def start(sess):
            await sess.start("uptime")

        await conn.exec(ctx, True, start)
    finally:
        await conn.close()
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable

import asyncssh

from .context import RunContext
from .exceptions import (
    DialError,
    ExecError,
    RemoteCommandError,
    SessionError,
    WormholeError,
)
from .logging import TRACE
from .types import Server

logger = logging.getLogger(__name__)

# Interrupt control byte (Ctrl+C). OpenSSH does not honour the SSH "signal"
# channel request, so an interrupt is typed into the terminal instead.
INTERRUPT_BYTE = b"\x03"

# RFC 4254 terminal mode opcodes
PTY_ECHO = 53
PTY_OP_ISPEED = 128
PTY_OP_OSPEED = 129

TERMINAL_TYPE = "xterm"
TERMINAL_SIZE = (80, 40)
TERMINAL_MODES = {
    PTY_ECHO: 0,            # disable echoing
    PTY_OP_ISPEED: 14400,   # input speed = 14.4kbaud
    PTY_OP_OSPEED: 14400,   # output speed = 14.4kbaud
}

# How much remote output is kept in a RemoteCommandError message
OUTPUT_TAIL = 500

ExecBody = Callable[["Session"], Awaitable[Awaitable[None] | None]]


@dataclass
class SSHOptions:
    """SSH connection options for one host.

    Attributes:
        hostname: Remote hostname or IP
        port: SSH port
        username: SSH username
        password: Password for authentication
        connect_timeout: Connection timeout in seconds
    """

    hostname: str
    port: int = 22
    username: str = ""
    password: str = ""
    connect_timeout: float = 5.0

    @classmethod
    def from_server(cls, server: Server, connect_timeout: float) -> "SSHOptions":
        """Build options from an inventory host."""
        return cls(
            hostname=server.host,
            port=server.ssh_port,
            username=server.username,
            password=server.password,
            connect_timeout=connect_timeout,
        )

    def to_asyncssh_options(self) -> dict[str, Any]:
        """Convert to asyncssh.connect() kwargs.

        Only password authentication is offered: no client keys and no agent.
        """
        options: dict[str, Any] = {
            "host": self.hostname,
            "port": self.port,
            "connect_timeout": self.connect_timeout,
            "client_keys": None,
            "agent_path": None,
            # TODO: verify host keys once trust-on-first-use vs pinned keys is decided
            "known_hosts": None,
        }

        if self.username:
            options["username"] = self.username
        if self.password:
            options["password"] = self.password

        return options


class WatcherState(str, Enum):
    """Lifecycle of a cancellation watcher."""

    WATCHING = "watching"
    STOPPED = "stopped"


class CancellationWatcher:
    """Background task that interrupts a session when its context fires.

    The watcher waits for either the context to be cancelled or the session
    to signal that it is done. On cancellation it types the interrupt byte
    into the remote terminal (only when the session has one) and then closes
    stdin so the remote process sees end-of-input. This is best effort: an
    unresponsive remote process may keep running, so callers still rely on
    the error returned by ``Connection.exec``.
    """

    def __init__(self, session: "Session") -> None:
        self.session = session
        self.state = WatcherState.WATCHING
        self._stop = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    def start(self) -> None:
        """Start watching in the background."""
        self._task = asyncio.create_task(self._watch())

    async def _watch(self) -> None:
        ctx = self.session.ctx
        cancelled = asyncio.ensure_future(ctx.wait())
        stopped = asyncio.ensure_future(self._stop.wait())
        try:
            await asyncio.wait({cancelled, stopped}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            cancelled.cancel()
            stopped.cancel()

        if not self._stop.is_set():
            self.session.interrupt()
            if ctx.deadline_exceeded():
                logger.warning(f"Context deadline exceeded on server: {self.session.address}")
        self.state = WatcherState.STOPPED

    async def stop(self) -> None:
        """Stop the watcher and wait for its task to finish. Idempotent."""
        if self.state is WatcherState.STOPPED:
            return
        self._stop.set()
        if self._task is not None:
            await self._task
        self.state = WatcherState.STOPPED


class Session:
    """One remote command invocation on an SSH connection.

    Owns the remote process, its stdin, the one-shot stdin closer and the
    cancellation watcher. A session runs at most one command and never
    outlives the ``Connection.exec`` call that created it.

    Attributes:
        ctx: Context whose cancellation interrupts the remote command
        with_terminal: Whether a pseudo-terminal is requested
        address: Remote address, for logging
    """

    def __init__(
        self,
        ctx: RunContext,
        client: asyncssh.SSHClientConnection,
        with_terminal: bool,
        address: str = "",
    ) -> None:
        self.ctx = ctx
        self.with_terminal = with_terminal
        self.address = address
        self.command: str | None = None
        self._client = client
        self._process: asyncssh.SSHClientProcess | None = None
        self._stdin_closed = False
        self._closed = False
        self._watcher = CancellationWatcher(self)
        self._watcher.start()

    async def start(self, command: str) -> None:
        """Start ``command`` on the remote host without waiting for it.

        Raises:
            ContextCancelledError: If the context already ended
            SessionError: If a command was already started or the remote
                process cannot be opened
        """
        if self._process is not None or self.command is not None:
            raise SessionError(f"session already running {self.command!r}")
        self.ctx.check()
        self.command = command

        logger.log(TRACE, f"Starting on {self.address}: {command}")

        options: dict[str, Any] = {"encoding": None}
        if self.with_terminal:
            options.update(
                term_type=TERMINAL_TYPE,
                term_size=TERMINAL_SIZE,
                term_modes=TERMINAL_MODES,
            )

        try:
            self._process = await self._client.create_process(command, **options)
        except (asyncssh.Error, OSError) as e:
            raise SessionError(f"failed to start remote command {command!r}: {e}") from e

        # The watcher may have fired while the process was being opened
        if self.ctx.cancelled():
            self.interrupt()

    @property
    def stdin(self) -> asyncssh.SSHWriter:
        """Writer connected to the remote process stdin."""
        if self._process is None:
            raise SessionError("session has no running command")
        return self._process.stdin

    def close_stdin(self) -> None:
        """Send end-of-input to the remote process.

        Only the first call does anything; later calls are no-ops, whichever
        code path (normal completion, error cleanup, cancellation) gets
        there first.

        Raises:
            SessionError: If the first close fails
        """
        if self._stdin_closed:
            return
        self._stdin_closed = True
        if self._process is None:
            return
        try:
            self._process.stdin.write_eof()
        except (asyncssh.Error, OSError) as e:
            raise SessionError(f"failed to close stdin: {e}") from e

    def interrupt(self) -> None:
        """Deliver a best-effort interrupt to the remote command.

        A no-op until the remote process exists; ``start`` re-delivers the
        interrupt if the context fired while the process was being opened.
        """
        if self._process is None:
            return
        if self.with_terminal and not self._stdin_closed:
            try:
                self._process.stdin.write(INTERRUPT_BYTE)
            except (asyncssh.Error, OSError) as e:
                logger.warning(f"Failed to send SIGINT to the remote process on {self.address}: {e}")
        try:
            self.close_stdin()
        except SessionError as e:
            logger.warning(f"Failed to close session stdin on {self.address}: {e}")

    async def wait(self) -> None:
        """Block until the remote command completes.

        Raises:
            SessionError: If no command was started
            RemoteCommandError: If the command exits non-zero, is killed by
                a signal, or its channel fails
        """
        if self._process is None:
            raise SessionError("session has no running command")
        command = self.command or ""

        try:
            result = await self._process.wait()
        except (asyncssh.Error, OSError) as e:
            raise RemoteCommandError(f"{command!r} failed: {e}", command) from e

        output = _output_tail(result.stderr) or _output_tail(result.stdout)
        if result.exit_signal:
            signal_name = result.exit_signal[0]
            raise RemoteCommandError(
                f"{command!r} killed by signal {signal_name}" + (f": {output}" if output else ""),
                command,
                output=output,
            )
        if result.exit_status:
            raise RemoteCommandError(
                f"{command!r} exited with status {result.exit_status}" + (f": {output}" if output else ""),
                command,
                exit_status=result.exit_status,
                output=output,
            )

    async def close(self) -> None:
        """Stop the watcher, close stdin and release the remote process.

        Raises:
            SessionError: If stdin or the process cannot be closed cleanly
        """
        if self._closed:
            return
        self._closed = True

        await self._watcher.stop()

        try:
            self.close_stdin()
        finally:
            if self._process is not None:
                self._process.close()
                try:
                    await self._process.wait_closed()
                except (asyncssh.Error, OSError) as e:
                    raise SessionError(f"failed to close session: {e}") from e


def _output_tail(data: bytes | str | None) -> str:
    if not data:
        return ""
    text = data.decode("utf-8", errors="replace") if isinstance(data, bytes) else data
    text = text.strip()
    if len(text) > OUTPUT_TAIL:
        text = "..." + text[-OUTPUT_TAIL:]
    return text


class Connection:
    """One authenticated SSH connection to an inventory host.

    Used by exactly one task for its whole lifetime, so it needs no locking.
    Created by :func:`dial`, closed by the scheduler once its batch is done.

    Attributes:
        server: The inventory host this connection belongs to
    """

    def __init__(self, server: Server, client: asyncssh.SSHClientConnection) -> None:
        self.server = server
        self._client = client

    @property
    def address(self) -> str:
        return self.server.address

    @property
    def host(self) -> str:
        return self.server.host

    async def exec(self, ctx: RunContext, with_terminal: bool, body: ExecBody) -> None:
        """Run one remote command through a fresh session.

        ``body`` receives the session, starts the remote command and may
        return an awaitable side task that runs concurrently with it (for
        example streaming a file into the remote process).

        Args:
            ctx: Context whose cancellation interrupts the command
            with_terminal: Request a pseudo-terminal for the command
            body: Async callable that starts the command

        Raises:
            ExecError: If the command could not be started, failed, or its
                side task failed (both failures are combined)
            ContextCancelledError: If ctx ended, even when the command itself
                succeeded; carries any in-flight error message
        """
        session = Session(ctx, self._client, with_terminal, address=self.address)
        side_task: asyncio.Future[None] | None = None
        try:
            try:
                side = await body(session)
            except WormholeError as e:
                raise ExecError(f"failed to start the ssh command: {e}") from e

            if side is not None:
                side_task = asyncio.ensure_future(side)

            error: WormholeError | None = None
            message = ""
            try:
                await session.wait()
            except WormholeError as e:
                error = e
                message = f"failed ssh command: {e}"

            if side_task is not None:
                try:
                    await side_task
                except WormholeError as e:
                    if error is None:
                        error = e
                        message = f"failed async ssh operation: {e}"
                    else:
                        message = f"{message}: failed async ssh operation: {e}"

            if ctx.cancelled():
                raise ctx.error(message or None) from error
            if error is not None:
                raise ExecError(message) from error
        finally:
            if side_task is not None and not side_task.done():
                side_task.cancel()
                await asyncio.gather(side_task, return_exceptions=True)
            try:
                await session.close()
            except WormholeError as e:
                logger.warning(f"Failed to release session on {self.address}: {e}")

    async def close(self) -> None:
        """Close the SSH connection."""
        self._client.close()
        await self._client.wait_closed()
        logger.debug(f"Disconnected from {self.address}")


async def dial(server: Server, connect_timeout: float) -> Connection:
    """Open an authenticated SSH connection to ``server``.

    Args:
        server: Inventory host to connect to
        connect_timeout: Connection timeout in seconds

    Returns:
        Connection bound to the server

    Raises:
        DialError: If the host is unreachable or authentication fails
    """
    options = SSHOptions.from_server(server, connect_timeout)

    logger.debug(f"Connecting to {server.address}")
    try:
        client = await asyncssh.connect(**options.to_asyncssh_options())
    except (asyncssh.Error, OSError, asyncio.TimeoutError) as e:
        raise DialError(server.address, e) from e
    logger.info(f"Connected to {server.address}")

    return Connection(server, client)
