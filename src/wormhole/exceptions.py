"""Exception hierarchy for wormhole.

Every error raised by the engine derives from :class:`WormholeError` so that
callers can isolate a failing host with a single ``except`` clause. Each layer
wraps the underlying cause (``raise ... from err``) and adds the context it
knows about: which file, which package, which host.

Example:
    try:
        await action.run(ctx, conn, config)
    except WormholeError as e:
        conn.server.record_failure(e)
"""

from typing import Any


class WormholeError(Exception):
    """Base class for all wormhole errors.

    Attributes:
        msg: Human-readable error message
        details: Extra structured fields for reporting (host, path, ...)
    """

    def __init__(self, msg: str, **details: Any) -> None:
        super().__init__(msg)
        self.msg = msg
        self.details: dict[str, Any] = details

    def __str__(self) -> str:
        return self.msg


class ConfigError(WormholeError):
    """Raised when the run configuration is invalid."""


class InventoryError(WormholeError):
    """Raised when an inventory file cannot be loaded."""


class PlaybookError(WormholeError):
    """Raised when a playbook file or one of its actions cannot be decoded."""


class DialError(WormholeError):
    """Raised when an SSH connection to a host cannot be established.

    The scheduler records it on the host and skips that host for the batch.
    """

    def __init__(self, address: str, cause: BaseException) -> None:
        super().__init__(f"dial error: {address}: {cause}", address=address)
        self.address = address


class SessionError(WormholeError):
    """Raised when a remote session, its pipes or its terminal cannot be set up."""


class TransferError(WormholeError):
    """Raised when the file transfer protocol fails to write its stream."""


class RemoteCommandError(WormholeError):
    """Raised when a remote command exits non-zero or its channel fails.

    Attributes:
        command: The remote command line
        exit_status: Exit status reported by the remote end (None if unknown)
    """

    def __init__(
        self,
        msg: str,
        command: str,
        exit_status: int | None = None,
        output: str = "",
    ) -> None:
        super().__init__(msg, command=command, exit_status=exit_status)
        self.command = command
        self.exit_status = exit_status
        self.output = output


class ExecError(WormholeError):
    """Raised by ``Connection.exec`` when a command or its side task fails."""


class ActionError(WormholeError):
    """Raised when an action fails on a host."""


class ContextCancelledError(WormholeError):
    """Raised when the run context was cancelled."""


class DeadlineExceededError(ContextCancelledError):
    """Raised when a context deadline expired before the work finished."""


class OutcomeAlreadyRecordedError(RuntimeError):
    """Raised when a host outcome is written a second time."""
