"""Type definitions for wormhole.

This module defines the core data types shared by the engine: the host record
that carries connection details and the terminal outcome of a run, and the
run configuration consumed by the scheduler and actions.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from .exceptions import ConfigError, OutcomeAlreadyRecordedError

DEFAULT_SSH_PORT = 22


class HostOutcome(str, Enum):
    """Terminal state of a host's playbook run."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    UNREACHABLE = "unreachable"


@dataclass
class Server:
    """A target machine from the inventory plus its run outcome.

    The outcome is a write-once cell: it starts as ``PENDING`` and is set
    exactly once, by the task running this host's playbook (or by the
    scheduler when the host cannot be dialed). No two tasks ever hold the
    same server concurrently, so no locking is needed.

    Attributes:
        host: Hostname or IP address
        port: SSH port (0 means the default port 22)
        username: SSH username
        password: SSH password

    Example:
        >>> server = Server(host="gondor", username="isildur", password="...")
        >>> server.address
        'gondor:22'
        >>> server.outcome
        <HostOutcome.PENDING: 'pending'>
    """

    host: str
    port: int = 0
    username: str = ""
    password: str = field(default="", repr=False)
    _outcome: HostOutcome = field(default=HostOutcome.PENDING, init=False, repr=False)
    _error: BaseException | None = field(default=None, init=False, repr=False)

    @property
    def address(self) -> str:
        """``host:port`` with the default SSH port filled in."""
        return f"{self.host}:{self.port or DEFAULT_SSH_PORT}"

    @property
    def ssh_port(self) -> int:
        """Effective SSH port."""
        return self.port or DEFAULT_SSH_PORT

    @property
    def outcome(self) -> HostOutcome:
        """Current outcome of this host's run."""
        return self._outcome

    @property
    def error(self) -> BaseException | None:
        """The error that ended this host's run, if any."""
        return self._error

    def _record(self, outcome: HostOutcome, error: BaseException | None) -> None:
        if self._outcome is not HostOutcome.PENDING:
            raise OutcomeAlreadyRecordedError(
                f"outcome for {self.address} already recorded as {self._outcome.value}"
            )
        self._outcome = outcome
        self._error = error

    def record_failure(self, error: BaseException) -> None:
        """Record the error that ended this host's playbook run."""
        self._record(HostOutcome.FAILED, error)

    def record_unreachable(self, error: BaseException) -> None:
        """Record that this host could not be dialed."""
        self._record(HostOutcome.UNREACHABLE, error)

    def record_completed(self) -> None:
        """Record that every action of the playbook succeeded on this host."""
        self._record(HostOutcome.COMPLETED, None)


@dataclass
class RunConfig:
    """Configuration for a playbook run.

    Attributes:
        playbook: Path to the playbook file
        inventory: Path to the inventory file
        playbook_folder: Root for relative ``file`` action sources
            (defaults to the playbook's directory)
        connect_timeout: SSH connect timeout in seconds
        exec_timeout: Per-action execution timeout in seconds
        max_concurrent_connections: Batch size; at most this many hosts are
            connected at the same time

    Raises:
        ConfigError: If max_concurrent_connections is less than 1 or a
            timeout is not positive

    Example:
        >>> config = RunConfig(playbook=Path("playbooks/site.yaml"))
        >>> config.playbook_folder
        PosixPath('playbooks')
    """

    playbook: Path = Path("playbook.yaml")
    inventory: Path = Path("inventory.yaml")
    playbook_folder: Path | None = None
    connect_timeout: float = 5.0
    exec_timeout: float = 300.0
    max_concurrent_connections: int = 2

    def __post_init__(self) -> None:
        """Validate and normalize configuration after initialization."""
        if isinstance(self.playbook, str):
            self.playbook = Path(self.playbook)
        if isinstance(self.inventory, str):
            self.inventory = Path(self.inventory)
        if self.playbook_folder is None:
            self.playbook_folder = self.playbook.parent
        elif isinstance(self.playbook_folder, str):
            self.playbook_folder = Path(self.playbook_folder)

        if self.max_concurrent_connections < 1:
            raise ConfigError(
                "Max concurrent connections needs to be greater than 0, "
                f"got {self.max_concurrent_connections}"
            )
        if self.connect_timeout <= 0:
            raise ConfigError(f"Connect timeout must be positive, got {self.connect_timeout}")
        if self.exec_timeout <= 0:
            raise ConfigError(f"Execution timeout must be positive, got {self.exec_timeout}")
