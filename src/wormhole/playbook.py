"""Playbook loading and per-host execution.

A playbook is an ordered list of tasks; a task is a name plus one or more
actions, run in the order they are written:

    - name: Install nginx
      apt:
        state: install
        pkg: [nginx]
    - name: Ship the site config
      file:
        src: files/site.conf
        dest: /etc/nginx/sites-enabled/site.conf
      service:
        name: nginx
        state: reload
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Iterator

import yaml

from .actions import Action, decode_action
from .context import RunContext
from .exceptions import PlaybookError, WormholeError
from .logging import get_logger
from .ssh import Connection
from .types import RunConfig

if TYPE_CHECKING:
    from .progress import ProgressReporter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Task:
    """A named group of actions.

    Attributes:
        name: Task name, used in logs and progress output
        actions: Actions in playbook order
    """

    name: str
    actions: tuple[Action, ...]


@dataclass(frozen=True)
class Playbook:
    """An ordered list of tasks, read-only once loaded.

    Attributes:
        tasks: Tasks in playbook order
        source: File the playbook was loaded from, if any
    """

    tasks: tuple[Task, ...]
    source: Path | None = None

    def __len__(self) -> int:
        return len(self.tasks)

    def __iter__(self) -> Iterator[Task]:
        return iter(self.tasks)

    @property
    def action_count(self) -> int:
        return sum(len(task.actions) for task in self.tasks)


def parse_task(raw: Any, index: int) -> Task:
    """Decode one task mapping.

    Args:
        raw: Parsed YAML value of the task
        index: 1-based task position, for error messages

    Raises:
        PlaybookError: If the task or one of its actions is invalid
    """
    if not isinstance(raw, dict):
        raise PlaybookError(f"task #{index} needs to be a mapping, got {type(raw).__name__}")

    name = raw.get("name")
    if not isinstance(name, str) or not name.strip():
        raise PlaybookError(f"task #{index}: 'name' field needs to be a non-empty string")

    actions = []
    for kind, body in raw.items():
        if kind == "name":
            continue
        try:
            actions.append(decode_action(str(kind), body))
        except PlaybookError as e:
            raise PlaybookError(f"task '{name}': {e}") from e

    if not actions:
        raise PlaybookError(f"task '{name}' has no actions")

    return Task(name=name, actions=tuple(actions))


def parse_playbook(data: Any, source: Path | None = None) -> Playbook:
    """Decode a parsed YAML document into a playbook.

    Raises:
        PlaybookError: If the document is not a list of valid tasks
    """
    if not isinstance(data, list):
        kind = "empty document" if data is None else type(data).__name__
        raise PlaybookError(f"playbook needs to be a list of tasks, got {kind}")

    tasks = tuple(parse_task(raw, index) for index, raw in enumerate(data, start=1))
    return Playbook(tasks=tasks, source=source)


def load_playbook(path: str | Path) -> Playbook:
    """Load and decode a playbook file.

    Args:
        path: Path to the YAML playbook

    Returns:
        The decoded playbook

    Raises:
        PlaybookError: If the file cannot be read, is not valid YAML, or does
            not describe a valid playbook

    Example:
        >>> playbook = load_playbook("playbooks/site.yaml")
        >>> [task.name for task in playbook]
        ['Install nginx', 'Ship the site config']
    """
    path = Path(path)
    try:
        content = path.read_text()
    except OSError as e:
        raise PlaybookError(f"failed to read playbook {path}: {e}", path=str(path)) from e

    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise PlaybookError(f"failed to parse playbook {path}: {e}", path=str(path)) from e

    try:
        playbook = parse_playbook(data, source=path)
    except PlaybookError as e:
        raise PlaybookError(f"invalid playbook {path}: {e}", path=str(path)) from e

    logger.debug(f"Loaded {len(playbook)} task(s) from {path}")
    return playbook


async def run_playbook(
    ctx: RunContext,
    conn: Connection,
    config: RunConfig,
    playbook: Playbook,
    reporter: "ProgressReporter | None" = None,
) -> bool:
    """Run every task of ``playbook`` on one host, stopping at the first failure.

    Each action gets its own child context bounded by the execution timeout,
    released as soon as the action returns. The host's outcome is recorded
    on its server before returning.

    Returns:
        True if every action succeeded, False if one failed
    """
    server = conn.server
    log = get_logger(__name__, host=conn.address)
    total = len(playbook)

    for index, task in enumerate(playbook, start=1):
        log.info(f"Running task [{index}/{total}]: {task.name}")
        if reporter is not None:
            reporter.on_task_start(conn.address, task.name, index, total)

        log.add_context(task=task.name)
        for action in task.actions:
            log.debug(f"Running '{action.kind}' action")
            log.trace(f"Action definition: {action!r}")
            try:
                with ctx.with_timeout(config.exec_timeout) as action_ctx:
                    await action.run(action_ctx, conn, config)
            except WormholeError as e:
                log.warning(f"Failed to run task '{task.name}': {e}")
                server.record_failure(e)
                return False
        log.remove_context("task")

    log.info("Completed all tasks")
    server.record_completed()
    return True
