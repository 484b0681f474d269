"""Progress reporting for wormhole runs.

Provides callback-based progress tracking for playbook runs, supporting a
human-readable rich console output and NDJSON events. Progress goes to stderr
so that the final summary on stdout stays machine-readable.
"""

import json
import sys
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from rich.console import Console
from rich.markup import escape


@dataclass
class ProgressEvent:
    """A progress event during a run.

    Attributes:
        event_type: Type of event (run_start, batch_start, task_start, ...)
        host: Host address, or "*" for run-wide events
        timestamp: When the event occurred
        details: Additional event-specific details
    """

    event_type: str
    host: str
    timestamp: str
    details: dict[str, Any]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result = {
            "event": self.event_type,
            "host": self.host,
            "timestamp": self.timestamp,
        }
        result.update(self.details)
        return result

    def to_json(self) -> str:
        """Convert to JSON string (NDJSON format)."""
        return json.dumps(self.to_dict())


class ProgressReporter(ABC):
    """Base class for progress reporters."""

    @abstractmethod
    def on_run_start(self, total_hosts: int, total_tasks: int, batches: int) -> None:
        """Called before the first batch is dialed."""

    @abstractmethod
    def on_batch_start(self, index: int, total: int, hosts: list[str]) -> None:
        """Called when a batch of hosts starts."""

    @abstractmethod
    def on_host_unreachable(self, host: str, error: str) -> None:
        """Called when a host of the current batch could not be dialed."""

    @abstractmethod
    def on_task_start(self, host: str, task: str, index: int, total: int) -> None:
        """Called when a host starts a task."""

    @abstractmethod
    def on_host_complete(
        self,
        host: str,
        success: bool,
        duration: float,
        error: str | None = None,
    ) -> None:
        """Called when a host finishes its playbook (successfully or not)."""

    @abstractmethod
    def on_run_complete(
        self,
        completed: int,
        failed: int,
        unreachable: int,
        duration: float,
    ) -> None:
        """Called after the last batch."""


class JsonProgressReporter(ProgressReporter):
    """Reports progress as NDJSON (newline-delimited JSON) events."""

    def __init__(self, output: Any = None) -> None:
        """Initialize JSON progress reporter.

        Args:
            output: Output stream (defaults to sys.stderr to not pollute stdout)
        """
        self.output = output or sys.stderr

    def _emit(self, event_type: str, host: str = "*", **details: Any) -> None:
        event = ProgressEvent(
            event_type=event_type,
            host=host,
            timestamp=datetime.now(timezone.utc).isoformat(),
            details=details,
        )
        print(event.to_json(), file=self.output, flush=True)

    def on_run_start(self, total_hosts: int, total_tasks: int, batches: int) -> None:
        self._emit("run_start", total_hosts=total_hosts, total_tasks=total_tasks, batches=batches)

    def on_batch_start(self, index: int, total: int, hosts: list[str]) -> None:
        self._emit("batch_start", batch=index, batches=total, hosts=hosts)

    def on_host_unreachable(self, host: str, error: str) -> None:
        self._emit("host_unreachable", host, error=error)

    def on_task_start(self, host: str, task: str, index: int, total: int) -> None:
        self._emit("task_start", host, task=task, index=index, total=total)

    def on_host_complete(
        self,
        host: str,
        success: bool,
        duration: float,
        error: str | None = None,
    ) -> None:
        details: dict[str, Any] = {"success": success, "duration": round(duration, 3)}
        if error:
            details["error"] = error
        self._emit("host_complete", host, **details)

    def on_run_complete(
        self,
        completed: int,
        failed: int,
        unreachable: int,
        duration: float,
    ) -> None:
        self._emit(
            "run_complete",
            completed=completed,
            failed=failed,
            unreachable=unreachable,
            duration=round(duration, 3),
        )


class TextProgressReporter(ProgressReporter):
    """Reports progress as human-readable text on a rich console."""

    def __init__(self, output: Any = None) -> None:
        """Initialize text progress reporter.

        Args:
            output: Output stream (defaults to sys.stderr)
        """
        self.console = Console(file=output or sys.stderr, highlight=False)
        self.finished = 0
        self.total = 0

    def _emit(self, message: str) -> None:
        self.console.print(message)

    def on_run_start(self, total_hosts: int, total_tasks: int, batches: int) -> None:
        self.total = total_hosts
        self.finished = 0
        self._emit(
            f"Running {total_tasks} task(s) on {total_hosts} host(s) in {batches} batch(es)..."
        )

    def on_batch_start(self, index: int, total: int, hosts: list[str]) -> None:
        self._emit(f"[bold]Batch {index}/{total}[/bold]: {escape(', '.join(hosts))}")

    def on_host_unreachable(self, host: str, error: str) -> None:
        self.finished += 1
        self._emit(
            f"  {escape(f'[{self.finished}/{self.total}]')} [yellow]![/yellow] {escape(host)} "
            f"UNREACHABLE: {escape(error)}"
        )

    def on_task_start(self, host: str, task: str, index: int, total: int) -> None:
        self._emit(f"  [dim]{escape(host)} {escape(f'[{index}/{total}]')} {escape(task)}[/dim]")

    def on_host_complete(
        self,
        host: str,
        success: bool,
        duration: float,
        error: str | None = None,
    ) -> None:
        self.finished += 1
        prefix = escape(f"[{self.finished}/{self.total}]")
        if success:
            self._emit(f"  {prefix} [green]✓[/green] {escape(host)} ({duration:.2f}s)")
        else:
            error_msg = f": {escape(error)}" if error else ""
            self._emit(f"  {prefix} [red]✗[/red] {escape(host)} FAILED{error_msg}")

    def on_run_complete(
        self,
        completed: int,
        failed: int,
        unreachable: int,
        duration: float,
    ) -> None:
        total = completed + failed + unreachable
        if failed == 0 and unreachable == 0:
            self._emit(f"Completed: {completed}/{total} succeeded in {duration:.2f}s")
        else:
            self._emit(
                f"Completed: {completed}/{total} succeeded, {failed} failed, "
                f"{unreachable} unreachable in {duration:.2f}s"
            )


class NullProgressReporter(ProgressReporter):
    """No-op progress reporter that discards all events."""

    def on_run_start(self, total_hosts: int, total_tasks: int, batches: int) -> None:
        pass

    def on_batch_start(self, index: int, total: int, hosts: list[str]) -> None:
        pass

    def on_host_unreachable(self, host: str, error: str) -> None:
        pass

    def on_task_start(self, host: str, task: str, index: int, total: int) -> None:
        pass

    def on_host_complete(
        self,
        host: str,
        success: bool,
        duration: float,
        error: str | None = None,
    ) -> None:
        pass

    def on_run_complete(
        self,
        completed: int,
        failed: int,
        unreachable: int,
        duration: float,
    ) -> None:
        pass


def create_progress_reporter(
    enabled: bool,
    json_format: bool = False,
    output: Any = None,
) -> ProgressReporter:
    """Create a progress reporter.

    Args:
        enabled: Whether progress reporting is enabled
        json_format: Use JSON format instead of text
        output: Output stream (defaults to sys.stderr)

    Returns:
        ProgressReporter instance
    """
    if not enabled:
        return NullProgressReporter()

    if json_format:
        return JsonProgressReporter(output)
    return TextProgressReporter(output)
