"""Batch scheduling of playbook runs across an inventory.

Hosts are processed in consecutive batches of ``max_concurrent_connections``.
Within a batch every host is dialed concurrently, each reachable host runs the
playbook in its own task, and all connections of the batch are closed before
the next batch starts. At no point are more than ``max_concurrent_connections``
SSH connections open.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Sequence

from .context import RunContext
from .exceptions import DialError, WormholeError
from .inventory import Inventory
from .logging import log_performance
from .playbook import Playbook, run_playbook
from .progress import NullProgressReporter, ProgressReporter
from .ssh import Connection, dial
from .types import HostOutcome, RunConfig, Server
from .utils import format_duration

logger = logging.getLogger(__name__)

Dialer = Callable[[Server, float], Awaitable[Connection]]


@dataclass
class RunResults:
    """Outcome of a playbook run across the inventory.

    Attributes:
        completed: Addresses of hosts that ran every action successfully
        failed: Addresses of hosts where an action failed
        unreachable: Addresses of hosts that could not be dialed
        errors: Error message per failed or unreachable host
        batches: Number of batches processed
        duration: Wall-clock duration of the run in seconds
        cancelled: Whether the run context was cancelled before the end

    Example:
        >>> results = RunResults(completed=["a:22"], failed=["b:22"])
        >>> results.is_success
        False
    """

    completed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    unreachable: list[str] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)
    batches: int = 0
    duration: float = 0.0
    cancelled: bool = False

    @classmethod
    def from_inventory(cls, inventory: Inventory, **kwargs: Any) -> "RunResults":
        """Collect the recorded outcomes of every host."""
        return cls(
            completed=inventory.completed(),
            failed=inventory.failed(),
            unreachable=inventory.unreachable(),
            errors={s.address: str(s.error) for s in inventory if s.error is not None},
            **kwargs,
        )

    @property
    def is_success(self) -> bool:
        """True if every host completed."""
        return not self.failed and not self.unreachable and not self.cancelled

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON output."""
        return {
            "completed": self.completed,
            "failed": self.failed,
            "unreachable": self.unreachable,
            "errors": self.errors,
            "batches": self.batches,
            "duration": round(self.duration, 3),
            "cancelled": self.cancelled,
        }

    def format_text(self) -> str:
        """Human-readable summary, one section per outcome."""

        def section(title: str, addresses: list[str]) -> list[str]:
            lines = [f"{title} ({len(addresses)}):"]
            for address in addresses:
                error = self.errors.get(address)
                lines.append(f"  {address}: {error}" if error else f"  {address}")
            return lines

        lines = section("Completed on servers", self.completed)
        if self.failed:
            lines += section("Failed on servers", self.failed)
        if self.unreachable:
            lines += section("Unreachable servers", self.unreachable)
        lines.append(f"Ran {self.batches} batch(es) in {format_duration(self.duration)}")
        return "\n".join(lines)


class BatchScheduler:
    """Runs a playbook across an inventory in bounded batches.

    Attributes:
        config: Run configuration (batch size, timeouts)
        dialer: Coroutine opening a connection to a host (defaults to ssh.dial)
        reporter: Progress reporter

    Example:
        >>> scheduler = BatchScheduler(RunConfig(max_concurrent_connections=5))
        >>> results = await scheduler.run(ctx, playbook, inventory)
    """

    def __init__(
        self,
        config: RunConfig,
        dialer: Dialer | None = None,
        reporter: ProgressReporter | None = None,
    ) -> None:
        self.config = config
        self.dialer = dialer or dial
        self.reporter = reporter or NullProgressReporter()

    async def run(self, ctx: RunContext, playbook: Playbook, inventory: Inventory) -> RunResults:
        """Run ``playbook`` on every host of ``inventory``.

        Outcomes are recorded on each host and aggregated once every batch
        has finished. Batches keep being processed after ``ctx`` is cancelled;
        their actions then fail as soon as they start.
        """
        batches = list(inventory.batches(self.config.max_concurrent_connections))
        total = len(batches)
        start_time = time.perf_counter()

        logger.info(
            f"Running {len(playbook)} task(s) on {len(inventory)} host(s) in {total} batch(es)"
        )
        self.reporter.on_run_start(len(inventory), len(playbook), total)

        for index, batch in enumerate(batches, start=1):
            self.reporter.on_batch_start(index, total, [server.address for server in batch])
            with log_performance(logger, f"Batch {index}/{total}", hosts=len(batch)):
                await self._run_batch(ctx, playbook, batch)

        pending = inventory.pending()
        if pending:
            logger.warning(f"No outcome recorded for: {', '.join(pending)}")

        results = RunResults.from_inventory(
            inventory,
            batches=total,
            duration=time.perf_counter() - start_time,
            cancelled=ctx.cancelled(),
        )
        self.reporter.on_run_complete(
            len(results.completed),
            len(results.failed),
            len(results.unreachable),
            results.duration,
        )
        return results

    async def _run_batch(self, ctx: RunContext, playbook: Playbook, batch: Sequence[Server]) -> None:
        connections = await self._dial_batch(batch)
        if not connections:
            logger.warning("No reachable hosts in batch, skipping")
            return

        try:
            with ctx.child() as batch_ctx:
                await asyncio.gather(
                    *[self._run_host(batch_ctx, conn, playbook) for conn in connections]
                )
        finally:
            await self._close_all(connections)

    async def _dial_batch(self, batch: Sequence[Server]) -> list[Connection]:
        results = await asyncio.gather(
            *[self.dialer(server, self.config.connect_timeout) for server in batch],
            return_exceptions=True,
        )

        connections = [result for result in results if isinstance(result, Connection)]
        interrupted = next(
            (r for r in results if isinstance(r, BaseException) and not isinstance(r, Exception)),
            None,
        )
        if interrupted is not None:
            await self._close_all(connections)
            raise interrupted

        for server, result in zip(batch, results):
            if not isinstance(result, Exception):
                continue
            error = result if isinstance(result, WormholeError) else DialError(server.address, result)
            logger.warning(f"Failed to connect to {server.address}: {error}")
            server.record_unreachable(error)
            self.reporter.on_host_unreachable(server.address, str(error))

        return connections

    async def _run_host(self, ctx: RunContext, conn: Connection, playbook: Playbook) -> None:
        server = conn.server
        start_time = time.perf_counter()
        try:
            await run_playbook(ctx, conn, self.config, playbook, self.reporter)
        except Exception as e:
            logger.exception(f"Playbook run failed on {conn.address}: {e}")
            if server.outcome is HostOutcome.PENDING:
                server.record_failure(e)

        self.reporter.on_host_complete(
            conn.address,
            server.outcome is HostOutcome.COMPLETED,
            time.perf_counter() - start_time,
            str(server.error) if server.error is not None else None,
        )

    async def _close_all(self, connections: list[Connection]) -> None:
        results = await asyncio.gather(
            *[conn.close() for conn in connections],
            return_exceptions=True,
        )
        for conn, result in zip(connections, results):
            if isinstance(result, Exception):
                logger.warning(f"Failed to close connection to {conn.address}: {result}")
