"""Run an arbitrary shell command line."""

from dataclasses import dataclass
from typing import Any

from ..context import RunContext
from ..exceptions import ActionError, PlaybookError, WormholeError
from ..ssh import Connection, Session
from ..types import RunConfig
from .base import Action


@dataclass(frozen=True)
class ShellAction(Action):
    """Run ``command`` on the remote host with a terminal attached.

    Written in playbooks as a plain string: ``shell: systemctl daemon-reload``.
    """

    kind = "shell"

    command: str

    @classmethod
    def from_raw(cls, raw: Any) -> "ShellAction":
        if raw is None:
            raise PlaybookError("empty action")
        if not isinstance(raw, str):
            raise PlaybookError(f"'shell' action needs to be a command string, got {type(raw).__name__}")
        if not raw.strip():
            raise PlaybookError("'shell' action needs a non-empty command")
        return cls(command=raw)

    async def run(self, ctx: RunContext, conn: Connection, config: RunConfig) -> None:
        async def start(sess: Session) -> None:
            await sess.start(self.command)

        try:
            await conn.exec(ctx, True, start)
        except WormholeError as e:
            raise ActionError(f"failed to run {self.command!r}: {e}") from e
