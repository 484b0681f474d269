"""Manage system services."""

import shlex
from dataclasses import dataclass, field

from ..context import RunContext
from ..exceptions import ActionError, WormholeError
from ..ssh import Connection, Session
from ..types import RunConfig
from .base import Action, as_str, decoder


@dataclass(frozen=True)
class ServiceAction(Action):
    """Run ``service <name> <state>`` (start, stop, restart, reload, ...)."""

    kind = "service"

    name: str = field(metadata=decoder(as_str))
    state: str = field(metadata=decoder(as_str))

    def command(self) -> str:
        return f"service {shlex.quote(self.name)} {shlex.quote(self.state)}"

    async def run(self, ctx: RunContext, conn: Connection, config: RunConfig) -> None:
        async def start(sess: Session) -> None:
            await sess.start(self.command())

        try:
            await conn.exec(ctx, True, start)
        except WormholeError as e:
            raise ActionError(f"failed to {self.state} service {self.name!r}: {e}") from e
