"""Manage Debian packages with apt-get."""

import shlex
from dataclasses import dataclass, field

from ..context import RunContext
from ..exceptions import ActionError, WormholeError
from ..ssh import Connection, Session
from ..types import RunConfig
from .base import Action, as_str, as_str_list, decoder

APT_STATES = frozenset({"install", "remove", "purge", "upgrade"})


def as_apt_state(value: object) -> str:
    state = as_str(value)
    if state not in APT_STATES:
        raise ValueError(f"expected one of {', '.join(sorted(APT_STATES))}, got {state!r}")
    return state


@dataclass(frozen=True)
class AptAction(Action):
    """Refresh package lists, then apply ``state`` to each package in order.

    Attributes:
        state: apt-get verb (install, remove, purge, upgrade)
        pkg: Package names
    """

    kind = "apt"

    state: str = field(metadata=decoder(as_apt_state))
    pkg: tuple[str, ...] = field(metadata=decoder(as_str_list))

    def commands(self) -> list[str]:
        """Remote command lines this action issues, in order."""
        return ["apt-get update"] + [
            f"apt-get {self.state} -y {shlex.quote(pkg)}" for pkg in self.pkg
        ]

    async def run(self, ctx: RunContext, conn: Connection, config: RunConfig) -> None:
        update, *installs = self.commands()

        async def start_update(sess: Session) -> None:
            await sess.start(update)

        try:
            await conn.exec(ctx, True, start_update)
        except WormholeError as e:
            raise ActionError(f"failed to update package lists: {e}") from e

        for pkg, command in zip(self.pkg, installs):

            async def start_install(sess: Session, command: str = command) -> None:
                await sess.start(command)

            try:
                await conn.exec(ctx, True, start_install)
            except WormholeError as e:
                raise ActionError(f"failed to {self.state} package {pkg!r}: {e}") from e
