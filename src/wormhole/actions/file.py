"""Copy a local file to the remote host."""

import logging
import os
import shlex
from dataclasses import dataclass, field

from ..context import RunContext
from ..exceptions import ActionError, WormholeError
from ..ssh import Connection, Session
from ..transfer import normalize_mode, receiver_command, send_file
from ..types import RunConfig
from .base import Action, as_str, decoder

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FileAction(Action):
    """Copy ``src`` (relative to the playbook folder) to ``dest``.

    The file is streamed through the scp receiver without a terminal, since
    terminal echo and newline translation would corrupt the stream. Ownership
    is set afterwards by a separate ``chown`` that runs with a terminal so it
    can be interrupted.

    Attributes:
        src: Source path, relative to the playbook folder
        dest: Destination path on the remote host
        owner: Owner to set on dest (optional)
        group: Group to set on dest (optional)
        mode: Octal file mode (default 0644)
    """

    kind = "file"

    src: str = field(metadata=decoder(as_str))
    dest: str = field(metadata=decoder(as_str))
    owner: str = field(default="", metadata=decoder(as_str))
    group: str = field(default="", metadata=decoder(as_str))
    mode: str = field(default="", metadata=decoder(as_str))

    def ownership(self) -> str:
        """``owner:group`` argument for chown, or an empty string."""
        if self.owner and self.group:
            return f"{self.owner}:{self.group}"
        if self.owner:
            return self.owner
        if self.group:
            return f":{self.group}"
        return ""

    async def run(self, ctx: RunContext, conn: Connection, config: RunConfig) -> None:
        try:
            mode = normalize_mode(self.mode)
        except WormholeError as e:
            raise ActionError(f"failed to copy file {self.src!r}: {e}") from e

        source_path = config.playbook_folder / self.src
        try:
            source = source_path.open("rb")
        except OSError as e:
            raise ActionError(f"failed to copy file {self.src!r}: failed to open source file: {e}") from e

        with source:
            try:
                size = os.fstat(source.fileno()).st_size
            except OSError as e:
                raise ActionError(
                    f"failed to copy file {self.src!r}: failed to get source file info: {e}"
                ) from e

            async def start_transfer(sess: Session):
                await sess.start(receiver_command(self.dest))
                return send_file(sess, source, size, self.dest, mode)

            try:
                await conn.exec(ctx, False, start_transfer)
            except WormholeError as e:
                raise ActionError(f"failed to copy file {self.src!r}: {e}") from e

        logger.debug(f"Copied {self.src} to {conn.address}:{self.dest} ({size} bytes)")

        ownership = self.ownership()
        if not ownership:
            return

        async def start_chown(sess: Session) -> None:
            await sess.start(f"chown {shlex.quote(ownership)} {shlex.quote(self.dest)}")

        try:
            await conn.exec(ctx, True, start_chown)
        except WormholeError as e:
            raise ActionError(f"failed to set the file owner on {self.dest!r} to {ownership}: {e}") from e
