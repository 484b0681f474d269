"""Actions a playbook task can run on a host.

The set of action kinds is closed: every playbook key maps to one frozen
dataclass here, and :func:`decode_action` rejects anything else.

Example:
    action = decode_action("service", {"name": "nginx", "state": "restart"})
    await action.run(ctx, conn, config)
"""

from typing import Any

from ..exceptions import PlaybookError
from .apt import AptAction
from .base import Action
from .file import FileAction
from .service import ServiceAction
from .shell import ShellAction
from .validate import ValidateAction

__all__ = [
    "ACTION_KINDS",
    "Action",
    "AptAction",
    "FileAction",
    "ServiceAction",
    "ShellAction",
    "ValidateAction",
    "decode_action",
]

ACTION_KINDS: dict[str, type[Action]] = {
    action.kind: action
    for action in (FileAction, AptAction, ServiceAction, ShellAction, ValidateAction)
}


def decode_action(kind: str, raw: Any) -> Action:
    """Decode the playbook value under ``kind`` into an action.

    Raises:
        PlaybookError: If kind is unknown or raw does not fit the action
    """
    try:
        action_cls = ACTION_KINDS[kind]
    except KeyError:
        raise PlaybookError(f"unrecognised action: {kind}") from None
    return action_cls.from_raw(raw)
