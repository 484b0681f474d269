"""Action base class and field decoding.

Each action kind is a frozen dataclass. Its fields carry a ``decode``
converter in their metadata; :meth:`Action.from_raw` uses them to turn the
generic YAML value into a typed action, rejecting unknown and missing fields.
"""

from abc import ABC, abstractmethod
from dataclasses import MISSING, dataclass, fields
from typing import Any, Callable, ClassVar

from ..context import RunContext
from ..exceptions import PlaybookError
from ..ssh import Connection
from ..types import RunConfig
from ..utils import parse_duration


def as_str(value: Any) -> str:
    if isinstance(value, bool) or not isinstance(value, (str, int, float)):
        raise TypeError(f"expected a string, got {type(value).__name__}")
    return str(value)


def as_int(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"expected an integer, got {type(value).__name__}")
    return value


def as_str_list(value: Any) -> tuple[str, ...]:
    if isinstance(value, str):
        return (value,)
    if not isinstance(value, list):
        raise TypeError(f"expected a list of strings, got {type(value).__name__}")
    return tuple(as_str(item) for item in value)


def as_duration(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (str, int, float)):
        raise TypeError(f"expected a duration, got {type(value).__name__}")
    return parse_duration(value)


def decoder(convert: Callable[[Any], Any]) -> dict[str, Any]:
    """Field metadata attaching a decode converter."""
    return {"decode": convert}


@dataclass(frozen=True)
class Action(ABC):
    """A unit of work run against one host.

    Subclasses set ``kind`` to their playbook key and implement :meth:`run`,
    which returns normally on success and raises ``ActionError`` with a
    descriptive message on failure.
    """

    kind: ClassVar[str] = ""

    @abstractmethod
    async def run(self, ctx: RunContext, conn: Connection, config: RunConfig) -> None:
        """Run the action on ``conn``'s host.

        Raises:
            ActionError: If the action fails
        """

    @classmethod
    def from_raw(cls, raw: Any) -> "Action":
        """Decode an action from its raw playbook value.

        Raises:
            PlaybookError: On an empty body, unknown or missing fields, or
                values of the wrong type
        """
        if raw is None:
            raise PlaybookError("empty action")
        if not isinstance(raw, dict):
            raise PlaybookError(
                f"'{cls.kind}' action needs to be a mapping of fields, got {type(raw).__name__}"
            )

        known = {f.name: f for f in fields(cls)}
        invalid = sorted(str(key) for key in raw if key not in known)
        if invalid:
            raise PlaybookError(f"'{cls.kind}' action has invalid keys: {', '.join(invalid)}")

        values: dict[str, Any] = {}
        for name, f in known.items():
            if name not in raw:
                if f.default is MISSING and f.default_factory is MISSING:
                    raise PlaybookError(f"'{cls.kind}' action is missing required field '{name}'")
                continue
            convert = f.metadata.get("decode", as_str)
            try:
                values[name] = convert(raw[name])
            except (TypeError, ValueError) as e:
                raise PlaybookError(f"'{cls.kind}' action has invalid '{name}': {e}") from e

        return cls(**values)
