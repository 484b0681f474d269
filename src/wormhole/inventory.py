"""Inventory loading for wormhole.

Two YAML layouts are accepted. The native one is a list of hosts:

    - host: 10.0.0.1
      port: 22
      username: deploy
      password: secret

Ansible-style group inventories are flattened into the same list, in file
order, keeping the first occurrence of each host:

    webservers:
      hosts:
        web01:
          ansible_host: 10.0.0.1
          ansible_user: deploy
          ansible_password: secret
"""

import logging
from collections.abc import Sequence
from pathlib import Path
from typing import Any, Callable, Iterator

import yaml

from .exceptions import InventoryError
from .types import HostOutcome, Server
from .utils import chunk

logger = logging.getLogger(__name__)

HOST_FIELDS = frozenset({"host", "port", "username", "password"})

ANSIBLE_FIELDS = {
    "ansible_host": "host",
    "ansible_port": "port",
    "ansible_user": "username",
    "ansible_password": "password",
}


class Inventory(Sequence[Server]):
    """Ordered collection of target hosts.

    Example:
        >>> inventory = Inventory([Server("gondor"), Server("rohan")])
        >>> [len(batch) for batch in inventory.batches(1)]
        [1, 1]
    """

    def __init__(self, servers: list[Server] | None = None) -> None:
        self.servers: list[Server] = list(servers or [])

    def __getitem__(self, index):
        return self.servers[index]

    def __len__(self) -> int:
        return len(self.servers)

    def __iter__(self) -> Iterator[Server]:
        return iter(self.servers)

    def __repr__(self) -> str:
        return f"Inventory({[server.address for server in self.servers]!r})"

    def batches(self, size: int) -> Iterator[Sequence[Server]]:
        """Yield consecutive host slices of at most ``size`` hosts."""
        return chunk(self.servers, size)

    def addresses(self, predicate: Callable[[Server], bool] | None = None) -> list[str]:
        """Addresses of the hosts matching ``predicate`` (all hosts if None)."""
        return [s.address for s in self.servers if predicate is None or predicate(s)]

    def _with_outcome(self, outcome: HostOutcome) -> list[str]:
        return self.addresses(lambda s: s.outcome is outcome)

    def completed(self) -> list[str]:
        return self._with_outcome(HostOutcome.COMPLETED)

    def failed(self) -> list[str]:
        return self._with_outcome(HostOutcome.FAILED)

    def unreachable(self) -> list[str]:
        return self._with_outcome(HostOutcome.UNREACHABLE)

    def pending(self) -> list[str]:
        return self._with_outcome(HostOutcome.PENDING)


def _port(value: Any, where: str) -> int:
    if value is None:
        return 0
    if isinstance(value, bool):
        raise InventoryError(f"{where}: port needs to be an integer, got {value!r}")
    try:
        port = int(value)
    except (TypeError, ValueError):
        raise InventoryError(f"{where}: port needs to be an integer, got {value!r}") from None
    if not 0 <= port <= 65535:
        raise InventoryError(f"{where}: port {port} is out of range")
    return port


def _text(value: Any) -> str:
    return "" if value is None else str(value)


def _server_from_entry(entry: Any, index: int) -> Server:
    where = f"host #{index}"
    if not isinstance(entry, dict):
        raise InventoryError(f"{where} needs to be a mapping, got {type(entry).__name__}")

    invalid = sorted(str(key) for key in entry if key not in HOST_FIELDS)
    if invalid:
        raise InventoryError(f"{where} has invalid keys: {', '.join(invalid)}")

    host = entry.get("host")
    if not isinstance(host, str) or not host.strip():
        raise InventoryError(f"{where}: 'host' field needs to be a non-empty string")

    return Server(
        host=host,
        port=_port(entry.get("port"), where),
        username=_text(entry.get("username")),
        password=_text(entry.get("password")),
    )


def _servers_from_groups(data: dict[Any, Any]) -> list[Server]:
    servers: list[Server] = []
    seen: set[str] = set()

    for group_name, group_data in data.items():
        if not isinstance(group_data, dict):
            continue
        hosts = group_data.get("hosts")
        if not isinstance(hosts, dict):
            continue
        group_vars = group_data.get("vars") if isinstance(group_data.get("vars"), dict) else {}

        for host_name, host_data in hosts.items():
            values = {**group_vars, **(host_data if isinstance(host_data, dict) else {})}
            fields = {
                target: values[source]
                for source, target in ANSIBLE_FIELDS.items()
                if source in values
            }
            server = Server(
                host=_text(fields.get("host", host_name)),
                port=_port(fields.get("port"), f"host {host_name!r} in group {group_name!r}"),
                username=_text(fields.get("username")),
                password=_text(fields.get("password")),
            )
            if server.address in seen:
                continue
            seen.add(server.address)
            servers.append(server)

    return servers


def parse_inventory(data: Any) -> Inventory:
    """Build an inventory from a parsed YAML document.

    Raises:
        InventoryError: If the document holds no hosts or an invalid entry
    """
    if isinstance(data, list):
        servers = [_server_from_entry(entry, index) for index, entry in enumerate(data, start=1)]
    elif isinstance(data, dict):
        servers = _servers_from_groups(data)
    elif data is None:
        servers = []
    else:
        raise InventoryError(
            f"inventory needs to be a list of hosts or a mapping of groups, got {type(data).__name__}"
        )

    if not servers:
        raise InventoryError("No hosts loaded from inventory")
    return Inventory(servers)


def load_inventory(path: str | Path) -> Inventory:
    """Load an inventory file.

    Args:
        path: Path to the YAML inventory

    Returns:
        Inventory with hosts in file order

    Raises:
        InventoryError: If the file cannot be read or parsed, or holds no
            valid hosts

    Example:
        >>> inventory = load_inventory("inventory.yaml")
        >>> inventory.addresses()
        ['10.0.0.1:22', '10.0.0.2:2222']
    """
    path = Path(path)
    try:
        content = path.read_text()
    except OSError as e:
        raise InventoryError(f"failed to read inventory {path}: {e}", path=str(path)) from e

    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise InventoryError(f"failed to parse inventory {path}: {e}", path=str(path)) from e

    try:
        inventory = parse_inventory(data)
    except InventoryError as e:
        raise InventoryError(f"invalid inventory {path}: {e}", path=str(path)) from e

    logger.debug(f"Loaded {len(inventory)} host(s) from {path}")
    return inventory
