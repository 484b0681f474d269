"""Tests for inventory loading."""

from pathlib import Path

import pytest

from wormhole.exceptions import InventoryError
from wormhole.inventory import Inventory, load_inventory, parse_inventory
from wormhole.types import Server

FIXTURES = Path(__file__).parent / "fixtures"


class TestLoadInventory:
    """Tests for load_inventory()."""

    def test_list_format(self):
        """Test the native list of hosts."""
        inventory = load_inventory(FIXTURES / "inventory.yaml")

        assert inventory.addresses() == ["10.0.0.1:22", "10.0.0.2:2222"]
        assert inventory[0].username == "deploy"
        assert inventory[0].password == "secret"

    def test_group_format(self):
        """Test Ansible-style groups are flattened in order without duplicates."""
        inventory = load_inventory(FIXTURES / "inventory_groups.yaml")

        assert inventory.addresses() == ["10.0.0.1:22", "10.0.0.2:2222", "10.0.0.3:22"]
        assert inventory[1].username == "deploy"
        assert inventory[1].password == "secret"
        assert inventory[2].username == "postgres"
        assert inventory[2].password == ""

    def test_missing_file(self, tmp_path):
        """Test an unreadable file is reported."""
        with pytest.raises(InventoryError, match="failed to read inventory"):
            load_inventory(tmp_path / "missing.yaml")

    def test_invalid_yaml(self, tmp_path):
        """Test invalid YAML is reported."""
        path = tmp_path / "inventory.yaml"
        path.write_text("- host: [unclosed\n")

        with pytest.raises(InventoryError, match="failed to parse inventory"):
            load_inventory(path)


class TestParseInventory:
    """Tests for parse_inventory()."""

    def test_empty(self):
        """Test an inventory without hosts is rejected."""
        with pytest.raises(InventoryError, match="No hosts loaded"):
            parse_inventory([])

    def test_unknown_keys(self):
        """Test unknown host fields are rejected."""
        with pytest.raises(InventoryError, match="host #1 has invalid keys: user"):
            parse_inventory([{"host": "gondor", "user": "isildur"}])

    def test_missing_host(self):
        """Test every entry needs a host."""
        with pytest.raises(InventoryError, match="'host' field needs to be a non-empty string"):
            parse_inventory([{"username": "isildur"}])

    @pytest.mark.parametrize("port", ["ssh", 70000, True])
    def test_invalid_port(self, port):
        """Test ports must be integers in range."""
        with pytest.raises(InventoryError, match="port"):
            parse_inventory([{"host": "gondor", "port": port}])

    def test_scalar_document(self):
        """Test a scalar document is rejected."""
        with pytest.raises(InventoryError, match="list of hosts or a mapping of groups"):
            parse_inventory("gondor")


class TestInventory:
    """Tests for the Inventory collection."""

    def test_batches(self):
        """Test hosts are sliced in order."""
        inventory = Inventory([Server(f"host{i}") for i in range(5)])

        batches = [[s.host for s in batch] for batch in inventory.batches(2)]

        assert batches == [["host0", "host1"], ["host2", "host3"], ["host4"]]

    def test_outcome_views(self):
        """Test hosts are listed by recorded outcome."""
        done, broken, away, waiting = (Server(name) for name in ("a", "b", "c", "d"))
        done.record_completed()
        broken.record_failure(RuntimeError("boom"))
        away.record_unreachable(RuntimeError("no route"))
        inventory = Inventory([done, broken, away, waiting])

        assert inventory.completed() == ["a:22"]
        assert inventory.failed() == ["b:22"]
        assert inventory.unreachable() == ["c:22"]
        assert inventory.pending() == ["d:22"]
        assert len(inventory) == 4
