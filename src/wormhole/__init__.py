"""wormhole - push-based configuration management over SSH.

Runs an ordered playbook of tasks (file copies, package management, service
control, shell commands, HTTP validation) against every host of an inventory,
a bounded number of hosts at a time.

Quick Start:
    wormhole run site.yaml -i inventory.yaml -m 5
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
