"""Concurrency utilities for mongo_sandbox."""

from mongo_sandbox.concurrency.ports import PortRegistry, find_free_port, get_port_registry
from mongo_sandbox.concurrency.transition import Transition

__all__ = ["PortRegistry", "Transition", "find_free_port", "get_port_registry"]
