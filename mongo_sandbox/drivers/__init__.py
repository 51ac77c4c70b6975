"""Driver layer - collaborator abstraction."""

from mongo_sandbox.drivers.base import (
    ClientHandle,
    CollectionHandle,
    Connector,
    Installer,
    Topology,
    TopologyConfig,
    TopologyFactory,
    derive_data_directory,
)
from mongo_sandbox.drivers.installer import MongoDBInstaller
from mongo_sandbox.drivers.topology import MongodTopology

__all__ = [
    "ClientHandle",
    "CollectionHandle",
    "Connector",
    "Installer",
    "MongoDBInstaller",
    "MongodTopology",
    "Topology",
    "TopologyConfig",
    "TopologyFactory",
    "derive_data_directory",
]
