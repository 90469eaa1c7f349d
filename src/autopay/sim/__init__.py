"""In-process simulation of the confidential ledger, gateway and oracle."""

from autopay.sim.network import (
    DEFAULT_SIM_CONTRACT,
    SimulatedEncryptionGateway,
    SimulatedLedger,
    SimulatedNetwork,
    SimulatedOracle,
    SimulatedPendingTx,
)

__all__ = [
    "DEFAULT_SIM_CONTRACT",
    "SimulatedEncryptionGateway",
    "SimulatedLedger",
    "SimulatedNetwork",
    "SimulatedOracle",
    "SimulatedPendingTx",
]
