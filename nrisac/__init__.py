"""
nrisac - node and protocol stack kernel of a 5G NR RAN + ISAC system level
simulator
"""

from nrisac.core.config import (
    FDD,
    TDD,
    GNBConfig,
    NodeLimits,
    PhyConfig,
    RLCChannelConfig,
    RLCEntityType,
    UEConfig,
)
from nrisac.core.simulator import SimulationEngine, run_parallel
from nrisac.nodes import GNB, UE
from nrisac.phy.distribution import PacketDistribution, setup_packet_distribution

__version__ = "0.1.0"

__all__ = [
    "FDD",
    "TDD",
    "GNBConfig",
    "NodeLimits",
    "PhyConfig",
    "RLCChannelConfig",
    "RLCEntityType",
    "UEConfig",
    "SimulationEngine",
    "run_parallel",
    "GNB",
    "UE",
    "PacketDistribution",
    "setup_packet_distribution",
]
