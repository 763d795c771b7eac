"""
Physical Layer Module
"""

from nrisac.phy.distribution import (
    InBandPacket,
    OutOfBandPacket,
    PacketDistribution,
    ReceiverInfo,
    setup_packet_distribution,
)
from nrisac.phy.passthrough import GNBPhy, PassThroughPhy, RxIndicationInfo, UEPhy

__all__ = [
    "InBandPacket",
    "OutOfBandPacket",
    "PacketDistribution",
    "ReceiverInfo",
    "setup_packet_distribution",
    "PassThroughPhy",
    "GNBPhy",
    "UEPhy",
    "RxIndicationInfo",
]
