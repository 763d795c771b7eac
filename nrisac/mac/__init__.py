"""
Mac Layer Module
"""

from nrisac.mac.entity import MacEntity, GNBMac, UEMac
from nrisac.mac.protocol import MacPduCodec, MAC_PDU_OVERHEAD
from nrisac.mac.scheduler import Scheduler, RoundRobinScheduler

__all__ = [
    "MacEntity",
    "GNBMac",
    "UEMac",
    "MacPduCodec",
    "MAC_PDU_OVERHEAD",
    "Scheduler",
    "RoundRobinScheduler",
]
