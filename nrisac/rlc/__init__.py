"""
RLC Layer Module
"""

from nrisac.rlc.entity import RLCEntity, RLCBufferStatus, STAT_NAMES, STAT_COLUMNS
from nrisac.rlc.um import UMEntity
from nrisac.rlc.am import AMEntity

__all__ = [
    "RLCEntity",
    "RLCBufferStatus",
    "UMEntity",
    "AMEntity",
    "STAT_NAMES",
    "STAT_COLUMNS",
]
