"""
gNB and UE nodes
"""

from nrisac.nodes.gnb import GNB
from nrisac.nodes.ue import UE

__all__ = ["GNB", "UE"]
