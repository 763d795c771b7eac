"""
gNB node: one RLC row and one application quota per UE of the cell
"""

import logging

from nrisac.core.config import GNBConfig
from nrisac.core.errors import ConfigurationError
from nrisac.core.node import Node
from nrisac.mac.entity import GNBMac
from nrisac.mac.scheduler import Scheduler
from nrisac.phy.passthrough import GNBPhy

log = logging.getLogger(__name__)


class GNB(Node):
    IS_TERMINAL = False

    def __init__(self, config: GNBConfig, mac_entity=None, phy_entity=None, name: str = "gNB"):
        try:
            config.validate()
        except ConfigurationError as e:
            log.error(f"{name}: invalid configuration: {e}")
            raise
        self.config = config
        limits = config.limits
        if mac_entity is None:
            mac_entity = GNBMac(config.num_ues, scs=config.scs, num_harq=config.num_harq, name=f"{name}.mac")
        if phy_entity is None:
            phy_entity = GNBPhy(scs=config.scs, name=f"{name}.phy")
        super().__init__(
            name=name,
            position=config.position,
            num_rows=config.num_ues,
            max_applications=limits.max_applications * config.num_ues,
            mac_entity=mac_entity,
            phy_entity=phy_entity,
            limits=limits,
        )
        self.set_phy_interface()

    @property
    def num_ues(self) -> int:
        return len(self.rlc_entities)

    def set_phy_interface(self):
        phy, mac = self.phy_entity, self.mac_entity
        mac.register_phy_interface_fcn(
            phy.tx_data_request, phy.rx_data_request, phy.dl_control_request, phy.ul_control_request
        )
        phy.register_mac_interface_fcn(mac.rx_indication, mac.srs_indication)
        phy.register_node_with_phy(self)

    def add_scheduler(self, scheduler: Scheduler):
        self.mac_entity.add_scheduler(scheduler)
