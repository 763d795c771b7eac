"""
UE node: a single RLC row towards the serving gNB
"""

import logging

from nrisac.core.config import UEConfig
from nrisac.core.errors import ConfigurationError
from nrisac.core.node import Node
from nrisac.mac.entity import UEMac
from nrisac.phy.passthrough import UEPhy

log = logging.getLogger(__name__)


class UE(Node):
    IS_TERMINAL = True

    def __init__(self, config: UEConfig, mac_entity=None, phy_entity=None, name: str = None):
        name = name or f"UE-{config.rnti}"
        try:
            config.validate()
        except ConfigurationError as e:
            log.error(f"{name}: invalid configuration: {e}")
            raise
        self.config = config
        if mac_entity is None:
            mac_entity = UEMac(config.rnti, scs=config.scs, num_harq=config.num_harq, name=f"{name}.mac")
        if phy_entity is None:
            phy_entity = UEPhy(config.rnti, scs=config.scs, name=f"{name}.phy")
        super().__init__(
            name=name,
            position=config.position,
            num_rows=1,
            max_applications=config.limits.max_applications,
            mac_entity=mac_entity,
            phy_entity=phy_entity,
            limits=config.limits,
        )
        # line of sight towards the serving gNB
        self.los_condition = True
        self.set_phy_interface()

    def set_phy_interface(self):
        phy, mac = self.phy_entity, self.mac_entity
        mac.register_phy_interface_fcn(
            phy.tx_data_request, phy.rx_data_request, phy.dl_control_request, phy.ul_control_request
        )
        phy.register_mac_interface_fcn(mac.rx_indication, mac.csirs_indication)
        phy.register_node_with_phy(self)
