"""
define an abstract cellular Node,

owns the application layer, the RLC entity table, one MAC and one PHY entity
and sequences them in time:\n
every tick -> MAC clock, PHY clock\n
every 1 ms -> RLC timers, application layer
"""

import abc
import itertools
import logging
from typing import Optional, Sequence

import numpy as np

from nrisac.app.application import ApplicationLayer, ApplicationPacket, AppMetadata, TrafficModel
from nrisac.core.config import (
    LogicalChannelInfo,
    NodeLimits,
    PhyConfig,
    RLCChannelConfig,
    RLCEntityType,
    check_phy_config,
    check_position,
    symbols_per_ms,
)
from nrisac.core.errors import ConfigurationError, RLCEntityNotPresent, TooManyLogicalChannels
from nrisac.core.simulator import SimulationEntity
from nrisac.rlc import STAT_COLUMNS, AMEntity, RLCEntity, UMEntity

log = logging.getLogger(__name__)

MS_US = 1000  # microseconds per application window


class Node(SimulationEntity):
    """
    a gNB or UE node, see GNB and UE for the concrete wiring\n
    RLC entities live in a (rows x max_logical_channels) table: one row per
    UE on a gNB, a single row on a UE
    """

    _ids = itertools.count(1)
    IS_TERMINAL = False

    def __init__(
        self,
        name: str,
        position: Sequence[float],
        num_rows: int,
        max_applications: int,
        mac_entity,
        phy_entity,
        limits: Optional[NodeLimits] = None,
    ):
        super().__init__(name=name)
        self.id = next(Node._ids)
        self.limits = limits or NodeLimits()
        self.position = check_position(position, f"{name}.position")

        self.mac_entity = mac_entity
        self.phy_entity = phy_entity
        self.app_layer = ApplicationLayer(node_id=self.id, max_applications=max_applications)
        self.rlc_entities: list[list[Optional[RLCEntity]]] = [
            [None] * self.limits.max_logical_channels for _ in range(num_rows)
        ]

        # OFDM symbols elapsed in the current 1 ms window
        self.ms_timer = 0
        # us until the application layer must run again
        self.app_next_invoke_time = 0.0

        self.mac_entity.register_rlc_interface_fcn(self.send_rlc_pdus, self.receive_rlc_pdus)

    @property
    def rnti(self) -> int:
        return self.mac_entity.rnti

    def run(self):
        """runs the MAC and then the PHY of the node"""
        self.mac_entity.run()
        self.phy_entity.run()

    def add_application(self, rnti: int, lcid: int, app: TrafficModel):
        """
        attach a traffic model to logical channel lcid; on a gNB the traffic
        is downlink towards rnti, on a UE it is uplink towards the gNB (0)
        """
        destination = 0 if self.IS_TERMINAL else rnti
        self.app_layer.add_application(app, AppMetadata(priority_id=lcid, destination_id=destination))

    def _row_index(self, rnti: int) -> Optional[int]:
        if self.IS_TERMINAL:
            return 0
        if 1 <= rnti <= len(self.rlc_entities):
            return rnti - 1
        return None

    def configure_logical_channel(self, rnti: int, rlc_channel_config: RLCChannelConfig) -> RLCEntity:
        """
        create the RLC entity of a logical channel in the first free column
        of the row of rnti and register the channel with the MAC
        """
        row_idx = self._row_index(rnti)
        if row_idx is None:
            raise ConfigurationError(
                f"RNTI {rnti} is outside the {len(self.rlc_entities)} UE(s) of {self.name}"
            )
        row = self.rlc_entities[row_idx]

        entity_type = RLCEntityType(rlc_channel_config.entity_type)
        if self.IS_TERMINAL:
            entity_type = entity_type.for_terminal()
        # reassembly capacity is bounded by the number of gaps HARQ can leave
        config = rlc_channel_config.copy(
            rnti=rnti,
            entity_type=entity_type,
            max_reassembly_sdu=self.mac_entity.num_harq,
        )

        lcid = config.logical_channel_id
        if any(entity is not None and entity.logical_channel_id == lcid for entity in row):
            raise ConfigurationError(f"LCID {lcid} is already configured for RNTI {rnti} on {self.name}")
        try:
            col_idx = row.index(None)
        except ValueError:
            raise TooManyLogicalChannels(rnti, self.limits.max_logical_channels) from None

        if entity_type is RLCEntityType.AM:
            entity = AMEntity(config)
        else:
            entity = UMEntity(config)
        entity.register_app_receiver_fcn(self.app_layer.receive_packet)
        entity.register_mac_interface_fcn(self.mac_entity.update_buffer_status)
        row[col_idx] = entity

        self.mac_entity.add_logical_channel_info(LogicalChannelInfo.from_rlc_config(config, rnti), rnti)
        self.debug_log(f"configured {entity!r} at column {col_idx}")
        return entity

    def get_rlc_entity(self, rnti: int, lcid: int) -> Optional[RLCEntity]:
        """return the RLC entity of (rnti, lcid) or None, without side effects"""
        row_idx = self._row_index(rnti)
        if row_idx is None:
            return None
        for entity in self.rlc_entities[row_idx]:
            if entity is not None and entity.logical_channel_id == lcid:
                return entity
        return None

    def _require_rlc_entity(self, rnti: int, lcid: int) -> RLCEntity:
        entity = self.get_rlc_entity(rnti, lcid)
        if entity is None:
            raise RLCEntityNotPresent(rnti, lcid)
        return entity

    def enqueue_rlc_sdu(self, packet: ApplicationPacket):
        """route an application packet to the RLC entity of its logical channel"""
        rnti = self.rnti if self.IS_TERMINAL else packet.destination_id
        self._require_rlc_entity(rnti, packet.priority_id).enqueue_sdu(packet.data)

    def send_rlc_pdus(self, rnti: int, lcid: int, grant_size: int, remaining_grant: int) -> list[bytes]:
        """MAC pull: RLC PDUs of a logical channel fitting grant_size bytes"""
        return self._require_rlc_entity(rnti, lcid).send_pdu(grant_size, remaining_grant)

    def receive_rlc_pdus(self, rnti: int, lcid: int, rlc_pdu: bytes):
        """MAC push: a received RLC PDU of a logical channel"""
        self._require_rlc_entity(rnti, lcid).receive_pdu(rlc_pdu)

    def get_rlc_statistics(self, rnti: int) -> np.ndarray:
        """
        one row per active logical channel of rnti:
        [RNTI, LCID, 19 counters], see nrisac.rlc.STAT_COLUMNS
        """
        rows = []
        row_idx = self._row_index(rnti)
        if row_idx is not None:
            for entity in self.rlc_entities[row_idx]:
                if entity is None:
                    continue
                rows.append(np.concatenate(([rnti, entity.logical_channel_id], entity.get_statistics())))
        if not rows:
            return np.zeros((0, len(STAT_COLUMNS)), dtype=np.int64)
        return np.vstack(rows).astype(np.int64)

    def get_rlc_statistics_all(self) -> dict[int, np.ndarray]:
        if self.IS_TERMINAL:
            return {self.rnti: self.get_rlc_statistics(self.rnti)}
        return {rnti: self.get_rlc_statistics(rnti) for rnti in range(1, len(self.rlc_entities) + 1)}

    def get_tti_bytes(self) -> tuple[int, int]:
        """(throughput bytes, goodput bytes) of the TTI starting at the current symbol"""
        return self.mac_entity.get_tti_bytes()

    def advance_timer(self, tick_granularity: int):
        """
        advance the node clocks by tick_granularity OFDM symbols (1 for symbol
        based, 14 for slot based scheduling); every 1 ms the RLC timers are
        triggered and the application layer runs
        """
        self.mac_entity.advance_timer(tick_granularity)
        self.ms_timer += tick_granularity
        if self.ms_timer >= symbols_per_ms(self.mac_entity.scs):
            self._update_rlc_timer()
            self._run_app_layer()
            self.ms_timer = 0
        self.phy_entity.advance_timer(tick_granularity)
        self.current_tick += 1

    def get_buffer_status(self):
        """UL buffer status (bytes) on a UE, per-UE DL buffer status on a gNB"""
        return self.mac_entity.get_ue_buffer_status()

    def get_current_time(self) -> float:
        return self.phy_entity.get_current_time()

    def _update_rlc_timer(self):
        for row in self.rlc_entities:
            for entity in row:
                if entity is not None:
                    entity.handle_timer_trigger()

    def _run_app_layer(self):
        elapsed = 0.0
        # consume the 1 ms window in application-sized steps
        while elapsed + self.app_next_invoke_time < MS_US:
            elapsed += self.app_next_invoke_time
            self.app_next_invoke_time = self.app_layer.run(self.app_next_invoke_time, self.enqueue_rlc_sdu)
        # the leftover of the window, carried into the next one
        self.app_next_invoke_time = self.app_layer.run(MS_US - elapsed, self.enqueue_rlc_sdu)

    def configure_phy(self, phy_config: PhyConfig):
        """validate the carrier configuration and push it to the PHY and MAC"""
        try:
            cell_config, carrier_information = check_phy_config(phy_config)
        except ConfigurationError as e:
            log.error(f"{self.name}: invalid PHY configuration: {e}")
            raise
        self.phy_entity.set_cell_config(cell_config)
        self.phy_entity.set_carrier_information(carrier_information)
        self.mac_entity.set_cell_config(cell_config)
        self.mac_entity.set_carrier_information(carrier_information)

    @abc.abstractmethod
    def set_phy_interface(self):
        """wire the MAC and PHY callbacks"""
