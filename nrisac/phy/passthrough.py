"""
Pass-through Physical Layer Entities

no waveform processing: MAC PDUs travel through the packet distribution hub
as unencoded in-band packets, channel quality is derived from the distance
between the UE and its gNB
"""

import logging
import weakref
from collections import deque
from dataclasses import dataclass
from typing import Callable, Optional

import numpy as np

from nrisac.core.config import CarrierInformation, CellConfig, SYMBOLS_PER_SLOT, check_scs
from nrisac.core.simulator import SimulationEntity
from nrisac.phy.distribution import DL, UL, InBandPacket

log = logging.getLogger(__name__)

# control PDU types of dl_control_request / ul_control_request
CSIRS_PDU = 0
SRS_PDU = 1

# (distance to gNB in m, highest achievable CQI)
CQI_VS_DISTANCE = (
    (200, 15),
    (500, 12),
    (800, 10),
    (1000, 8),
    (1200, 7),
)


def cqi_for_distance(distance: float) -> int:
    for limit, cqi in CQI_VS_DISTANCE:
        if distance < limit:
            return cqi
    return CQI_VS_DISTANCE[-1][1]


@dataclass(frozen=True)
class RxIndicationInfo:
    rnti: int
    tbs: int  # bytes


class PassThroughPhy(SimulationEntity):
    TX_DIRECTION = DL
    TX_POWER = 0.0  # dBm

    def __init__(self, scs: int = 15, name: str = "phy"):
        super().__init__(name)
        self.scs = check_scs(scs)
        self.current_symbol = 0
        self.current_slot = 0
        self.afn = 0  # absolute frame number

        self.cell_config = CellConfig()
        self.carrier_information: Optional[CarrierInformation] = None

        self.rx_indication_fcn: Optional[Callable] = None
        self.measurement_fcn: Optional[Callable] = None
        self.in_band_tx_fcn: Optional[Callable[[InBandPacket], None]] = None
        self._node = None

        # (rnti, mac pdu) loaded by the MAC for the current symbol
        self.tx_queue: list[tuple[int, bytes]] = []
        self.rx_buffer: dict[int, deque[InBandPacket]] = {}
        self.rx_requests: dict[int, deque[int]] = {}

        self.stats = {"tx_packets": 0, "rx_packets": 0, "rx_dropped": 0}

    @property
    def slots_per_frame(self) -> int:
        return 10 * self.scs // 15

    def set_cell_config(self, cell_config: CellConfig):
        self.cell_config = cell_config

    def set_carrier_information(self, carrier_information: CarrierInformation):
        self.carrier_information = carrier_information
        self.scs = check_scs(carrier_information.subcarrier_spacing)

    def register_mac_interface_fcn(self, rx_indication_fcn: Callable, measurement_fcn: Optional[Callable] = None):
        """
        rx_indication_fcn(mac_pdu, crc_flag, RxIndicationInfo) receives decoded
        data, measurement_fcn receives channel quality (SRS at the gNB, CSI-RS
        at the UE)
        """
        self.rx_indication_fcn = rx_indication_fcn
        self.measurement_fcn = measurement_fcn

    def register_in_band_tx_fcn(self, tx_fcn: Callable[[InBandPacket], None]):
        self.in_band_tx_fcn = tx_fcn

    def register_node_with_phy(self, node):
        self._node = weakref.ref(node)

    @property
    def node(self):
        return self._node() if self._node is not None else None

    @property
    def position(self) -> np.ndarray:
        node = self.node
        return np.zeros(3) if node is None else node.position

    def tx_data_request(self, rnti: int, mac_pdu: bytes):
        """load a MAC PDU for transmission on the next run"""
        self.tx_queue.append((rnti, mac_pdu))

    def rx_data_request(self, rnti: int, tbs: int):
        """expect a transport block of tbs bytes from / for rnti"""
        self.rx_requests.setdefault(rnti, deque()).append(tbs)

    def dl_control_request(self, pdu_type: int, pdu=None):
        pass

    def ul_control_request(self, pdu_type: int, pdu=None):
        pass

    def _accepts(self, packet: InBandPacket) -> bool:
        return packet.cell_id == self.cell_config.n_cell_id and packet.link_direction != self.TX_DIRECTION

    def store_reception(self, packet: InBandPacket):
        """hub intake, packets are handed to the MAC on the next run"""
        if not self._accepts(packet):
            return
        self.rx_buffer.setdefault(packet.rnti, deque()).append(packet)
        self._on_reception(packet)

    def _on_reception(self, packet: InBandPacket):
        pass

    def _tx_carrier_freq(self) -> Optional[float]:
        if self.carrier_information is None:
            return None
        if self.TX_DIRECTION == DL:
            return self.carrier_information.dl_freq
        return self.carrier_information.ul_freq

    def run(self):
        self._phy_tx()
        self._phy_rx()

    def _phy_tx(self):
        for rnti, mac_pdu in self.tx_queue:
            packet = InBandPacket(
                carrier_freq=self._tx_carrier_freq(),
                cell_id=self.cell_config.n_cell_id,
                rnti=rnti,
                data=mac_pdu,
                tx_power=self.TX_POWER,
                position=np.array(self.position, dtype=float),
                link_direction=self.TX_DIRECTION,
            )
            self.stats["tx_packets"] += 1
            if self.in_band_tx_fcn is not None:
                self.in_band_tx_fcn(packet)
        self.tx_queue.clear()

    def _phy_rx(self):
        for rnti, packets in self.rx_buffer.items():
            requests = self.rx_requests.get(rnti)
            while packets and requests:
                tbs = requests.popleft()
                packet = packets.popleft()
                self.stats["rx_packets"] += 1
                if self.rx_indication_fcn is not None:
                    self.rx_indication_fcn(packet.data, 0, RxIndicationInfo(rnti, tbs))
            if packets:
                self.debug_log(f"dropping {len(packets)} unscheduled packet(s) from RNTI {rnti}")
                self.stats["rx_dropped"] += len(packets)
                packets.clear()

    def advance_timer(self, num_symbols: int):
        """advance the clock by num_symbols OFDM symbols"""
        self.current_symbol = (self.current_symbol + num_symbols) % SYMBOLS_PER_SLOT
        if self.current_symbol == 0:
            self.current_slot = (self.current_slot + 1) % self.slots_per_frame
            if self.current_slot == 0:
                self.afn += 1
        self.current_tick += 1

    def get_current_time(self) -> float:
        """current time in microseconds"""
        slot_duration = 15 / self.scs  # ms
        return (
            self.afn * 10
            + self.current_slot * slot_duration
            + self.current_symbol * slot_duration / SYMBOLS_PER_SLOT
        ) * 1000


class GNBPhy(PassThroughPhy):
    TX_DIRECTION = DL
    TX_POWER = 46.0

    def __init__(self, scs: int = 15, name: str = "gnb_phy"):
        super().__init__(scs, name)
        self.srs_context: set[int] = set()
        self.ue_positions: dict[int, np.ndarray] = {}

    def ul_control_request(self, pdu_type: int, pdu=None):
        """pdu: RNTI of the UE whose SRS is measured"""
        if pdu_type == SRS_PDU:
            self.srs_context.add(pdu)

    def _on_reception(self, packet: InBandPacket):
        self.ue_positions[packet.rnti] = packet.position

    def _phy_rx(self):
        super()._phy_rx()
        for rnti in sorted(self.srs_context):
            ue_position = self.ue_positions.get(rnti)
            if ue_position is None or self.measurement_fcn is None:
                continue
            distance = float(np.linalg.norm(ue_position - self.position))
            self.measurement_fcn(rnti, cqi_for_distance(distance))
        self.srs_context.clear()


class UEPhy(PassThroughPhy):
    TX_DIRECTION = UL
    TX_POWER = 23.0

    def __init__(self, rnti: int, scs: int = 15, name: str = "ue_phy"):
        super().__init__(scs, name)
        self.rnti = rnti
        self.csirs_pending = False
        self.gnb_position = np.zeros(3)
        self.channel_quality_dl = CQI_VS_DISTANCE[0][1]

    def _accepts(self, packet: InBandPacket) -> bool:
        return super()._accepts(packet) and packet.rnti == self.rnti

    def _on_reception(self, packet: InBandPacket):
        self.gnb_position = packet.position

    def dl_control_request(self, pdu_type: int, pdu=None):
        if pdu_type == CSIRS_PDU:
            self.csirs_pending = True

    def _phy_rx(self):
        super()._phy_rx()
        if self.csirs_pending:
            self.csirs_pending = False
            distance = float(np.linalg.norm(self.position - self.gnb_position))
            self.channel_quality_dl = cqi_for_distance(distance)
            if self.measurement_fcn is not None:
                # rank 1, no precoding matrix
                self.measurement_fcn(1, None, self.channel_quality_dl)
