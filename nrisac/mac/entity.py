"""
MAC entities of the gNB and the UE

the gNB MAC schedules both directions at every slot start, sends grants to
the UEs out-of-band and multiplexes RLC PDUs into downlink MAC PDUs; the UE
MAC reports its buffer out-of-band and fills the uplink grants it receives
"""

import logging
import struct
from typing import Callable, Optional

import numpy as np

from nrisac.core.config import (
    SYMBOLS_PER_SLOT,
    CarrierInformation,
    CellConfig,
    LogicalChannelInfo,
    check_scs,
)
from nrisac.core.simulator import SimulationEntity
from nrisac.mac.protocol import MAC_PDU_OVERHEAD, MacPduCodec
from nrisac.mac.scheduler import RoundRobinScheduler, Scheduler
from nrisac.phy.distribution import OutOfBandPacket
from nrisac.phy.passthrough import CSIRS_PDU, SRS_PDU, RxIndicationInfo
from nrisac.rlc.entity import RLCBufferStatus, RLCEntity, mac_header_length

log = logging.getLogger(__name__)

GNB_MAC = 0
UE_MAC = 1

# out-of-band packet types
BSR = 1
UL_GRANT = 2
DL_GRANT = 3
CSI_REPORT = 5

OOB_VALUE = struct.Struct("!I")

# transport block bytes of one resource block in one slot
BYTES_PER_RB = 18
CSI_PERIODICITY = 10  # slots


class MacEntity(SimulationEntity):
    MAC_TYPE = GNB_MAC

    def __init__(self, rnti: int, scs: int = 15, num_harq: int = 16, name: str = "mac"):
        super().__init__(name)
        self.mac_type = self.MAC_TYPE
        self.rnti = rnti
        self.scs = check_scs(scs)
        self.num_harq = num_harq
        self.codec = MacPduCodec(rnti, name)

        self.current_symbol = 0
        self.current_slot = 0
        self.afn = 0

        self.cell_config = CellConfig()
        self.carrier_information: Optional[CarrierInformation] = None

        # rnti -> lcid -> descriptor / buffered bytes
        self.logical_channels: dict[int, dict[int, LogicalChannelInfo]] = {}
        self.buffer_status: dict[int, dict[int, int]] = {}

        self.rlc_tx_fcn: Optional[Callable] = None
        self.rlc_rx_fcn: Optional[Callable] = None
        self.tx_data_request_fcn: Optional[Callable] = None
        self.rx_data_request_fcn: Optional[Callable] = None
        self.dl_control_request_fcn: Optional[Callable] = None
        self.ul_control_request_fcn: Optional[Callable] = None
        self.out_of_band_tx_fcn: Optional[Callable[[OutOfBandPacket], None]] = None

        # (throughput bytes, goodput bytes) of the current slot
        self.tti_bytes = [0, 0]
        self.stats = {"tx_pdus": 0, "tx_bytes": 0, "rx_pdus": 0, "rx_bytes": 0, "rx_errors": 0}

    @property
    def slots_per_frame(self) -> int:
        return 10 * self.scs // 15

    def register_rlc_interface_fcn(self, rlc_tx_fcn: Callable, rlc_rx_fcn: Callable):
        """
        rlc_tx_fcn(rnti, lcid, grant, remaining) -> list of RLC PDUs, remaining
        being the transport block bytes left beyond this grant,
        rlc_rx_fcn(rnti, lcid, rlc_pdu)
        """
        self.rlc_tx_fcn = rlc_tx_fcn
        self.rlc_rx_fcn = rlc_rx_fcn

    def register_phy_interface_fcn(
        self,
        tx_data_request_fcn: Callable,
        rx_data_request_fcn: Callable,
        dl_control_request_fcn: Callable,
        ul_control_request_fcn: Callable,
    ):
        self.tx_data_request_fcn = tx_data_request_fcn
        self.rx_data_request_fcn = rx_data_request_fcn
        self.dl_control_request_fcn = dl_control_request_fcn
        self.ul_control_request_fcn = ul_control_request_fcn

    def register_out_of_band_tx_fcn(self, tx_fcn: Callable[[OutOfBandPacket], None]):
        self.out_of_band_tx_fcn = tx_fcn

    def set_cell_config(self, cell_config: CellConfig):
        self.cell_config = cell_config

    def set_carrier_information(self, carrier_information: CarrierInformation):
        self.carrier_information = carrier_information
        self.scs = check_scs(carrier_information.subcarrier_spacing)

    def add_logical_channel_info(self, info: LogicalChannelInfo, rnti: int):
        self.logical_channels.setdefault(rnti, {})[info.lcid] = info
        self.buffer_status.setdefault(rnti, {})[info.lcid] = 0

    def update_buffer_status(self, status: RLCBufferStatus):
        self.buffer_status.setdefault(status.rnti, {})[status.logical_channel_id] = status.buffer_status

    def pending_bytes(self, rnti: int) -> int:
        return sum(self.buffer_status.get(rnti, {}).values())

    def get_tti_bytes(self) -> tuple[int, int]:
        return self.tti_bytes[0], self.tti_bytes[1]

    def get_ue_buffer_status(self):
        raise NotImplementedError

    def run(self):
        """scheduling happens once per slot, at its first symbol"""
        if self.current_symbol == 0:
            self.tti_bytes = [0, 0]
            self._slot_start()

    def _slot_start(self):
        pass

    def advance_timer(self, num_symbols: int):
        self.current_symbol = (self.current_symbol + num_symbols) % SYMBOLS_PER_SLOT
        if self.current_symbol == 0:
            self.current_slot = (self.current_slot + 1) % self.slots_per_frame
            if self.current_slot == 0:
                self.afn += 1
        self.current_tick += 1

    def _absolute_slot(self) -> int:
        return self.afn * self.slots_per_frame + self.current_slot

    def _multiplex(self, rnti: int, tbs: int) -> bytes:
        """
        logical channel prioritization: pull RLC PDUs channel by channel in
        ascending priority order until the transport block is full
        """
        remaining = tbs - MAC_PDU_OVERHEAD
        subpdus: list[tuple[int, bytes]] = []
        channels = sorted(self.logical_channels.get(rnti, {}).values(), key=lambda info: (info.priority, info.lcid))
        for info in channels:
            if remaining < RLCEntity.MIN_REQUIRED_GRANT:
                break
            if self.buffer_status.get(rnti, {}).get(info.lcid, 0) <= 0 or self.rlc_tx_fcn is None:
                continue
            for rlc_pdu in self.rlc_tx_fcn(rnti, info.lcid, remaining, 0):
                subpdus.append((info.lcid, rlc_pdu))
                remaining -= len(rlc_pdu) + mac_header_length(len(rlc_pdu))

        mac_pdu = self.codec.encoding(rnti, subpdus)
        self.tti_bytes[0] += len(mac_pdu)
        self.tti_bytes[1] += sum(len(rlc_pdu) for _, rlc_pdu in subpdus)
        self.stats["tx_pdus"] += 1
        self.stats["tx_bytes"] += len(mac_pdu)
        return mac_pdu

    def rx_indication(self, mac_pdu: bytes, crc_flag: int, info: RxIndicationInfo):
        """PHY push of a received MAC PDU, crc_flag 1 marks a failed decode"""
        if crc_flag:
            self.stats["rx_errors"] += 1
            return
        try:
            rnti, subpdus = self.codec.decoding(mac_pdu)
        except ValueError as e:
            self.stats["rx_errors"] += 1
            log.warning(f"[{self.name}] dropping MAC PDU from RNTI {info.rnti}: {e}")
            return
        self.stats["rx_pdus"] += 1
        self.stats["rx_bytes"] += len(mac_pdu)

        for lcid, rlc_pdu in subpdus:
            if lcid not in self.logical_channels.get(rnti, {}):
                self.debug_log(f"no logical channel {lcid} for RNTI {rnti}, dropping subPDU")
                continue
            self.rlc_rx_fcn(rnti, lcid, rlc_pdu)

    def _send_out_of_band(self, packet_type: int, rnti: int, value: int):
        if self.out_of_band_tx_fcn is None:
            return
        self.out_of_band_tx_fcn(
            OutOfBandPacket(
                packet_type=packet_type,
                cell_id=self.cell_config.n_cell_id,
                rnti=rnti,
                data=OOB_VALUE.pack(value),
            )
        )

    def control_rx(self, packet: OutOfBandPacket):
        """hub intake of out-of-band packets"""
        raise NotImplementedError


class GNBMac(MacEntity):
    MAC_TYPE = GNB_MAC

    def __init__(self, num_ues: int, scs: int = 15, num_harq: int = 16, name: str = "gnb_mac"):
        super().__init__(rnti=0, scs=scs, num_harq=num_harq, name=name)
        self.num_ues = num_ues
        self.scheduler: Scheduler = RoundRobinScheduler(min_grant=MAC_PDU_OVERHEAD + RLCEntity.MIN_REQUIRED_GRANT)
        # rnti -> bytes from the latest buffer status report
        self.ul_buffer_status: dict[int, int] = {}
        self.csi_reports: dict[int, int] = {}  # rnti -> DL CQI
        self.srs_reports: dict[int, int] = {}  # rnti -> UL CQI

    def add_scheduler(self, scheduler: Scheduler):
        self.scheduler = scheduler

    def _capacity(self, link: str) -> int:
        if self.carrier_information is None:
            return 0
        if link == "dl":
            return self.carrier_information.n_rbs_dl * BYTES_PER_RB
        return self.carrier_information.n_rbs_ul * BYTES_PER_RB

    def _slot_start(self):
        if self._absolute_slot() % CSI_PERIODICITY == 0:
            if self.dl_control_request_fcn is not None:
                self.dl_control_request_fcn(CSIRS_PDU)
            if self.ul_control_request_fcn is not None:
                for rnti in range(1, self.num_ues + 1):
                    self.ul_control_request_fcn(SRS_PDU, rnti)
        self._schedule_dl()
        self._schedule_ul()

    def _schedule_dl(self):
        demand = {}
        for rnti in self.buffer_status:
            pending = self.pending_bytes(rnti)
            if pending > 0:
                demand[rnti] = pending + MAC_PDU_OVERHEAD
        for rnti, tbs in self.scheduler.schedule(demand, self._capacity("dl")).items():
            self._send_out_of_band(DL_GRANT, rnti, tbs)
            mac_pdu = self._multiplex(rnti, tbs)
            self.debug_log(f"DL grant {tbs} B to RNTI {rnti}, MAC PDU {len(mac_pdu)} B")
            if self.tx_data_request_fcn is not None:
                self.tx_data_request_fcn(rnti, mac_pdu)

    def _schedule_ul(self):
        demand = {rnti: pending + MAC_PDU_OVERHEAD for rnti, pending in self.ul_buffer_status.items() if pending > 0}
        for rnti, tbs in self.scheduler.schedule(demand, self._capacity("ul")).items():
            self.ul_buffer_status[rnti] = 0
            if self.rx_data_request_fcn is not None:
                self.rx_data_request_fcn(rnti, tbs)
            self.debug_log(f"UL grant {tbs} B to RNTI {rnti}")
            self._send_out_of_band(UL_GRANT, rnti, tbs)

    def control_rx(self, packet: OutOfBandPacket):
        if packet.packet_type == BSR:
            (self.ul_buffer_status[packet.rnti],) = OOB_VALUE.unpack(packet.data)
        elif packet.packet_type == CSI_REPORT:
            (self.csi_reports[packet.rnti],) = OOB_VALUE.unpack(packet.data)

    def srs_indication(self, rnti: int, cqi: int):
        self.srs_reports[rnti] = cqi

    def get_ue_buffer_status(self) -> np.ndarray:
        """downlink bytes pending per UE, index rnti-1"""
        return np.array([self.pending_bytes(rnti) for rnti in range(1, self.num_ues + 1)], dtype=np.int64)


class UEMac(MacEntity):
    MAC_TYPE = UE_MAC

    def __init__(self, rnti: int, scs: int = 15, num_harq: int = 16, bsr_periodicity: int = 1, name: str = "ue_mac"):
        """
        Args:
            bsr_periodicity: slots between two buffer status reports
        """
        super().__init__(rnti=rnti, scs=scs, num_harq=num_harq, name=name)
        if bsr_periodicity < 1:
            raise ValueError(f"bsr_periodicity must be >= 1 slot, got {bsr_periodicity}")
        self.bsr_periodicity = bsr_periodicity
        self.slots_since_bsr = bsr_periodicity
        self.ul_grant: Optional[int] = None
        self.channel_quality_dl: Optional[int] = None

    def _slot_start(self):
        if self._absolute_slot() % CSI_PERIODICITY == 0:
            if self.dl_control_request_fcn is not None:
                self.dl_control_request_fcn(CSIRS_PDU)
            if self.ul_control_request_fcn is not None:
                self.ul_control_request_fcn(SRS_PDU, self.rnti)

        if self.ul_grant is not None:
            # a granted UE always transmits, padding only if nothing is buffered
            mac_pdu = self._multiplex(self.rnti, self.ul_grant)
            self.ul_grant = None
            if self.tx_data_request_fcn is not None:
                self.tx_data_request_fcn(self.rnti, mac_pdu)

        self.slots_since_bsr += 1
        pending = self.pending_bytes(self.rnti)
        if pending > 0 and self.slots_since_bsr >= self.bsr_periodicity:
            self._send_out_of_band(BSR, self.rnti, pending)
            self.slots_since_bsr = 0

    def control_rx(self, packet: OutOfBandPacket):
        if packet.rnti != self.rnti:
            return
        if packet.packet_type == UL_GRANT:
            (self.ul_grant,) = OOB_VALUE.unpack(packet.data)
        elif packet.packet_type == DL_GRANT:
            (tbs,) = OOB_VALUE.unpack(packet.data)
            if self.rx_data_request_fcn is not None:
                self.rx_data_request_fcn(self.rnti, tbs)

    def csirs_indication(self, rank: int, pmi, cqi: int):
        self.channel_quality_dl = cqi
        self._send_out_of_band(CSI_REPORT, self.rnti, cqi)

    def get_ue_buffer_status(self) -> int:
        """uplink bytes pending"""
        return self.pending_bytes(self.rnti)
