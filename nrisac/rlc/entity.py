"""
RLC entity contract shared by the UM and AM variants
"""

import abc
from dataclasses import dataclass
from typing import Callable, Optional

import numpy as np

from nrisac.core.config import RLCChannelConfig, RLCEntityType
from nrisac.core.errors import InvalidSDUSize

# per-entity counters, reported after the (RNTI, LCID) columns
STAT_NAMES = (
    "TxDataPDU",
    "TxDataBytes",
    "ReTxDataPDU",
    "ReTxDataBytes",
    "TxControlPDU",
    "TxControlBytes",
    "TxPacketsDropped",
    "TxBytesDropped",
    "TimerPollRetransmitTimedOut",
    "RxDataPDU",
    "RxDataBytes",
    "RxDataPDUDropped",
    "RxDataBytesDropped",
    "RxDataPDUDuplicate",
    "RxDataBytesDuplicate",
    "RxControlPDU",
    "RxControlBytes",
    "TimerReassemblyTimedOut",
    "TimerStatusProhibitTimedOut",
)
STAT_COLUMNS = ("RNTI", "LCID") + STAT_NAMES


@dataclass(frozen=True)
class RLCBufferStatus:
    rnti: int
    logical_channel_id: int
    buffer_status: int  # bytes, MAC subheaders included


def mac_header_length(pdu_length: int) -> int:
    """MAC subheader length for an RLC PDU, 8-bit or 16-bit L field"""
    return 3 if pdu_length > 255 else 2


class RLCEntity(abc.ABC):
    MIN_REQUIRED_GRANT = 8  # bytes
    MAX_SDU_SIZE = 9000  # bytes

    def __init__(self, config: RLCChannelConfig):
        self.rnti = config.rnti
        self.logical_channel_id = config.logical_channel_id
        self.entity_type = RLCEntityType(config.entity_type)
        self.max_reassembly_sdu = config.max_reassembly_sdu
        self.stats = dict.fromkeys(STAT_NAMES, 0)
        self.tx_buffer_status_fcn: Optional[Callable[[RLCBufferStatus], None]] = None
        self.rx_forward_fcn: Optional[Callable[[bytes, int], None]] = None

    def __repr__(self):
        return (
            f"{type(self).__name__}(rnti={self.rnti}, lcid={self.logical_channel_id}, "
            f"type={self.entity_type.name})"
        )

    def register_mac_interface_fcn(self, tx_buffer_status_fcn: Callable[[RLCBufferStatus], None]):
        self.tx_buffer_status_fcn = tx_buffer_status_fcn

    def register_app_receiver_fcn(self, rx_forward_fcn: Callable[[bytes, int], None]):
        self.rx_forward_fcn = rx_forward_fcn

    def get_statistics(self) -> np.ndarray:
        return np.array([self.stats[name] for name in STAT_NAMES], dtype=np.int64)

    def get_buffer_status(self) -> RLCBufferStatus:
        return RLCBufferStatus(self.rnti, self.logical_channel_id, self.required_grant_length())

    def _report_buffer_status(self):
        if self.tx_buffer_status_fcn is not None:
            self.tx_buffer_status_fcn(self.get_buffer_status())

    def _forward(self, sdu: bytes):
        if self.rx_forward_fcn is not None and sdu:
            self.rx_forward_fcn(sdu, self.rnti)

    def _check_sdu(self, sdu: bytes):
        if len(sdu) > self.MAX_SDU_SIZE:
            raise InvalidSDUSize(
                f"RLC SDU size must be <= {self.MAX_SDU_SIZE} bytes, got {len(sdu)} "
                f"(RNTI {self.rnti}, LCID {self.logical_channel_id})"
            )

    @abc.abstractmethod
    def enqueue_sdu(self, sdu: bytes):
        """queue an SDU from the application layer for transmission"""

    @abc.abstractmethod
    def send_pdu(self, bytes_granted: int, remaining_tbs: int) -> list[bytes]:
        """
        pack buffered data into PDUs fitting bytes_granted, MAC subheaders
        included; a PDU that only fits with the remaining_tbs bytes left in
        the transport block beyond this grant is sent whole, otherwise it is
        segmented to the grant
        """

    @abc.abstractmethod
    def receive_pdu(self, pdu: bytes):
        """process a PDU handed up by the MAC"""

    @abc.abstractmethod
    def handle_timer_trigger(self):
        """advance the entity timers by 1 ms"""

    @abc.abstractmethod
    def required_grant_length(self) -> int:
        """bytes needed to empty the transmit side, MAC subheaders included"""
