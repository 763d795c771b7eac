"""
RLC unacknowledged mode entity

UMD PDU formats:\n
complete SDU: [1B SI=0|R]+[payload]\n
segment, 6-bit SN: [1B SI|SN]+[2B SO, not for first segment]+[payload]\n
segment, 12-bit SN: [1B SI|R|SN_hi]+[1B SN_lo]+[2B SO, not for first segment]+[payload]
"""

import struct
from collections import deque

from nrisac.core.config import RLCChannelConfig
from nrisac.core.errors import ConfigurationError
from nrisac.rlc.entity import RLCEntity, mac_header_length
from nrisac.rlc.reassembly import ReassemblyBuffer

# segmentation info
SI_FULL = 0
SI_FIRST = 1
SI_LAST = 2
SI_MIDDLE = 3


def um_data_header(si: int, sn_length: int, sn: int = 0, so: int = 0) -> bytes:
    if si == SI_FULL:
        return b"\x00"
    if sn_length == 6:
        header = bytes([(si << 6) | (sn & 0x3F)])
    else:
        header = bytes([(si << 6) | ((sn >> 8) & 0x0F), sn & 0xFF])
    if si in (SI_LAST, SI_MIDDLE):
        header += struct.pack("!H", so)
    return header


def um_decode(pdu: bytes, sn_length: int) -> tuple[int, int, int, bytes]:
    """return (si, sn, so, payload)"""
    si = pdu[0] >> 6
    if si == SI_FULL:
        return si, 0, 0, pdu[1:]
    if sn_length == 6:
        sn, idx = pdu[0] & 0x3F, 1
    else:
        sn, idx = ((pdu[0] & 0x0F) << 8) | pdu[1], 2
    so = 0
    if si in (SI_LAST, SI_MIDDLE):
        (so,) = struct.unpack_from("!H", pdu, idx)
        idx += 2
    return si, sn, so, pdu[idx:]


class UMEntity(RLCEntity):
    def __init__(self, config: RLCChannelConfig):
        super().__init__(config)
        for length in config.seq_num_field_length:
            if length not in (6, 12):
                raise ConfigurationError(
                    f"UM sequence number field length must be 6 or 12, got {length}"
                )
        if config.max_tx_buffer_sdus <= 0:
            raise ConfigurationError("max_tx_buffer_sdus must be > 0")

        self.max_tx_buffer_sdus = config.max_tx_buffer_sdus
        self.reassembly_timer = config.reassembly_timer

        # transmitter
        self.tx_sn_length = config.seq_num_field_length[0]
        self.tx_modulus = 1 << self.tx_sn_length
        self.tx_next = 0
        # [sdu, segment offset]
        self.tx_queue: deque[list] = deque()

        # receiver
        self.rx_sn_length = config.seq_num_field_length[1]
        self.um_window_size = 1 << (self.rx_sn_length - 1)
        self.rx_buffer = ReassemblyBuffer(self.max_reassembly_sdu)
        self.closed_sns: deque[int] = deque(maxlen=self.um_window_size)
        self.reassembly_time_left = 0
        self.reassembly_running = False

    # transmitter ------------------------------------------------------------

    def _head_header(self) -> bytes:
        _, offset = self.tx_queue[0]
        if offset:
            return um_data_header(SI_LAST, self.tx_sn_length, self.tx_next, offset)
        return um_data_header(SI_FULL, self.tx_sn_length)

    def required_grant_length(self) -> int:
        total = 0
        for idx, (sdu, offset) in enumerate(self.tx_queue):
            header_len = len(self._head_header()) if idx == 0 else 1
            pdu_len = header_len + len(sdu) - offset
            total += pdu_len + mac_header_length(pdu_len)
        return total

    def enqueue_sdu(self, sdu: bytes):
        if not self.entity_type.has_tx:
            raise ConfigurationError(
                f"{self!r} is a receive-only entity and cannot queue SDUs"
            )
        self._check_sdu(sdu)
        if len(self.tx_queue) == self.max_tx_buffer_sdus:
            self.stats["TxPacketsDropped"] += 1
            self.stats["TxBytesDropped"] += len(sdu)
            return
        self.tx_queue.append([bytes(sdu), 0])
        self._report_buffer_status()

    def send_pdu(self, bytes_granted: int, remaining_tbs: int) -> list[bytes]:
        filled = 0
        pdus: list[bytes] = []
        while filled < bytes_granted and self.tx_queue:
            sdu, offset = self.tx_queue[0]
            header = self._head_header()
            pdu_len = len(header) + len(sdu) - offset
            mac_len = mac_header_length(pdu_len)

            if filled + pdu_len + mac_len > bytes_granted + remaining_tbs:
                # segment the SDU to the room left in the grant
                room = bytes_granted - filled
                si = SI_MIDDLE if offset else SI_FIRST
                seg_header = um_data_header(si, self.tx_sn_length, self.tx_next, offset)
                if room <= len(seg_header) + mac_len:
                    break
                seg_len = room - len(seg_header) - mac_len
                pdu = seg_header + sdu[offset:offset + seg_len]
                self.tx_queue[0][1] = offset + seg_len
                filled += room
            else:
                pdu = header + sdu[offset:]
                if offset:
                    self.tx_next = (self.tx_next + 1) % self.tx_modulus
                self.tx_queue.popleft()
                filled += pdu_len + mac_len

            pdus.append(pdu)
            self.stats["TxDataPDU"] += 1
            self.stats["TxDataBytes"] += len(pdu)

        self._report_buffer_status()
        return pdus

    # receiver ---------------------------------------------------------------

    def receive_pdu(self, pdu: bytes):
        if not self.entity_type.has_rx:
            raise ConfigurationError(
                f"{self!r} is a transmit-only entity and cannot receive PDUs"
            )
        self.stats["RxDataPDU"] += 1
        self.stats["RxDataBytes"] += len(pdu)

        si, sn, so, payload = um_decode(pdu, self.rx_sn_length)
        if si == SI_FULL:
            self._forward(payload)
            return

        if sn in self.closed_sns:
            self.stats["RxDataPDUDropped"] += 1
            self.stats["RxDataBytesDropped"] += len(pdu)
            return

        entry, evicted = self.rx_buffer.slot(sn)
        if evicted is not None:
            self.stats["RxDataPDUDropped"] += evicted[0]
            self.stats["RxDataBytesDropped"] += evicted[1]

        duplicate = entry.add(so, payload, is_last=si == SI_LAST)
        if duplicate:
            self.stats["RxDataPDUDuplicate"] += 1
            self.stats["RxDataBytesDuplicate"] += duplicate
            return

        if entry.is_complete():
            sdu = self.rx_buffer.complete(sn)
            self.closed_sns.append(sn)
            if not len(self.rx_buffer):
                self.reassembly_running = False
            self._forward(sdu)
        elif not self.reassembly_running:
            self.reassembly_running = True
            self.reassembly_time_left = self.reassembly_timer

    def handle_timer_trigger(self):
        if not self.reassembly_running:
            return
        self.reassembly_time_left -= 1
        if self.reassembly_time_left > 0:
            return
        self.stats["TimerReassemblyTimedOut"] += 1
        self.reassembly_running = False
        for sn in list(self.rx_buffer.pending):
            segments, num_bytes = self.rx_buffer.discard(sn)
            self.closed_sns.append(sn)
            self.stats["RxDataPDUDropped"] += segments
            self.stats["RxDataBytesDropped"] += num_bytes
