"""
RLC acknowledged mode entity

AMD PDU: [D/C=1|P|SI|SN]+[2B SO, only for last and middle segments]+[payload]
with a 12-bit SN in 2 bytes or an 18-bit SN in 3 bytes

STATUS PDU: [1B D/C=0|CPT=0]+[4B ACK_SN]+[1B number of NACKs]+[4B NACK_SN]*N
"""

import struct
from collections import deque

from nrisac.core.config import RLCChannelConfig
from nrisac.core.errors import ConfigurationError
from nrisac.rlc.entity import RLCEntity, mac_header_length
from nrisac.rlc.reassembly import ReassemblyBuffer
from nrisac.rlc.um import SI_FIRST, SI_FULL, SI_LAST, SI_MIDDLE

DC_DATA = 0x80
POLL_BIT = 0x40
STATUS_HEADER = struct.Struct("!BIB")
NACK_FMT = struct.Struct("!I")
MAX_NACKS = 255


def am_data_header(si: int, sn_length: int, sn: int, so: int = 0) -> bytes:
    if sn_length == 12:
        header = bytes([DC_DATA | (si << 4) | ((sn >> 8) & 0x0F), sn & 0xFF])
    else:
        header = bytes([DC_DATA | (si << 4) | ((sn >> 16) & 0x03), (sn >> 8) & 0xFF, sn & 0xFF])
    if si in (SI_LAST, SI_MIDDLE):
        header += struct.pack("!H", so)
    return header


def am_decode(pdu: bytes, sn_length: int) -> tuple[bool, int, int, int, bytes]:
    """return (poll, si, sn, so, payload) of a data PDU"""
    poll = bool(pdu[0] & POLL_BIT)
    si = (pdu[0] >> 4) & 0x03
    if sn_length == 12:
        sn, idx = ((pdu[0] & 0x0F) << 8) | pdu[1], 2
    else:
        sn, idx = ((pdu[0] & 0x03) << 16) | (pdu[1] << 8) | pdu[2], 3
    so = 0
    if si in (SI_LAST, SI_MIDDLE):
        (so,) = struct.unpack_from("!H", pdu, idx)
        idx += 2
    return poll, si, sn, so, pdu[idx:]


def with_poll(pdu: bytes) -> bytes:
    return bytes([pdu[0] | POLL_BIT]) + pdu[1:]


class AMEntity(RLCEntity):
    def __init__(self, config: RLCChannelConfig):
        super().__init__(config)
        sn_length = config.seq_num_field_length[0]
        if sn_length not in (12, 18):
            raise ConfigurationError(
                f"AM sequence number field length must be 12 or 18, got {sn_length}"
            )
        if config.max_tx_buffer_sdus <= 0:
            raise ConfigurationError("max_tx_buffer_sdus must be > 0")

        self.sn_length = sn_length
        self.modulus = 1 << sn_length
        self.window_size = 1 << (sn_length - 1)
        self.max_tx_buffer_sdus = config.max_tx_buffer_sdus
        self.poll_pdu = config.poll_pdu
        self.poll_byte = config.poll_byte * 1000
        self.poll_retransmit_timer = config.poll_retransmit_timer
        self.reassembly_timer = config.reassembly_timer
        self.status_prohibit_timer = config.status_prohibit_timer
        self.max_retransmissions = config.max_retransmissions

        # transmitter
        self.tx_next = 0
        self.tx_next_ack = 0
        # [sdu, segment offset, sn]
        self.tx_queue: deque[list] = deque()
        # sn -> PDUs already sent (poll bit cleared), kept until acknowledged
        self.sent_pdus: dict[int, list[bytes]] = {}
        self.retx_count: dict[int, int] = {}
        self.retx_queue: deque[int] = deque()
        self.pdu_without_poll = 0
        self.byte_without_poll = 0
        self.poll_sn = 0
        self.retransmit_poll = False
        self.poll_retransmit_left = 0
        self.poll_retransmit_running = False

        # receiver
        self.rx_next = 0
        self.rx_next_highest = 0
        self.rx_buffer = ReassemblyBuffer(self.max_reassembly_sdu)
        self.rx_completed: set[int] = set()
        self.reassembly_left = 0
        self.reassembly_running = False
        self.status_pending = False
        self.status_prohibit_left = 0
        self.status_prohibit_running = False

    def _tx_distance(self, sn: int) -> int:
        return (sn - self.tx_next_ack) % self.modulus

    def _rx_distance(self, sn: int) -> int:
        return (sn - self.rx_next) % self.modulus

    # buffer status -----------------------------------------------------------

    def _head_header(self) -> bytes:
        _, offset, sn = self.tx_queue[0]
        if offset:
            return am_data_header(SI_LAST, self.sn_length, sn, offset)
        return am_data_header(SI_FULL, self.sn_length, self.tx_next)

    def _status_length(self) -> int:
        return STATUS_HEADER.size + NACK_FMT.size * len(self._nack_list())

    def required_grant_length(self) -> int:
        total = 0
        if self.status_pending and not self.status_prohibit_running:
            length = self._status_length()
            total += length + mac_header_length(length)
        for sn in self.retx_queue:
            for pdu in self.sent_pdus.get(sn, ()):
                total += len(pdu) + mac_header_length(len(pdu))
        full_header = len(am_data_header(SI_FULL, self.sn_length, 0))
        for idx, (sdu, offset, _) in enumerate(self.tx_queue):
            header_len = len(self._head_header()) if idx == 0 else full_header
            pdu_len = header_len + len(sdu) - offset
            total += pdu_len + mac_header_length(pdu_len)
        return total

    # transmitter ------------------------------------------------------------

    def enqueue_sdu(self, sdu: bytes):
        self._check_sdu(sdu)
        if len(self.tx_queue) == self.max_tx_buffer_sdus:
            self.stats["TxPacketsDropped"] += 1
            self.stats["TxBytesDropped"] += len(sdu)
            return
        self.tx_queue.append([bytes(sdu), 0, None])
        self._report_buffer_status()

    def _poll_due(self) -> bool:
        if self.retransmit_poll:
            return True
        if self.poll_pdu and self.pdu_without_poll >= self.poll_pdu:
            return True
        if self.poll_byte and self.byte_without_poll >= self.poll_byte:
            return True
        return not self.tx_queue and not self.retx_queue

    def _mark_poll(self, pdu: bytes) -> bytes:
        if not self._poll_due():
            return pdu
        self.pdu_without_poll = 0
        self.byte_without_poll = 0
        self.retransmit_poll = False
        self.poll_sn = (self.tx_next - 1) % self.modulus
        self.poll_retransmit_running = True
        self.poll_retransmit_left = self.poll_retransmit_timer
        return with_poll(pdu)

    def _send_status(self) -> bytes:
        nacks = self._nack_list()
        pdu = STATUS_HEADER.pack(0, self.rx_next_highest, len(nacks))
        pdu += b"".join(NACK_FMT.pack(sn) for sn in nacks)
        self.status_pending = False
        if self.status_prohibit_timer:
            self.status_prohibit_running = True
            self.status_prohibit_left = self.status_prohibit_timer
        self.stats["TxControlPDU"] += 1
        self.stats["TxControlBytes"] += len(pdu)
        return pdu

    def send_pdu(self, bytes_granted: int, remaining_tbs: int) -> list[bytes]:
        filled = 0
        pdus: list[bytes] = []

        if self.status_pending and not self.status_prohibit_running:
            length = self._status_length()
            if length + mac_header_length(length) <= bytes_granted:
                pdus.append(self._send_status())
                filled += length + mac_header_length(length)

        while filled < bytes_granted and self.retx_queue:
            sn = self.retx_queue[0]
            stored = self.sent_pdus.get(sn, [])
            needed = sum(len(p) + mac_header_length(len(p)) for p in stored)
            if filled + needed > bytes_granted + remaining_tbs:
                break
            self.retx_queue.popleft()
            for idx, pdu in enumerate(stored):
                self.pdu_without_poll += 1
                if idx == len(stored) - 1:
                    pdu = self._mark_poll(pdu)
                pdus.append(pdu)
                self.stats["ReTxDataPDU"] += 1
                self.stats["ReTxDataBytes"] += len(pdu)
            filled += needed

        while filled < bytes_granted and self.tx_queue:
            entry = self.tx_queue[0]
            sdu, offset, sn = entry
            if sn is None:
                sn = entry[2] = self.tx_next
            header = self._head_header()
            pdu_len = len(header) + len(sdu) - offset
            mac_len = mac_header_length(pdu_len)

            if filled + pdu_len + mac_len > bytes_granted + remaining_tbs:
                room = bytes_granted - filled
                si = SI_MIDDLE if offset else SI_FIRST
                seg_header = am_data_header(si, self.sn_length, sn, offset)
                if room <= len(seg_header) + mac_len:
                    break
                seg_len = room - len(seg_header) - mac_len
                pdu = seg_header + sdu[offset:offset + seg_len]
                entry[1] = offset + seg_len
                self.byte_without_poll += seg_len
                filled += room
            else:
                pdu = header + sdu[offset:]
                self.byte_without_poll += len(sdu) - offset
                self.tx_queue.popleft()
                self.tx_next = (self.tx_next + 1) % self.modulus
                filled += pdu_len + mac_len

            self.sent_pdus.setdefault(sn, []).append(pdu)
            self.pdu_without_poll += 1
            pdu = self._mark_poll(pdu)
            pdus.append(pdu)
            self.stats["TxDataPDU"] += 1
            self.stats["TxDataBytes"] += len(pdu)

        self._report_buffer_status()
        return pdus

    def _receive_status(self, pdu: bytes):
        self.stats["RxControlPDU"] += 1
        self.stats["RxControlBytes"] += len(pdu)
        _, ack_sn, num_nacks = STATUS_HEADER.unpack_from(pdu, 0)
        nacks = [
            NACK_FMT.unpack_from(pdu, STATUS_HEADER.size + idx * NACK_FMT.size)[0]
            for idx in range(num_nacks)
        ]
        ack_distance = self._tx_distance(ack_sn)

        for sn in list(self.sent_pdus):
            if sn in nacks or self._tx_distance(sn) >= ack_distance:
                continue
            del self.sent_pdus[sn]
            self.retx_count.pop(sn, None)

        for sn in nacks:
            if sn not in self.sent_pdus or sn in self.retx_queue:
                continue
            # the SDU still being segmented is not complete at the peer yet
            if self.tx_queue and self.tx_queue[0][2] == sn:
                continue
            self.retx_count[sn] = self.retx_count.get(sn, 0) + 1
            if self.retx_count[sn] > self.max_retransmissions:
                dropped = self.sent_pdus.pop(sn)
                self.retx_count.pop(sn)
                self.stats["TxPacketsDropped"] += 1
                self.stats["TxBytesDropped"] += sum(len(p) for p in dropped)
            else:
                self.retx_queue.append(sn)

        if self.sent_pdus:
            self.tx_next_ack = min(self.sent_pdus, key=self._tx_distance)
        else:
            self.tx_next_ack = ack_sn
        if self.poll_sn not in self.sent_pdus or not self.sent_pdus:
            self.poll_retransmit_running = False
        self._report_buffer_status()

    # receiver ---------------------------------------------------------------

    def _nack_list(self) -> list[int]:
        nacks = []
        sn = self.rx_next
        while sn != self.rx_next_highest and len(nacks) < MAX_NACKS:
            if sn not in self.rx_completed:
                nacks.append(sn)
            sn = (sn + 1) % self.modulus
        return nacks

    def _has_gap(self) -> bool:
        return self.rx_next != self.rx_next_highest

    def receive_pdu(self, pdu: bytes):
        if not pdu[0] & DC_DATA:
            self._receive_status(pdu)
            return

        self.stats["RxDataPDU"] += 1
        self.stats["RxDataBytes"] += len(pdu)
        poll, si, sn, so, payload = am_decode(pdu, self.sn_length)
        if poll:
            self._trigger_status()

        if self._rx_distance(sn) >= self.window_size or sn in self.rx_completed:
            self.stats["RxDataPDUDuplicate"] += 1
            self.stats["RxDataBytesDuplicate"] += len(payload)
            return

        if self._rx_distance(sn) >= self._rx_distance(self.rx_next_highest):
            self.rx_next_highest = (sn + 1) % self.modulus

        entry, evicted = self.rx_buffer.slot(sn)
        if evicted is not None:
            self.stats["RxDataPDUDropped"] += evicted[0]
            self.stats["RxDataBytesDropped"] += evicted[1]
        duplicate = entry.add(so, payload, is_last=si in (SI_FULL, SI_LAST))
        if duplicate:
            self.stats["RxDataPDUDuplicate"] += 1
            self.stats["RxDataBytesDuplicate"] += duplicate
            return

        if entry.is_complete():
            sdu = self.rx_buffer.complete(sn)
            self.rx_completed.add(sn)
            while self.rx_next in self.rx_completed:
                self.rx_completed.discard(self.rx_next)
                self.rx_next = (self.rx_next + 1) % self.modulus
            self._forward(sdu)

        if self.reassembly_running and not self._has_gap():
            self.reassembly_running = False
        elif not self.reassembly_running and self._has_gap():
            self.reassembly_running = True
            self.reassembly_left = self.reassembly_timer

    def _trigger_status(self):
        if not self.status_pending:
            self.status_pending = True
            self._report_buffer_status()

    def handle_timer_trigger(self):
        if self.poll_retransmit_running:
            self.poll_retransmit_left -= 1
            if self.poll_retransmit_left <= 0:
                self.poll_retransmit_running = False
                self.stats["TimerPollRetransmitTimedOut"] += 1
                if not self.tx_queue and not self.retx_queue and self.sent_pdus:
                    sn = max(self.sent_pdus, key=self._tx_distance)
                    self.retx_count[sn] = self.retx_count.get(sn, 0) + 1
                    self.retx_queue.append(sn)
                self.retransmit_poll = True
                self._report_buffer_status()

        if self.status_prohibit_running:
            self.status_prohibit_left -= 1
            if self.status_prohibit_left <= 0:
                self.status_prohibit_running = False
                self.stats["TimerStatusProhibitTimedOut"] += 1
                if self.status_pending:
                    self._report_buffer_status()

        if self.reassembly_running:
            self.reassembly_left -= 1
            if self.reassembly_left <= 0:
                self.stats["TimerReassemblyTimedOut"] += 1
                self.reassembly_running = self._has_gap()
                self.reassembly_left = self.reassembly_timer
                self._trigger_status()
