"""
realize MAC PDU multiplexing and demultiplexing logic

PDU format:\n
[2B Header]+[2B Length]+[2B RNTI]+[subPDU]*+[4B CRC32]\n
subPDU format:\n
[1B R|F|LCID]+[1B or 2B L]+[nB RLC PDU], F=1 selects the 16-bit L field
"""

import struct
import zlib

from nrisac.rlc.entity import mac_header_length

HEADER = b"\xaa\xbb"
PDU_HEADER = struct.Struct("!2sHH")
CRC = struct.Struct("!I")
# fixed bytes of a MAC PDU around its subPDUs
MAC_PDU_OVERHEAD = PDU_HEADER.size + CRC.size

F_BIT = 0x40
LCID_MASK = 0x3F


def subpdu_header(lcid: int, length: int) -> bytes:
    if mac_header_length(length) == 3:
        return struct.pack("!BH", F_BIT | (lcid & LCID_MASK), length)
    return struct.pack("!BB", lcid & LCID_MASK, length)


class MacPduCodec:
    def __init__(self, rnti: int, name: str = "mac"):
        self.rnti = rnti
        self.name = name
        self.header = HEADER

    def encoding(self, rnti: int, subpdus: list[tuple[int, bytes]]) -> bytes:
        body = b"".join(subpdu_header(lcid, len(data)) + data for lcid, data in subpdus)
        raw_pdu = PDU_HEADER.pack(self.header, len(body), rnti) + body
        return raw_pdu + CRC.pack(zlib.crc32(raw_pdu))

    def decoding(self, pdu: bytes) -> tuple[int, list[tuple[int, bytes]]]:
        """
        return (rnti, [(lcid, rlc pdu), ...]), raises ValueError on a malformed
        PDU or a CRC mismatch
        """
        if len(pdu) < MAC_PDU_OVERHEAD:
            raise ValueError(f"[{self.name}] MAC PDU too short: {len(pdu)} bytes")
        if pdu[:2] != self.header:
            raise ValueError(f"[{self.name}] Header Mismatch: {pdu[:2].hex()}")
        (received_crc,) = CRC.unpack(pdu[-4:])
        calculated_crc = zlib.crc32(pdu[:-4])
        if received_crc != calculated_crc:
            raise ValueError(
                f"[{self.name}] CRC Mismatch: received {received_crc}, calculated {calculated_crc}"
            )

        _, length, rnti = PDU_HEADER.unpack_from(pdu, 0)
        body = pdu[PDU_HEADER.size:-4]
        if length != len(body):
            raise ValueError(f"[{self.name}] Length Mismatch: header {length}, body {len(body)}")

        subpdus = []
        idx = 0
        while idx < len(body):
            first = body[idx]
            if first & F_BIT:
                if idx + 3 > len(body):
                    raise ValueError(f"[{self.name}] truncated subPDU header at {idx}")
                (sub_len,) = struct.unpack_from("!H", body, idx + 1)
                idx += 3
            else:
                if idx + 2 > len(body):
                    raise ValueError(f"[{self.name}] truncated subPDU header at {idx}")
                sub_len = body[idx + 1]
                idx += 2
            if idx + sub_len > len(body):
                raise ValueError(f"[{self.name}] truncated subPDU payload at {idx}")
            subpdus.append((first & LCID_MASK, body[idx:idx + sub_len]))
            idx += sub_len
        return rnti, subpdus
