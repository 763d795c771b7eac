"""
receive-side SDU reassembly keyed by sequence number
"""

from typing import Optional


class SegmentReassembly:
    """
    segments of one SDU: segment offset -> payload, complete once the last
    segment arrived and the offsets cover [0, sdu_length) without gaps
    """

    def __init__(self):
        self.segments: dict[int, bytes] = {}
        self.sdu_length: Optional[int] = None
        self.num_bytes = 0

    def add(self, offset: int, payload: bytes, is_last: bool) -> int:
        """
        store a segment, return the number of duplicate bytes (0 if new)
        """
        if offset in self.segments:
            return len(payload)
        self.segments[offset] = payload
        self.num_bytes += len(payload)
        if is_last:
            self.sdu_length = offset + len(payload)
        return 0

    def is_complete(self) -> bool:
        if self.sdu_length is None:
            return False
        expected = 0
        for offset in sorted(self.segments):
            if offset > expected:
                return False
            expected = max(expected, offset + len(self.segments[offset]))
        return expected >= self.sdu_length

    def assemble(self) -> bytes:
        sdu = bytearray(self.sdu_length)
        for offset, payload in self.segments.items():
            sdu[offset:offset + len(payload)] = payload
        return bytes(sdu)


class ReassemblyBuffer:
    """bounded set of SDUs under reassembly, at most max_sdus at a time"""

    def __init__(self, max_sdus: int):
        self.max_sdus = max_sdus
        self.pending: dict[int, SegmentReassembly] = {}

    def __contains__(self, sn: int) -> bool:
        return sn in self.pending

    def __len__(self):
        return len(self.pending)

    def slot(self, sn: int) -> tuple[SegmentReassembly, Optional[tuple[int, int]]]:
        """
        return the reassembly slot of sn, creating it if needed; when the
        buffer is full the oldest SDU is evicted and its (segments, bytes)
        is returned as the second element
        """
        evicted = None
        if sn not in self.pending:
            if len(self.pending) >= self.max_sdus:
                evicted = self.discard(next(iter(self.pending)))
            self.pending[sn] = SegmentReassembly()
        return self.pending[sn], evicted

    def discard(self, sn: int) -> tuple[int, int]:
        entry = self.pending.pop(sn)
        return len(entry.segments), entry.num_bytes

    def complete(self, sn: int) -> bytes:
        return self.pending.pop(sn).assemble()
