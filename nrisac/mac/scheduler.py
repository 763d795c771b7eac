"""
scheduler contract used by the gNB MAC and a round robin implementation
"""

import abc


class Scheduler(abc.ABC):
    @abc.abstractmethod
    def schedule(self, buffer_status: dict[int, int], capacity: int) -> dict[int, int]:
        """
        split capacity bytes of one slot among the UEs

        Args:
            buffer_status: rnti -> bytes the UE needs, MAC overhead included
            capacity: bytes available in the slot
        Returns:
            rnti -> granted bytes, UEs without a grant are omitted
        """


class RoundRobinScheduler(Scheduler):
    """
    serves UEs in RNTI order, starting one position later every slot so
    that no UE keeps the head of the queue
    """

    def __init__(self, min_grant: int = 0):
        self.min_grant = min_grant
        self.next_rnti = 0

    def schedule(self, buffer_status: dict[int, int], capacity: int) -> dict[int, int]:
        demand = sorted(rnti for rnti, need in buffer_status.items() if need > 0)
        if not demand or capacity <= 0:
            return {}
        start = next((idx for idx, rnti in enumerate(demand) if rnti >= self.next_rnti), 0)
        order = demand[start:] + demand[:start]

        grants = {}
        remaining = capacity
        for rnti in order:
            grant = min(buffer_status[rnti], remaining)
            if grant <= 0 or grant < self.min_grant:
                continue
            grants[rnti] = grant
            remaining -= grant
        self.next_rnti = order[0] + 1
        return grants
