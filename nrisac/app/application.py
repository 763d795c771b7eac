"""
application layer of a node

multiplexes the traffic models attached to a node and hands generated
packets to the RLC through the node's enqueue callback
"""

import math
from dataclasses import dataclass
from typing import Callable, Protocol

from nrisac.core.errors import MaxApplicationsReached


class TrafficModel(Protocol):
    def generate(self) -> tuple[float, int, bytes]:
        """return (next packet interval in ms, packet size, packet data)"""
        ...


@dataclass
class AppMetadata:
    priority_id: int  # logical channel id
    destination_id: int  # RNTI of the receiver, 0 for the gNB


@dataclass
class ApplicationPacket:
    data: bytes
    msdu_length: int
    priority_id: int
    destination_id: int
    timestamp: float = 0.0  # generation time at origin, us
    packet_id: int = 0


class _AppContext:
    def __init__(self, app: TrafficModel, metadata: AppMetadata):
        self.app = app
        self.time_left = 0.0  # us
        self.priority_id = metadata.priority_id
        self.destination_id = metadata.destination_id


class ApplicationLayer:
    def __init__(self, node_id: int = 0, max_applications: int = 16):
        self.node_id = node_id
        self.max_applications = max_applications
        self.applications: list[_AppContext] = []
        self.next_invoke_time = 0.0  # us
        self.clock = 0.0  # us, elapsed time seen by the layer
        self.packets_sent = 0
        self.rx_stats: dict[int, list[int]] = {}  # rnti -> [packets, bytes]

    def add_application(self, app: TrafficModel, metadata: AppMetadata):
        if len(self.applications) == self.max_applications:
            raise MaxApplicationsReached(self.max_applications)
        self.applications.append(_AppContext(app, metadata))

    def run(self, elapsed_time: float, tx_packet_fcn: Callable[[ApplicationPacket], None]) -> float:
        """
        advance every application by elapsed_time (us), generate the packets
        that are due and return the time (us) until the next invocation is
        needed
        """
        self.clock += elapsed_time
        min_next_invoke = math.inf
        due = elapsed_time >= self.next_invoke_time
        for ctx in self.applications:
            ctx.time_left -= elapsed_time
            if due and ctx.time_left <= 0:
                interval, size, data = ctx.app.generate()
                if interval <= 0:
                    raise ValueError(f"packet interval must be > 0 ms, got {interval}")
                ctx.time_left = interval * 1000
                packet = ApplicationPacket(
                    data=bytes(data[:size]),
                    msdu_length=size,
                    priority_id=ctx.priority_id,
                    destination_id=ctx.destination_id,
                    timestamp=self.clock,
                    packet_id=self.packets_sent,
                )
                self.packets_sent += 1
                tx_packet_fcn(packet)
            min_next_invoke = min(min_next_invoke, ctx.time_left)
        self.next_invoke_time = min_next_invoke
        return self.next_invoke_time

    def receive_packet(self, data: bytes, rnti: int = 0):
        stats = self.rx_stats.setdefault(rnti, [0, 0])
        stats[0] += 1
        stats[1] += len(data)
