"""
test/utils.py

utils functions and traffic models for testing
"""

import random


def generate_random_data(length: int) -> bytes:
    """generate random bytes of specified length"""
    return bytes(random.getrandbits(8) for _ in range(length))


class FixedTraffic:
    """constant bit rate model: size bytes every interval_ms"""

    def __init__(self, interval_ms: float, size: int):
        self.interval_ms = interval_ms
        self.size = size
        self.generated = 0

    def generate(self) -> tuple[float, int, bytes]:
        self.generated += 1
        return self.interval_ms, self.size, generate_random_data(self.size)


class RecordingAppLayer:
    """stands in for the application layer, returns a fixed next-invoke delay"""

    def __init__(self, delay_us: float):
        self.delay_us = delay_us
        self.calls: list[float] = []

    def run(self, elapsed_time, tx_packet_fcn):
        self.calls.append(elapsed_time)
        return self.delay_us

    def add_application(self, app, metadata):
        pass

    def receive_packet(self, data, rnti=0):
        pass
