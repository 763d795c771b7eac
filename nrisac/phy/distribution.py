"""
packet distribution hub, stands in for the wireless medium

in-band packets -> every receiver tuned to the packet's carrier frequency\n
out-of-band packets -> every receiver of the packet's cell (MAC side channel)

delivery is synchronous: a send returns after every matching receiver has
handled the packet
"""

import inspect
import logging
import threading
import weakref
from dataclasses import dataclass, field
from typing import Callable, Optional

import numpy as np

from nrisac.core.errors import HubCapacityError

log = logging.getLogger(__name__)

# link direction of an in-band packet
DL = 0
UL = 1


@dataclass(frozen=True)
class ReceiverInfo:
    carrier_freq: float  # Hz
    cell_id: int
    rnti: Optional[int] = None  # None for the gNB's own uplink receiver


@dataclass
class InBandPacket:
    """
    either an unencoded MAC PDU (data) or waveform IQ samples
    (waveform + sample_rate)
    """

    carrier_freq: float
    cell_id: int = 0
    rnti: Optional[int] = None
    data: bytes = b""
    waveform: Optional[np.ndarray] = None
    sample_rate: Optional[float] = None
    tx_power: float = 0.0  # dBm
    position: np.ndarray = field(default_factory=lambda: np.zeros(3))
    link_direction: int = DL


@dataclass
class OutOfBandPacket:
    packet_type: int
    cell_id: int
    rnti: Optional[int] = None
    data: bytes = b""


def _callback_ref(fcn: Optional[Callable]):
    """
    bound methods are held weakly so the hub never keeps a node stack alive,
    plain functions are held as given
    """
    if fcn is None:
        return lambda: None
    if inspect.ismethod(fcn):
        return weakref.WeakMethod(fcn)
    return lambda: fcn


class _Registration:
    def __init__(self, info: ReceiverInfo, phy_fcn, mac_fcn):
        self.info = info
        self._phy_ref = _callback_ref(phy_fcn)
        self._mac_ref = _callback_ref(mac_fcn)
        self._held = (phy_fcn is not None, mac_fcn is not None)

    def phy(self) -> Optional[Callable]:
        return self._phy_ref()

    def mac(self) -> Optional[Callable]:
        return self._mac_ref()

    def alive(self) -> bool:
        """False once the owner of a weakly held callback is gone"""
        phy_held, mac_held = self._held
        return (not phy_held or self.phy() is not None) and (not mac_held or self.mac() is not None)

    def same_receiver(self, info: ReceiverInfo, phy_fcn, mac_fcn) -> bool:
        # bound methods compare equal only when bound to the same live object
        return self.info == info and self.phy() == phy_fcn and self.mac() == mac_fcn


class PacketDistribution:
    """broadcast registry of receivers, bounded by max_receivers"""

    def __init__(self, max_receivers: int = 100):
        if max_receivers <= 0:
            raise ValueError(f"max_receivers must be > 0, got {max_receivers}")
        self.max_receivers = max_receivers
        self._slots: list[Optional[_Registration]] = [None] * max_receivers
        self._lock = threading.Lock()
        self.stats = {"in_band_sent": 0, "in_band_delivered": 0, "out_of_band_sent": 0, "out_of_band_delivered": 0}

    def __len__(self):
        return sum(1 for reg in self._slots if reg is not None and reg.alive())

    def register(
        self,
        receiver_info: ReceiverInfo,
        phy_fcn: Optional[Callable[[InBandPacket], None]],
        mac_fcn: Optional[Callable[[OutOfBandPacket], None]],
    ) -> int:
        """
        register a receiver in the first free slot and return the slot index;
        registering the same receiver with the same callbacks again returns
        its existing slot
        """
        with self._lock:
            for idx, reg in enumerate(self._slots):
                if reg is None:
                    continue
                if not reg.alive():
                    # the receiver was garbage collected, its slot is free again
                    self._slots[idx] = None
                    continue
                if reg.same_receiver(receiver_info, phy_fcn, mac_fcn):
                    log.warning(f"receiver {receiver_info} is already registered in slot {idx}")
                    return idx
                if reg.info == receiver_info:
                    log.warning(f"receiver {receiver_info} is registered again with other callbacks")
            try:
                idx = self._slots.index(None)
            except ValueError:
                log.error(f"cannot register {receiver_info}: all {self.max_receivers} slots are in use")
                raise HubCapacityError(
                    f"packet distribution supports at most {self.max_receivers} receivers"
                ) from None
            self._slots[idx] = _Registration(receiver_info, phy_fcn, mac_fcn)
        log.debug(f"registered {receiver_info} in slot {idx}")
        return idx

    register_rx_fcn = register

    def unregister(self, slot: int):
        with self._lock:
            self._slots[slot] = None

    def clear(self):
        with self._lock:
            self._slots = [None] * self.max_receivers

    def send_in_band(self, packet: InBandPacket):
        """deliver to every receiver tuned to packet.carrier_freq"""
        self.stats["in_band_sent"] += 1
        for reg in list(self._slots):
            if reg is None or reg.info.carrier_freq != packet.carrier_freq:
                continue
            fcn = reg.phy()
            if fcn is not None:
                fcn(packet)
                self.stats["in_band_delivered"] += 1

    send_in_band_packets = send_in_band

    def send_out_of_band(self, packet: OutOfBandPacket):
        """deliver to every receiver of packet.cell_id"""
        self.stats["out_of_band_sent"] += 1
        for reg in list(self._slots):
            if reg is None or reg.info.cell_id != packet.cell_id:
                continue
            fcn = reg.mac()
            if fcn is not None:
                fcn(packet)
                self.stats["out_of_band_delivered"] += 1

    send_out_of_band_packets = send_out_of_band


def setup_packet_distribution(phy_config, gnb, ues, hub: PacketDistribution):
    """
    register the UEs at the downlink carrier with their RNTI and the gNB at
    the uplink carrier, then hand the hub's send functions to every PHY and
    MAC of the cell
    """
    for ue in ues:
        info = ReceiverInfo(phy_config.dl_carrier_freq, phy_config.cell_id, ue.rnti)
        hub.register(info, ue.phy_entity.store_reception, ue.mac_entity.control_rx)
    info = ReceiverInfo(phy_config.ul_carrier_freq, phy_config.cell_id, None)
    hub.register(info, gnb.phy_entity.store_reception, gnb.mac_entity.control_rx)

    for node in (gnb, *ues):
        node.phy_entity.register_in_band_tx_fcn(hub.send_in_band)
        node.mac_entity.register_out_of_band_tx_fcn(hub.send_out_of_band)
