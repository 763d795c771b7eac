# test/test_distribution.py
import gc
import sys
import weakref

sys.path.append("..")

import pytest

from nrisac.core.config import FDD, GNBConfig, PhyConfig, UEConfig
from nrisac.core.errors import ConfigurationError, HubCapacityError
from nrisac.nodes import GNB, UE
from nrisac.phy.distribution import (
    InBandPacket,
    OutOfBandPacket,
    PacketDistribution,
    ReceiverInfo,
    setup_packet_distribution,
)


class TestReceiver:
    __test__ = False

    def __init__(self, name: str):
        self.name = name
        self.in_band: list[InBandPacket] = []
        self.out_of_band: list[OutOfBandPacket] = []

    def store_reception(self, packet: InBandPacket):
        self.in_band.append(packet)

    def control_rx(self, packet: OutOfBandPacket):
        self.out_of_band.append(packet)


def test_register_up_to_capacity():
    hub = PacketDistribution(max_receivers=3)
    receivers = [TestReceiver(f"rx{i}") for i in range(3)]

    slots = [
        hub.register(ReceiverInfo(3.5e9, 1, rnti), rx.store_reception, rx.control_rx)
        for rnti, rx in enumerate(receivers, start=1)
    ]
    assert slots == [0, 1, 2]
    assert len(hub) == 3

    extra = TestReceiver("rx3")
    with pytest.raises(HubCapacityError):
        hub.register(ReceiverInfo(3.5e9, 1, 4), extra.store_reception, extra.control_rx)

    hub.send_in_band(InBandPacket(carrier_freq=3.5e9, cell_id=1, rnti=1, data=b"\x01\x02"))
    for rx in receivers:
        assert len(rx.in_band) == 1, f"{rx.name} missed the broadcast"
    print("\n=== Hub Capacity Test Passed ===")


def test_capacity_error_is_configuration_error():
    hub = PacketDistribution(max_receivers=1)
    hub.register(ReceiverInfo(3.5e9, 1, 1), None, None)
    with pytest.raises(ConfigurationError):
        hub.register(ReceiverInfo(3.5e9, 1, 2), None, None)


def test_register_takes_first_free_slot():
    hub = PacketDistribution(max_receivers=3)
    for rnti in range(1, 4):
        hub.register(ReceiverInfo(3.5e9, 1, rnti), None, None)
    hub.unregister(1)
    assert hub.register(ReceiverInfo(3.5e9, 1, 7), None, None) == 1


def test_in_band_filters_by_carrier_frequency():
    hub = PacketDistribution(max_receivers=4)
    rx_low = TestReceiver("3.5GHz")
    rx_high = TestReceiver("28GHz")
    hub.register(ReceiverInfo(3.5e9, 1, 1), rx_low.store_reception, rx_low.control_rx)
    # another cell, same carrier: in-band is not filtered by cell
    rx_other_cell = TestReceiver("3.5GHz-cell2")
    hub.register(ReceiverInfo(3.5e9, 2, 1), rx_other_cell.store_reception, rx_other_cell.control_rx)
    hub.register(ReceiverInfo(28e9, 1, 2), rx_high.store_reception, rx_high.control_rx)

    hub.send_in_band(InBandPacket(carrier_freq=3.5e9, cell_id=1, rnti=2, data=b"payload"))

    assert len(rx_low.in_band) == 1
    assert len(rx_other_cell.in_band) == 1
    assert rx_high.in_band == []
    assert rx_low.in_band[0].data == b"payload"


def test_out_of_band_filters_by_cell():
    hub = PacketDistribution(max_receivers=4)
    cell1_low = TestReceiver("cell1-3.5GHz")
    cell1_high = TestReceiver("cell1-28GHz")
    cell2 = TestReceiver("cell2")
    hub.register(ReceiverInfo(3.5e9, 1, 1), cell1_low.store_reception, cell1_low.control_rx)
    hub.register(ReceiverInfo(28e9, 1, 2), cell1_high.store_reception, cell1_high.control_rx)
    hub.register(ReceiverInfo(3.5e9, 2, 1), cell2.store_reception, cell2.control_rx)

    hub.send_out_of_band(OutOfBandPacket(packet_type=1, cell_id=1, rnti=1, data=b"\x00\x00\x00\x10"))

    assert len(cell1_low.out_of_band) == 1
    assert len(cell1_high.out_of_band) == 1
    assert cell2.out_of_band == []
    assert cell1_low.in_band == []


def test_send_on_empty_registry_is_noop():
    hub = PacketDistribution(max_receivers=2)
    hub.send_in_band(InBandPacket(carrier_freq=3.5e9))
    hub.send_out_of_band(OutOfBandPacket(packet_type=1, cell_id=1))
    assert hub.stats["in_band_delivered"] == 0
    assert hub.stats["out_of_band_delivered"] == 0


def test_duplicate_registration_delivers_once():
    hub = PacketDistribution(max_receivers=4)
    rx = TestReceiver("dup")
    info = ReceiverInfo(3.5e9, 1, 1)
    first = hub.register(info, rx.store_reception, rx.control_rx)
    second = hub.register_rx_fcn(info, rx.store_reception, rx.control_rx)

    assert first == second
    assert len(hub) == 1
    hub.send_in_band_packets(InBandPacket(carrier_freq=3.5e9, cell_id=1, rnti=1))
    hub.send_out_of_band_packets(OutOfBandPacket(packet_type=2, cell_id=1, rnti=1))
    assert len(rx.in_band) == 1
    assert len(rx.out_of_band) == 1


def test_hub_does_not_keep_receivers_alive():
    hub = PacketDistribution(max_receivers=2)
    rx = TestReceiver("short-lived")
    hub.register(ReceiverInfo(3.5e9, 1, 1), rx.store_reception, rx.control_rx)
    ref = weakref.ref(rx)

    del rx
    gc.collect()

    assert ref() is None
    # the stale record is skipped
    hub.send_in_band(InBandPacket(carrier_freq=3.5e9, cell_id=1, rnti=1))
    hub.send_out_of_band(OutOfBandPacket(packet_type=1, cell_id=1))
    assert hub.stats["in_band_delivered"] == 0
    assert len(hub) == 0


def test_collected_receiver_frees_its_slot():
    hub = PacketDistribution(max_receivers=1)
    info = ReceiverInfo(3.5e9, 1, 1)
    old = TestReceiver("old")
    hub.register(info, old.store_reception, old.control_rx)

    del old
    gc.collect()

    # same receiver info, new object: a fresh registration in the freed slot
    new = TestReceiver("new")
    assert hub.register(info, new.store_reception, new.control_rx) == 0
    assert len(hub) == 1
    hub.send_in_band(InBandPacket(carrier_freq=3.5e9, cell_id=1, rnti=1))
    assert len(new.in_band) == 1


def test_setup_packet_distribution_registers_cell():
    phy_config = PhyConfig(
        num_rbs=25,
        scs=15,
        cell_id=1,
        duplex_mode=FDD,
        ul_carrier_freq=3.5e9,
        dl_carrier_freq=3.6e9,
        ul_bandwidth=5e6,
        dl_bandwidth=5e6,
    )
    gnb = GNB(GNBConfig(num_ues=2))
    ues = [UE(UEConfig(rnti=rnti)) for rnti in (1, 2)]
    for node in (gnb, *ues):
        node.configure_phy(phy_config)
    hub = PacketDistribution(max_receivers=3)

    setup_packet_distribution(phy_config, gnb, ues, hub)

    assert len(hub) == 3
    for node in (gnb, *ues):
        assert node.phy_entity.in_band_tx_fcn == hub.send_in_band
        assert node.mac_entity.out_of_band_tx_fcn == hub.send_out_of_band

    # a downlink packet for RNTI 2 is buffered by UE 2 only
    hub.send_in_band(InBandPacket(carrier_freq=3.6e9, cell_id=1, rnti=2, data=b"dl"))
    assert 2 in ues[1].phy_entity.rx_buffer
    assert ues[0].phy_entity.rx_buffer == {}
    assert gnb.phy_entity.rx_buffer == {}
