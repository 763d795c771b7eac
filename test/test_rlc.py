# test/test_rlc.py
import sys

sys.path.append("..")

import pytest

from nrisac.core.config import RLCChannelConfig, RLCEntityType
from nrisac.core.errors import ConfigurationError, InvalidSDUSize
from nrisac.rlc import AMEntity, RLCBufferStatus, UMEntity
from nrisac.rlc.entity import mac_header_length

from utils import generate_random_data


class SDUSink:
    def __init__(self):
        self.sdus: list[bytes] = []
        self.rntis: list[int] = []

    def __call__(self, sdu: bytes, rnti: int):
        self.sdus.append(sdu)
        self.rntis.append(rnti)


def um_pair(**changes) -> tuple[UMEntity, UMEntity, SDUSink]:
    config = RLCChannelConfig(rnti=3, logical_channel_id=4, **changes)
    tx, rx = UMEntity(config), UMEntity(config)
    sink = SDUSink()
    rx.register_app_receiver_fcn(sink)
    return tx, rx, sink


def am_pair(**changes) -> tuple[AMEntity, AMEntity, SDUSink]:
    config = RLCChannelConfig(
        entity_type=RLCEntityType.AM, rnti=1, logical_channel_id=5, seq_num_field_length=(12, 12), **changes
    )
    tx, rx = AMEntity(config), AMEntity(config)
    sink = SDUSink()
    rx.register_app_receiver_fcn(sink)
    return tx, rx, sink


def test_um_complete_sdu():
    tx, rx, sink = um_pair()
    reports = []
    tx.register_mac_interface_fcn(reports.append)
    sdu = generate_random_data(100)

    tx.enqueue_sdu(sdu)
    assert reports[-1] == RLCBufferStatus(rnti=3, logical_channel_id=4, buffer_status=103)

    pdus = tx.send_pdu(200, 200)
    assert len(pdus) == 1
    assert pdus[0] == b"\x00" + sdu
    assert reports[-1].buffer_status == 0

    rx.receive_pdu(pdus[0])
    assert sink.sdus == [sdu]
    assert sink.rntis == [3]


def test_um_segmentation_and_reassembly():
    tx, rx, sink = um_pair()
    sdu = generate_random_data(100)
    tx.enqueue_sdu(sdu)
    assert tx.required_grant_length() == 103

    pdus = [tx.send_pdu(40, 40) for _ in range(3)]
    assert [len(batch) for batch in pdus] == [1, 1, 1]
    first, middle, last = (batch[0] for batch in pdus)
    # first segment has no SO, later ones carry a 2 byte SO
    assert [len(first), len(middle), len(last)] == [38, 38, 31]
    assert tx.required_grant_length() == 0
    assert tx.stats["TxDataPDU"] == 3

    # out of order delivery, the SDU is handed up once complete
    rx.receive_pdu(last)
    rx.receive_pdu(first)
    assert sink.sdus == []
    rx.receive_pdu(middle)
    assert sink.sdus == [sdu]
    assert not rx.reassembly_running
    print("\n=== UM Segmentation Test Passed ===")


def test_um_twelve_bit_sequence_numbers():
    tx, rx, sink = um_pair(seq_num_field_length=(12, 12))
    sdus = [generate_random_data(60) for _ in range(2)]
    for sdu in sdus:
        tx.enqueue_sdu(sdu)

    pdus = []
    while tx.required_grant_length():
        pdus.extend(tx.send_pdu(30, 30))
    for pdu in pdus:
        rx.receive_pdu(pdu)

    assert sink.sdus == sdus
    assert tx.tx_next == 2


def test_um_reassembly_timer_expiry():
    tx, rx, sink = um_pair(reassembly_timer=10)
    tx.enqueue_sdu(generate_random_data(100))
    first = tx.send_pdu(40, 40)[0]
    middle = tx.send_pdu(40, 40)[0]
    last = tx.send_pdu(40, 40)[0]

    rx.receive_pdu(first)
    rx.receive_pdu(last)
    for _ in range(9):
        rx.handle_timer_trigger()
    assert rx.stats["TimerReassemblyTimedOut"] == 0

    rx.handle_timer_trigger()
    assert rx.stats["TimerReassemblyTimedOut"] == 1
    assert rx.stats["RxDataPDUDropped"] == 2
    assert len(rx.rx_buffer) == 0

    # a late segment of a discarded SDU is dropped as well
    rx.receive_pdu(middle)
    assert rx.stats["RxDataPDUDropped"] == 3
    assert sink.sdus == []


def test_um_duplicate_segment():
    tx, rx, sink = um_pair()
    tx.enqueue_sdu(generate_random_data(100))
    first = tx.send_pdu(40, 40)[0]

    rx.receive_pdu(first)
    rx.receive_pdu(first)
    assert rx.stats["RxDataPDUDuplicate"] == 1
    assert rx.stats["RxDataBytesDuplicate"] == 37


def test_um_tx_buffer_limit():
    tx, _, _ = um_pair(max_tx_buffer_sdus=2)
    for _ in range(3):
        tx.enqueue_sdu(generate_random_data(10))
    assert len(tx.tx_queue) == 2
    assert tx.stats["TxPacketsDropped"] == 1
    assert tx.stats["TxBytesDropped"] == 10


def test_um_direction_checks():
    downlink_only = UMEntity(RLCChannelConfig(entity_type=RLCEntityType.UM_DL))
    uplink_only = UMEntity(RLCChannelConfig(entity_type=RLCEntityType.UM_UL))

    downlink_only.enqueue_sdu(b"data")
    with pytest.raises(ConfigurationError):
        uplink_only.enqueue_sdu(b"data")
    with pytest.raises(ConfigurationError):
        downlink_only.receive_pdu(b"\x00data")


def test_sdu_size_limit():
    tx, _, _ = um_pair()
    with pytest.raises(InvalidSDUSize):
        tx.enqueue_sdu(bytes(9001))
    tx.enqueue_sdu(bytes(9000))


@pytest.mark.parametrize("lengths", [(18, 18), (6, 18), (5, 5)])
def test_um_sequence_number_length(lengths):
    with pytest.raises(ConfigurationError):
        UMEntity(RLCChannelConfig(seq_num_field_length=lengths))


@pytest.mark.parametrize("lengths", [(6, 6), (10, 10)])
def test_am_sequence_number_length(lengths):
    with pytest.raises(ConfigurationError):
        AMEntity(RLCChannelConfig(entity_type=RLCEntityType.AM, seq_num_field_length=lengths))


def test_am_status_and_retransmission():
    tx, rx, sink = am_pair()
    sdus = [generate_random_data(50) for _ in range(3)]
    for sdu in sdus:
        tx.enqueue_sdu(sdu)

    pdus = tx.send_pdu(500, 500)
    assert len(pdus) == 3
    # only the PDU that empties the buffer is polled
    assert [bool(pdu[0] & 0x40) for pdu in pdus] == [False, False, True]

    # the middle PDU is lost
    rx.receive_pdu(pdus[0])
    rx.receive_pdu(pdus[2])
    assert sink.sdus == [sdus[0], sdus[2]]
    assert rx.status_pending

    status = rx.send_pdu(100, 100)
    assert len(status) == 1
    assert rx.stats["TxControlPDU"] == 1

    tx.receive_pdu(status[0])
    assert tx.stats["RxControlPDU"] == 1
    assert list(tx.retx_queue) == [1]
    assert list(tx.sent_pdus) == [1]

    retx = tx.send_pdu(100, 100)
    assert len(retx) == 1
    assert tx.stats["ReTxDataPDU"] == 1

    rx.receive_pdu(retx[0])
    assert sorted(sink.sdus) == sorted(sdus)
    assert rx.rx_next == 3
    assert not rx.reassembly_running
    print("\n=== AM Retransmission Test Passed ===")


def test_am_status_prohibit_timer():
    tx, rx, _ = am_pair(status_prohibit_timer=10)
    tx.enqueue_sdu(generate_random_data(50))
    rx.receive_pdu(tx.send_pdu(100, 100)[0])
    rx.send_pdu(100, 100)

    # the poll of a later PDU triggers a STATUS that must wait
    tx.enqueue_sdu(generate_random_data(50))
    rx.receive_pdu(tx.send_pdu(100, 100)[0])
    assert rx.status_pending
    assert rx.required_grant_length() == 0
    assert rx.send_pdu(100, 100) == []

    for _ in range(10):
        rx.handle_timer_trigger()
    assert rx.stats["TimerStatusProhibitTimedOut"] == 1
    # STATUS without NACKs: 6 bytes + 2 byte MAC subheader
    assert rx.required_grant_length() == 8


def test_am_poll_retransmit_timer():
    tx, _, _ = am_pair(poll_retransmit_timer=10)
    tx.enqueue_sdu(generate_random_data(50))
    tx.send_pdu(100, 100)
    assert tx.required_grant_length() == 0

    for _ in range(10):
        tx.handle_timer_trigger()

    assert tx.stats["TimerPollRetransmitTimedOut"] == 1
    assert list(tx.retx_queue) == [0]
    assert tx.required_grant_length() == 54
    retx = tx.send_pdu(100, 100)
    assert retx[0][0] & 0x40


def test_am_max_retransmissions():
    tx, _, _ = am_pair(max_retransmissions=1, poll_retransmit_timer=1)
    tx.enqueue_sdu(generate_random_data(50))
    tx.send_pdu(100, 100)

    # NACK for SN 0, twice
    nack = bytes([0]) + (1).to_bytes(4, "big") + bytes([1]) + (0).to_bytes(4, "big")
    tx.receive_pdu(nack)
    tx.send_pdu(100, 100)
    tx.receive_pdu(nack)

    assert tx.stats["TxPacketsDropped"] == 1
    assert tx.sent_pdus == {}
    assert tx.required_grant_length() == 0


def test_am_segmented_transfer():
    tx, rx, sink = am_pair()
    sdu = generate_random_data(300)
    tx.enqueue_sdu(sdu)

    while tx.required_grant_length():
        for pdu in tx.send_pdu(64, 64):
            rx.receive_pdu(pdu)

    assert sink.sdus == [sdu]
    assert tx.stats["TxDataPDU"] > 1
    assert rx.stats["RxDataPDUDuplicate"] == 0


def used_bytes(pdus: list[bytes]) -> int:
    return sum(len(pdu) + mac_header_length(len(pdu)) for pdu in pdus)


@pytest.mark.parametrize("make_pair, lengths", [(um_pair, [61, 35]), (am_pair, [62, 34])])
def test_pull_stays_within_grant(make_pair, lengths):
    tx, _, _ = make_pair()
    for _ in range(2):
        tx.enqueue_sdu(generate_random_data(60))

    pdus = tx.send_pdu(100, 0)

    # the second SDU does not fit whole and is segmented to the grant
    assert [len(pdu) for pdu in pdus] == lengths
    assert used_bytes(pdus) == 100
    assert tx.required_grant_length() > 0


@pytest.mark.parametrize("make_pair", [um_pair, am_pair])
def test_pull_uses_room_beyond_grant(make_pair):
    tx, _, _ = make_pair()
    for _ in range(2):
        tx.enqueue_sdu(generate_random_data(60))

    pdus = tx.send_pdu(100, 30)

    # both SDUs fit the grant plus the room left in the transport block
    assert len(pdus) == 2
    assert used_bytes(pdus) <= 130
    assert tx.required_grant_length() == 0
