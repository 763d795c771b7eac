"""
configuration records for nodes, cells and logical channels

all limits are plain constructor inputs so the kernel can be exercised at a
small scale in tests
"""

import math
from dataclasses import dataclass, field, replace
from enum import IntEnum
from typing import Optional, Sequence

import numpy as np

from nrisac.core.errors import ConfigurationError, InsufficientDuplexSpacing, InvalidCarrierFrequency

MAX_RNTI = 65519
MAX_CELL_ID = 1007
MAX_RBS = 275
VALID_SCS = (15, 30, 60, 120, 240)  # kHz
SYMBOLS_PER_SLOT = 14

FDD = 0
TDD = 1


@dataclass(frozen=True)
class NodeLimits:
    max_applications: int = 16
    max_logical_channels: int = 4


def check_int(value, name: str, low: int, high: int) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, np.integer)):
        raise ConfigurationError(f"{name} must be an integer, got {value!r}")
    if not low <= value <= high:
        raise ConfigurationError(f"{name} must be in [{low}, {high}], got {value}")
    return int(value)


def check_non_negative(value, name: str) -> float:
    if value is None:
        raise ConfigurationError(f"{name} must be specified")
    if not math.isfinite(value) or value < 0:
        raise ConfigurationError(f"{name} must be finite and >= 0, got {value}")
    return float(value)


def check_position(position: Sequence[float], name: str) -> np.ndarray:
    pos = np.asarray(position, dtype=float)
    if pos.size != 3:
        raise ConfigurationError(f"{name} must have 3 elements (x, y, z), got {pos.size}")
    if not np.all(np.isfinite(pos)):
        raise ConfigurationError(f"{name} must be finite and not NaN, got {pos.tolist()}")
    return pos.reshape(3)


def check_scs(scs) -> int:
    if scs not in VALID_SCS:
        raise ConfigurationError(
            f"The subcarrier spacing ({scs}) must be one of the set (15, 30, 60, 120, 240)."
        )
    return int(scs)


def symbols_per_ms(scs: int) -> int:
    """number of OFDM symbols in 1 ms for the given subcarrier spacing"""
    return SYMBOLS_PER_SLOT * scs // 15


@dataclass
class GNBConfig:
    num_ues: int
    position: Sequence[float] = (0.0, 0.0, 0.0)
    scs: int = 15
    num_harq: int = 16
    limits: NodeLimits = field(default_factory=NodeLimits)

    def validate(self):
        self.num_ues = check_int(self.num_ues, "num_ues", 1, MAX_RNTI)
        self.position = check_position(self.position, "gnb_position")
        self.scs = check_scs(self.scs)
        return self


@dataclass
class UEConfig:
    rnti: int
    position: Sequence[float] = (0.0, 0.0, 0.0)
    scs: int = 15
    num_harq: int = 16
    limits: NodeLimits = field(default_factory=NodeLimits)

    def validate(self):
        self.position = check_position(self.position, "ue_position")
        self.rnti = check_int(self.rnti, "rnti", 1, MAX_RNTI)
        self.scs = check_scs(self.scs)
        return self


@dataclass
class PhyConfig:
    """cell-wide carrier configuration shared by the gNB and its UEs"""

    num_rbs: int
    scs: int = 15
    cell_id: int = 1
    duplex_mode: int = FDD
    ul_carrier_freq: Optional[float] = None
    dl_carrier_freq: Optional[float] = None
    ul_bandwidth: Optional[float] = None
    dl_bandwidth: Optional[float] = None


@dataclass
class CellConfig:
    n_cell_id: int = 1
    duplex_mode: int = FDD


@dataclass
class CarrierInformation:
    subcarrier_spacing: int
    n_rbs_dl: int
    n_rbs_ul: int
    ul_freq: Optional[float] = None
    dl_freq: Optional[float] = None
    ul_bandwidth: Optional[float] = None
    dl_bandwidth: Optional[float] = None


def check_phy_config(config: PhyConfig) -> tuple[CellConfig, CarrierInformation]:
    """
    validate a cell-wide carrier configuration and split it into the records
    pushed to the PHY
    """
    num_rbs = check_int(config.num_rbs, "num_rbs", 1, MAX_RBS)
    cell_id = check_int(config.cell_id, "cell_id", 0, MAX_CELL_ID)
    duplex_mode = check_int(config.duplex_mode, "duplex_mode", FDD, TDD)
    scs = check_scs(config.scs)
    ul_freq = check_non_negative(config.ul_carrier_freq, "ul_carrier_freq")
    dl_freq = check_non_negative(config.dl_carrier_freq, "dl_carrier_freq")
    ul_bandwidth = check_non_negative(config.ul_bandwidth, "ul_bandwidth")
    dl_bandwidth = check_non_negative(config.dl_bandwidth, "dl_bandwidth")

    if duplex_mode == FDD and dl_freq - ul_freq < (dl_bandwidth + ul_bandwidth) / 2:
        raise InsufficientDuplexSpacing(
            f"DL carrier frequency must be higher than UL carrier frequency by "
            f"{1e-6 * (dl_bandwidth + ul_bandwidth) / 2:g} MHz for FDD mode"
        )
    if duplex_mode == TDD and dl_freq != ul_freq:
        raise InvalidCarrierFrequency("DL and UL carrier frequencies must have the same value for TDD mode")

    cell_config = CellConfig(n_cell_id=cell_id, duplex_mode=duplex_mode)
    carrier_information = CarrierInformation(
        subcarrier_spacing=scs,
        n_rbs_dl=num_rbs,
        n_rbs_ul=num_rbs,
        ul_freq=ul_freq,
        dl_freq=dl_freq,
        ul_bandwidth=ul_bandwidth,
        dl_bandwidth=dl_bandwidth,
    )
    return cell_config, carrier_information


class RLCEntityType(IntEnum):
    """
    RLC entity type of a logical channel.

    The values name the link direction of the channel as seen by the network:
    UM_DL carries downlink data only, UM_UL uplink data only. An RLC entity
    however is built by role, transmitter or receiver. A downlink-only channel
    is a transmitter at the gNB and a receiver at the UE, so the UE side maps
    UM_DL <-> UM_UL through for_terminal() before the entity is constructed.
    """

    UM_DL = 0
    UM_UL = 1
    UM_BIDIRECTIONAL = 2
    AM = 3

    def for_terminal(self) -> "RLCEntityType":
        if self is RLCEntityType.UM_DL:
            return RLCEntityType.UM_UL
        if self is RLCEntityType.UM_UL:
            return RLCEntityType.UM_DL
        return self

    @property
    def has_tx(self) -> bool:
        return self in (RLCEntityType.UM_DL, RLCEntityType.UM_BIDIRECTIONAL, RLCEntityType.AM)

    @property
    def has_rx(self) -> bool:
        return self in (RLCEntityType.UM_UL, RLCEntityType.UM_BIDIRECTIONAL, RLCEntityType.AM)


@dataclass
class RLCChannelConfig:
    entity_type: RLCEntityType = RLCEntityType.UM_BIDIRECTIONAL
    logical_channel_id: int = 4
    # (tx, rx) sequence number field lengths in bits
    seq_num_field_length: tuple[int, int] = (6, 6)
    max_tx_buffer_sdus: int = 64
    poll_pdu: int = 4
    poll_byte: int = 1  # kB
    poll_retransmit_timer: int = 10  # ms
    reassembly_timer: int = 10  # ms
    status_prohibit_timer: int = 10  # ms
    max_retransmissions: int = 4
    lcgid: int = 1
    priority: int = 1
    pbr: int = 8  # kB/s
    bsd: int = 10  # ms
    # filled in by the owning node
    rnti: int = 1
    max_reassembly_sdu: int = 16

    def copy(self, **changes) -> "RLCChannelConfig":
        return replace(self, **changes)


@dataclass(frozen=True)
class LogicalChannelInfo:
    """reduced logical channel descriptor kept by the MAC"""

    rnti: int
    lcid: int
    priority: int
    lcgid: int
    pbr: int
    bsd: int

    @classmethod
    def from_rlc_config(cls, config: RLCChannelConfig, rnti: int) -> "LogicalChannelInfo":
        return cls(
            rnti=rnti,
            lcid=config.logical_channel_id,
            priority=config.priority,
            lcgid=config.lcgid,
            pbr=config.pbr,
            bsd=config.bsd,
        )
