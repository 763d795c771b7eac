"""
Node Simulation Engine

Uses Game Loop pattern to step every node of a cell by the same tick
granularity: all nodes run, then all node clocks advance
"""

import abc
import logging
import time
from concurrent.futures import ProcessPoolExecutor
from typing import Callable, Optional, TYPE_CHECKING

from nrisac.core import logger as simlog
from nrisac.core.config import SYMBOLS_PER_SLOT

if TYPE_CHECKING:
    from nrisac.core.node import Node

log = logging.getLogger(__name__)


class SimulationEntity(abc.ABC):
    """simulation entity"""

    def __init__(self, name: str):
        self.name = name
        self.current_tick = 0
        self.debug_mode = False

    def update(self, tick: int):
        """called every tick"""
        self.current_tick = tick

    def reset(self):
        """reset entity state"""
        self.current_tick = 0

    def set_name(self, name: str):
        self.name = name

    def setmode(self, mode: str):
        """
        mode: 'debug' enables per-entity debug log, anything else disables it
        """
        self.debug_mode = mode == "debug"

    def debug_log(self, msg: str):
        if self.debug_mode:
            logging.getLogger(type(self).__module__).debug(
                f"[TICK {self.current_tick}][{self.name}] {msg}"
            )

    def __str__(self):
        return f"SimulationEntity({self.name})"


class SimulationEngine:
    """cell simulation engine - main loop driver"""

    def __init__(self, tick_granularity: int = SYMBOLS_PER_SLOT, debug: bool = False):
        """
        Args:
            tick_granularity: OFDM symbols per tick, 1 for symbol based
                scheduling, 14 for slot based scheduling
            debug: log start / end banners of each run
        """
        if tick_granularity not in (1, SYMBOLS_PER_SLOT):
            raise ValueError(
                f"tick_granularity must be 1 or {SYMBOLS_PER_SLOT}, got {tick_granularity}"
            )
        self.tick_granularity = tick_granularity
        self.current_tick = 0
        self.nodes: list["Node"] = []
        self.entities: list[SimulationEntity] = []
        self.running = False

        self.stats = {
            "total_ticks": 0,
            "total_time_us": 0.0,
            "simulation_speed": 0.0,  # simulated time / wallclock time
        }

        self.debug = debug

    def set_debug(self, debug: bool):
        self.debug = debug

    def register_node(self, node: "Node"):
        """register a gNB / UE node; nodes run in registration order"""
        self.nodes.append(node)

    def register_entity(self, entity: SimulationEntity):
        """register an auxiliary entity updated once per tick"""
        self.entities.append(entity)

    def current_time_us(self) -> float:
        if self.nodes:
            return self.nodes[0].get_current_time()
        return 0.0

    def step(self) -> bool:
        """
        execute one tick, return True if an entity asked to stop
        """
        for node in self.nodes:
            node.run()

        stop = False
        for entity in self.entities:
            if entity.update(self.current_tick) == 1:
                stop = True

        for node in self.nodes:
            node.advance_timer(self.tick_granularity)

        simlog.setSimTime(self.current_time_us())
        self.current_tick += 1
        return stop

    def run(self, duration_ticks: int):
        """
        run the simulation

        Args:
            duration_ticks: number of ticks to run
        """
        self.running = True
        start_wallclock = time.time()
        start_time_us = self.current_time_us()

        if self.debug:
            log.info(
                f"Starting simulation for {duration_ticks} ticks, "
                f"{self.tick_granularity} symbol(s)/tick, {len(self.nodes)} nodes"
            )

        executed = 0
        for _ in range(duration_ticks):
            executed += 1
            if self.step():
                log.info(f"Simulation ending early at tick {self.current_tick} due to entity request.")
                break

        wallclock_time = time.time() - start_wallclock
        simulated_time_us = self.current_time_us() - start_time_us

        self.stats["total_ticks"] += executed
        self.stats["total_time_us"] += simulated_time_us
        self.stats["simulation_speed"] = (
            simulated_time_us * 1e-6 / wallclock_time if wallclock_time > 0 else 0
        )

        if self.debug:
            log.info(
                f"Simulation completed! simulated {simulated_time_us / 1e3:.3f} ms "
                f"in {wallclock_time:.3f} s wallclock"
            )

        self.running = False

    def reset(self):
        self.current_tick = 0
        for entity in self.entities:
            entity.reset()
        self.stats = {"total_ticks": 0, "total_time_us": 0.0, "simulation_speed": 0.0}
        log.info("Simulation reset")


def _run_instance(factory: Callable[[], SimulationEngine], duration_ticks: int) -> dict:
    engine = factory()
    engine.run(duration_ticks)
    summary = dict(engine.stats)
    summary["nodes"] = {
        node.name: node.get_rlc_statistics_all() for node in engine.nodes
    }
    return summary


def run_parallel(
    factories: list[Callable[[], SimulationEngine]],
    duration_ticks: int,
    max_workers: Optional[int] = None,
) -> list[dict]:
    """
    run independent simulation instances (one per cell or scenario) in
    separate processes, each factory must be picklable and build its own
    engine, nodes and hub
    """
    with ProcessPoolExecutor(max_workers=max_workers) as pool:
        futures = [pool.submit(_run_instance, factory, duration_ticks) for factory in factories]
        return [future.result() for future in futures]
