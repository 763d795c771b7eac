"""
Core module of the node simulation kernel.

Includes simulation engine, the abstract node, configuration records and
the error taxonomy.
"""

from nrisac.core.simulator import SimulationEngine, SimulationEntity, run_parallel
from nrisac.core.node import Node
from nrisac.core import errors, logger

__all__ = [
    "SimulationEngine",
    "SimulationEntity",
    "run_parallel",
    "Node",
    "errors",
    "logger",
]
