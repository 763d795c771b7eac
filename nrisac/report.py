"""
console reports of a simulation run
"""

from typing import Iterable, Optional

import numpy as np
from rich import box
from rich.console import Console
from rich.table import Table

from nrisac.rlc.entity import STAT_COLUMNS

console = Console()

# counters shown in the compact RLC table, the full matrix keeps all of them
SUMMARY_COLUMNS = (
    "RNTI",
    "LCID",
    "TxDataPDU",
    "TxDataBytes",
    "ReTxDataPDU",
    "TxPacketsDropped",
    "RxDataPDU",
    "RxDataBytes",
    "RxDataPDUDropped",
    "RxDataPDUDuplicate",
    "TimerReassemblyTimedOut",
)


def rlc_statistics_table(rows: np.ndarray, title: str = "RLC Statistics", columns: Iterable[str] = SUMMARY_COLUMNS) -> Table:
    columns = list(columns)
    index = [STAT_COLUMNS.index(name) for name in columns]
    table = Table(box=box.ROUNDED, title=title, title_style="bold")
    for name in columns:
        table.add_column(name, style="dim" if name in ("RNTI", "LCID") else "yellow", justify="right")
    for row in np.atleast_2d(rows):
        if row.size == 0:
            continue
        table.add_row(*(str(int(row[idx])) for idx in index))
    return table


def print_rlc_statistics(rows: np.ndarray, title: str = "RLC Statistics", out: Optional[Console] = None):
    """rows as returned by Node.get_rlc_statistics"""
    (out or console).print(rlc_statistics_table(rows, title))


def print_engine_summary(engine, out: Optional[Console] = None):
    out = out or console
    table = Table(box=box.ROUNDED, title="Simulation Summary", title_style="bold")
    table.add_column("Item", style="dim")
    table.add_column("Value")
    table.add_row("Nodes", str(len(engine.nodes)))
    table.add_row("Tick Granularity", f"{engine.tick_granularity} symbol(s)")
    table.add_row("Total Ticks", str(engine.stats["total_ticks"]))
    table.add_row("Simulated Time", f"{engine.stats['total_time_us'] / 1e3:.3f} ms")
    table.add_row("Simulation Speed", f"{engine.stats['simulation_speed']:.3f} x realtime")
    out.print(table)

    for node in engine.nodes:
        stats = node.get_rlc_statistics_all()
        rows = [matrix for matrix in stats.values() if matrix.size]
        if rows:
            out.print(rlc_statistics_table(np.vstack(rows), title=f"RLC Statistics - {node.name}"))
