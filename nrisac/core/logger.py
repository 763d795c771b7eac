"""
logging configuration for nrisac simulations

every log record carries the current simulation time (simTime) which the
engine updates once per tick
"""

import logging
from typing import Optional

MAIN_LOG = "nrisac"

FMT_OUT = "|%(simTime)12s| %(name)-24s : %(levelname)-7s > %(message)s"
FMT_FILE = "|%(simTime)12s %(asctime)s| %(name)s %(levelname)s %(funcName)s : %(message)s"

# simulation time shown in log records, in microseconds
simTime = "0.0"

_baseFactory = logging.getLogRecordFactory()


def customRecordFactory(*args, **kwargs) -> logging.LogRecord:
    record = _baseFactory(*args, **kwargs)
    record.simTime = simTime
    return record


logging.setLogRecordFactory(customRecordFactory)


def setSimTime(time_us: float):
    global simTime
    simTime = f"{time_us:.1f}"


def setup(
    level: int = logging.INFO,
    file_name: Optional[str] = None,
    file_level: int = logging.DEBUG,
) -> logging.Logger:
    """
    attach a console handler (and optionally a file handler) to the main
    nrisac logger, replacing handlers from a previous setup call
    """
    log = logging.getLogger(MAIN_LOG)
    for handler in list(log.handlers):
        log.removeHandler(handler)
        handler.close()

    console = logging.StreamHandler()
    console.setLevel(level)
    console.setFormatter(logging.Formatter(FMT_OUT))
    log.addHandler(console)

    if file_name:
        file_handler = logging.FileHandler(file_name, mode="w")
        file_handler.setLevel(file_level)
        file_handler.setFormatter(logging.Formatter(FMT_FILE))
        log.addHandler(file_handler)
        level = min(level, file_level)

    log.setLevel(level)
    log.propagate = False
    return log
