"""Builders for ``create`` and ``update`` arguments.

These only format rrdtool syntax; nothing here talks to the daemon.

Usage::

    conn.create(
        "power.rrd",
        [options.gauge("watts", 300, 0, 24000)],
        [options.average(0.5, 1, 864000)],
        options.step(300),
    )
    conn.update("power.rrd", options.update_now(42.5))
"""

import time
from datetime import datetime, timedelta
from typing import Optional, Union

# Data source types
GAUGE = "GAUGE"
COUNTER = "COUNTER"
DCOUNTER = "DCOUNTER"
DERIVE = "DERIVE"
DDERIVE = "DDERIVE"
ABSOLUTE = "ABSOLUTE"
COMPUTE = "COMPUTE"

# Consolidation functions
AVERAGE = "AVERAGE"
MIN = "MIN"
MAX = "MAX"
LAST = "LAST"

# Holt-Winters aberrant behaviour archives
HWPREDICT = "HWPREDICT"
MHWPREDICT = "MHWPREDICT"
SEASONAL = "SEASONAL"
DEVSEASONAL = "DEVSEASONAL"
DEVPREDICT = "DEVPREDICT"
FAILURES = "FAILURES"

Seconds = Union[int, float, timedelta]
Timestamp = Union[int, float, datetime]


def _seconds(value: Seconds) -> int:
    if isinstance(value, timedelta):
        return int(value.total_seconds())
    return int(value)


def _unix(value: Timestamp) -> int:
    if isinstance(value, datetime):
        return int(value.timestamp())
    return int(value)


def _fmt(value: object) -> str:
    # rrdtool spells "unknown" as U
    return "U" if value is None else str(value)


# ---------------------------------------------------------------------------
# Create options
# ---------------------------------------------------------------------------

def step(seconds: Seconds) -> str:
    """Base interval of the new file (``-s``)."""
    return "-s {}".format(_seconds(seconds))


def start(when: Timestamp) -> str:
    """Time of the first value (``-b``)."""
    return "-b {}".format(_unix(when))


def overwrite() -> str:
    """Replace an existing file (``-O``)."""
    return "-O"


def source(path: str) -> str:
    """Prefill from an existing RRD (``-r``)."""
    return "-r {}".format(path)


def template(path: str) -> str:
    """Copy DS and RRA definitions from an existing RRD (``-t``)."""
    return "-t {}".format(path)


# ---------------------------------------------------------------------------
# Data sources
# ---------------------------------------------------------------------------

def _ds(ds_type: str, name: str, mapped: Optional[str], index: int,
        *values: object) -> str:
    if mapped:
        name += "=" + mapped
        if index:
            name += "[{}]".format(index)
    return ":".join(["DS", name, ds_type] + [_fmt(v) for v in values])


def data_source(ds_type: str, name: str, heartbeat: Seconds,
                min_value: object = None, max_value: object = None,
                mapped: Optional[str] = None, index: int = 0) -> str:
    """``DS:name:TYPE:heartbeat:min:max``.

    *mapped* and *index* fill a source mapping (``name=mapped[index]``)
    when creating from a template or source file.  A min or max of None
    is written as ``U``.
    """
    return _ds(ds_type, name, mapped, index, _seconds(heartbeat),
               min_value, max_value)


def gauge(name, heartbeat, min_value=None, max_value=None, **kwargs):
    return data_source(GAUGE, name, heartbeat, min_value, max_value, **kwargs)


def counter(name, heartbeat, min_value=None, max_value=None, **kwargs):
    return data_source(COUNTER, name, heartbeat, min_value, max_value, **kwargs)


def dcounter(name, heartbeat, min_value=None, max_value=None, **kwargs):
    return data_source(DCOUNTER, name, heartbeat, min_value, max_value, **kwargs)


def derive(name, heartbeat, min_value=None, max_value=None, **kwargs):
    return data_source(DERIVE, name, heartbeat, min_value, max_value, **kwargs)


def dderive(name, heartbeat, min_value=None, max_value=None, **kwargs):
    return data_source(DDERIVE, name, heartbeat, min_value, max_value, **kwargs)


def absolute(name, heartbeat, min_value=None, max_value=None, **kwargs):
    return data_source(ABSOLUTE, name, heartbeat, min_value, max_value, **kwargs)


def compute(name: str, rpn: str, mapped: Optional[str] = None,
            index: int = 0) -> str:
    """``DS:name:COMPUTE:rpn-expression``."""
    return _ds(COMPUTE, name, mapped, index, rpn)


# ---------------------------------------------------------------------------
# Round robin archives
# ---------------------------------------------------------------------------

def archive(cf: str, *values: object) -> str:
    """``RRA:CF:v1:v2...``."""
    return ":".join(["RRA", cf] + [_fmt(v) for v in values])


def average(xff: float, steps: int, rows: int) -> str:
    return archive(AVERAGE, xff, steps, rows)


def minimum(xff: float, steps: int, rows: int) -> str:
    return archive(MIN, xff, steps, rows)


def maximum(xff: float, steps: int, rows: int) -> str:
    return archive(MAX, xff, steps, rows)


def last(xff: float, steps: int, rows: int) -> str:
    return archive(LAST, xff, steps, rows)


def hwpredict(rows: int, alpha: float, beta: float, period: int,
              index: int) -> str:
    return archive(HWPREDICT, rows, alpha, beta, period, index)


def mhwpredict(rows: int, alpha: float, beta: float, period: int,
               index: int) -> str:
    return archive(MHWPREDICT, rows, alpha, beta, period, index)


def seasonal(period: int, gamma: float, index: int, window: float) -> str:
    return archive(SEASONAL, period, gamma, index,
                   "smoothing-window={}".format(window))


def devseasonal(period: int, gamma: float, index: int, window: float) -> str:
    return archive(DEVSEASONAL, period, gamma, index,
                   "smoothing-window={}".format(window))


def devpredict(rows: int, index: int) -> str:
    return archive(DEVPREDICT, rows, index)


def failures(rows: int, threshold: int, window: int, index: int) -> str:
    return archive(FAILURES, rows, threshold, window, index)


# ---------------------------------------------------------------------------
# Update values
# ---------------------------------------------------------------------------

def update_raw(value: str) -> str:
    """Pass an update string through, expanding a leading ``N:`` to the
    current unix time."""
    if value.startswith("N:"):
        value = "{}:{}".format(int(time.time()), value[2:])
    return value


def update(when: Timestamp, *values: object) -> str:
    """``timestamp:v1:v2...``, with None written as ``U``."""
    if not values:
        raise ValueError("update needs at least one value")
    return "{}:{}".format(_unix(when), ":".join(_fmt(v) for v in values))


def update_now(*values: object) -> str:
    """Like update() stamped with the current time."""
    return update(time.time(), *values)
