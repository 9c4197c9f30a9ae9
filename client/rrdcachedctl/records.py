"""Typed records decoded from rrdcached response payloads.

Fetch-style payloads open with a header block of ``Key: Value`` lines and
switch to series data at a ``DSName`` marker line:

    FlushVersion: 1
    Start: 1499908800
    ...
    DSCount: 2
    DSName: watts amps                          (fetch: text rows follow)
    DSName-watts: BinaryData 1441 8 LITTLE      (fetchbin: one per series)

Each record type declares a static table mapping wire keys onto its
attributes together with the coercion to apply.  Every record can render
itself back to the payload lines the daemon sends via ``to_lines()``.
"""

import math
import re
from collections import namedtuple
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Union

from .errors import InvalidResponseError

_VALUE_RE = re.compile(r"^(\w+):\s+(\w+)")
_STATS_RE = re.compile(r"^(\w+):?\s+(\S+)")

EPOCH = datetime.fromtimestamp(0, tz=timezone.utc)


# ---------------------------------------------------------------------------
# Field coercion
# ---------------------------------------------------------------------------

def _to_time(value: str) -> datetime:
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def _to_duration(value: str) -> timedelta:
    return timedelta(seconds=int(value))


def _from_time(value: datetime) -> str:
    return str(int(value.timestamp()))


def _from_duration(value: timedelta) -> str:
    return str(int(value.total_seconds()))


# attr: record attribute, decode: str -> value, encode: value -> str
_Field = namedtuple("_Field", ["attr", "decode", "encode"])

_INT = (int, str)

# Header block shared by fetch and fetchbin, keyed by wire name with any
# "DS" prefix removed (DSCount -> Count).
_FETCH_FIELDS = {
    "FlushVersion": _Field("flush_version", *_INT),
    "Start": _Field("start", _to_time, _from_time),
    "End": _Field("end", _to_time, _from_time),
    "Step": _Field("step", _to_duration, _from_duration),
    "Count": _Field("count", *_INT),
}  # type: Dict[str, _Field]

# Order the daemon sends the header block in.
_FETCH_WIRE_KEYS = ("FlushVersion", "Start", "End", "Step", "DSCount")

_STATS_FIELDS = {
    "QueueLength": _Field("queue_length", *_INT),
    "UpdatesReceived": _Field("updates_received", *_INT),
    "FlushesReceived": _Field("flushes_received", *_INT),
    "UpdatesWritten": _Field("updates_written", *_INT),
    "DataSetsWritten": _Field("data_sets_written", *_INT),
    "TreeNodesNumber": _Field("tree_nodes_number", *_INT),
    "TreeDepth": _Field("tree_depth", *_INT),
    "JournalBytes": _Field("journal_bytes", *_INT),
    "JournalRotate": _Field("journal_rotate", *_INT),
}  # type: Dict[str, _Field]

# Type tags carried by info lines.
INFO_FLOAT = "0"
INFO_INT = "1"
INFO_STRING = "2"

_ENDIAN = {"LITTLE": "little", "BIG": "big"}


def _set_field(record: object, fields: Dict[str, _Field], key: str,
               value: str, line: str) -> bool:
    """Coerce *value* onto the attribute *key* maps to.

    Returns False if *key* is not in *fields*.
    """
    spec = fields.get(key)
    if spec is None:
        return False
    try:
        setattr(record, spec.attr, spec.decode(value))
    except (ValueError, OverflowError, OSError):
        raise InvalidResponseError(
            "invalid value {} for field {}".format(value, key), line)
    return True


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

@dataclass
class FetchCommon:
    """Header fields shared by fetch and fetchbin results."""

    flush_version: int = 0
    start: datetime = EPOCH
    end: datetime = EPOCH
    step: timedelta = timedelta(0)
    count: int = 0

    def header_lines(self) -> List[str]:
        lines = []
        for wire_key in _FETCH_WIRE_KEYS:
            spec = _FETCH_FIELDS[_strip_ds(wire_key)]
            lines.append("{}: {}".format(
                wire_key, spec.encode(getattr(self, spec.attr))))
        return lines


@dataclass
class FetchRow:
    """One timestamped row of a text fetch.  Unknown values are None."""

    time: datetime
    values: List[Optional[float]] = field(default_factory=list)

    def to_line(self) -> str:
        vals = ["nan" if v is None else "{:.17e}".format(v)
                for v in self.values]
        return "{}: {}".format(_from_time(self.time), " ".join(vals))


@dataclass
class Fetch(FetchCommon):
    """Result of a ``fetch`` command."""

    names: List[str] = field(default_factory=list)
    rows: List[FetchRow] = field(default_factory=list)

    def to_lines(self) -> List[str]:
        lines = self.header_lines()
        lines.append("DSName: {}".format(" ".join(self.names)))
        lines.extend(row.to_line() for row in self.rows)
        return lines


@dataclass
class FetchBinDS:
    """Descriptor for one series of a binary fetch.

    ``endian`` is ``"little"`` or ``"big"``, ready for ``int.from_bytes``
    or :mod:`struct`.
    """

    name: str
    records: int
    size: int
    endian: str

    def to_line(self) -> str:
        return "DSName-{}: BinaryData {} {} {}".format(
            self.name, self.records, self.size, self.endian.upper())


@dataclass
class FetchBin(FetchCommon):
    """Result of a ``fetchbin`` command."""

    ds: List[FetchBinDS] = field(default_factory=list)

    def to_lines(self) -> List[str]:
        return self.header_lines() + [d.to_line() for d in self.ds]


@dataclass
class Stats:
    """Daemon statistics returned by ``stats``."""

    queue_length: int = 0
    updates_received: int = 0
    flushes_received: int = 0
    updates_written: int = 0
    data_sets_written: int = 0
    tree_nodes_number: int = 0
    tree_depth: int = 0
    journal_bytes: int = 0
    journal_rotate: int = 0

    def to_lines(self) -> List[str]:
        return ["{}: {}".format(key, getattr(self, spec.attr))
                for key, spec in _STATS_FIELDS.items()]


@dataclass
class Info:
    """One ``info`` entry, e.g. ``ds[watts].min`` -> ``0.0``."""

    key: str
    value: Union[float, int, str]

    def to_line(self) -> str:
        if isinstance(self.value, float):
            # daemon precision when exact, otherwise enough digits to
            # decode back to the same float
            rendered = "{:.10e}".format(self.value)
            if float(rendered) != self.value:
                rendered = "{:.17e}".format(self.value)
            return "{} {} {}".format(self.key, INFO_FLOAT, rendered)
        if isinstance(self.value, bool):
            return "{} {} {}".format(self.key, INFO_INT, int(self.value))
        if isinstance(self.value, int):
            return "{} {} {}".format(self.key, INFO_INT, self.value)
        return "{} {} {}".format(self.key, INFO_STRING, self.value)


@dataclass
class Queue:
    """One file waiting on the daemon's write queue."""

    size: int
    file: str

    def to_line(self) -> str:
        return "{} {}".format(self.size, self.file)


# ---------------------------------------------------------------------------
# Fetch decoding
# ---------------------------------------------------------------------------

TEXT = "text"
BINARY = "binary"

# Result of scanning a fetch header: which marker ended it, the series
# names (text form only) and the lines left for the row decoder.
SeriesData = namedtuple("SeriesData", ["kind", "names", "lines"])


def _strip_ds(key: str) -> str:
    return key[2:] if key.startswith("DS") else key


def split_series(lines: List[str], record: FetchCommon,
                 command: str) -> SeriesData:
    """Decode the header block of a fetch payload onto *record*.

    Stops at the first ``DSName:`` (text) or ``DSName-`` (binary) line and
    returns the remainder tagged with the form found.  Header keys must
    all be known; lines that are neither markers nor ``Key: Value`` are
    skipped.
    """
    for i, line in enumerate(lines):
        if line.startswith("DSName:"):
            names = line[7:].strip().split(" ")
            if len(names) != record.count:
                raise InvalidResponseError(
                    command + ": invalid ds name count", line)
            return SeriesData(TEXT, names, lines[i + 1:])
        if line.startswith("DSName-"):
            return SeriesData(BINARY, [], lines[i:])
        match = _VALUE_RE.match(line)
        if match is None:
            continue
        key = _strip_ds(match.group(1))
        if not _set_field(record, _FETCH_FIELDS, key, match.group(2), line):
            raise InvalidResponseError(command + ": unknown field", line)

    raise InvalidResponseError(command + ": missing ds name", *lines)


def _decode_row(line: str, names: List[str]) -> FetchRow:
    ts, sep, rest = line.partition(":")
    if not sep:
        raise InvalidResponseError("fetch: unsupported value", line)
    try:
        row = FetchRow(time=_to_time(ts))
    except (ValueError, OverflowError, OSError):
        raise InvalidResponseError("fetch: invalid ds", line)

    vals = rest.strip().split(" ")
    if len(vals) != len(names):
        raise InvalidResponseError("fetch: invalid ds val count", line)
    for val in vals:
        try:
            v = float(val)
        except ValueError:
            raise InvalidResponseError("fetch: invalid ds val", line)
        row.values.append(None if math.isnan(v) else v)
    return row


def _decode_bin_ds(line: str) -> FetchBinDS:
    parts = line.split(" ")
    if len(parts) != 5 or not parts[0].endswith(":"):
        raise InvalidResponseError("fetchbin: row invalid ds", line)
    try:
        records = int(parts[2])
    except ValueError:
        raise InvalidResponseError("fetchbin: row invalid records", line)
    try:
        size = int(parts[3])
    except ValueError:
        raise InvalidResponseError("fetchbin: row invalid size", line)
    endian = _ENDIAN.get(parts[4])
    if endian is None:
        raise InvalidResponseError("fetchbin: row invalid endian", line)
    return FetchBinDS(name=parts[0][7:-1], records=records, size=size,
                      endian=endian)


def decode_fetch(lines: List[str]) -> Fetch:
    """Decode a text ``fetch`` payload."""
    result = Fetch()
    series = split_series(lines, result, "fetch")
    if series.kind != TEXT:
        raise InvalidResponseError("fetch: unexpected ds name",
                                   series.lines[0])
    result.names = series.names
    result.rows = [_decode_row(line, result.names) for line in series.lines]
    return result


def decode_fetchbin(lines: List[str]) -> FetchBin:
    """Decode the descriptor part of a ``fetchbin`` payload."""
    result = FetchBin()
    series = split_series(lines, result, "fetchbin")
    if series.kind != BINARY:
        raise InvalidResponseError("fetchbin: unexpected ds name", *lines)
    if len(series.lines) != result.count:
        raise InvalidResponseError("fetchbin: invalid ds count",
                                   *series.lines)
    result.ds = [_decode_bin_ds(line) for line in series.lines]
    return result


# ---------------------------------------------------------------------------
# Flat records
# ---------------------------------------------------------------------------

def decode_stats(lines: List[str]) -> Stats:
    """Decode ``stats`` output.  Keys this client does not know are
    ignored so newer daemons keep working."""
    result = Stats()
    for line in lines:
        match = _STATS_RE.match(line)
        if match is None:
            raise InvalidResponseError("stats: unrecognised line", line)
        try:
            int(match.group(2))
        except ValueError:
            raise InvalidResponseError("stats: invalid val", line)
        _set_field(result, _STATS_FIELDS, match.group(1), match.group(2),
                   line)
    return result


def decode_info(lines: List[str]) -> List[Info]:
    """Decode ``info`` output of ``<key> <type> <value>`` lines."""
    entries = []
    for line in lines:
        parts = line.split(" ", 2)
        if len(parts) != 3:
            raise InvalidResponseError("info: invalid parts", line)
        key, tag, raw = parts
        if tag == INFO_STRING:
            value = raw  # type: Union[float, int, str]
        elif tag == INFO_INT:
            try:
                value = int(raw)
            except ValueError:
                raise InvalidResponseError(
                    "info: invalid int for key {}".format(key), line)
        elif tag == INFO_FLOAT:
            try:
                value = float(raw)
            except ValueError:
                raise InvalidResponseError(
                    "info: invalid float for key {}".format(key), line)
        else:
            raise InvalidResponseError(
                "info: unknown type {} for key {}".format(tag, key), line)
        entries.append(Info(key=key, value=value))
    return entries


def decode_queue(lines: List[str]) -> List[Queue]:
    """Decode ``queue`` output of ``<size> <file>`` lines."""
    queued = []
    for line in lines:
        parts = line.split(" ", 1)
        if len(parts) != 2:
            raise InvalidResponseError("queue: invalid parts", line)
        try:
            size = int(parts[0].strip())
        except ValueError:
            raise InvalidResponseError("queue: invalid num", line)
        queued.append(Queue(size=size, file=parts[1].strip()))
    return queued


def decode_timestamp(lines: List[str]) -> datetime:
    """Decode the single unix timestamp returned by ``first``/``last``."""
    if len(lines) != 1:
        raise InvalidResponseError("timestamp: unexpected lines", *lines)
    try:
        return _to_time(lines[0])
    except (ValueError, OverflowError, OSError):
        raise InvalidResponseError("timestamp: parse int", lines[0])


_DECODERS = {
    Fetch: decode_fetch,
    FetchBin: decode_fetchbin,
    Stats: decode_stats,
    Info: decode_info,
    Queue: decode_queue,
}  # type: Dict[type, Callable[[List[str]], object]]


def decode(lines: List[str], shape: type) -> object:
    """Decode *lines* as the record type *shape*.

    Info and Queue payloads hold one entry per line and decode to a list.
    """
    try:
        decoder = _DECODERS[shape]
    except KeyError:
        raise TypeError("no decoder for {!r}".format(shape))
    return decoder(lines)
