"""Unit tests for payload decoding into typed records.

Payloads are the body lines a daemon sends (header line already removed),
mostly taken from the canned replies in conftest.RESPONSES.
"""

from datetime import datetime, timedelta, timezone

import pytest

from conftest import RESPONSES
from rrdcachedctl import (
    Fetch, FetchBin, FetchBinDS, FetchRow, Info, InvalidResponseError, Queue,
    Stats,
)
from rrdcachedctl.records import (
    BINARY, TEXT, decode, decode_fetch, decode_fetchbin, decode_info,
    decode_queue, decode_stats, decode_timestamp, split_series,
)


def _utc(ts):
    return datetime.fromtimestamp(ts, tz=timezone.utc)


def _body(name):
    return list(RESPONSES[name][1:])


FETCH_HEADER = [
    "FlushVersion: 1",
    "Start: 1499908800",
    "End: 1499995500",
    "Step: 300",
    "DSCount: 2",
]


# ---------------------------------------------------------------------------
# Header scanning
# ---------------------------------------------------------------------------

class TestSplitSeries:
    """Tests for split_series()."""

    def test_text_marker(self):
        record = Fetch()
        series = split_series(FETCH_HEADER + ["DSName: watts amps", "row"],
                              record, "fetch")
        assert series.kind == TEXT
        assert series.names == ["watts", "amps"]
        assert series.lines == ["row"]
        assert record.flush_version == 1
        assert record.start == _utc(1499908800)
        assert record.end == _utc(1499995500)
        assert record.step == timedelta(seconds=300)
        assert record.count == 2

    def test_binary_marker_keeps_marker_line(self):
        record = FetchBin()
        lines = FETCH_HEADER + ["DSName-watts: BinaryData 1441 8 LITTLE"]
        series = split_series(lines, record, "fetchbin")
        assert series.kind == BINARY
        assert series.names == []
        assert series.lines == ["DSName-watts: BinaryData 1441 8 LITTLE"]

    def test_ds_prefix_stripped(self):
        record = Fetch()
        split_series(["DSCount: 1", "DSName: watts"], record, "fetch")
        assert record.count == 1

    def test_unrecognised_lines_skipped(self):
        record = Fetch()
        series = split_series(["# comment", "DSCount: 1", "DSName: watts"],
                              record, "fetch")
        assert series.names == ["watts"]

    def test_unknown_field(self):
        with pytest.raises(InvalidResponseError) as excinfo:
            split_series(["Colour: blue", "DSName: watts"], Fetch(), "fetch")
        assert excinfo.value.reason == "fetch: unknown field"
        assert excinfo.value.lines == ["Colour: blue"]

    def test_bad_field_value(self):
        with pytest.raises(InvalidResponseError, match="field Start"):
            split_series(["Start: soon", "DSName: watts"], Fetch(), "fetch")

    def test_missing_marker(self):
        with pytest.raises(InvalidResponseError) as excinfo:
            split_series(FETCH_HEADER, Fetch(), "fetch")
        assert excinfo.value.reason == "fetch: missing ds name"
        assert excinfo.value.lines == FETCH_HEADER

    def test_name_count_mismatch(self):
        with pytest.raises(InvalidResponseError) as excinfo:
            split_series(FETCH_HEADER + ["DSName: watts"], Fetch(), "fetch")
        assert excinfo.value.reason == "fetch: invalid ds name count"


# ---------------------------------------------------------------------------
# fetch
# ---------------------------------------------------------------------------

class TestDecodeFetch:
    """Tests for decode_fetch()."""

    def test_canned_reply(self):
        result = decode_fetch(_body("fetch"))
        assert result == Fetch(
            flush_version=1,
            start=_utc(1499908800),
            end=_utc(1499995500),
            step=timedelta(seconds=300),
            count=2,
            names=["watts", "amps"],
            rows=[
                FetchRow(time=_utc(1499909100),
                         values=[8.0, 1733.35123697916674]),
                FetchRow(time=_utc(1499909400), values=[None, None]),
            ],
        )

    @pytest.mark.parametrize("nan", ["nan", "-nan", "NaN"])
    def test_nan_spellings(self, nan):
        lines = ["DSCount: 1", "DSName: watts", "1499909100: " + nan]
        assert decode_fetch(lines).rows[0].values == [None]

    def test_no_rows(self):
        result = decode_fetch(FETCH_HEADER + ["DSName: watts amps"])
        assert result.rows == []

    def test_value_count_mismatch(self):
        lines = FETCH_HEADER + ["DSName: watts amps", "1499909100: 1.0"]
        with pytest.raises(InvalidResponseError) as excinfo:
            decode_fetch(lines)
        assert excinfo.value.reason == "fetch: invalid ds val count"
        assert excinfo.value.lines == ["1499909100: 1.0"]

    def test_bad_value(self):
        lines = ["DSCount: 1", "DSName: watts", "1499909100: lots"]
        with pytest.raises(InvalidResponseError, match="invalid ds val"):
            decode_fetch(lines)

    def test_bad_timestamp(self):
        lines = ["DSCount: 1", "DSName: watts", "later: 1.0"]
        with pytest.raises(InvalidResponseError, match="fetch: invalid ds"):
            decode_fetch(lines)

    def test_row_without_colon(self):
        lines = ["DSCount: 1", "DSName: watts", "1499909100 1.0"]
        with pytest.raises(InvalidResponseError, match="unsupported value"):
            decode_fetch(lines)

    def test_binary_payload_rejected(self):
        with pytest.raises(InvalidResponseError,
                           match="fetch: unexpected ds name"):
            decode_fetch(_body("fetchbin"))


# ---------------------------------------------------------------------------
# fetchbin
# ---------------------------------------------------------------------------

class TestDecodeFetchBin:
    """Tests for decode_fetchbin()."""

    def test_canned_reply(self):
        result = decode_fetchbin(_body("fetchbin"))
        assert result.count == 2
        assert result.step == timedelta(seconds=300)
        assert result.ds == [
            FetchBinDS(name="watts", records=1441, size=8, endian="little"),
            FetchBinDS(name="amps", records=1441, size=8, endian="little"),
        ]

    def test_big_endian(self):
        lines = ["DSCount: 1", "DSName-x: BinaryData 10 4 BIG"]
        assert decode_fetchbin(lines).ds[0].endian == "big"

    def test_text_payload_rejected(self):
        with pytest.raises(InvalidResponseError,
                           match="fetchbin: unexpected ds name"):
            decode_fetchbin(_body("fetch"))

    def test_descriptor_count_mismatch(self):
        lines = FETCH_HEADER + ["DSName-watts: BinaryData 1441 8 LITTLE"]
        with pytest.raises(InvalidResponseError,
                           match="fetchbin: invalid ds count"):
            decode_fetchbin(lines)

    @pytest.mark.parametrize("line,reason", [
        ("DSName-x: BinaryData 10 8", "fetchbin: row invalid ds"),
        ("DSName-x BinaryData 10 8 LITTLE", "fetchbin: row invalid ds"),
        ("DSName-x: BinaryData ten 8 LITTLE", "fetchbin: row invalid records"),
        ("DSName-x: BinaryData 10 eight LITTLE", "fetchbin: row invalid size"),
        ("DSName-x: BinaryData 10 8 MIDDLE", "fetchbin: row invalid endian"),
    ])
    def test_bad_descriptor(self, line, reason):
        with pytest.raises(InvalidResponseError) as excinfo:
            decode_fetchbin(["DSCount: 1", line])
        assert excinfo.value.reason == reason


# ---------------------------------------------------------------------------
# stats, info, queue, timestamps
# ---------------------------------------------------------------------------

class TestDecodeStats:
    """Tests for decode_stats()."""

    def test_canned_reply(self):
        assert decode_stats(_body("stats")) == Stats(
            queue_length=0,
            updates_received=1061847698,
            flushes_received=1690,
            updates_written=149201370,
            data_sets_written=1061709625,
            tree_nodes_number=30727,
            tree_depth=18,
            journal_bytes=0,
            journal_rotate=0,
        )

    def test_unknown_key_ignored(self):
        result = decode_stats(["QueueLength: 4", "ShinyNewCounter: 7"])
        assert result == Stats(queue_length=4)

    def test_bad_value(self):
        with pytest.raises(InvalidResponseError, match="stats: invalid val"):
            decode_stats(["QueueLength: many"])

    def test_unrecognised_line(self):
        with pytest.raises(InvalidResponseError):
            decode_stats(["garbage"])


class TestDecodeInfo:
    """Tests for decode_info()."""

    def test_canned_reply(self):
        entries = decode_info(_body("info"))
        assert len(entries) == 12
        assert entries[0] == Info(key="filename", value="test.rrd")
        assert entries[1] == Info(key="rrd_version", value="0003")
        assert entries[2] == Info(key="step", value=300)
        assert entries[8] == Info(key="ds[watts].min", value=0.0)
        assert entries[9] == Info(key="ds[watts].max", value=24000.0)
        assert entries[10] == Info(key="ds[watts].last_ds", value="U")

    def test_value_types(self):
        entries = decode_info(["a 0 1.5e+00", "b 1 7", "c 2 text"])
        assert [type(e.value) for e in entries] == [float, int, str]

    def test_string_value_keeps_spaces(self):
        assert decode_info(["note 2 two words"])[0].value == "two words"

    def test_unknown_type_tag(self):
        with pytest.raises(InvalidResponseError, match="unknown type 9"):
            decode_info(["step 9 300"])

    @pytest.mark.parametrize("line", ["step 1 fast", "ds[x].min 0 low"])
    def test_bad_typed_value(self, line):
        with pytest.raises(InvalidResponseError):
            decode_info([line])

    def test_too_few_parts(self):
        with pytest.raises(InvalidResponseError, match="info: invalid parts"):
            decode_info(["step 1"])


class TestDecodeQueue:
    """Tests for decode_queue()."""

    def test_canned_reply(self):
        assert decode_queue(_body("queue")) == [Queue(size=10,
                                                      file="test.rrd")]

    def test_bad_size(self):
        with pytest.raises(InvalidResponseError, match="queue: invalid num"):
            decode_queue(["ten test.rrd"])

    def test_missing_file(self):
        with pytest.raises(InvalidResponseError,
                           match="queue: invalid parts"):
            decode_queue(["10"])


class TestDecodeTimestamp:
    """Tests for decode_timestamp()."""

    def test_value(self):
        assert decode_timestamp(["1240782000"]) == _utc(1240782000)

    def test_timezone_aware(self):
        assert decode_timestamp(["0"]).tzinfo is not None

    def test_not_a_number(self):
        with pytest.raises(InvalidResponseError, match="parse int"):
            decode_timestamp(["yesterday"])

    @pytest.mark.parametrize("lines", [[], ["1", "2"]])
    def test_wrong_line_count(self, lines):
        with pytest.raises(InvalidResponseError):
            decode_timestamp(lines)


# ---------------------------------------------------------------------------
# Rendering back to wire lines
# ---------------------------------------------------------------------------

class TestRoundTrip:
    """Records render to payload lines that decode to an equal record."""

    def test_fetch(self):
        rec = decode_fetch(_body("fetch"))
        assert decode(rec.to_lines(), Fetch) == rec

    def test_fetch_renders_nan(self):
        rec = decode_fetch(_body("fetch"))
        assert rec.to_lines()[-1] == "1499909400: nan nan"

    def test_fetchbin(self):
        rec = decode_fetchbin(_body("fetchbin"))
        assert rec.to_lines() == _body("fetchbin")
        assert decode(rec.to_lines(), FetchBin) == rec

    def test_stats(self):
        rec = decode_stats(_body("stats"))
        assert rec.to_lines() == _body("stats")

    def test_info(self):
        entries = decode_info(_body("info"))
        assert [e.to_line() for e in entries] == _body("info")

    @pytest.mark.parametrize("value", [1.0 / 3, 0.1, 1e-300, -2.5e17])
    def test_info_float_precision(self, value):
        entries = [Info(key="ds[watts].max", value=value)]
        assert decode([e.to_line() for e in entries], Info) == entries

    def test_info_exact_float_keeps_daemon_format(self):
        assert Info(key="ds[watts].max", value=24000.0).to_line() == \
            "ds[watts].max 0 2.4000000000e+04"

    def test_info_bool_renders_as_int(self):
        entry = Info(key="ds[watts].flag", value=True)
        assert entry.to_line() == "ds[watts].flag 1 1"
        assert decode([entry.to_line()], Info) == [
            Info(key="ds[watts].flag", value=1)]

    def test_queue(self):
        entries = decode_queue(_body("queue"))
        assert decode([e.to_line() for e in entries], Queue) == entries

    def test_unknown_shape(self):
        with pytest.raises(TypeError):
            decode([], str)
