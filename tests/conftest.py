"""Shared fixtures and helpers for rrdcachedctl tests.

The tests run against FakeDaemon, a threaded loopback server that answers
each command with the canned rrdcached reply in RESPONSES.  Nothing
outside the test process is needed.

Usage:
    pytest tests/ -v
"""

import io
import os
import socket
import sys
import threading

import pytest

# Add the client library to the path so tests can import rrdcachedctl
_client_dir = os.path.join(
    os.path.dirname(os.path.dirname(os.path.abspath(__file__))),
    "client",
)
if _client_dir not in sys.path:
    sys.path.insert(0, _client_dir)

from rrdcachedctl import RRDCachedConnection


# ---------------------------------------------------------------------------
# Canned daemon replies (captured from rrdcached)
# ---------------------------------------------------------------------------

RESPONSES = {
    "ping": ["0 PONG"],
    "flush": ["0 Nothing to flush: /test.rrd."],
    "flushall": ["0 Started flush."],
    "pending": ["-1 No such file or directory."],
    "fetch": [
        "8 Success",
        "FlushVersion: 1",
        "Start: 1499908800",
        "End: 1499995500",
        "Step: 300",
        "DSCount: 2",
        "DSName: watts amps",
        "1499909100: 8.00000000000000000e+00 1.73335123697916674e+03",
        "1499909400: nan nan",
    ],
    "fetchbin": [
        "7 Success",
        "FlushVersion: 1",
        "Start: 1499908800",
        "End: 1499995500",
        "Step: 300",
        "DSCount: 2",
        "DSName-watts: BinaryData 1441 8 LITTLE",
        "DSName-amps: BinaryData 1441 8 LITTLE",
    ],
    "forget": ["0 Gone!"],
    "queue": ["1 in queue.", "10 test.rrd"],
    "help": [
        "4 Help for QUIT",
        "Usage: QUIT",
        "",
        "Disconnect from rrdcached.",
        "",
    ],
    "stats": [
        "9 Statistics follow",
        "QueueLength: 0",
        "UpdatesReceived: 1061847698",
        "FlushesReceived: 1690",
        "UpdatesWritten: 149201370",
        "DataSetsWritten: 1061709625",
        "TreeNodesNumber: 30727",
        "TreeDepth: 18",
        "JournalBytes: 0",
        "JournalRotate: 0",
    ],
    "update": ["0 errors, enqueued 1 value(s)."],
    "wrote": ["-1 Can't use 'wrote' here."],
    "first": ["0 1240782000"],
    "last": ["0 1499981700"],
    "info": [
        "12 Info for test.rrd follows",
        "filename 2 test.rrd",
        "rrd_version 2 0003",
        "step 1 300",
        "last_update 1 1499981928",
        "header_size 1 1760",
        "ds[watts].index 1 0",
        "ds[watts].type 2 GAUGE",
        "ds[watts].minimal_heartbeat 1 300",
        "ds[watts].min 0 0.0000000000e+00",
        "ds[watts].max 0 2.4000000000e+04",
        "ds[watts].last_ds 2 U",
        "ds[watts].unknown_sec 1 228",
    ],
    "create": ["0 RRD created OK"],
    "batch": ["0 Go ahead.  End with dot '.' on its own line."],
    ".": [
        "2 errors",
        "1 Can't use 'ping' here.",
        "2 Can't use 'ping' here.",
    ],
    # Not real commands: replies that break the framing on purpose.
    "garbled": ["not-a-header"],
    "short": ["3 Here it comes", "one"],
}

# Commands after whose reply the daemon hangs up.
CLOSE_AFTER = {"short"}


# ---------------------------------------------------------------------------
# Fake daemon
# ---------------------------------------------------------------------------

class FakeDaemon:
    """A loopback rrdcached stand-in.

    Replies to each command line with ``responses[name]`` (or a -1 error
    for unknown names).  Lines between ``batch`` and ``.`` get no reply,
    as with the real daemon.  The connection is dropped after replying
    to any name in ``close_after``.  Every line received is recorded in
    ``received``.
    """

    def __init__(self, responses=None, close_after=None):
        self.responses = dict(RESPONSES if responses is None else responses)
        self.close_after = set(CLOSE_AFTER if close_after is None
                               else close_after)
        self.received = []
        self._lock = threading.Lock()
        self._listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self._listener.bind(("127.0.0.1", 0))
        self._listener.listen(5)
        self.host, self.port = self._listener.getsockname()
        self._conns = []
        self._running = True
        self._thread = threading.Thread(target=self._serve, daemon=True)
        self._thread.start()

    @property
    def address(self):
        return "{}:{}".format(self.host, self.port)

    def _serve(self):
        while self._running:
            try:
                conn, _addr = self._listener.accept()
            except OSError:
                return
            with self._lock:
                self._conns.append(conn)
            threading.Thread(target=self._handle, args=(conn,),
                             daemon=True).start()

    def _handle(self, conn):
        reader = conn.makefile("rb")
        in_batch = False
        try:
            for raw in reader:
                line = raw.decode("utf-8").rstrip("\r\n")
                with self._lock:
                    self.received.append(line)
                name = line.split(" ")[0]
                if name == "quit":
                    return
                if name == ".":
                    in_batch = False
                if in_batch:
                    continue
                reply = self.responses.get(
                    name, ["-1 Unknown command: {}".format(name)])
                conn.sendall(("\n".join(reply) + "\n").encode("utf-8"))
                if name in self.close_after:
                    return
                if name == "batch":
                    in_batch = True
        except OSError:
            pass
        finally:
            reader.close()
            conn.close()

    def close(self):
        self._running = False
        try:
            self._listener.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        self._listener.close()
        with self._lock:
            for conn in self._conns:
                try:
                    conn.close()
                except OSError:
                    pass


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def daemon():
    """Start a FakeDaemon with the canned replies; stop it on teardown."""
    server = FakeDaemon()
    yield server
    server.close()


@pytest.fixture
def conn(daemon):
    """Provide a connected RRDCachedConnection to the fake daemon."""
    connection = RRDCachedConnection(daemon.address, timeout=5)
    connection.connect()
    yield connection
    try:
        connection.close()
    except OSError:
        # the test may have made the daemon hang up
        pass


# ---------------------------------------------------------------------------
# Stream helpers
# ---------------------------------------------------------------------------

def stream(*lines):
    """Return a binary reader yielding *lines*, each newline-terminated."""
    data = "".join(line + "\n" for line in lines)
    return io.BufferedReader(io.BytesIO(data.encode("utf-8")))


def raw_stream(data):
    """Return a binary reader over the exact bytes *data*."""
    return io.BufferedReader(io.BytesIO(data))
