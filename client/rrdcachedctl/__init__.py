"""rrdcachedctl -- Python client library for rrdcached.

Provides RRDCachedConnection for talking to an rrdcached daemon over TCP
or a UNIX socket, typed results for the structured commands, and an
exception hierarchy for protocol and server errors.

Usage::

    with RRDCachedConnection("127.0.0.1") as rrd:
        rrd.ping()
        rrd.update("power.rrd", options.update_now(230.5))
        print(rrd.fetch("power.rrd", "AVERAGE").names)
"""

import logging
import socket
from datetime import datetime
from typing import List, Optional, Sequence, Tuple

from . import options
from .errors import (
    AlreadyExistsError, BatchError, IllegalUpdateError, InvalidResponseError,
    MalformedHeaderError, NotFoundError, ProtocolError, RRDCachedError,
    ServerError, ShortResponseError, UnexpectedEOFError, is_exist,
    is_illegal_update, is_not_exist,
)
from .protocol import (
    Command, read_response, send_batch, send_command,
)
from .records import (
    Fetch, FetchBin, FetchBinDS, FetchRow, Info, Queue, Stats,
    decode_fetch, decode_fetchbin, decode_info, decode_queue, decode_stats,
    decode_timestamp,
)


__all__ = [
    "RRDCachedConnection",
    "Command",
    "DEFAULT_PORT",
    "DEFAULT_TIMEOUT",
    "options",
    # records
    "Fetch",
    "FetchBin",
    "FetchBinDS",
    "FetchRow",
    "Info",
    "Queue",
    "Stats",
    # errors
    "RRDCachedError",
    "ProtocolError",
    "MalformedHeaderError",
    "UnexpectedEOFError",
    "ShortResponseError",
    "InvalidResponseError",
    "ServerError",
    "AlreadyExistsError",
    "NotFoundError",
    "IllegalUpdateError",
    "BatchError",
    "is_exist",
    "is_not_exist",
    "is_illegal_update",
]

DEFAULT_PORT = 42217
DEFAULT_TIMEOUT = 10.0

log = logging.getLogger(__name__)


def _parse_port(address: str, port_str: str) -> int:
    try:
        return int(port_str)
    except ValueError:
        raise ValueError("invalid port {!r} in address {!r}".format(
            port_str, address)) from None


def _split_address(address: str, port: int):
    """Split ``host[:port]`` / ``[v6addr][:port]`` into (host, port).

    Raises ValueError if the embedded port is not an integer.
    """
    if address.startswith("["):
        host, _, rest = address[1:].partition("]")
        if rest.startswith(":"):
            return (host, _parse_port(address, rest[1:]))
        return (host, port)
    if address.count(":") == 1:
        host, _, port_str = address.partition(":")
        return (host, _parse_port(address, port_str))
    return (address, port)


# ---------------------------------------------------------------------------
# Connection class
# ---------------------------------------------------------------------------

class RRDCachedConnection:
    """A connection to an rrdcached daemon.

    *address* is a hostname or IP, optionally with ``:port``, or a socket
    path when *unix* is True.  *timeout* bounds every individual write
    and line read.

    A connection handles one request at a time and must not be shared
    between threads; open one per thread instead.

    Can be used as a context manager::

        with RRDCachedConnection("127.0.0.1") as rrd:
            print(rrd.stats())

    Or managed manually::

        conn = RRDCachedConnection("/var/run/rrdcached.sock", unix=True)
        conn.connect()
        try:
            conn.flushall()
        finally:
            conn.close()
    """

    def __init__(
        self,
        address: str = "127.0.0.1",
        port: int = DEFAULT_PORT,
        timeout: float = DEFAULT_TIMEOUT,
        unix: bool = False,
    ) -> None:
        if unix:
            self.host = address
            self.port = None  # type: Optional[int]
        else:
            self.host, self.port = _split_address(address, port)
        self.unix = unix
        self.timeout = timeout
        self._sock = None  # type: Optional[socket.socket]
        self._reader = None

    # -- Context manager ---------------------------------------------------

    def __enter__(self) -> "RRDCachedConnection":
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:  # type: ignore
        self.close()
        return None

    def __repr__(self) -> str:
        state = "connected" if self._sock is not None else "disconnected"
        if self.unix:
            return "RRDCachedConnection({!r}, unix=True, {})".format(
                self.host, state)
        return "RRDCachedConnection({!r}, port={}, {})".format(
            self.host, self.port, state)

    # -- Connection lifecycle ----------------------------------------------

    def connect(self) -> None:
        """Open the socket and apply the timeout."""
        if self.unix:
            sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
            sock.settimeout(self.timeout)
            try:
                sock.connect(self.host)
            except Exception:
                sock.close()
                raise
        else:
            sock = socket.create_connection(
                (self.host, self.port), timeout=self.timeout)
        self._sock = sock
        self._reader = sock.makefile("rb")
        log.info("connected to %s", self._describe())

    def close(self) -> None:
        """Send ``quit`` and close the socket.

        Each step is attempted regardless of earlier failures.  The first
        error by priority is raised afterwards: closing the socket, then
        applying the timeout, then writing ``quit``.
        """
        if self._sock is None:
            return
        sock, reader = self._sock, self._reader
        self._sock = None
        self._reader = None

        deadline_err = write_err = close_err = None
        try:
            sock.settimeout(self.timeout)
        except OSError as e:
            deadline_err = e
        try:
            send_command(sock, Command("quit"))
        except OSError as e:
            write_err = e
        try:
            reader.close()
        except OSError as e:
            close_err = e
        try:
            sock.close()
        except OSError as e:
            close_err = close_err or e
        log.info("closed connection to %s", self._describe())

        for err in (close_err, deadline_err, write_err):
            if err is not None:
                raise err

    def _describe(self) -> str:
        if self.unix:
            return "unix:{}".format(self.host)
        return "{}:{}".format(self.host, self.port)

    # -- Internal helpers --------------------------------------------------

    def _require_sock(self) -> socket.socket:
        if self._sock is None:
            raise ProtocolError("Not connected")
        return self._sock

    def _exchange(self, command: Command) -> Tuple[int, str, List[str]]:
        sock = self._require_sock()
        log.debug("sending %s", command.name)
        send_command(sock, command)
        return read_response(self._reader)

    def execute_command(self, command: Command) -> List[str]:
        """Send a command and read the response.

        Returns the response lines: the header text alone for an inline
        reply, otherwise the body lines.  Raises the appropriate
        ServerError subclass when the daemon rejects the command and
        ProtocolError on framing violations.
        """
        _count, _text, lines = self._exchange(command)
        return lines

    def execute(self, name: str, *args: object) -> List[str]:
        """Shorthand for ``execute_command(Command(name, *args))``."""
        return self.execute_command(Command(name, *args))

    # -- Commands ----------------------------------------------------------

    def ping(self) -> None:
        """Send PING and verify the PONG reply."""
        self.execute("ping")

    def quit(self) -> None:
        """Send QUIT and close the connection.

        The connection becomes unusable after this call.
        """
        self.close()

    def flush(self, filename: str) -> None:
        """Ask the daemon to write all pending values for *filename*."""
        self.execute("flush", filename)

    def flushall(self) -> None:
        """Ask the daemon to start flushing every pending value."""
        self.execute("flushall")

    def pending(self, filename: str) -> List[str]:
        """Return the updates still queued for *filename*, in order."""
        count, _text, lines = self._exchange(Command("pending", filename))
        if count == 0:
            return []
        return lines

    def forget(self, filename: str) -> None:
        """Drop *filename* from the cache.  Pending updates are lost."""
        self.execute("forget", filename)

    def queue(self, filename: Optional[str] = None) -> List[Queue]:
        """List the files on the daemon's write queue."""
        if filename is None:
            command = Command("queue")
        else:
            command = Command("queue", filename)
        count, _text, lines = self._exchange(command)
        # "0 files in queue." carries no entries
        if count == 0:
            return []
        return decode_queue(lines)

    def help(self, command: Optional[str] = None) -> List[str]:
        """Return the daemon's help text, general or for *command*."""
        if command is None:
            return self.execute("help")
        return self.execute("help", command)

    def stats(self) -> Stats:
        """Return daemon statistics."""
        return decode_stats(self.execute("stats"))

    def update(self, filename: str, value: str, *values: str) -> None:
        """Queue one or more update values for *filename*.

        Values are rrdtool update strings, see options.update().
        """
        self.execute("update", filename, value, *values)

    def wrote(self, filename: str) -> None:
        """Tell the daemon *filename* was written by someone else."""
        self.execute("wrote", filename)

    def first(self, filename: str, rra: int = 0) -> datetime:
        """Return the time of the first CDP in archive *rra*."""
        return decode_timestamp(self.execute("first", filename, rra))

    def last(self, filename: str) -> datetime:
        """Return the time of the last update to *filename*."""
        return decode_timestamp(self.execute("last", filename))

    def info(self, filename: str) -> List[Info]:
        """Return the header information of *filename*.

        Values are typed by the daemon's type tag (float, int or str).
        """
        return decode_info(self.execute("info", filename))

    def create(self, filename: str, data_sources: Sequence[str],
               archives: Sequence[str], *create_options: str) -> None:
        """Create *filename*.

        See options for builders of data sources, archives and create
        options.  Raises AlreadyExistsError if the file exists and
        options.overwrite() was not given.
        """
        args = [filename] + list(create_options) + list(data_sources) \
            + list(archives)
        self.execute("create", *args)

    def fetch(self, filename: str, cf: str, *fetch_options: object) -> Fetch:
        """Fetch consolidated data as text rows.

        *fetch_options* are passed through (e.g. start and end times).
        """
        return decode_fetch(self.execute("fetch", filename, cf,
                                         *fetch_options))

    def fetchbin(self, filename: str, cf: str,
                 *fetch_options: object) -> FetchBin:
        """Fetch the per-series binary descriptors of *filename*."""
        return decode_fetchbin(self.execute("fetchbin", filename, cf,
                                            *fetch_options))

    # -- Batch -------------------------------------------------------------

    def batch(self, *commands: Command) -> None:
        """Run *commands* as one batch.

        Returns None when every command succeeded.  Otherwise raises
        BatchError whose ``failures`` list the (1-based index, message)
        of each failed command; the others still took effect.
        """
        sock = self._require_sock()
        self.execute("batch")

        log.debug("sending batch of %d commands", len(commands))
        send_batch(sock, list(commands))

        count, _text, lines = read_response(self._reader)
        if count == 0:
            return
        log.warning("batch: %d of %d commands failed", count, len(commands))
        raise BatchError(lines)
