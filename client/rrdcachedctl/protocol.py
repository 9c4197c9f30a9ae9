"""Wire protocol helpers for the rrdcachedctl client.

Handles command encoding, line reading and response framing for the
rrdcached text protocol:

    request:  <command> [<arg> ...]\\n
    response: <count> <text>\\n followed by <count> lines when count > 0

A negative count is an error (no body), zero means <text> is the whole
reply.  All wire communication uses UTF-8.
"""

import logging
import re
import socket
from typing import BinaryIO, List, Tuple

from .errors import (
    MalformedHeaderError, ShortResponseError, UnexpectedEOFError,
    server_error,
)

ENCODING = "utf-8"

# Terminates the command list of a batch.
BATCH_END = ".\n"

_HEADER_RE = re.compile(r"^(-?\d+)\s+(.*)$")

log = logging.getLogger(__name__)


class Command:
    """A daemon command: a name plus ordered arguments.

    Arguments are rendered with ``str()`` and joined with single spaces.
    Nothing is escaped, so an argument containing a space or newline goes
    out as-is and the daemon will split it.
    """

    __slots__ = ("name", "args")

    def __init__(self, name: str, *args: object) -> None:
        object.__setattr__(self, "name", name)
        object.__setattr__(self, "args", tuple(args))

    def __setattr__(self, key, value):  # type: ignore
        raise AttributeError("Command is immutable")

    def __str__(self) -> str:
        return " ".join([self.name] + [str(a) for a in self.args]) + "\n"

    def __repr__(self) -> str:
        return "Command({})".format(
            ", ".join(repr(p) for p in (self.name,) + self.args))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Command):
            return NotImplemented
        return (self.name, self.args) == (other.name, other.args)

    def __hash__(self) -> int:
        return hash((self.name, self.args))

    def encode(self) -> bytes:
        """Return the wire form of the command, newline included."""
        return str(self).encode(ENCODING)


def read_line(reader: BinaryIO) -> str:
    """Read a single line from a buffered binary reader.

    Strips trailing CR LF or bare LF.  Raises UnexpectedEOFError on EOF,
    a line cut off by EOF, socket timeout or socket error.
    """
    try:
        raw = reader.readline()
    except socket.timeout:
        raise UnexpectedEOFError("Timed out waiting for data from server")
    except OSError as e:
        raise UnexpectedEOFError("Socket error: {}".format(e)) from e

    if not raw:
        raise UnexpectedEOFError("Connection closed by server")
    if not raw.endswith(b"\n"):
        raise UnexpectedEOFError(
            "Connection closed mid-line (partial data: {!r})".format(raw))

    line = raw[:-1].decode(ENCODING, "replace")
    if line.endswith("\r"):
        line = line[:-1]
    return line


def parse_header(line: str) -> Tuple[int, str]:
    """Split a header line into ``(count, text)``.

    Raises MalformedHeaderError if the line is not ``<signed int> <text>``.
    """
    match = _HEADER_RE.match(line)
    if match is None:
        raise MalformedHeaderError(line)
    return (int(match.group(1)), match.group(2))


def read_lines(reader: BinaryIO, count: int) -> List[str]:
    """Read exactly *count* lines.

    Raises ShortResponseError, chained to the underlying stream failure,
    if the stream ends first.  Partial lines are discarded.
    """
    lines = []  # type: List[str]
    while len(lines) < count:
        try:
            lines.append(read_line(reader))
        except UnexpectedEOFError as e:
            raise ShortResponseError(count, len(lines)) from e
    return lines


def read_response(reader: BinaryIO) -> Tuple[int, str, List[str]]:
    """Read a complete response (header line + body).

    Returns (count, text, lines) where:
      - count is the header's signed count (never negative here)
      - text is the remainder of the header line
      - lines is ``[text]`` when count is 0, otherwise the ``count`` body
        lines

    Raises the ServerError subclass matching the message when count is
    negative; no body is read in that case.

    Examples:
      ping  -> (0, "PONG", ["PONG"])
      stats -> (9, "Statistics follow", ["QueueLength: 0", ...])
      error -> ServerError(-1, "No such file or directory")
    """
    header = read_line(reader)
    count, text = parse_header(header)
    log.debug("response header: %s", header)

    if count < 0:
        raise server_error(count, text)
    if count == 0:
        return (count, text, [text])
    return (count, text, read_lines(reader, count))


def send_command(sock: socket.socket, command: Command) -> None:
    """Send one encoded command line to the server."""
    sock.sendall(command.encode())


def send_batch(sock: socket.socket, commands: List[Command]) -> None:
    """Send a batch body: every command line, then the ``.`` terminator.

    Everything goes out in a single write with no blank line before the
    terminator.
    """
    data = "".join(str(c) for c in commands) + BATCH_END
    sock.sendall(data.encode(ENCODING))
