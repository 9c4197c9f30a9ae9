"""Exception hierarchy for the rrdcachedctl client.

Two families hang off RRDCachedError:

  - ProtocolError and its subclasses for wire-level problems (missing or
    malformed header, short body, payload that does not decode).
  - ServerError and its subclasses for responses where the daemon
    explicitly rejected a command with a negative header count.

rrdcached reports almost every failure with code -1, so the ServerError
subclass is chosen from the message text rather than the code.
"""

from typing import List, Optional, Sequence, Tuple, Type


class RRDCachedError(Exception):
    """Base exception for everything raised by rrdcachedctl."""


# ---------------------------------------------------------------------------
# Protocol errors
# ---------------------------------------------------------------------------

class ProtocolError(RRDCachedError):
    """Raised on wire protocol violations (unexpected EOF, malformed
    responses, timeouts)."""


class UnexpectedEOFError(ProtocolError):
    """Raised when the stream ends, times out or fails while a line is
    expected."""


class MalformedHeaderError(ProtocolError):
    """Raised when a response header does not match ``<count> <text>``.

    Attributes:
        line: The offending header line, exactly as received.
    """

    def __init__(self, line: str) -> None:
        self.line = line
        super().__init__("Malformed response header: {!r}".format(line))


class ShortResponseError(ProtocolError):
    """Raised when a positive-count body ends early.

    The partial lines are discarded.  The stream failure that cut the body
    short is chained as ``__cause__``.

    Attributes:
        expected: Line count announced by the header.
        received: Lines actually read before the stream ended.
    """

    def __init__(self, expected: int, received: int) -> None:
        self.expected = expected
        self.received = received
        super().__init__(
            "Short response: expected {} lines, got {}".format(
                expected, received))


class InvalidResponseError(ProtocolError):
    """Raised when a well-framed payload does not decode.

    Attributes:
        reason: Short description of what was wrong.
        lines: The offending raw line(s).
    """

    def __init__(self, reason: str, *lines: str) -> None:
        self.reason = reason
        self.lines = list(lines)  # type: List[str]
        super().__init__(reason, *lines)

    def __str__(self) -> str:
        return "{} ({})".format(self.reason, ", ".join(self.lines))


# ---------------------------------------------------------------------------
# Server errors
# ---------------------------------------------------------------------------

class ServerError(RRDCachedError):
    """The daemon rejected a command.

    Attributes:
        code: Header count of the error response (negative).
        message: Text following the count on the header line.
    """

    def __init__(self, code: int, message: str) -> None:
        self.code = code
        self.message = message
        super().__init__(code, message)

    def __str__(self) -> str:
        return "{} ({})".format(self.message, self.code)


class AlreadyExistsError(ServerError):
    """The target RRD file already exists."""


class NotFoundError(ServerError):
    """The target RRD file does not exist."""


class IllegalUpdateError(ServerError):
    """An update used a timestamp at or before the file's last update."""


class BatchError(ServerError):
    """One or more commands inside a batch failed.

    ``code`` is the negated number of failed commands and ``message`` is
    the server's digest lines joined with newlines.

    Attributes:
        failures: ``(index, message)`` pairs, index being the 1-based
            position of the failed command within the batch.
    """

    def __init__(self, lines: Sequence[str]) -> None:
        self.failures = [_parse_failure(line) for line in lines]
        super().__init__(-len(lines), "\n".join(lines))


def _parse_failure(line: str) -> Tuple[Optional[int], str]:
    index, _, message = line.partition(" ")
    try:
        return (int(index), message)
    except ValueError:
        return (None, line)


# Substrings identifying well-known failures, checked in order.
_MESSAGE_MAP = [
    ("File exists", AlreadyExistsError),
    ("No such file or directory", NotFoundError),
    ("No such file:", NotFoundError),
    ("not found", NotFoundError),
    ("illegal attempt to update using time", IllegalUpdateError),
]  # type: List[Tuple[str, Type[ServerError]]]


def server_error(code: int, message: str) -> ServerError:
    """Build the ServerError subclass matching *message*.

    Unrecognised messages yield the base ServerError.
    """
    for needle, exc_class in _MESSAGE_MAP:
        if needle in message:
            return exc_class(code, message)
    return ServerError(code, message)


# ---------------------------------------------------------------------------
# Predicates
# ---------------------------------------------------------------------------

def _matches(err: object, exc_class: Type[ServerError]) -> bool:
    if not isinstance(err, ServerError):
        return False
    if isinstance(err, exc_class):
        return True
    # A plain ServerError built by hand still classifies by its text.
    return type(server_error(err.code, err.message)) is exc_class


def is_exist(err: object) -> bool:
    """Return True if *err* reports that the destination already exists."""
    return _matches(err, AlreadyExistsError)


def is_not_exist(err: object) -> bool:
    """Return True if *err* reports that the destination is missing."""
    return _matches(err, NotFoundError)


def is_illegal_update(err: object) -> bool:
    """Return True if *err* reports an out-of-order timestamp update."""
    return _matches(err, IllegalUpdateError)
