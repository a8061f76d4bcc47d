"""Exception hierarchy for storage read errors.

Split failures (infeasible, stale, other) are reported as ``SplitResult`` values and
never reach the read path. The exceptions below are either raised by transports to
signal a specific server condition, or are fatal to the read.
"""


class SplitReadError(Exception):
    """Base exception for storage read errors.

    Attributes:
        message: Human-readable error description
        stream: Name of the stream involved, if known
    """

    def __init__(self, message: str, stream: str = None):
        self.message = message
        self.stream = stream
        if stream:
            super().__init__(f'[{stream}] {message}')
        else:
            super().__init__(message)


class StalePreconditionError(SplitReadError):
    """The server rejected a read position that lies past the split point."""

    pass


class RowDecodeError(SplitReadError):
    """Serialized row bytes could not be decoded against the session schema."""

    pass


class NoCurrentRowError(SplitReadError, LookupError):
    """get_current() was called while no row is available."""

    pass
