from __future__ import annotations


class TarshareError(Exception):
    """Base class for errors raised by the archive export pipeline."""


class SelectionError(TarshareError, ValueError):
    """A selection names something outside the shared root or is malformed."""


class ConsumerGone(TarshareError):
    """The reading side of a byte bridge went away; stop producing."""


class ProducerFailed(TarshareError):
    """The archive worker died before finishing the stream.

    The original exception is available as ``__cause__``.
    """
