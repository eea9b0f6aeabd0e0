"""
Error taxonomy for the streaming pipeline.

Every error carries the name of the stage it originated from (``stage``), so that a
pipeline can report the root cause together with its origin.

- ProducerFault: a source failed to produce a chunk.
- ConsumerFault: a sink failed to accept or deliver a chunk.
- TransformFault: a transform's mapping or flush function raised.
- ProtocolViolation: a stage contract was broken by its caller. Never retried.
- CancellationFault: the pipeline was stopped by a cancellation signal or deadline.
"""


class StreamError(Exception):
    """Base class for all pipeline errors."""

    def __init__(self, message: str = "", stage: str | None = None):
        super().__init__(message)
        self.stage = stage

    def __str__(self) -> str:
        message = super().__str__()
        if self.stage:
            return f"[{self.stage}] {message}"
        return message


class ProducerFault(StreamError):
    pass


class ConsumerFault(StreamError):
    pass


class TransformFault(StreamError):
    pass


class ProtocolViolation(StreamError):
    """A stage was used in a way its contract forbids (a bug in the calling code)."""


class ConcurrentAccessError(ProtocolViolation):
    pass


class StageClosedError(ProtocolViolation):
    pass


class ChunkTypeError(ProtocolViolation, TypeError):
    pass


class ModeMismatchError(ProtocolViolation):
    pass


class CancellationFault(StreamError):
    pass


class DeadlineExceeded(CancellationFault):
    pass


__all__ = [
    "StreamError",
    "ProducerFault",
    "ConsumerFault",
    "TransformFault",
    "ProtocolViolation",
    "ConcurrentAccessError",
    "StageClosedError",
    "ChunkTypeError",
    "ModeMismatchError",
    "CancellationFault",
    "DeadlineExceeded",
]
