"""
Backpressure-aware streaming pipeline framework.

This module moves data through a chain of stages incrementally, with support for:
- Byte mode (weight = byte length) and object mode (weight = 1 per chunk)
- Backpressure via per-stage high-water marks and drain signals
- Transforms that filter (no output), split (many outputs) or aggregate chunks
- Sync or async mapping functions, processed strictly in order
- Cork/uncork batching of sink writes
- First-error-wins failure handling that cancels every other stage
- External cancellation tokens and deadlines
- Lifecycle events for logging and progress display

Usage:
    See `examples/pipeline.py` for a complete example.
"""

from .base import DONE, ReadResult, Stage, StageState
from .cancellation import CancelToken
from .config import PipelineResult, StageOptions, StageStats
from .errors import (
    CancellationFault,
    ChunkTypeError,
    ConcurrentAccessError,
    ConsumerFault,
    DeadlineExceeded,
    ModeMismatchError,
    ProducerFault,
    ProtocolViolation,
    StageClosedError,
    StreamError,
    TransformFault,
)
from .events import EventBus, EventRecorder, EventType, LoggingObserver, StageEvent
from .flow import FlowController, chunk_weight, freeze_chunk
from .pipe import Pipe
from .pipeline import Pipeline
from .progress import ProgressObserver
from .sink import Sink
from .source import PushSource, Source
from .transform import Transform

__all__ = [
    "Stage",
    "StageState",
    "ReadResult",
    "DONE",
    "Source",
    "PushSource",
    "Sink",
    "Transform",
    "FlowController",
    "chunk_weight",
    "freeze_chunk",
    "Pipe",
    "Pipeline",
    "PipelineResult",
    "StageOptions",
    "StageStats",
    "CancelToken",
    "EventBus",
    "EventType",
    "StageEvent",
    "EventRecorder",
    "LoggingObserver",
    "ProgressObserver",
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
