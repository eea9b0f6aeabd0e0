from typing import Any

from streamflow.pipeline import Transform

from .sinks import CallbackSink, CollectSink, WriterSink
from .sources import IterableSource, ReaderSource
from .transforms import (
    Batcher,
    Grep,
    LineSplitter,
    Lower,
    NumberLines,
    Replace,
    Strip,
    TextDecoder,
    TextEncoder,
    Upper,
)

TransformConfig = dict[str, Any]

TRANSFORM_REGISTRY: dict[str, type[Transform]] = {
    "upper": Upper,
    "lower": Lower,
    "strip": Strip,
    "grep": Grep,
    "replace": Replace,
    "number": NumberLines,
}


def parse_transform(transform_config: TransformConfig) -> Transform:
    if not isinstance(transform_config, dict):
        raise ValueError("transform_config must be a dictionary.")
    if "type" not in transform_config:
        raise ValueError("transform_config must contain a 'type' key.")
    transform_config = dict(transform_config)
    transform_type = transform_config.pop("type")
    if transform_type not in TRANSFORM_REGISTRY:
        raise ValueError(f"Unknown transform type: {transform_type}")
    return TRANSFORM_REGISTRY[transform_type](**transform_config)


__all__ = [
    "IterableSource",
    "ReaderSource",
    "WriterSink",
    "CallbackSink",
    "CollectSink",
    "TextDecoder",
    "TextEncoder",
    "LineSplitter",
    "Batcher",
    "Upper",
    "Lower",
    "Strip",
    "Grep",
    "Replace",
    "NumberLines",
    "TRANSFORM_REGISTRY",
    "parse_transform",
]
