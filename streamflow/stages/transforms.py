import codecs
import re
from typing import Any

from streamflow.pipeline import Transform


class TextDecoder(Transform):
    """Bytes in, text out. Multi-byte characters split across chunks are reassembled."""

    def __init__(self, encoding: str = "utf-8", errors: str = "strict", **kwargs):
        super().__init__(writable_object_mode=False, readable_object_mode=True, **kwargs)
        self.encoding = encoding
        self._decoder = codecs.getincrementaldecoder(encoding)(errors=errors)

    def transform(self, chunk: bytes):
        text = self._decoder.decode(chunk)
        return [text] if text else None

    def flush(self):
        text = self._decoder.decode(b"", final=True)
        return [text] if text else None


class TextEncoder(Transform):
    """Text in, bytes out. ``suffix`` is appended to every chunk, e.g. a line terminator."""

    def __init__(self, encoding: str = "utf-8", errors: str = "strict", suffix: str = "", **kwargs):
        super().__init__(writable_object_mode=True, readable_object_mode=False, **kwargs)
        self.encoding = encoding
        self.errors = errors
        self.suffix = suffix

    def transform(self, chunk: str):
        data = (chunk + self.suffix).encode(self.encoding, self.errors)
        return [data] if data else None


class LineSplitter(Transform):
    """
    Re-chunks text into lines, without their terminators.

    A line may span any number of input chunks; the text after the last newline is held
    back until more input arrives, and emitted as a final line when the input ends.
    """

    def __init__(self, separator: str = "\n", strip_cr: bool = True, **kwargs):
        kwargs.setdefault("object_mode", True)
        super().__init__(**kwargs)
        if not separator:
            raise ValueError("separator must not be empty")
        self.separator = separator
        self.strip_cr = strip_cr
        self._partial = ""

    def _clean(self, line: str) -> str:
        if self.strip_cr and line.endswith("\r"):
            return line[:-1]
        return line

    def transform(self, chunk: str):
        *lines, self._partial = (self._partial + chunk).split(self.separator)
        return [self._clean(line) for line in lines]

    def flush(self):
        if not self._partial:
            return None
        line, self._partial = self._partial, ""
        return [self._clean(line)]


class Batcher(Transform):
    """Groups consecutive chunks into lists of ``size`` (the last one may be shorter)."""

    def __init__(self, size: int, **kwargs):
        kwargs.setdefault("object_mode", True)
        super().__init__(**kwargs)
        if size < 1:
            raise ValueError(f"size must be >= 1, got {size}")
        self.size = size
        self._batch: list[Any] = []

    def transform(self, chunk: Any):
        self._batch.append(chunk)
        if len(self._batch) < self.size:
            return None
        batch, self._batch = self._batch, []
        return [batch]

    def flush(self):
        if not self._batch:
            return None
        batch, self._batch = self._batch, []
        return [batch]


# Line transforms used by the command line runner. All of them work on text lines.


class Upper(Transform):
    def __init__(self, **kwargs):
        kwargs.setdefault("object_mode", True)
        super().__init__(**kwargs)

    def transform(self, chunk: str):
        return [chunk.upper()]


class Lower(Transform):
    def __init__(self, **kwargs):
        kwargs.setdefault("object_mode", True)
        super().__init__(**kwargs)

    def transform(self, chunk: str):
        return [chunk.lower()]


class Strip(Transform):
    """Strips surrounding whitespace and optionally drops lines that end up empty."""

    def __init__(self, drop_empty: bool = False, **kwargs):
        kwargs.setdefault("object_mode", True)
        super().__init__(**kwargs)
        self.drop_empty = drop_empty

    def transform(self, chunk: str):
        line = chunk.strip()
        if self.drop_empty and not line:
            return None
        return [line]


class Grep(Transform):
    """Keeps lines matching a regular expression (or not matching, with ``invert``)."""

    def __init__(self, pattern: str, invert: bool = False, ignore_case: bool = False, **kwargs):
        kwargs.setdefault("object_mode", True)
        super().__init__(**kwargs)
        self.pattern = re.compile(pattern, re.IGNORECASE if ignore_case else 0)
        self.invert = invert

    def transform(self, chunk: str):
        if bool(self.pattern.search(chunk)) != self.invert:
            return [chunk]
        return None


class Replace(Transform):
    def __init__(self, pattern: str, replacement: str, regex: bool = False, **kwargs):
        kwargs.setdefault("object_mode", True)
        super().__init__(**kwargs)
        self.pattern = re.compile(pattern if regex else re.escape(pattern))
        self.replacement = replacement if regex else replacement.replace("\\", "\\\\")

    def transform(self, chunk: str):
        return [self.pattern.sub(self.replacement, chunk)]


class NumberLines(Transform):
    """Prefixes every line with its 1-based line number."""

    def __init__(self, start: int = 1, separator: str = "\t", **kwargs):
        kwargs.setdefault("object_mode", True)
        super().__init__(**kwargs)
        self.next_number = start
        self.separator = separator

    def transform(self, chunk: str):
        line = f"{self.next_number}{self.separator}{chunk}"
        self.next_number += 1
        return [line]
