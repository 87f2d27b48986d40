import inspect
import io
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, ClassVar, Iterable, Optional, Union

from ..errors import SinkError
from ..logger import get_logger
from ..values import DEFAULT_FORMAT, FormatOptions, Row, Schema
from .target import OutputTarget


class Buffering(Enum):
    STREAMING = "streaming"
    BUFFERED = "buffered"


class Truncation(Enum):
    FINALIZE = "finalize"
    DISCARD = "discard"


@dataclass(frozen=True)
class SinkCapabilities:
    """
    What a sink needs from the pipeline.

    Attributes:
        buffering: ``BUFFERED`` sinks hold the whole stream until ``end``.
        truncation: ``FINALIZE`` sinks still produce well-formed output when
            ``end`` follows a failure; ``DISCARD`` sinks' partial output is dropped.
    """

    buffering: Buffering
    truncation: Truncation


def unique_names(names: Iterable[str]) -> list[str]:
    """
    Suffixes repeated column names (``id``, ``id_1``, ...) for formats keyed by name.
    """
    seen: set[str] = set()
    unique = []
    for name in names:
        candidate, counter = name, 0
        while candidate in seen:
            counter += 1
            candidate = f"{name}_{counter}"
        seen.add(candidate)
        unique.append(candidate)
    return unique


class SinkWriter(ABC):
    """
    Base class for output formats.

    Subclasses register themselves under a format name:

        class CsvSink(TextSinkWriter, format_name="csv"):
            ...

    Lifecycle: ``begin`` once, ``write_row`` per row in delivery order, then
    either ``end`` (closing structure, flush) or ``abort`` (release only).
    """

    _registry: ClassVar[dict[str, type["SinkWriter"]]] = {}

    format_name: ClassVar[str]
    extensions: ClassVar[tuple[str, ...]]
    capabilities: ClassVar[SinkCapabilities] = SinkCapabilities(
        Buffering.STREAMING, Truncation.FINALIZE
    )

    schema: Optional[Schema]
    target: Optional[OutputTarget]

    def __init_subclass__(
        cls,
        format_name: Optional[str] = None,
        extensions: tuple[str, ...] = (),
        **kwargs,
    ):
        super().__init_subclass__(**kwargs)
        if format_name is not None:
            cls.format_name = format_name
            cls.extensions = tuple(extensions) or (format_name,)
            SinkWriter._registry[format_name] = cls

    def __init__(self: "SinkWriter", format_options: FormatOptions = DEFAULT_FORMAT):
        self.logger = get_logger(type(self).__module__)
        self.format_options = format_options
        self.schema = None
        self.target = None
        self.rows_written = 0

    @classmethod
    def formats(cls) -> dict[str, type["SinkWriter"]]:
        return dict(sorted(cls._registry.items()))

    @classmethod
    def format_for_path(cls, path: Union[str, Path]) -> Optional[str]:
        """
        Guesses the format from a file extension.
        """
        suffix = Path(path).suffix.lstrip(".").lower()
        for name, sink_cls in cls._registry.items():
            if suffix in sink_cls.extensions:
                return name
        return None

    @classmethod
    def create(cls, format_name: str, **options: Any) -> "SinkWriter":
        """
        Builds the sink registered for a format.

        Options the sink does not accept are ignored, so callers can pass one
        option set to every format.

        Raises:
            SinkError: If no sink is registered under the name.
        """
        sink_cls = cls._registry.get(format_name)
        if sink_cls is None:
            raise SinkError(
                f"Unknown output format '{format_name}'! Available: {', '.join(cls.formats())}"
            )

        accepted = inspect.signature(sink_cls.__init__).parameters
        kwargs = {
            key: value
            for key, value in options.items()
            if key in accepted and value is not None
        }
        ignored = sorted(
            key for key, value in options.items() if key not in kwargs and value is not None
        )
        if ignored:
            get_logger(__name__).debug(f"Options {ignored} do not apply to {format_name}")

        return sink_cls(**kwargs)

    @property
    def names(self: "SinkWriter") -> tuple[str, ...]:
        return tuple(column.name for column in self.schema or ())

    @abstractmethod
    def begin(self: "SinkWriter", schema: Schema, target: OutputTarget):
        """
        Writes the format preamble once the schema is known.
        """

    @abstractmethod
    def write_row(self: "SinkWriter", row: Row):
        pass

    @abstractmethod
    def end(self: "SinkWriter"):
        """
        Writes the closing structure and flushes; called exactly once.
        """

    def abort(self: "SinkWriter"):
        """
        Releases resources without finishing the output.
        """


class TextSinkWriter(SinkWriter):
    """
    A streaming sink writing UTF-8 text through a ``TextIOWrapper``.
    """

    encoding: ClassVar[str] = "utf-8"

    stream: Optional[io.TextIOWrapper]

    def __init__(self: "TextSinkWriter", format_options: FormatOptions = DEFAULT_FORMAT):
        super().__init__(format_options)
        self.stream = None

    def begin(self: "TextSinkWriter", schema: Schema, target: OutputTarget):
        self.schema = schema
        self.target = target
        self.stream = io.TextIOWrapper(
            target.open(), encoding=self.encoding, newline="", write_through=True
        )
        self._write_header()

    def write_row(self: "TextSinkWriter", row: Row):
        self._write_row(row)
        self.rows_written += 1

    def end(self: "TextSinkWriter"):
        self._write_footer()
        self._release_stream()

    def abort(self: "TextSinkWriter"):
        self._release_stream()

    def _release_stream(self: "TextSinkWriter"):
        if self.stream is None:
            return
        stream, self.stream = self.stream, None
        stream.flush()
        stream.detach()

    def _write_header(self: "TextSinkWriter"):
        pass

    @abstractmethod
    def _write_row(self: "TextSinkWriter", row: Row):
        pass

    def _write_footer(self: "TextSinkWriter"):
        pass
