"""
Markup events — a minimal pull model over XML.

Event model:
    StartElement(name, attributes)   <- attributes keep document order
    Characters(data)                 <- adjacent text is always coalesced
    EndElement(name)

Comments, processing instructions and the XML declaration are not part of
the model; the writer emits its own declaration. A parse-then-write round
trip therefore drops comments and processing instructions. Namespace
declarations travel as ordinary ``xmlns`` attributes.
"""

from __future__ import annotations

import codecs
import logging
from dataclasses import dataclass
from typing import BinaryIO, Callable, Iterable, Iterator, Union
from xml.parsers import expat
from xml.sax.saxutils import escape

from kdbxio import DEFAULT_ENCODING

log = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 64 * 1024

# Extra entities for attribute values (escape() already covers & < >)
_ATTR_ENTITIES = {'"': "&quot;", "\n": "&#10;", "\r": "&#13;", "\t": "&#9;"}
_TEXT_ENTITIES = {"\r": "&#13;"}


class MarkupError(ValueError):
    """Malformed markup or an event the writer cannot serialise."""


@dataclass(frozen=True)
class Attribute:
    name: str
    value: str

    @property
    def local_name(self) -> str:
        """Attribute name without any namespace prefix."""
        return self.name.rpartition(":")[2]


@dataclass(frozen=True)
class StartElement:
    name: str
    attributes: tuple[Attribute, ...] = ()

    def get_attribute(self, local_name: str) -> Attribute | None:
        """First attribute whose local name matches, or None."""
        for attribute in self.attributes:
            if attribute.local_name == local_name:
                return attribute
        return None


@dataclass(frozen=True)
class Characters:
    data: str


@dataclass(frozen=True)
class EndElement:
    name: str


XmlEvent = Union[StartElement, Characters, EndElement]
EventTransformer = Callable[[XmlEvent], XmlEvent]


def iter_events(
    source: bytes | BinaryIO,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> Iterator[XmlEvent]:
    """Parse XML incrementally and yield events in document order.

    Character data split across parser callbacks or input chunks is joined
    into one Characters event before the next element boundary.
    """
    parser = expat.ParserCreate()
    parser.ordered_attributes = True
    parser.buffer_text = True

    ready: list[XmlEvent] = []
    text: list[str] = []

    def flush_text() -> None:
        if text:
            ready.append(Characters("".join(text)))
            text.clear()

    def on_start(name: str, attrs: list[str]) -> None:
        flush_text()
        attributes = tuple(Attribute(attrs[i], attrs[i + 1]) for i in range(0, len(attrs), 2))
        ready.append(StartElement(name, attributes))

    def on_end(name: str) -> None:
        flush_text()
        ready.append(EndElement(name))

    def on_chars(data: str) -> None:
        text.append(data)

    parser.StartElementHandler = on_start
    parser.EndElementHandler = on_end
    parser.CharacterDataHandler = on_chars

    if isinstance(source, (bytes, bytearray, memoryview)):
        chunks: Iterable[bytes] = [bytes(source)]
    else:
        chunks = iter(lambda: source.read(chunk_size), b"")

    try:
        for chunk in chunks:
            parser.Parse(chunk, False)
            yield from ready
            ready.clear()
        parser.Parse(b"", True)
    except expat.ExpatError as e:
        raise MarkupError(f"Invalid XML: {e}") from e
    flush_text()
    yield from ready


def transform_events(events: Iterable[XmlEvent], transformer: EventTransformer) -> Iterator[XmlEvent]:
    """Apply a transformer to each event, one call per event, in order."""
    for event in events:
        yield transformer(event)


class XmlEventWriter:
    """
    Serialises markup events to a binary sink.

    Usage:
        writer = XmlEventWriter(sink)
        writer.write_all(events)
    """

    def __init__(
        self,
        sink: BinaryIO,
        encoding: str = DEFAULT_ENCODING,
        declaration: bool = True,
    ) -> None:
        self._sink = sink
        self.encoding = encoding
        self._declaration = declaration
        self._encoder = codecs.getincrementalencoder(encoding)("xmlcharrefreplace")
        self._started = False
        self._depth = 0

    def _emit(self, text: str) -> None:
        # one encoder per document, so a BOM is written at most once
        self._sink.write(self._encoder.encode(text))

    def write(self, event: XmlEvent) -> None:
        if not self._started:
            self._started = True
            if self._declaration:
                self._emit(f'<?xml version="1.0" encoding="{self.encoding}" standalone="yes"?>\n')

        if isinstance(event, StartElement):
            attrs = "".join(
                f' {a.name}="{escape(a.value, _ATTR_ENTITIES)}"' for a in event.attributes
            )
            self._emit(f"<{event.name}{attrs}>")
            self._depth += 1
        elif isinstance(event, Characters):
            self._emit(escape(event.data, _TEXT_ENTITIES))
        elif isinstance(event, EndElement):
            if self._depth == 0:
                raise MarkupError(f"Unbalanced end element: {event.name!r}")
            self._emit(f"</{event.name}>")
            self._depth -= 1
        else:
            raise MarkupError(f"Unsupported event: {event!r}")

    def write_all(self, events: Iterable[XmlEvent]) -> int:
        """Write every event. Returns the number of events written."""
        count = 0
        for event in events:
            self.write(event)
            count += 1
        log.debug("Serialised %d markup events", count)
        return count
