"""
Markup layer — XML event model and protected field transformers.

Provides:
    - StartElement / Characters / EndElement — the event model
    - iter_events / XmlEventWriter — expat-based source and byte sink
    - ProtectedFieldEncryptor / ProtectedFieldDecryptor — in-line field protection
"""

from kdbxio.xml.events import (
    Attribute,
    StartElement,
    Characters,
    EndElement,
    MarkupError,
    XmlEventWriter,
    iter_events,
    transform_events,
)
from kdbxio.xml.transformer import (
    ProtectedFieldEncryptor,
    ProtectedFieldDecryptor,
    to_boolean,
)

__all__ = [
    "Attribute",
    "StartElement",
    "Characters",
    "EndElement",
    "MarkupError",
    "XmlEventWriter",
    "iter_events",
    "transform_events",
    "ProtectedFieldEncryptor",
    "ProtectedFieldDecryptor",
    "to_boolean",
]
