"""
Protected field transformers — encrypt or decrypt text inside protected elements.

Output side (ProtectedFieldEncryptor):
    <Value Protected="true">secret</Value>
    -> <Value Protected="True">base64(encrypt(b"secret"))</Value>

Input side (ProtectedFieldDecryptor) reverses the character data step.

Protection state is a single flag: set by a start element carrying a
Protected attribute, cleared by *any* end element. Protected elements are
therefore assumed to hold text only; text after a nested end element inside
a protected element is treated as unprotected.

The injected cipher is stateful. It is called exactly once per protected
text event, in document order, so the reader can replay the same keystream.
"""

from __future__ import annotations

import base64
import binascii
import logging

from kdbxio import COMPRESSED_ATTRIBUTE, DEFAULT_ENCODING, PROTECTED_ATTRIBUTE
from kdbxio.crypto import StreamDecryptor, StreamEncryptor
from kdbxio.xml.events import Attribute, Characters, EndElement, StartElement, XmlEvent

log = logging.getLogger(__name__)


def to_boolean(value: str) -> bool:
    """Case-insensitive "true" check. Anything else, including "yes", is False."""
    return value.lower() == "true"


def encode_base64_content(data: bytes) -> str:
    """Base64 without line breaks."""
    return base64.b64encode(data).decode("ascii")


def decode_base64_content(text: str) -> bytes:
    try:
        return base64.b64decode(text.strip(), validate=True)
    except binascii.Error as e:
        raise ValueError(f"Protected value is not valid base64: {e}") from e


class ProtectedFieldEncryptor:
    """
    Encrypt protected text fields of an outgoing event stream.

    Usage:
        encryptor = ProtectedFieldEncryptor(ChaCha20StreamCipher(inner_key))
        for event in iter_events(xml):
            writer.write(encryptor.transform(event))
    """

    def __init__(self, encryptor: StreamEncryptor, encoding: str = DEFAULT_ENCODING) -> None:
        self._encryptor = encryptor
        self.encoding = encoding
        self._encrypt_content = False
        self.fields_encrypted = 0

    @property
    def protecting(self) -> bool:
        return self._encrypt_content

    def transform(self, event: XmlEvent) -> XmlEvent:
        if isinstance(event, StartElement):
            return self._start_element(event)
        if isinstance(event, Characters):
            if self._encrypt_content:
                ciphertext = self._encryptor.encrypt(event.data.encode(self.encoding))
                self.fields_encrypted += 1
                return Characters(encode_base64_content(ciphertext))
            return event
        if isinstance(event, EndElement):
            self._encrypt_content = False
        return event

    __call__ = transform

    def _start_element(self, event: StartElement) -> StartElement:
        attributes: list[Attribute] = []
        for attribute in event.attributes:
            if attribute.local_name == PROTECTED_ATTRIBUTE:
                self._encrypt_content = to_boolean(attribute.value)
                # a false Protected attribute is dropped, not rewritten
                if self._encrypt_content:
                    attributes.append(Attribute(PROTECTED_ATTRIBUTE, "True"))
            elif attribute.local_name == COMPRESSED_ATTRIBUTE:
                compressed = "True" if to_boolean(attribute.value) else "False"
                attributes.append(Attribute(COMPRESSED_ATTRIBUTE, compressed))
            else:
                attributes.append(attribute)
        return StartElement(event.name, tuple(attributes))


class ProtectedFieldDecryptor:
    """
    Decrypt protected text fields of an incoming event stream.

    Must be driven with a cipher positioned where the writer's cipher started,
    over the same sequence of protected fields.
    """

    def __init__(self, decryptor: StreamDecryptor, encoding: str = DEFAULT_ENCODING) -> None:
        self._decryptor = decryptor
        self.encoding = encoding
        self._decrypt_content = False
        self.fields_decrypted = 0

    @property
    def protecting(self) -> bool:
        return self._decrypt_content

    def transform(self, event: XmlEvent) -> XmlEvent:
        if isinstance(event, StartElement):
            protected = event.get_attribute(PROTECTED_ATTRIBUTE)
            if protected is not None:
                self._decrypt_content = to_boolean(protected.value)
            return event
        if isinstance(event, Characters):
            if self._decrypt_content:
                plaintext = self._decryptor.decrypt(decode_base64_content(event.data))
                self.fields_decrypted += 1
                try:
                    return Characters(plaintext.decode(self.encoding))
                except UnicodeDecodeError as e:
                    raise ValueError(
                        f"Decrypted field {self.fields_decrypted} is not valid {self.encoding}; "
                        f"wrong key or keystream out of step"
                    ) from e
            return event
        if isinstance(event, EndElement):
            self._decrypt_content = False
        return event

    __call__ = transform
