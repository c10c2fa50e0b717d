# SPDX-FileCopyrightText: 2020-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

"""
Decoder for the Distinguished Encoding Rules (DER) of ASN.1.

Every DER element is a tag-length-value (TLV) triplet:

    +-----------+---------------------+--------------------+
    | tag (1)   | length (1 or 1 + N) | value (length)     |
    +-----------+---------------------+--------------------+

The tag byte holds the tag class in its top 2 bits, the constructed flag
in bit 0x20 and the tag number in its low 5 bits. The value of a constructed
element is itself a concatenation of TLV elements, which must exactly fill
the declared length of their parent.

A length byte below 0x80 is the length itself (short form). Otherwise its
low 7 bits give the number of bytes that follow and encode the length as a
big-endian unsigned integer (long form).

Only the subset of DER needed to navigate certificates and public keys is
supported: tag numbers above 30 (which need more than one tag byte) and the
indefinite length form are rejected.
"""

import enum
import logging
from dataclasses import dataclass
from typing import Self

from certbridge.configuration import default_max_depth

from .datamodel import byte_length, minimal_bytes
from .exceptions import MalformedEncodingError, SchemaMismatchError

__all__ = 'TagClass', 'UniversalTag', 'Node', 'decode', 'decode_single', 'decode_oid', 'encode', 'encode_length', 'encode_integer', 'encode_oid'


log = logging.getLogger(__name__)


CONSTRUCTED_FLAG = 0x20
TAG_NUMBER_MASK = 0x1f
LONG_FORM_FLAG = 0x80
LENGTH_COUNT_MASK = 0x7f
RESERVED_LENGTH_COUNT = 0x7f


class TagClass(enum.IntEnum):
    UNIVERSAL = 0
    APPLICATION = 1
    CONTEXT_SPECIFIC = 2
    PRIVATE = 3


class UniversalTag(enum.IntEnum):
    BOOLEAN = 1
    INTEGER = 2
    BIT_STRING = 3
    OCTET_STRING = 4
    NULL = 5
    OBJECT_IDENTIFIER = 6
    UTF8_STRING = 12
    SEQUENCE = 16
    SET = 17
    PRINTABLE_STRING = 19
    IA5_STRING = 22
    UTC_TIME = 23
    GENERALIZED_TIME = 24


@dataclass(frozen=True, slots=True)
class Node:
    """A decoded TLV element. Constructed nodes own their decoded children."""

    tag_class: TagClass
    tag_number: int
    constructed: bool
    value: bytes
    children: tuple['Node', ...] = ()
    offset: int = 0
    header_length: int = 0

    def __repr__(self) -> str:
        kind = 'constructed' if self.constructed else 'primitive'
        return f'<{self.__class__.__qualname__}: {self.tag_class.name} {self._tag_name} {kind}, {len(self.value)} bytes at offset {self.offset}, {len(self.children)} children>'

    @property
    def _tag_name(self) -> str:
        if self.tag_class is TagClass.UNIVERSAL and self.tag_number in UniversalTag:
            return UniversalTag(self.tag_number).name
        return f'[{self.tag_number}]'

    @property
    def tag(self) -> int:
        """The tag byte of this node as it appears on the wire"""
        return (self.tag_class << 6) | (CONSTRUCTED_FLAG if self.constructed else 0) | self.tag_number

    @property
    def end(self) -> int:
        """The offset immediately following this node in the decoded buffer"""
        return self.offset + self.header_length + len(self.value)

    def is_universal(self, tag_number: int) -> bool:
        return self.tag_class is TagClass.UNIVERSAL and self.tag_number == tag_number

    @property
    def is_integer(self) -> bool:
        return not self.constructed and self.is_universal(UniversalTag.INTEGER)

    def child(self, index: int) -> Self:
        """Return the child at index or raise SchemaMismatchError if there is no such child"""
        if not self.constructed:
            raise SchemaMismatchError(f'{self!r} is not constructed and has no children')
        if not 0 <= index < len(self.children):
            raise SchemaMismatchError(f'{self!r} has no child at position {index}')
        return self.children[index]

    @classmethod
    def from_wire(cls, buffer: bytes | bytearray | memoryview) -> Self:
        return decode_single(buffer)

    def to_wire(self) -> bytes:
        if self.constructed:
            content = b''.join(child.to_wire() for child in self.children)
        else:
            content = self.value
        return bytes([self.tag]) + encode_length(len(content)) + content

    def wire_length(self) -> int:
        return len(self.to_wire())


def decode(buffer: bytes | bytearray | memoryview, offset: int = 0, *, max_depth: int | None = None) -> tuple[Node, int]:
    """
    Decode the TLV element that starts at offset.

    Return the decoded node and the offset immediately following it, which
    is where the next sibling (if any) starts. Raise MalformedEncodingError
    if any length or offset falls outside the buffer.
    """
    if max_depth is None:
        max_depth = default_max_depth()
    data = bytes(buffer)
    if not data:
        raise MalformedEncodingError('Cannot decode an empty buffer')
    if not 0 <= offset < len(data):
        raise MalformedEncodingError(f'Offset {offset} is outside of the buffer (which has {len(data)} bytes)')
    return _decode_node(data, offset, len(data), depth=0, max_depth=max_depth)


def decode_single(buffer: bytes | bytearray | memoryview, *, max_depth: int | None = None) -> Node:
    """Decode a buffer that must contain exactly one TLV element, with no trailing data"""
    data = bytes(buffer)
    node, end = decode(data, max_depth=max_depth)
    if end != len(data):
        raise MalformedEncodingError(f'Found {len(data) - end} bytes of trailing data after the encoded element (which ends at offset {end})')
    log.debug('Decoded %s', node)
    return node


def _decode_node(data: bytes, offset: int, limit: int, *, depth: int, max_depth: int) -> tuple[Node, int]:
    # limit is the end of the enclosing element (or of the buffer for the top level element)
    if depth > max_depth:
        raise MalformedEncodingError(f'The encoding is nested deeper than the maximum of {max_depth} levels (at offset {offset})')
    if offset >= limit:
        raise MalformedEncodingError(f'Expected a tag at offset {offset}, but the enclosing element ends at offset {limit}')

    tag = data[offset]
    tag_number = tag & TAG_NUMBER_MASK
    if tag_number == TAG_NUMBER_MASK:
        raise MalformedEncodingError(f'Multi-byte tag numbers are not supported (tag 0x{tag:02x} at offset {offset})')

    position = offset + 1
    if position >= limit:
        raise MalformedEncodingError(f'Missing the length of the element at offset {offset}')
    length_byte = data[position]
    position += 1

    if length_byte & LONG_FORM_FLAG:
        count = length_byte & LENGTH_COUNT_MASK
        if count == 0:
            raise MalformedEncodingError(f'The indefinite length form is not allowed in DER (element at offset {offset})')
        if count == RESERVED_LENGTH_COUNT:
            raise MalformedEncodingError(f'Reserved length form 0x{length_byte:02x} for the element at offset {offset}')
        if position + count > limit:
            raise MalformedEncodingError(f'The {count} length bytes of the element at offset {offset} run past the end of the enclosing element')
        length = int.from_bytes(data[position:position + count], byteorder='big')
        position += count
    else:
        length = length_byte

    end = position + length
    if end > limit:
        raise MalformedEncodingError(f'The element at offset {offset} declares {length} bytes, which run past the end of the enclosing element ({end} > {limit})')

    constructed = bool(tag & CONSTRUCTED_FLAG)
    children = []
    if constructed:
        # Every child is bounded by end, so the loop stops exactly at end or fails.
        child_offset = position
        while child_offset < end:
            child, child_offset = _decode_node(data, child_offset, end, depth=depth + 1, max_depth=max_depth)
            children.append(child)

    node = Node(
        tag_class=TagClass(tag >> 6),
        tag_number=tag_number,
        constructed=constructed,
        value=data[position:end],
        children=tuple(children),
        offset=offset,
        header_length=position - offset,
    )
    return node, end


def decode_oid(value: bytes) -> str:
    """Decode the value of an OBJECT IDENTIFIER into its dotted representation"""
    if not value:
        raise MalformedEncodingError('An object identifier cannot be empty')
    if value[-1] & 0x80:
        raise MalformedEncodingError('The last sub-identifier of the object identifier is truncated')
    subidentifiers = []
    current = 0
    for byte in value:
        current = (current << 7) | (byte & 0x7f)
        if not byte & 0x80:
            subidentifiers.append(current)
            current = 0
    first = subidentifiers[0]
    arcs = [0, first] if first < 40 else [1, first - 40] if first < 80 else [2, first - 80]
    return '.'.join(str(arc) for arc in arcs + subidentifiers[1:])


# Encoding

def encode_length(length: int) -> bytes:
    if length < 0:
        raise ValueError(f'Length cannot be negative: {length!r}')
    if length < LONG_FORM_FLAG:
        return bytes([length])
    data = length.to_bytes(byte_length(length), byteorder='big')
    if len(data) >= RESERVED_LENGTH_COUNT:
        raise ValueError(f'Length is too big to be encoded: {length!r}')
    return bytes([LONG_FORM_FLAG | len(data)]) + data


def encode(tag_class: TagClass, tag_number: int, value: bytes, *, constructed: bool = False) -> bytes:
    """Encode a single TLV element (value is the already encoded content for constructed elements)"""
    if not 0 <= tag_number < TAG_NUMBER_MASK:
        raise ValueError(f'Tag number must be between 0 and {TAG_NUMBER_MASK - 1}: {tag_number!r}')
    tag = (tag_class << 6) | (CONSTRUCTED_FLAG if constructed else 0) | tag_number
    return bytes([tag]) + encode_length(len(value)) + value


def encode_integer(number: int) -> bytes:
    """Encode a non-negative number as a DER INTEGER (adding the sign padding byte when needed)"""
    data = minimal_bytes(number)
    if data[0] & 0x80:
        data = b'\x00' + data
    return encode(TagClass.UNIVERSAL, UniversalTag.INTEGER, data)


def encode_oid(oid: str) -> bytes:
    """Encode a dotted object identifier as a DER OBJECT IDENTIFIER"""
    arcs = [int(arc) for arc in oid.split('.')]
    if len(arcs) < 2 or arcs[0] > 2 or (arcs[0] < 2 and arcs[1] >= 40):
        raise ValueError(f'Invalid object identifier: {oid!r}')
    content = bytearray()
    for subidentifier in [arcs[0] * 40 + arcs[1], *arcs[2:]]:
        chunk = [subidentifier & 0x7f]
        subidentifier >>= 7
        while subidentifier:
            chunk.append(0x80 | (subidentifier & 0x7f))
            subidentifier >>= 7
        content.extend(reversed(chunk))
    return encode(TagClass.UNIVERSAL, UniversalTag.OBJECT_IDENTIFIER, bytes(content))
