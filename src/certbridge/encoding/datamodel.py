# SPDX-FileCopyrightText: 2020-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

from collections.abc import Buffer, Iterable
from io import BytesIO
from typing import ClassVar, Protocol, Self, SupportsBytes, SupportsIndex, SupportsInt, overload, runtime_checkable

__all__ = (  # noqa: RUF022
    # Protocols and types

    'WireData',
    'DataWireProtocol',
    'SizedDataWireProtocol',

    # Helpers

    'byte_length',
    'read_bytes',
    'minimal_bytes',
    'strip_sign_padding',

    # Abstract types

    'UnsignedInteger',
    'FixedSize',

    # Concrete types

    'UInt8',
    'UInt16',
    'UInt32',
    'UInt64',

    'uint8',
    'uint16',
    'uint32',
    'uint64',
)


type WireData = bytes | bytearray | memoryview | BytesIO


# Protocols

@runtime_checkable
class DataWireProtocol(Protocol):
    """The wire protocol for binary data elements"""

    @classmethod
    def from_wire(cls, buffer: WireData) -> Self: ...

    def to_wire(self) -> bytes: ...

    def wire_length(self) -> int: ...


class SizedDataWireProtocol(DataWireProtocol, Protocol):
    _size_: ClassVar[int] = NotImplemented


# Helpers

def byte_length(number: int) -> int:
    """Return the number of bytes needed to represent the number"""
    return (number.bit_length() + 7) // 8


def read_bytes(buffer: WireData, size: int, description: str) -> bytes:
    """Read exactly size bytes from the buffer or fail with a ValueError"""
    if isinstance(buffer, BytesIO):
        data = buffer.read(size)
    else:
        data = bytes(buffer[:size])
    if len(data) < size:
        raise ValueError(f'Insufficient data in buffer to extract {description} (need {size} bytes, got {len(data)})')
    return data


def minimal_bytes(number: int) -> bytes:
    """Return the shortest big-endian representation of a non-negative number (zero is one byte)"""
    if number < 0:
        raise ValueError(f'Cannot represent a negative number as unsigned bytes: {number!r}')
    return number.to_bytes(max(1, byte_length(number)), byteorder='big')


def strip_sign_padding(data: bytes) -> bytes:
    """
    Remove the sign padding byte from a big-endian integer.

    DER integers are always signed, so an unsigned value whose top bit is set
    gets a leading zero byte. At most one such byte is removed, and only when
    something is left after it, which means that b'\\x00' stays b'\\x00'.
    """
    if len(data) > 1 and data[0] == 0:
        return data[1:]
    return data


# Data types

type ConvertibleToInt = str | Buffer | SupportsInt | SupportsIndex


class UnsignedInteger(int):
    _bits_: ClassVar[int] = NotImplemented
    _size_: ClassVar[int] = NotImplemented

    def __init_subclass__(cls, *, bits: int = NotImplemented, **kw: object) -> None:
        if bits is not NotImplemented:
            cls._bits_ = bits
            cls._size_ = bits // 8
        super().__init_subclass__(**kw)

    @overload
    def __new__(cls, x: ConvertibleToInt = ..., /) -> Self: ...

    @overload
    def __new__(cls, x: str | Buffer, /, base: SupportsIndex) -> Self: ...

    def __new__(cls, *args, **kw) -> Self:
        if cls._bits_ is NotImplemented:
            raise TypeError(f'Cannot instantiate abstract unsigned integer type {cls.__qualname__!r} that does not define its bit length')
        value = super().__new__(cls, *args, **kw)
        if value < 0 or value.bit_length() > cls._bits_:
            raise ValueError(f'Value is out of range for unsigned {cls._bits_}-bits integer: {value!r}')
        return value

    def __repr__(self) -> str:
        return f'{self.__class__.__qualname__}({super().__repr__()})'

    @classmethod
    def from_wire(cls, buffer: WireData) -> Self:
        if cls._size_ is NotImplemented:
            raise TypeError(f'Cannot instantiate abstract unsigned integer type {cls.__qualname__!r} that does not define its bit length')
        return cls.from_bytes(read_bytes(buffer, cls._size_, repr(cls.__qualname__)), byteorder='big')

    def to_wire(self) -> bytes:
        return self.to_bytes(self._size_, byteorder='big')

    def wire_length(self) -> int:
        return self._size_


class UInt8(UnsignedInteger, bits=8):
    pass


class UInt16(UnsignedInteger, bits=16):
    pass


class UInt32(UnsignedInteger, bits=32):
    pass


class UInt64(UnsignedInteger, bits=64):
    pass


uint8 = UInt8
uint16 = UInt16
uint32 = UInt32
uint64 = UInt64


class FixedSize(bytes):
    """A fixed size bytes buffer"""

    _size_: ClassVar[int] = NotImplemented

    def __init_subclass__(cls, *, size: int = NotImplemented, **kw: object) -> None:
        if size is not NotImplemented:
            cls._size_ = size
        super().__init_subclass__(**kw)

    @overload
    def __new__(cls) -> Self: ...

    @overload
    def __new__(cls, o: Iterable[SupportsIndex] | SupportsIndex | SupportsBytes | Buffer, /) -> Self: ...

    @overload
    def __new__(cls, string: str, /, encoding: str, errors: str = ...) -> Self: ...

    def __new__(cls, *args, **kw):
        if cls._size_ is NotImplemented:
            raise TypeError(f'Cannot instantiate fixed size bytes type {cls.__qualname__!r} that does not define its size')
        instance = super().__new__(cls, *args, **kw)
        if len(instance) != cls._size_:
            raise ValueError(f'{cls.__qualname__!r} objects must have {cls._size_} bytes')
        return instance

    def __repr__(self) -> str:
        return f'{self.__class__.__qualname__}({super().__repr__()})'

    @classmethod
    def from_wire(cls, buffer: WireData) -> Self:
        if cls._size_ is NotImplemented:
            raise TypeError(f'Cannot instantiate fixed size bytes type {cls.__qualname__!r} that does not define its size')
        return cls(read_bytes(buffer, cls._size_, repr(cls.__qualname__)))

    def to_wire(self) -> bytes:
        return bytes(self)

    def wire_length(self) -> int:
        return self._size_
