# SPDX-FileCopyrightText: 2020-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

from abc import ABC, abstractmethod
from collections.abc import Sequence
from enum import Enum
from inspect import Parameter, Signature
from io import BytesIO
from typing import ClassVar, Self, dataclass_transform, overload

from .datamodel import DataWireProtocol, UnsignedInteger, WireData

__all__ = (  # noqa: RUF022
    'Structure',
    'AnnotatedStructure',

    'Element',
    'CountedListElement',
    'RemainderElement',
)


class Structure:  # noqa: PLW1641
    __signature__: ClassVar[Signature] = Signature()

    _fields_: ClassVar[dict[str, 'FieldDescriptor']] = {}

    _all_arguments: ClassVar[frozenset[str]]
    _mandatory_arguments: ClassVar[frozenset[str]]
    _default_arguments: ClassVar[dict[str, object]]

    def __new__(cls, **kw: object) -> Self:
        if not cls._all_arguments.issuperset(kw):
            raise TypeError(f'Got an unexpected keyword argument {next(iter(set(kw) - cls._all_arguments))!r}')
        if not cls._mandatory_arguments.issubset(kw):
            raise TypeError(f'Missing a required keyword argument {next(iter(cls._mandatory_arguments - set(kw)))!r}')
        return super().__new__(cls)

    def __init__(self, **kw: object) -> None:
        kw = self._default_arguments | kw
        for name in self._fields_:
            setattr(self, name, kw[name])

    def __init_subclass__(cls, **kw: object) -> None:
        super().__init_subclass__(**kw)

        # all the fields on this structure (both inherited and locally defined)
        fields = cls._fields_ | {name: value for name, value in cls.__dict__.items() if isinstance(value, FieldDescriptor)}

        cls._fields_ = fields

        cls.__signature__ = Signature(parameters=[descriptor.signature_parameter for descriptor in fields.values()])
        cls._all_arguments = frozenset(cls.__signature__.parameters)
        cls._mandatory_arguments = frozenset(p.name for p in cls.__signature__.parameters.values() if p.default is Parameter.empty)
        cls._default_arguments = {p.name: p.default for p in cls.__signature__.parameters.values() if p.default is not Parameter.empty}

    def __repr__(self) -> str:
        return f'{self.__class__.__qualname__}({', '.join(f'{name}={_reprproxy(getattr(self, name))!r}' for name in self._fields_)})'

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Structure):
            return self.__class__ is other.__class__ and all(getattr(self, name) == getattr(other, name) for name in self._fields_)
        return NotImplemented

    @classmethod
    def from_wire(cls, buffer: WireData) -> Self:
        if not isinstance(buffer, BytesIO):
            buffer = BytesIO(buffer)
        instance = super().__new__(cls)
        for field in cls._fields_.values():
            field.from_wire(instance, buffer)
        return instance

    def to_wire(self) -> bytes:
        return b''.join(field.to_wire(self) for field in self._fields_.values())

    def wire_length(self) -> int:
        return sum(field.wire_length(self) for field in self._fields_.values())


# Helpers

class _reprproxy:  # noqa: N801
    # Provide better representation for certain types which can be evaluated to recreate the object.

    def __init__(self, value: object) -> None:
        self.value = value

    def __repr__(self) -> str:
        match self.value:
            case Enum() as value:
                return f'{value.__class__.__qualname__}.{value.name}'
            case type() as value:
                return value.__qualname__
            case value:
                return repr(value)

    __str__ = __repr__


# Field descriptors

class FieldDescriptor(ABC):
    name: str | None
    default: object

    def __set_name__(self, owner: type[Structure], name: str) -> None:
        if self.name is None:
            self.name = name
        elif name != self.name:
            raise TypeError(f'Cannot assign the same {self.__class__.__qualname__!r} to two different names: {self.name!r} and {name!r}')

    def __delete__(self, instance: Structure) -> None:
        raise AttributeError(f'Attribute {self.name!r} of {instance.__class__.__qualname__!r} object cannot be deleted')

    @property
    def signature_parameter(self) -> Parameter:
        assert self.name is not None  # noqa: S101 (used by type checkers)
        kwds = {} if self.default is NotImplemented else {'default': self.default}
        return Parameter(name=self.name, kind=Parameter.KEYWORD_ONLY, annotation=self.annotation, **kwds)

    @property
    @abstractmethod
    def annotation(self) -> object: ...

    @abstractmethod
    def from_wire(self, instance: Structure, buffer: BytesIO) -> None: ...

    @abstractmethod
    def to_wire(self, instance: Structure) -> bytes: ...

    @abstractmethod
    def wire_length(self, instance: Structure) -> int: ...

    def _get_stored(self, instance: Structure) -> object:
        if self.name is None:
            raise TypeError(f'Cannot use {self.__class__.__qualname__!r} instance without calling __set_name__ on it.')
        try:
            return instance.__dict__[self.name]
        except KeyError as exc:
            raise AttributeError(f'Attribute {self.name!r} of object {instance.__class__.__qualname__!r} is not set') from exc

    def _set_stored(self, instance: Structure, value: object) -> None:
        if self.name is None:
            raise TypeError(f'Cannot use {self.__class__.__qualname__!r} instance without calling __set_name__ on it.')
        instance.__dict__[self.name] = value


class Element[T: DataWireProtocol](FieldDescriptor):
    """A single data element that implements the wire protocol"""

    def __init__(self, element_type: type[T], /, *, default: T = NotImplemented) -> None:
        if not issubclass(element_type, DataWireProtocol):
            raise TypeError(f'The element type must implement the DataWireProtocol: {element_type.__qualname__!r}')
        self.name = None
        self.type = element_type
        self.default = default

    def __repr__(self) -> str:
        return f'{self.__class__.__name__}({_reprproxy(self.type)!r}, default={self.default!r})'

    @property
    def annotation(self) -> object:
        return self.type

    @overload
    def __get__(self, instance: None, owner: type[Structure]) -> Self: ...

    @overload
    def __get__(self, instance: Structure, owner: type[Structure] | None = None) -> T: ...

    def __get__(self, instance: Structure | None, owner: type[Structure] | None = None) -> Self | T:
        if instance is None:
            return self
        return self._get_stored(instance)  # type: ignore[return-value]

    def __set__(self, instance: Structure, value: T) -> None:
        if not isinstance(value, self.type):
            value = self.type(value)  # type: ignore[call-arg]
        self._set_stored(instance, value)

    def from_wire(self, instance: Structure, buffer: BytesIO) -> None:
        try:
            value = self.type.from_wire(buffer)
        except ValueError as exc:
            raise ValueError(f'Failed to read the {instance.__class__.__qualname__}.{self.name} element from wire: {exc}') from exc
        self._set_stored(instance, value)

    def to_wire(self, instance: Structure) -> bytes:
        return self.__get__(instance).to_wire()

    def wire_length(self, instance: Structure) -> int:
        return self.__get__(instance).wire_length()


class CountedListElement[T: DataWireProtocol](FieldDescriptor):
    """A list of items prefixed with the number of items it holds (not their length in bytes)"""

    def __init__(self, item_type: type[T], /, *, count_type: type[UnsignedInteger], default: Sequence[T] = NotImplemented) -> None:
        if count_type._size_ is NotImplemented:
            raise TypeError('The count type cannot be an abstract UnsignedInteger type that does not define its size')
        self.name = None
        self.item_type = item_type
        self.count_type = count_type
        self.default = default if default is NotImplemented else tuple(default)

    def __repr__(self) -> str:
        return f'{self.__class__.__name__}({self.item_type.__qualname__}, count_type={self.count_type.__qualname__}, default={self.default!r})'

    @property
    def annotation(self) -> object:
        return tuple[self.item_type, ...]  # type: ignore[name-defined]

    @overload
    def __get__(self, instance: None, owner: type[Structure]) -> Self: ...

    @overload
    def __get__(self, instance: Structure, owner: type[Structure] | None = None) -> tuple[T, ...]: ...

    def __get__(self, instance: Structure | None, owner: type[Structure] | None = None) -> Self | tuple[T, ...]:
        if instance is None:
            return self
        return self._get_stored(instance)  # type: ignore[return-value]

    def __set__(self, instance: Structure, value: Sequence[T]) -> None:
        items = tuple(value)
        self.count_type(len(items))  # validates that the count can be represented on the wire
        for item in items:
            if not isinstance(item, self.item_type):
                raise TypeError(f'The items of the {self.name!r} field should be of type {self.item_type.__qualname__!r}')
        self._set_stored(instance, items)

    def from_wire(self, instance: Structure, buffer: BytesIO) -> None:
        try:
            count = self.count_type.from_wire(buffer)
            items = tuple(self.item_type.from_wire(buffer) for _ in range(count))
        except ValueError as exc:
            raise ValueError(f'Failed to read the {instance.__class__.__qualname__}.{self.name} element from wire: {exc}') from exc
        self._set_stored(instance, items)

    def to_wire(self, instance: Structure) -> bytes:
        items = self.__get__(instance)
        return self.count_type(len(items)).to_wire() + b''.join(item.to_wire() for item in items)

    def wire_length(self, instance: Structure) -> int:
        return self.count_type._size_ + sum(item.wire_length() for item in self.__get__(instance))


class RemainderElement(FieldDescriptor):
    """Opaque bytes that extend to the end of the buffer (must be the last field of a structure)"""

    def __init__(self, *, default: bytes = NotImplemented) -> None:
        self.name = None
        self.default = default

    def __repr__(self) -> str:
        return f'{self.__class__.__name__}(default={self.default!r})'

    @property
    def annotation(self) -> object:
        return bytes

    @overload
    def __get__(self, instance: None, owner: type[Structure]) -> Self: ...

    @overload
    def __get__(self, instance: Structure, owner: type[Structure] | None = None) -> bytes: ...

    def __get__(self, instance: Structure | None, owner: type[Structure] | None = None) -> Self | bytes:
        if instance is None:
            return self
        return self._get_stored(instance)  # type: ignore[return-value]

    def __set__(self, instance: Structure, value: bytes | bytearray | memoryview) -> None:
        self._set_stored(instance, bytes(value))

    def from_wire(self, instance: Structure, buffer: BytesIO) -> None:
        self._set_stored(instance, buffer.read())

    def to_wire(self, instance: Structure) -> bytes:
        return self.__get__(instance)

    def wire_length(self, instance: Structure) -> int:
        return len(self.__get__(instance))


@dataclass_transform(kw_only_default=True, field_specifiers=(Element, CountedListElement, RemainderElement))
class AnnotatedStructure(Structure):
    pass
