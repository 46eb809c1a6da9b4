"""Canonical structural model shared by both extractors and every strategy."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum, IntFlag
from typing import Dict, List, Optional

from versioning.models import HostVersion, PackageVersion


class ProtectionLevel(IntEnum):
    """Visibility lattice, least to most visible."""
    UNKNOWN = 0
    PRIVATE = 1
    PRIVATE_PROTECTED = 2
    INTERNAL = 3
    PROTECTED = 4
    PROTECTED_INTERNAL = 5
    PUBLIC = 6


class Modifier(IntFlag):
    """Declaration modifiers relevant to matching."""
    NONE = 0
    STATIC = 1
    READONLY = 2
    ABSTRACT = 4
    SEALED = 8
    CONST = 16


class ClassKind(IntEnum):
    UNKNOWN = 0
    CLASS = 1
    INTERFACE = 2
    STRUCT = 3
    DELEGATE = 4


class ParameterModifier(IntEnum):
    NONE = 0
    REF = 1
    OUT = 3


@dataclass
class ParameterRecord:
    type: str
    name: str
    modifier: ParameterModifier = ParameterModifier.NONE

    def __str__(self) -> str:
        return f"{self.type} {self.name}"


@dataclass
class EnumRecord:
    protection: ProtectionLevel
    name: str
    values: List[str] = field(default_factory=list)


@dataclass
class FieldRecord:
    protection: ProtectionLevel
    modifier: Modifier
    name: str
    type: str

    def __str__(self) -> str:
        return f"{self.type} {self.name}"


@dataclass
class PropertyRecord:
    """Property with independently optional accessors; ``None`` means absent."""
    getter: Optional[ProtectionLevel]
    setter: Optional[ProtectionLevel]
    modifier: Modifier
    name: str
    type: str

    @property
    def protection(self) -> ProtectionLevel:
        """Visibility of the most visible accessor present."""
        present = [p for p in (self.getter, self.setter) if p is not None]
        return max(present) if present else ProtectionLevel.UNKNOWN

    def __str__(self) -> str:
        return f"{self.type} {self.name}"


@dataclass
class IndexerRecord:
    protection: ProtectionLevel
    modifier: Modifier
    has_getter: bool
    has_setter: bool
    parameters: List[ParameterRecord]
    return_type: str

    def __str__(self) -> str:
        params = ",".join(str(p) for p in self.parameters)
        return f"{self.return_type} this[{params}]"


@dataclass
class MethodRecord:
    protection: ProtectionLevel
    modifier: Modifier
    name: str
    parameters: List[ParameterRecord]
    return_type: str

    def __str__(self) -> str:
        params = ",".join(str(p) for p in self.parameters)
        return f"{self.return_type} {self.name}({params})"


@dataclass
class ClassRecord:
    """A class, struct, interface or delegate.

    ``name`` is dot-joined through enclosing types (``Outer<T>.Inner``) and
    excludes the namespace; ``full_name`` is the fingerprint key.
    """
    namespace: str
    protection: ProtectionLevel
    modifier: Modifier
    kind: ClassKind
    name: str
    inheritors: List[str] = field(default_factory=list)
    enums: List[EnumRecord] = field(default_factory=list)
    fields: List[FieldRecord] = field(default_factory=list)
    properties: List[PropertyRecord] = field(default_factory=list)
    indexers: List[IndexerRecord] = field(default_factory=list)
    methods: List[MethodRecord] = field(default_factory=list)
    guid: Optional[str] = None

    @property
    def full_name(self) -> str:
        return qualified_name(self.namespace, self.name)

    def add_inheritors(self, names) -> None:
        """Union ``names`` into the sorted base-type set."""
        self.inheritors = sorted(set(self.inheritors).union(names))

    def member_count(self) -> int:
        return (
            len(self.enums) + len(self.fields) + len(self.properties)
            + len(self.indexers) + len(self.methods)
        )


def qualified_name(namespace: str, name: str) -> str:
    return f"{namespace}.{name}" if namespace else name


@dataclass
class Fingerprint:
    """Structural fingerprint of one package release or one shipped binary."""
    package_id: str
    version: PackageVersion = PackageVersion.ZERO
    min_host_version: HostVersion = HostVersion.MIN
    global_enums: Dict[str, EnumRecord] = field(default_factory=dict)
    classes: Dict[str, ClassRecord] = field(default_factory=dict)

    def add_class(self, record: ClassRecord) -> None:
        self.classes[record.full_name] = record
