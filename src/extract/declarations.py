"""Declaration tree consumed by the source extractor.

A ``SourceParser`` turns one source file into a ``CompilationUnit``. Only the
declaration shapes relevant to fingerprinting are modelled; bodies are reduced
to a ``has_body`` flag.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Protocol, Tuple, Union

from common.errors import MalformedInputError


class SourceParseError(MalformedInputError):
    """A source file could not be read or turned into a declaration tree."""


# Type syntax

@dataclass(frozen=True)
class PredefinedType:
    keyword: str


@dataclass(frozen=True)
class IdentifierName:
    name: str


@dataclass(frozen=True)
class GenericName:
    name: str
    arguments: Tuple["TypeSyntax", ...] = ()


@dataclass(frozen=True)
class QualifiedName:
    left: "TypeSyntax"
    right: "TypeSyntax"


@dataclass(frozen=True)
class ArrayType:
    element: "TypeSyntax"


@dataclass(frozen=True)
class PointerType:
    element: "TypeSyntax"


@dataclass(frozen=True)
class NullableType:
    element: "TypeSyntax"


@dataclass(frozen=True)
class RefType:
    element: "TypeSyntax"


@dataclass(frozen=True)
class TupleType:
    elements: Tuple["TypeSyntax", ...]


@dataclass(frozen=True)
class UnknownType:
    text: str


TypeSyntax = Union[
    PredefinedType, IdentifierName, GenericName, QualifiedName, ArrayType,
    PointerType, NullableType, RefType, TupleType, UnknownType,
]


# Declarations

@dataclass
class Parameter:
    type: TypeSyntax
    name: str
    modifiers: Tuple[str, ...] = ()


@dataclass
class Accessor:
    keyword: str  # get | set | init
    modifiers: Tuple[str, ...] = ()
    has_body: bool = False


@dataclass
class FieldDeclaration:
    modifiers: Tuple[str, ...]
    type: TypeSyntax
    variables: List[str]


@dataclass
class PropertyDeclaration:
    modifiers: Tuple[str, ...]
    type: TypeSyntax
    name: str
    accessors: List[Accessor] = field(default_factory=list)
    expression_body: bool = False


@dataclass
class IndexerDeclaration:
    modifiers: Tuple[str, ...]
    type: TypeSyntax
    parameters: List[Parameter]
    accessors: List[Accessor] = field(default_factory=list)
    expression_body: bool = False


@dataclass
class MethodDeclaration:
    modifiers: Tuple[str, ...]
    return_type: TypeSyntax
    name: str
    parameters: List[Parameter] = field(default_factory=list)
    type_parameters: List[str] = field(default_factory=list)
    has_body: bool = False


@dataclass
class EnumDeclaration:
    modifiers: Tuple[str, ...]
    name: str
    members: List[str] = field(default_factory=list)


@dataclass
class DelegateDeclaration:
    modifiers: Tuple[str, ...]
    return_type: TypeSyntax
    name: str
    parameters: List[Parameter] = field(default_factory=list)
    type_parameters: List[str] = field(default_factory=list)


@dataclass
class TypeDeclaration:
    """Class, struct or interface declaration."""
    kind: str  # class | struct | interface
    modifiers: Tuple[str, ...]
    name: str
    type_parameters: List[str] = field(default_factory=list)
    bases: List[TypeSyntax] = field(default_factory=list)
    members: List["MemberNode"] = field(default_factory=list)


@dataclass
class UsingDirective:
    name: TypeSyntax
    alias: Optional[str] = None


@dataclass
class NamespaceDeclaration:
    name: str
    members: List["NamespaceMember"] = field(default_factory=list)


@dataclass
class CompilationUnit:
    members: List["NamespaceMember"] = field(default_factory=list)


MemberNode = Union[
    FieldDeclaration, PropertyDeclaration, IndexerDeclaration, MethodDeclaration,
    EnumDeclaration, DelegateDeclaration, TypeDeclaration,
]
NamespaceMember = Union[
    UsingDirective, NamespaceDeclaration, TypeDeclaration, EnumDeclaration, DelegateDeclaration,
]


@dataclass
class ParsedSourceFile:
    """A parsed file handed from the analysis producer to its consumer."""
    path: str
    unit: CompilationUnit
    guid: Optional[str] = None


class SourceParser(Protocol):
    """Turns source text into a declaration tree."""

    def parse(self, text: str, path: str) -> CompilationUnit:
        ...
