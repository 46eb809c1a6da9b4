"""Decompiled binary metadata consumed by the metadata extractor.

The binary decoder itself is an external tool; it emits a JSON dump of the
module's type definitions (``<binary>.json`` by default) using the shapes
below. Attribute values are the raw ECMA-335 flag words.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from enum import IntFlag
from typing import Any, Callable, Dict, List, Optional

from common.errors import MalformedInputError, NotFoundError


class MetadataFormatError(MalformedInputError):
    """A metadata dump is missing required keys or is not valid JSON."""


class MetadataNotFoundError(NotFoundError):
    """No metadata dump exists for a binary."""


class TypeAttributes(IntFlag):
    VISIBILITY_MASK = 0x7
    NOT_PUBLIC = 0x0
    PUBLIC = 0x1
    NESTED_PUBLIC = 0x2
    NESTED_PRIVATE = 0x3
    NESTED_FAMILY = 0x4
    NESTED_ASSEMBLY = 0x5
    NESTED_FAM_AND_ASSEM = 0x6
    NESTED_FAM_OR_ASSEM = 0x7
    INTERFACE = 0x20
    ABSTRACT = 0x80
    SEALED = 0x100


class MemberAttributes(IntFlag):
    """Flags shared by the method and field attribute words."""
    ACCESS_MASK = 0x7
    COMPILER_CONTROLLED = 0x0
    PRIVATE = 0x1
    FAM_AND_ASSEM = 0x2
    ASSEMBLY = 0x3
    FAMILY = 0x4
    FAM_OR_ASSEM = 0x5
    PUBLIC = 0x6
    STATIC = 0x10


class FieldAttributes(IntFlag):
    INIT_ONLY = 0x20
    LITERAL = 0x40


class MethodAttributes(IntFlag):
    FINAL = 0x20
    VIRTUAL = 0x40
    ABSTRACT = 0x400
    SPECIAL_NAME = 0x800
    RT_SPECIAL_NAME = 0x1000


class ParamAttributes(IntFlag):
    IN = 0x1
    OUT = 0x2


@dataclass
class TypeReference:
    """A type as referenced from a signature or a base/interface list.

    ``interfaces`` lists every interface the referenced type implements,
    already flattened by the decoder.
    """
    name: str
    namespace: str = ""
    generic_arguments: List["TypeReference"] = field(default_factory=list)
    element_type: Optional["TypeReference"] = None
    shape: Optional[str] = None  # array | pointer | byref
    interfaces: List["TypeReference"] = field(default_factory=list)

    @property
    def full_name(self) -> str:
        return f"{self.namespace}.{self.name}" if self.namespace else self.name


@dataclass
class ParameterDefinition:
    name: str
    type: TypeReference
    attributes: int = 0


@dataclass
class MethodDefinition:
    name: str
    attributes: int
    return_type: TypeReference
    parameters: List[ParameterDefinition] = field(default_factory=list)
    generic_parameters: List[str] = field(default_factory=list)


@dataclass
class FieldDefinition:
    name: str
    attributes: int
    type: TypeReference


@dataclass
class PropertyDefinition:
    name: str
    type: TypeReference
    getter: Optional[MethodDefinition] = None
    setter: Optional[MethodDefinition] = None
    parameters: List[ParameterDefinition] = field(default_factory=list)


@dataclass
class EventDefinition:
    """An event; field-like events also compile to a private field of the same name."""
    name: str
    type: TypeReference


@dataclass
class TypeDefinition:
    """One TypeDef row with its members.

    ``namespace`` is the effective namespace (nested types report their
    outermost type's namespace); ``declaring_type`` is the token of the
    enclosing TypeDef.
    """
    token: int
    namespace: str
    name: str
    attributes: int
    declaring_type: Optional[int] = None
    base_type: Optional[TypeReference] = None
    interfaces: List[TypeReference] = field(default_factory=list)
    custom_attributes: List[str] = field(default_factory=list)
    generic_parameters: List[str] = field(default_factory=list)
    fields: List[FieldDefinition] = field(default_factory=list)
    properties: List[PropertyDefinition] = field(default_factory=list)
    methods: List[MethodDefinition] = field(default_factory=list)
    events: List[EventDefinition] = field(default_factory=list)


@dataclass
class ModuleDefinition:
    name: str
    types: List[TypeDefinition] = field(default_factory=list)


MetadataReader = Callable[[str], ModuleDefinition]


def _type_ref(data: Optional[Dict[str, Any]]) -> Optional[TypeReference]:
    if data is None:
        return None
    return TypeReference(
        name=data["name"],
        namespace=data.get("namespace", ""),
        generic_arguments=[_type_ref(a) for a in data.get("generic_arguments", [])],
        element_type=_type_ref(data.get("element_type")),
        shape=data.get("shape"),
        interfaces=[_type_ref(i) for i in data.get("interfaces", [])],
    )


def _parameters(items: List[Dict[str, Any]]) -> List[ParameterDefinition]:
    return [
        ParameterDefinition(name=p["name"], type=_type_ref(p["type"]), attributes=p.get("attributes", 0))
        for p in items
    ]


def _method(data: Optional[Dict[str, Any]]) -> Optional[MethodDefinition]:
    if data is None:
        return None
    return MethodDefinition(
        name=data["name"],
        attributes=data["attributes"],
        return_type=_type_ref(data["return_type"]),
        parameters=_parameters(data.get("parameters", [])),
        generic_parameters=list(data.get("generic_parameters", [])),
    )


def _type_definition(data: Dict[str, Any]) -> TypeDefinition:
    return TypeDefinition(
        token=data["token"],
        namespace=data.get("namespace", ""),
        name=data["name"],
        attributes=data["attributes"],
        declaring_type=data.get("declaring_type"),
        base_type=_type_ref(data.get("base_type")),
        interfaces=[_type_ref(i) for i in data.get("interfaces", [])],
        custom_attributes=list(data.get("custom_attributes", [])),
        generic_parameters=list(data.get("generic_parameters", [])),
        fields=[
            FieldDefinition(name=f["name"], attributes=f["attributes"], type=_type_ref(f["type"]))
            for f in data.get("fields", [])
        ],
        properties=[
            PropertyDefinition(
                name=p["name"],
                type=_type_ref(p["type"]),
                getter=_method(p.get("getter")),
                setter=_method(p.get("setter")),
                parameters=_parameters(p.get("parameters", [])),
            )
            for p in data.get("properties", [])
        ],
        methods=[_method(m) for m in data.get("methods", [])],
        events=[EventDefinition(name=e["name"], type=_type_ref(e["type"])) for e in data.get("events", [])],
    )


def module_from_dict(data: Dict[str, Any]) -> ModuleDefinition:
    """Build a module from a decoded metadata dump.

    Raises:
        MetadataFormatError: If a required key is missing or mistyped.
    """
    try:
        return ModuleDefinition(
            name=data.get("name", ""),
            types=[_type_definition(t) for t in data["types"]],
        )
    except (KeyError, TypeError, AttributeError) as exc:
        raise MetadataFormatError(f"Invalid metadata dump: {exc!r}") from exc


def dump_path_for(binary_path: str) -> str:
    return binary_path + ".json"


def read_metadata_dump(binary_path: str) -> ModuleDefinition:
    """Default ``MetadataReader``: load ``<binary>.json`` written by the decoder."""
    path = dump_path_for(binary_path)
    if not os.path.isfile(path):
        raise MetadataNotFoundError(f"No metadata dump for {binary_path} (expected {path})")
    with open(path, encoding="utf-8") as handle:
        try:
            data = json.load(handle)
        except json.JSONDecodeError as exc:
            raise MetadataFormatError(f"Metadata dump {path} is not valid JSON: {exc}") from exc
    module = module_from_dict(data)
    if not module.name:
        module.name = os.path.basename(binary_path)
    return module
