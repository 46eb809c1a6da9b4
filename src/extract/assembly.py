"""Fingerprint extraction from decompiled binary metadata.

Canonicalization mirrors :mod:`extract.source` so a fingerprint built from a
shipped binary compares directly against one built from release sources.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Mapping, Optional, Tuple

from constants import Constants
from common.logging_utils import extra_context
from fingerprint import naming
from fingerprint.models import (
    ClassKind,
    ClassRecord,
    EnumRecord,
    FieldRecord,
    Fingerprint,
    IndexerRecord,
    MethodRecord,
    Modifier,
    ParameterModifier,
    ParameterRecord,
    PropertyRecord,
    ProtectionLevel,
    qualified_name,
)
from versioning.models import HostVersion, PackageVersion

from .metadata import (
    FieldAttributes,
    FieldDefinition,
    MemberAttributes,
    MethodAttributes,
    MethodDefinition,
    ModuleDefinition,
    ParamAttributes,
    ParameterDefinition,
    PropertyDefinition,
    TypeAttributes,
    TypeDefinition,
    TypeReference,
)

logger = logging.getLogger(__name__)

COMPILER_GENERATED_ATTRIBUTE = "System.Runtime.CompilerServices.CompilerGeneratedAttribute"
IS_READ_ONLY_ATTRIBUTE = "System.Runtime.CompilerServices.IsReadOnlyAttribute"
_IGNORED_BASES = {"System.Object", "System.ValueType"}
_DELEGATE_BASES = {"System.MulticastDelegate", "System.Delegate"}
_ENUM_BASE = "System.Enum"
_VALUE_TYPE_BASE = "System.ValueType"
_ENUM_VALUE_FIELD = "value__"
_BACKING_FIELD_MARKER = "k__BackingField"
_CONSTRUCTORS = {".ctor", ".cctor"}
_FINALIZER = "Finalize"

_TYPE_VISIBILITY = {
    TypeAttributes.NOT_PUBLIC: ProtectionLevel.INTERNAL,
    TypeAttributes.PUBLIC: ProtectionLevel.PUBLIC,
    TypeAttributes.NESTED_PUBLIC: ProtectionLevel.PUBLIC,
    TypeAttributes.NESTED_PRIVATE: ProtectionLevel.PRIVATE,
    TypeAttributes.NESTED_FAMILY: ProtectionLevel.PROTECTED,
    TypeAttributes.NESTED_ASSEMBLY: ProtectionLevel.INTERNAL,
    TypeAttributes.NESTED_FAM_AND_ASSEM: ProtectionLevel.PRIVATE_PROTECTED,
    TypeAttributes.NESTED_FAM_OR_ASSEM: ProtectionLevel.PROTECTED_INTERNAL,
}
_MEMBER_ACCESS = {
    MemberAttributes.COMPILER_CONTROLLED: ProtectionLevel.PRIVATE,
    MemberAttributes.PRIVATE: ProtectionLevel.PRIVATE,
    MemberAttributes.FAM_AND_ASSEM: ProtectionLevel.PRIVATE_PROTECTED,
    MemberAttributes.ASSEMBLY: ProtectionLevel.INTERNAL,
    MemberAttributes.FAMILY: ProtectionLevel.PROTECTED,
    MemberAttributes.FAM_OR_ASSEM: ProtectionLevel.PROTECTED_INTERNAL,
    MemberAttributes.PUBLIC: ProtectionLevel.PUBLIC,
}


def type_protection(attributes: int) -> ProtectionLevel:
    return _TYPE_VISIBILITY[int(attributes) & int(TypeAttributes.VISIBILITY_MASK)]


def member_protection(attributes: int) -> ProtectionLevel:
    return _MEMBER_ACCESS[int(attributes) & int(MemberAttributes.ACCESS_MASK)]


def type_modifier(attributes: int) -> Modifier:
    abstract = bool(attributes & TypeAttributes.ABSTRACT)
    sealed = bool(attributes & TypeAttributes.SEALED)
    if abstract and sealed:
        return Modifier.STATIC
    if abstract:
        return Modifier.ABSTRACT
    if sealed:
        return Modifier.SEALED
    return Modifier.NONE


def field_modifier(attributes: int) -> Modifier:
    if attributes & FieldAttributes.LITERAL:
        return Modifier.CONST
    result = Modifier.NONE
    if attributes & MemberAttributes.STATIC:
        result |= Modifier.STATIC
    if attributes & FieldAttributes.INIT_ONLY:
        result |= Modifier.READONLY
    return result


def method_modifier(attributes: int) -> Modifier:
    result = Modifier.NONE
    if attributes & MemberAttributes.STATIC:
        result |= Modifier.STATIC
    if attributes & MethodAttributes.ABSTRACT:
        result |= Modifier.ABSTRACT
    return result


def render_reference(ref: TypeReference, aliases: Optional[Mapping[str, str]] = None) -> str:
    """Canonical text for a referenced type; nested types render as their own name."""
    if ref.shape == "array" and ref.element_type is not None:
        text = naming.array(render_reference(ref.element_type, aliases))
    elif ref.shape == "pointer" and ref.element_type is not None:
        text = naming.pointer(render_reference(ref.element_type, aliases))
    elif ref.shape == "byref" and ref.element_type is not None:
        return render_reference(ref.element_type, aliases)
    else:
        text = naming.generic(
            naming.strip_arity(ref.name),
            (render_reference(arg, aliases) for arg in ref.generic_arguments),
        )
    return naming.apply_alias(text, aliases)


def _own_segment(definition: TypeDefinition) -> str:
    """Type name with only its own generic parameters (nested types repeat the outer ones)."""
    base, _, arity = definition.name.partition("`")
    own = int(arity) if arity.isdigit() else 0
    params = definition.generic_parameters[-own:] if own else []
    return naming.generic(base, params)


class MetadataExtractor:
    """Builds a fingerprint from one module's type definitions."""

    def __init__(self, type_aliases: Optional[Mapping[str, str]] = None):
        self._aliases = dict(Constants.TYPE_ALIASES if type_aliases is None else type_aliases)

    def extract(
        self,
        package_id: str,
        module: ModuleDefinition,
        version: PackageVersion = PackageVersion.ZERO,
        min_host_version: HostVersion = HostVersion.MIN,
    ) -> Fingerprint:
        fingerprint = Fingerprint(package_id=package_id, version=version, min_host_version=min_host_version)
        by_token = {definition.token: definition for definition in module.types}
        orphans: Dict[str, Tuple[str, List[EnumRecord]]] = {}

        for definition in module.types:
            if self._is_compiler_generated(definition, by_token):
                continue
            namespace, name = self._canonical_name(definition, by_token)
            base = definition.base_type.full_name if definition.base_type else None
            if base == _ENUM_BASE:
                self._add_enum(fingerprint, definition, namespace, name, by_token, orphans)
                continue
            fingerprint.add_class(self._class_record(definition, namespace, name, base))

        self._attach_orphan_enums(fingerprint, orphans)
        logger.info(
            "Extracted %d classes and %d global enums from %s",
            len(fingerprint.classes),
            len(fingerprint.global_enums),
            module.name or package_id,
            extra=extra_context(
                event="extract",
                component="metadata_extractor",
                action="extract",
                package_id=package_id,
            ),
        )
        return fingerprint

    @staticmethod
    def _is_compiler_generated(definition: TypeDefinition, by_token: Dict[int, TypeDefinition]) -> bool:
        current: Optional[TypeDefinition] = definition
        while current is not None:
            if current.name.startswith("<") or COMPILER_GENERATED_ATTRIBUTE in current.custom_attributes:
                return True
            current = by_token.get(current.declaring_type) if current.declaring_type is not None else None
        return False

    @staticmethod
    def _canonical_name(definition: TypeDefinition, by_token: Dict[int, TypeDefinition]) -> Tuple[str, str]:
        """(namespace, dotted name through enclosing types)."""
        segments = [_own_segment(definition)]
        outermost = definition
        while outermost.declaring_type is not None and outermost.declaring_type in by_token:
            outermost = by_token[outermost.declaring_type]
            segments.append(_own_segment(outermost))
        namespace = definition.namespace or outermost.namespace
        return namespace, ".".join(reversed(segments))

    def _add_enum(self, fingerprint, definition, namespace, name, by_token, orphans) -> None:
        protection = type_protection(definition.attributes)
        values = [f.name for f in definition.fields if f.name != _ENUM_VALUE_FIELD]
        declaring = by_token.get(definition.declaring_type) if definition.declaring_type is not None else None
        if declaring is None:
            if protection == ProtectionLevel.PRIVATE:
                protection = ProtectionLevel.INTERNAL
            fingerprint.global_enums[qualified_name(namespace, name)] = EnumRecord(
                protection=protection, name=name, values=values
            )
            return
        owner_namespace, owner_name = self._canonical_name(declaring, by_token)
        key = qualified_name(owner_namespace, owner_name)
        bucket = orphans.setdefault(key, (_own_segment(declaring), []))
        bucket[1].append(EnumRecord(protection=protection, name=_own_segment(definition), values=values))

    @staticmethod
    def _attach_orphan_enums(fingerprint: Fingerprint, orphans: Dict[str, Tuple[str, List[EnumRecord]]]) -> None:
        """Attach nested enums to their declaring class once every class exists."""
        for owner_key, (owner_segment, enums) in orphans.items():
            owner = fingerprint.classes.get(owner_key)
            if owner is None:
                owner = next(
                    (record for record in fingerprint.classes.values()
                     if owner_segment in record.name.split(".")),
                    None,
                )
            if owner is None:
                logger.error(
                    "Cannot attach nested enums %s: declaring type %s not found; skipping remaining nested enums",
                    ", ".join(e.name for e in enums),
                    owner_key,
                    extra=extra_context(
                        event="data_error",
                        component="metadata_extractor",
                        action="attach_enums",
                        outcome="orphan",
                        package_id=fingerprint.package_id,
                    ),
                )
                return
            owner.enums.extend(enums)

    def _class_record(self, definition: TypeDefinition, namespace: str, name: str, base: Optional[str]) -> ClassRecord:
        modifier = type_modifier(definition.attributes)
        if base == _VALUE_TYPE_BASE:
            kind = ClassKind.STRUCT
            modifier &= ~Modifier.SEALED
            if IS_READ_ONLY_ATTRIBUTE in definition.custom_attributes:
                modifier |= Modifier.READONLY
        elif definition.attributes & TypeAttributes.INTERFACE:
            kind = ClassKind.INTERFACE
            modifier &= ~Modifier.ABSTRACT
        elif base in _DELEGATE_BASES:
            kind = ClassKind.DELEGATE
            modifier &= ~Modifier.SEALED
        else:
            kind = ClassKind.CLASS

        record = ClassRecord(
            namespace=namespace,
            protection=type_protection(definition.attributes),
            modifier=modifier,
            kind=kind,
            name=name,
        )
        if kind == ClassKind.DELEGATE:
            record.methods = [
                self._method(method) for method in definition.methods if method.name == "Invoke"
            ]
            return record

        record.add_inheritors(self._minimal_bases(definition, base))
        events = {event.name for event in definition.events}
        for field_def in definition.fields:
            if field_def.name.startswith("<") or _BACKING_FIELD_MARKER in field_def.name:
                continue
            if field_def.name in events:
                continue
            record.fields.append(self._field(field_def))
        for prop in definition.properties:
            if prop.parameters:
                record.indexers.append(self._indexer(prop))
            else:
                record.properties.append(self._property(prop))
        for method in definition.methods:
            if self._is_plain_method(method):
                record.methods.append(self._method(method))
        return record

    def _minimal_bases(self, definition: TypeDefinition, base: Optional[str]) -> List[str]:
        """Base type plus interfaces, minus interfaces implied by another retained entry."""
        retained: List[TypeReference] = []
        if definition.base_type is not None and base not in _IGNORED_BASES:
            retained.append(definition.base_type)
        retained.extend(definition.interfaces)

        def identity(ref: TypeReference) -> str:
            return qualified_name(ref.namespace, render_reference(ref))

        implied = {identity(inner) for ref in retained for inner in ref.interfaces}
        return [render_reference(ref, self._aliases) for ref in retained if identity(ref) not in implied]

    @staticmethod
    def _is_plain_method(method: MethodDefinition) -> bool:
        if method.name in _CONSTRUCTORS or method.name.startswith("<"):
            return False
        # ~T() compiles to Finalize()
        if method.name == _FINALIZER and not method.parameters and not method.generic_parameters:
            return False
        return not method.attributes & (MethodAttributes.SPECIAL_NAME | MethodAttributes.RT_SPECIAL_NAME)

    def _parameters(self, parameters: List[ParameterDefinition]) -> List[ParameterRecord]:
        records = []
        for param in parameters:
            if param.attributes & ParamAttributes.OUT:
                modifier = ParameterModifier.OUT
            elif param.type.shape == "byref" or param.type.name.endswith("&"):
                modifier = ParameterModifier.REF
            else:
                modifier = ParameterModifier.NONE
            records.append(
                ParameterRecord(type=render_reference(param.type, self._aliases), name=param.name, modifier=modifier)
            )
        return records

    def _field(self, field_def: FieldDefinition) -> FieldRecord:
        return FieldRecord(
            protection=member_protection(field_def.attributes),
            modifier=field_modifier(field_def.attributes),
            name=field_def.name,
            type=render_reference(field_def.type, self._aliases),
        )

    @staticmethod
    def _accessor_summary(prop: PropertyDefinition):
        getter = member_protection(prop.getter.attributes) if prop.getter else None
        setter = member_protection(prop.setter.attributes) if prop.setter else None
        modifier = Modifier.NONE
        for accessor in (prop.getter, prop.setter):
            if accessor is not None:
                modifier |= method_modifier(accessor.attributes)
        return getter, setter, modifier

    def _property(self, prop: PropertyDefinition) -> PropertyRecord:
        getter, setter, modifier = self._accessor_summary(prop)
        return PropertyRecord(
            getter=getter,
            setter=setter,
            modifier=modifier,
            name=naming.last_segment(prop.name),
            type=render_reference(prop.type, self._aliases),
        )

    def _indexer(self, prop: PropertyDefinition) -> IndexerRecord:
        getter, setter, modifier = self._accessor_summary(prop)
        present = [level for level in (getter, setter) if level is not None]
        return IndexerRecord(
            protection=max(present) if present else ProtectionLevel.UNKNOWN,
            modifier=modifier,
            has_getter=getter is not None,
            has_setter=setter is not None,
            parameters=self._parameters(prop.parameters),
            return_type=render_reference(prop.type, self._aliases),
        )

    def _method(self, method: MethodDefinition) -> MethodRecord:
        return MethodRecord(
            protection=member_protection(method.attributes),
            modifier=method_modifier(method.attributes),
            name=naming.last_segment(naming.generic(method.name, method.generic_parameters)),
            parameters=self._parameters(method.parameters),
            return_type=render_reference(method.return_type, self._aliases),
        )
