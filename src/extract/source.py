"""Fingerprint extraction from source declaration trees.

Files are fed one at a time through :meth:`SourceExtractor.add_file`; partial
declarations of the same type across files merge into one record. Nested types
are deferred onto the namespace-level queue with their enclosing-type chain
instead of being visited recursively, so every type is handled as a sibling.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, Iterable, List, Mapping, Optional, Set, Tuple

from constants import Constants
from common.logging_utils import extra_context, is_debug_enabled
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

from .declarations import (
    Accessor,
    ArrayType,
    DelegateDeclaration,
    EnumDeclaration,
    FieldDeclaration,
    GenericName,
    IdentifierName,
    IndexerDeclaration,
    MethodDeclaration,
    NamespaceDeclaration,
    NullableType,
    Parameter,
    ParsedSourceFile,
    PointerType,
    PredefinedType,
    PropertyDeclaration,
    QualifiedName,
    RefType,
    TupleType,
    TypeDeclaration,
    TypeSyntax,
    UsingDirective,
)

logger = logging.getLogger(__name__)

_ACCESS_KEYWORDS = {"public", "protected", "internal", "private"}
_KIND_BY_KEYWORD = {
    "class": ClassKind.CLASS,
    "record": ClassKind.CLASS,
    "struct": ClassKind.STRUCT,
    "record struct": ClassKind.STRUCT,
    "interface": ClassKind.INTERFACE,
}
_MODIFIER_BY_KEYWORD = {
    "static": Modifier.STATIC,
    "readonly": Modifier.READONLY,
    "abstract": Modifier.ABSTRACT,
    "sealed": Modifier.SEALED,
}
# Reference types whose ``?`` annotation does not change the compiled type.
_REFERENCE_KEYWORDS = {"string", "object", "dynamic"}


def protection_from_modifiers(modifiers: Iterable[str], default: ProtectionLevel) -> ProtectionLevel:
    """Visibility stated by access keywords, or ``default`` when none is given."""
    mods = set(modifiers)
    if "public" in mods:
        return ProtectionLevel.PUBLIC
    if "protected" in mods:
        if "internal" in mods:
            return ProtectionLevel.PROTECTED_INTERNAL
        if "private" in mods:
            return ProtectionLevel.PRIVATE_PROTECTED
        return ProtectionLevel.PROTECTED
    if "internal" in mods:
        return ProtectionLevel.INTERNAL
    if "private" in mods:
        return ProtectionLevel.PRIVATE
    return default


def modifier_from_keywords(modifiers: Iterable[str]) -> Modifier:
    mods = set(modifiers)
    if "const" in mods:
        return Modifier.CONST
    result = Modifier.NONE
    for keyword, flag in _MODIFIER_BY_KEYWORD.items():
        if keyword in mods:
            result |= flag
    return result


def parameter_modifier(modifiers: Iterable[str]) -> ParameterModifier:
    mods = set(modifiers)
    if "out" in mods:
        return ParameterModifier.OUT
    if "ref" in mods or "in" in mods:
        return ParameterModifier.REF
    return ParameterModifier.NONE


def render_type(node: TypeSyntax, aliases: Optional[Mapping[str, str]] = None) -> str:
    """Canonical text for a type syntax node."""
    if isinstance(node, PredefinedType):
        text = naming.PRIMITIVE_TYPE_NAMES.get(node.keyword, naming.UNRESOLVED_TYPE)
    elif isinstance(node, IdentifierName):
        text = node.name
    elif isinstance(node, GenericName):
        text = naming.generic(node.name, (render_type(a, aliases) for a in node.arguments))
    elif isinstance(node, QualifiedName):
        text = render_type(node.right, aliases)
    elif isinstance(node, ArrayType):
        text = naming.array(render_type(node.element, aliases))
    elif isinstance(node, PointerType):
        text = naming.pointer(render_type(node.element, aliases))
    elif isinstance(node, NullableType):
        element = node.element
        if isinstance(element, PredefinedType) and element.keyword in _REFERENCE_KEYWORDS:
            text = render_type(element, aliases)
        else:
            text = naming.nullable(render_type(element, aliases))
    elif isinstance(node, RefType):
        text = render_type(node.element, aliases)
    elif isinstance(node, TupleType):
        text = naming.value_tuple(render_type(e, aliases) for e in node.elements)
    else:
        text = naming.UNRESOLVED_TYPE
    return naming.apply_alias(text, aliases)


@dataclass
class _Pending:
    """A namespace-level node awaiting a visit."""
    node: object
    namespace: str
    enclosing: Tuple[str, ...] = ()
    guid: Optional[str] = None


class SourceExtractor:
    """Builds one release fingerprint from the parsed source files of that release.

    Not thread-safe: a single consumer owns an instance for its whole life.
    """

    def __init__(
        self,
        package_id: str,
        version: PackageVersion = PackageVersion.ZERO,
        min_host_version: HostVersion = HostVersion.MIN,
        type_aliases: Optional[Mapping[str, str]] = None,
    ):
        self._fingerprint = Fingerprint(
            package_id=package_id,
            version=version,
            min_host_version=min_host_version,
        )
        self._type_aliases = dict(Constants.TYPE_ALIASES if type_aliases is None else type_aliases)
        self._files = 0

    @property
    def fingerprint(self) -> Fingerprint:
        return self._fingerprint

    def add_file(self, parsed: ParsedSourceFile) -> None:
        """Merge the declarations of one parsed file into the fingerprint."""
        aliases = dict(self._type_aliases)
        queue: Deque[_Pending] = deque(
            _Pending(node, "", (), parsed.guid) for node in parsed.unit.members
        )
        while queue:
            item = queue.popleft()
            node = item.node
            if isinstance(node, UsingDirective):
                if node.alias:
                    aliases[node.alias] = render_type(node.name, aliases)
            elif isinstance(node, NamespaceDeclaration):
                namespace = qualified_name(item.namespace, node.name)
                queue.extend(_Pending(child, namespace, (), item.guid) for child in node.members)
            elif isinstance(node, EnumDeclaration):
                self._add_global_enum(node, item)
            elif isinstance(node, DelegateDeclaration):
                self._add_delegate(node, item, aliases)
            elif isinstance(node, TypeDeclaration):
                queue.extend(self._add_type(node, item, aliases))
        self._files += 1

        if is_debug_enabled(logger):
            logger.debug(
                "Merged source file",
                extra=extra_context(
                    event="extract",
                    component="source_extractor",
                    action="add_file",
                    target=parsed.path,
                    classes=len(self._fingerprint.classes),
                ),
            )

    def _add_global_enum(self, node: EnumDeclaration, item: _Pending) -> None:
        record = EnumRecord(
            protection=protection_from_modifiers(node.modifiers, ProtectionLevel.INTERNAL),
            name=node.name,
            values=list(node.members),
        )
        self._fingerprint.global_enums[qualified_name(item.namespace, node.name)] = record

    def _type_protection_default(self, item: _Pending) -> ProtectionLevel:
        return ProtectionLevel.PRIVATE if item.enclosing else ProtectionLevel.INTERNAL

    def _get_or_create(
        self,
        item: _Pending,
        name: str,
        modifiers: Tuple[str, ...],
        kind: ClassKind,
        modifier: Modifier,
    ) -> ClassRecord:
        protection = protection_from_modifiers(modifiers, self._type_protection_default(item))
        full_name = qualified_name(item.namespace, name)
        record = self._fingerprint.classes.get(full_name)
        if record is None:
            record = ClassRecord(
                namespace=item.namespace,
                protection=protection,
                modifier=modifier,
                kind=kind,
                name=name,
                guid=None if item.enclosing else item.guid,
            )
            self._fingerprint.add_class(record)
            return record

        record.modifier |= modifier
        if _ACCESS_KEYWORDS.intersection(modifiers) and protection > record.protection:
            record.protection = protection
        if record.guid is None and not item.enclosing:
            record.guid = item.guid
        return record

    def _add_delegate(self, node: DelegateDeclaration, item: _Pending, aliases: Mapping[str, str]) -> None:
        name = ".".join(item.enclosing + (naming.generic(node.name, node.type_parameters),))
        modifier = modifier_from_keywords(node.modifiers) & ~Modifier.SEALED
        record = self._get_or_create(item, name, node.modifiers, ClassKind.DELEGATE, modifier)
        record.inheritors = []
        record.methods = [
            MethodRecord(
                protection=ProtectionLevel.PUBLIC,
                modifier=Modifier.NONE,
                name="Invoke",
                parameters=self._parameters(node.parameters, aliases),
                return_type=render_type(node.return_type, aliases),
            )
        ]

    def _add_type(
        self, node: TypeDeclaration, item: _Pending, aliases: Mapping[str, str]
    ) -> List[_Pending]:
        segment = naming.generic(node.name, node.type_parameters)
        name = ".".join(item.enclosing + (segment,))
        kind = _KIND_BY_KEYWORD.get(node.kind, ClassKind.UNKNOWN)
        record = self._get_or_create(item, name, node.modifiers, kind, modifier_from_keywords(node.modifiers))
        record.add_inheritors(render_type(base, aliases) for base in node.bases)

        in_interface = kind == ClassKind.INTERFACE
        member_default = ProtectionLevel.PUBLIC if in_interface else ProtectionLevel.PRIVATE
        inherited = record.modifier & Modifier.STATIC
        nested: List[_Pending] = []
        chain = item.enclosing + (segment,)

        for member in node.members:
            if isinstance(member, (TypeDeclaration, DelegateDeclaration)):
                nested.append(_Pending(member, item.namespace, chain))
            elif isinstance(member, EnumDeclaration):
                record.enums.append(
                    EnumRecord(
                        protection=protection_from_modifiers(member.modifiers, member_default),
                        name=member.name,
                        values=list(member.members),
                    )
                )
            elif isinstance(member, FieldDeclaration):
                record.fields.extend(self._fields(member, member_default, inherited, aliases))
            elif isinstance(member, PropertyDeclaration):
                record.properties.append(
                    self._property(member, member_default, inherited, in_interface, aliases)
                )
            elif isinstance(member, IndexerDeclaration):
                record.indexers.append(
                    self._indexer(member, member_default, inherited, in_interface, aliases)
                )
            elif isinstance(member, MethodDeclaration):
                record.methods.append(
                    self._method(member, member_default, inherited, in_interface, aliases)
                )
        return nested

    @staticmethod
    def _member_modifier(modifiers: Tuple[str, ...], inherited: Modifier) -> Modifier:
        own = modifier_from_keywords(modifiers)
        if own == Modifier.CONST:
            return own
        return (own | inherited) & ~Modifier.SEALED

    def _parameters(self, parameters: List[Parameter], aliases: Mapping[str, str]) -> List[ParameterRecord]:
        return [
            ParameterRecord(
                type=render_type(p.type, aliases),
                name=p.name,
                modifier=parameter_modifier(p.modifiers),
            )
            for p in parameters
        ]

    def _fields(self, node: FieldDeclaration, default, inherited, aliases) -> List[FieldRecord]:
        protection = protection_from_modifiers(node.modifiers, default)
        modifier = self._member_modifier(node.modifiers, inherited)
        type_text = render_type(node.type, aliases)
        return [
            FieldRecord(protection=protection, modifier=modifier, name=variable, type=type_text)
            for variable in node.variables
        ]

    @staticmethod
    def _implicitly_abstract(in_interface: bool, modifiers: Tuple[str, ...], has_body: bool) -> Modifier:
        if in_interface and not has_body and "static" not in modifiers:
            return Modifier.ABSTRACT
        return Modifier.NONE

    @staticmethod
    def _accessors_have_body(accessors: List[Accessor], expression_body: bool) -> bool:
        return expression_body or any(a.has_body for a in accessors)

    def _property(self, node: PropertyDeclaration, default, inherited, in_interface, aliases) -> PropertyRecord:
        base = protection_from_modifiers(node.modifiers, default)
        modifier = self._member_modifier(node.modifiers, inherited)
        modifier |= self._implicitly_abstract(
            in_interface, node.modifiers, self._accessors_have_body(node.accessors, node.expression_body)
        )
        getter: Optional[ProtectionLevel] = None
        setter: Optional[ProtectionLevel] = None
        if node.expression_body:
            getter = base
        else:
            for accessor in node.accessors:
                level = protection_from_modifiers(accessor.modifiers, base)
                if accessor.keyword == "get":
                    getter = level
                elif accessor.keyword in ("set", "init"):
                    setter = level
        return PropertyRecord(
            getter=getter,
            setter=setter,
            modifier=modifier,
            name=naming.last_segment(node.name),
            type=render_type(node.type, aliases),
        )

    def _indexer(self, node: IndexerDeclaration, default, inherited, in_interface, aliases) -> IndexerRecord:
        modifier = self._member_modifier(node.modifiers, inherited)
        modifier |= self._implicitly_abstract(
            in_interface, node.modifiers, self._accessors_have_body(node.accessors, node.expression_body)
        )
        keywords = {a.keyword for a in node.accessors}
        return IndexerRecord(
            protection=protection_from_modifiers(node.modifiers, default),
            modifier=modifier,
            has_getter=node.expression_body or "get" in keywords,
            has_setter=bool(keywords.intersection({"set", "init"})),
            parameters=self._parameters(node.parameters, aliases),
            return_type=render_type(node.type, aliases),
        )

    def _method(self, node: MethodDeclaration, default, inherited, in_interface, aliases) -> MethodRecord:
        modifier = self._member_modifier(node.modifiers, inherited)
        modifier |= self._implicitly_abstract(in_interface, node.modifiers, node.has_body)
        return MethodRecord(
            protection=protection_from_modifiers(node.modifiers, default),
            modifier=modifier,
            name=naming.last_segment(naming.generic(node.name, node.type_parameters)),
            parameters=self._parameters(node.parameters, aliases),
            return_type=render_type(node.return_type, aliases),
        )

    def finalize(self) -> Fingerprint:
        """Prune base types implied by other declared bases and return the model."""
        by_open_name: Dict[str, ClassRecord] = {}
        for record in self._fingerprint.classes.values():
            by_open_name.setdefault(naming.open_generic(naming.last_segment(record.name)), record)

        def implied_by(base: str, seen: Set[str]) -> Set[str]:
            record = by_open_name.get(naming.open_generic(base))
            if record is None:
                return set()
            found: Set[str] = set()
            for parent in record.inheritors:
                key = naming.open_generic(parent)
                if key in seen:
                    continue
                seen.add(key)
                found.add(key)
                found |= implied_by(parent, seen)
            return found

        for record in self._fingerprint.classes.values():
            if len(record.inheritors) < 2:
                continue
            implied: Set[str] = set()
            for base in record.inheritors:
                implied |= implied_by(base, {naming.open_generic(base)})
            record.inheritors = sorted(
                base for base in record.inheritors if naming.open_generic(base) not in implied
            )

        logger.info(
            "%s Extracted %d classes and %d global enums from %d files for %s %s",
            Constants.ANALYSIS,
            len(self._fingerprint.classes),
            len(self._fingerprint.global_enums),
            self._files,
            self._fingerprint.package_id,
            self._fingerprint.version,
        )
        return self._fingerprint
