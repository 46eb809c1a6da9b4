"""C# ``SourceParser`` built on tree-sitter.

Only declarations are converted; statement bodies are reduced to presence
flags. Preprocessor conditionals are evaluated against ``defined_symbols``
(none by default), so ``#if UNITY_EDITOR`` blocks are dropped the same way a
player build drops them.
"""

from __future__ import annotations

import logging
import re
import threading
from typing import Iterable, Iterator, List, Optional, Tuple

import tree_sitter_c_sharp
from tree_sitter import Language, Node, Parser

from .declarations import (
    Accessor,
    ArrayType,
    CompilationUnit,
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
    PointerType,
    PredefinedType,
    PropertyDeclaration,
    QualifiedName,
    RefType,
    SourceParseError,
    TupleType,
    TypeDeclaration,
    TypeSyntax,
    UnknownType,
    UsingDirective,
)

logger = logging.getLogger(__name__)

_TYPE_DECLARATIONS = {
    "class_declaration": "class",
    "struct_declaration": "struct",
    "interface_declaration": "interface",
    "record_declaration": "record",
    "record_struct_declaration": "record struct",
}
_PARAMETER_KEYWORDS = {"ref", "out", "in", "params", "this", "scoped", "readonly"}
_ACCESSOR_KEYWORDS = {"get", "set", "init", "add", "remove"}
_PREPROC_TOKENS = re.compile(r"\|\||&&|==|!=|!|\(|\)|[A-Za-z_][A-Za-z0-9_]*")


def _text(node: Optional[Node]) -> str:
    if node is None:
        return ""
    return node.text.decode("utf-8", errors="replace")


def _same(a: Optional[Node], b: Optional[Node]) -> bool:
    if a is None or b is None:
        return False
    return a.type == b.type and a.start_byte == b.start_byte and a.end_byte == b.end_byte


def _field(node: Node, *names: str) -> Optional[Node]:
    for name in names:
        child = node.child_by_field_name(name)
        if child is not None:
            return child
    return None


def _child_of_type(node: Node, *types: str) -> Optional[Node]:
    for child in node.named_children:
        if child.type in types:
            return child
    return None


def _modifiers(node: Node) -> Tuple[str, ...]:
    return tuple(_text(child) for child in node.children if child.type == "modifier")


class _PreprocessorCondition:
    """Evaluates ``#if`` expressions given a set of defined symbols."""

    def __init__(self, text: str, defined: frozenset):
        self._tokens = _PREPROC_TOKENS.findall(text)
        self._pos = 0
        self._defined = defined

    def evaluate(self) -> bool:
        if not self._tokens:
            return False
        return self._or()

    def _peek(self) -> Optional[str]:
        return self._tokens[self._pos] if self._pos < len(self._tokens) else None

    def _take(self) -> Optional[str]:
        token = self._peek()
        self._pos += 1
        return token

    def _or(self) -> bool:
        value = self._and()
        while self._peek() == "||":
            self._take()
            value = self._and() or value
        return value

    def _and(self) -> bool:
        value = self._equality()
        while self._peek() == "&&":
            self._take()
            value = self._equality() and value
        return value

    def _equality(self) -> bool:
        value = self._unary()
        while self._peek() in ("==", "!="):
            op = self._take()
            right = self._unary()
            value = (value == right) if op == "==" else (value != right)
        return value

    def _unary(self) -> bool:
        if self._peek() == "!":
            self._take()
            return not self._unary()
        return self._primary()

    def _primary(self) -> bool:
        token = self._take()
        if token == "(":
            value = self._or()
            if self._peek() == ")":
                self._take()
            return value
        if token == "true":
            return True
        if token == "false" or token is None:
            return False
        return token in self._defined


class TreeSitterSourceParser:
    """``SourceParser`` for C# using ``tree-sitter-c-sharp``.

    One tree-sitter ``Parser`` is kept per thread since parsers are not
    safe to share across the analysis worker threads.
    """

    def __init__(self, defined_symbols: Iterable[str] = ()):
        self._language = Language(tree_sitter_c_sharp.language())
        self._local = threading.local()
        self._defined = frozenset(defined_symbols)

    def _parser(self) -> Parser:
        parser = getattr(self._local, "parser", None)
        if parser is None:
            parser = Parser(self._language)
            self._local.parser = parser
        return parser

    def parse(self, text: str, path: str) -> CompilationUnit:
        try:
            tree = self._parser().parse(text.encode("utf-8"))
        except (ValueError, TypeError) as exc:
            raise SourceParseError(f"tree-sitter failed on {path}: {exc}") from exc
        root = tree.root_node
        if root.has_error:
            logger.debug("Syntax errors in %s; extracting recoverable declarations", path)
        return CompilationUnit(members=self._namespace_members(root))

    # Preprocessor handling

    def _active_children(self, node: Optional[Node]) -> Iterator[Node]:
        if node is None:
            return
        for child in node.named_children:
            if child.type == "preproc_if":
                yield from self._active_branch(child)
            else:
                yield child

    def _active_branch(self, node: Node) -> Iterator[Node]:
        condition = node.child_by_field_name("condition")
        alternative = node.child_by_field_name("alternative")
        if _PreprocessorCondition(_text(condition), self._defined).evaluate():
            for child in node.named_children:
                if _same(child, condition) or _same(child, alternative):
                    continue
                if child.type == "preproc_if":
                    yield from self._active_branch(child)
                else:
                    yield child
        elif alternative is not None:
            if alternative.type == "preproc_elif":
                yield from self._active_branch(alternative)
            else:
                yield from self._active_children(alternative)

    # Namespace level

    def _namespace_members(self, container: Node) -> List:
        members: List = []
        file_scoped: Optional[NamespaceDeclaration] = None
        for child in self._active_children(container):
            if child.type == "file_scoped_namespace_declaration":
                file_scoped = NamespaceDeclaration(
                    name=_text(child.child_by_field_name("name")),
                    members=self._namespace_members(child),
                )
                members.append(file_scoped)
                continue
            converted = self._namespace_member(child)
            if converted is None:
                continue
            if file_scoped is not None:
                file_scoped.members.append(converted)
            else:
                members.append(converted)
        return members

    def _namespace_member(self, node: Node):
        if node.type == "using_directive":
            return self._using(node)
        if node.type == "namespace_declaration":
            body = _field(node, "body") or _child_of_type(node, "declaration_list")
            return NamespaceDeclaration(
                name=_text(node.child_by_field_name("name")),
                members=self._namespace_members(body) if body is not None else [],
            )
        return self._type_like(node)

    def _using(self, node: Node) -> Optional[UsingDirective]:
        # using Alias = Target;  the alias is the ``name`` field, the target the other named child
        alias_node = None
        if any(child.type == "=" for child in node.children):
            alias_node = node.child_by_field_name("name")
        name_equals = _child_of_type(node, "name_equals")
        alias = None
        if alias_node is not None:
            alias = _text(alias_node)
        elif name_equals is not None:
            alias = _text(_child_of_type(name_equals, "identifier")) or _text(name_equals).rstrip("= ")
        targets = [
            child for child in node.named_children
            if child.type != "name_equals" and not _same(child, alias_node)
        ]
        if not targets:
            return None
        return UsingDirective(name=self._type(targets[-1]), alias=alias)

    def _type_like(self, node: Node):
        if node.type in _TYPE_DECLARATIONS:
            return self._type_declaration(node)
        if node.type == "enum_declaration":
            body = _field(node, "body") or _child_of_type(node, "enum_member_declaration_list")
            members = [
                _text(_field(member, "name") or _child_of_type(member, "identifier"))
                for member in self._active_children(body)
                if member.type == "enum_member_declaration"
            ]
            return EnumDeclaration(
                modifiers=_modifiers(node),
                name=_text(node.child_by_field_name("name")),
                members=members,
            )
        if node.type == "delegate_declaration":
            return DelegateDeclaration(
                modifiers=_modifiers(node),
                return_type=self._type(_field(node, "type", "returns")),
                name=_text(node.child_by_field_name("name")),
                parameters=self._parameters(_field(node, "parameters") or _child_of_type(node, "parameter_list")),
                type_parameters=self._type_parameters(node),
            )
        return None

    def _type_declaration(self, node: Node) -> TypeDeclaration:
        kind = _TYPE_DECLARATIONS[node.type]
        if kind == "record" and any(child.type == "struct" for child in node.children):
            kind = "record struct"

        bases: List[TypeSyntax] = []
        base_list = _child_of_type(node, "base_list")
        if base_list is not None:
            for child in base_list.named_children:
                if child.type == "primary_constructor_base_type":
                    child = _field(child, "type") or child.named_children[0]
                if child.type == "argument_list":
                    continue
                bases.append(self._type(child))

        body = _field(node, "body") or _child_of_type(node, "declaration_list")
        members = []
        for child in self._active_children(body):
            member = self._member(child)
            if member is not None:
                members.append(member)

        return TypeDeclaration(
            kind=kind,
            modifiers=_modifiers(node),
            name=_text(node.child_by_field_name("name")),
            type_parameters=self._type_parameters(node),
            bases=bases,
            members=members,
        )

    # Members

    def _member(self, node: Node):
        kind = node.type
        if kind == "field_declaration":
            declaration = _child_of_type(node, "variable_declaration")
            if declaration is None:
                return None
            variables = [
                _text(_field(declarator, "name") or _child_of_type(declarator, "identifier"))
                for declarator in declaration.named_children
                if declarator.type == "variable_declarator"
            ]
            return FieldDeclaration(
                modifiers=_modifiers(node),
                type=self._type(_field(declaration, "type")),
                variables=variables,
            )
        if kind == "property_declaration":
            accessor_list = _field(node, "accessors") or _child_of_type(node, "accessor_list")
            return PropertyDeclaration(
                modifiers=_modifiers(node),
                type=self._type(_field(node, "type")),
                name=_text(node.child_by_field_name("name")),
                accessors=self._accessors(accessor_list),
                expression_body=accessor_list is None,
            )
        if kind == "indexer_declaration":
            accessor_list = _field(node, "accessors") or _child_of_type(node, "accessor_list")
            return IndexerDeclaration(
                modifiers=_modifiers(node),
                type=self._type(_field(node, "type")),
                parameters=self._parameters(
                    _field(node, "parameters") or _child_of_type(node, "bracketed_parameter_list")
                ),
                accessors=self._accessors(accessor_list),
                expression_body=accessor_list is None,
            )
        if kind == "method_declaration":
            return MethodDeclaration(
                modifiers=_modifiers(node),
                return_type=self._type(_field(node, "returns", "type")),
                name=_text(node.child_by_field_name("name")),
                parameters=self._parameters(_field(node, "parameters") or _child_of_type(node, "parameter_list")),
                type_parameters=self._type_parameters(node),
                has_body=node.child_by_field_name("body") is not None,
            )
        return self._type_like(node)

    def _accessors(self, accessor_list: Optional[Node]) -> List[Accessor]:
        accessors = []
        for node in self._active_children(accessor_list):
            if node.type != "accessor_declaration":
                continue
            keyword_node = node.child_by_field_name("name")
            keyword = _text(keyword_node) if keyword_node is not None else next(
                (_text(child) for child in node.children if _text(child) in _ACCESSOR_KEYWORDS), ""
            )
            accessors.append(
                Accessor(
                    keyword=keyword,
                    modifiers=_modifiers(node),
                    has_body=node.child_by_field_name("body") is not None,
                )
            )
        return accessors

    def _parameters(self, parameter_list: Optional[Node]) -> List[Parameter]:
        if parameter_list is None:
            return []
        parameters = []
        # ``params T[] name`` is not wrapped in a parameter node: keyword, type and identifier are siblings
        params_type: Optional[Node] = None
        in_params = False
        for node in parameter_list.children:
            if node.type == "params":
                in_params = True
                continue
            if in_params:
                if not node.is_named or node.type == "attribute_list":
                    continue
                if params_type is None:
                    params_type = node
                    continue
                if node.type == "identifier":
                    parameters.append(
                        Parameter(type=self._type(params_type), name=_text(node), modifiers=("params",))
                    )
                in_params = False
                params_type = None
                continue
            if node.type not in ("parameter", "parameter_array"):
                continue
            parameters.append(self._parameter(node))
        return parameters

    def _parameter(self, node: Node) -> Parameter:
        type_node = node.child_by_field_name("type")
        name_node = node.child_by_field_name("name")
        identifiers = [child for child in node.named_children if child.type == "identifier"]
        if name_node is None and identifiers:
            name_node = identifiers[-1]
        if type_node is None:
            type_node = next(
                (
                    child for child in node.named_children
                    if child.type not in ("attribute_list", "equals_value_clause", "parameter_modifier", "modifier")
                    and not _same(child, name_node)
                ),
                None,
            )
        modifiers = tuple(
            _text(child) for child in node.children
            if not _same(child, type_node) and not _same(child, name_node)
            and _text(child) in _PARAMETER_KEYWORDS
        )
        return Parameter(
            type=self._type(type_node) if type_node is not None else UnknownType(""),
            name=_text(name_node),
            modifiers=modifiers,
        )

    def _type_parameters(self, node: Node) -> List[str]:
        parameter_list = _field(node, "type_parameters") or _child_of_type(node, "type_parameter_list")
        if parameter_list is None:
            return []
        return [
            _text(_field(child, "name") or _child_of_type(child, "identifier"))
            for child in parameter_list.named_children
            if child.type == "type_parameter"
        ]

    # Types

    def _type(self, node: Optional[Node]) -> TypeSyntax:
        if node is None:
            return UnknownType("")
        kind = node.type
        if kind == "predefined_type":
            return PredefinedType(_text(node))
        if kind == "identifier":
            return IdentifierName(_text(node))
        if kind == "generic_name":
            arguments = _child_of_type(node, "type_argument_list")
            return GenericName(
                name=_text(_field(node, "name") or _child_of_type(node, "identifier")),
                arguments=tuple(self._type(arg) for arg in arguments.named_children) if arguments else (),
            )
        if kind == "qualified_name":
            left = _field(node, "qualifier") or node.named_children[0]
            right = _field(node, "name") or node.named_children[-1]
            return QualifiedName(left=self._type(left), right=self._type(right))
        if kind == "alias_qualified_name":
            return self._type(_field(node, "name") or node.named_children[-1])
        if kind == "array_type":
            return ArrayType(self._type(_field(node, "type") or node.named_children[0]))
        if kind == "pointer_type":
            return PointerType(self._type(_field(node, "type") or node.named_children[0]))
        if kind == "nullable_type":
            return NullableType(self._type(_field(node, "type") or node.named_children[0]))
        if kind in ("ref_type", "scoped_type"):
            return RefType(self._type(_field(node, "type") or node.named_children[-1]))
        if kind == "tuple_type":
            return TupleType(tuple(
                self._type(_field(element, "type") or element.named_children[0])
                for element in node.named_children
                if element.type == "tuple_element"
            ))
        return UnknownType(_text(node))
