"""Canonical type-text rules both extractors must agree on."""

from typing import Iterable, Mapping, Optional

# C# keyword -> runtime type name, as reported by compiled metadata.
PRIMITIVE_TYPE_NAMES = {
    "string": "String",
    "sbyte": "SByte",
    "byte": "Byte",
    "short": "Int16",
    "ushort": "UInt16",
    "int": "Int32",
    "uint": "UInt32",
    "long": "Int64",
    "ulong": "UInt64",
    "char": "Char",
    "float": "Single",
    "double": "Double",
    "bool": "Boolean",
    "decimal": "Decimal",
    "void": "Void",
    "object": "Object",
    "dynamic": "Object",
    "nint": "IntPtr",
    "nuint": "UIntPtr",
}

UNRESOLVED_TYPE = "ERROR GETTING TYPE"


def generic(name: str, arguments: Iterable[str]) -> str:
    args = list(arguments)
    if not args:
        return name
    return f"{name}<{','.join(args)}>"


def array(element: str) -> str:
    return f"{element}[]"


def pointer(element: str) -> str:
    return f"{element}*"


def nullable(element: str) -> str:
    return generic("Nullable", [element])


def value_tuple(elements: Iterable[str]) -> str:
    return generic("ValueTuple", elements)


def strip_arity(metadata_name: str) -> str:
    """``List`1`` -> ``List``; by-ref markers are dropped too."""
    return metadata_name.split("`", 1)[0].replace("&", "")


def open_generic(name: str) -> str:
    """``IFoo<Int32>`` -> ``IFoo``; used to relate instantiations to definitions."""
    return name.split("<", 1)[0]


def last_segment(name: str) -> str:
    """Rightmost dotted segment outside generic brackets.

    ``IFoo<System.Int32>.Bar`` -> ``Bar``, ``Ns.Outer.Inner`` -> ``Inner``.
    """
    depth = 0
    for index in range(len(name) - 1, -1, -1):
        char = name[index]
        if char == ">":
            depth += 1
        elif char == "<":
            depth -= 1
        elif char == "." and depth == 0:
            return name[index + 1:]
    return name


def apply_alias(rendered: str, aliases: Optional[Mapping[str, str]]) -> str:
    if not aliases:
        return rendered
    return aliases.get(rendered, rendered)
