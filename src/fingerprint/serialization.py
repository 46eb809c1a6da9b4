"""JSON (de)serialization of fingerprints.

The persisted form stores enum values as integers. The debug form is a
human-readable variant with enum names and sorted keys; it is never read back.
"""

from __future__ import annotations

import json
from enum import Enum
from typing import Any, Dict, List, Optional

from common.errors import MalformedInputError
from versioning.parser import parse_host_version, parse_package_version

from .models import (
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
)


class FingerprintFormatError(MalformedInputError):
    """A persisted fingerprint could not be decoded."""


def _enum_out(value: Optional[Enum], readable: bool) -> Any:
    if value is None:
        return None
    if not readable:
        return int(value)
    if isinstance(value, Modifier):
        names = [flag.name for flag in Modifier if flag and flag in value]
        return "|".join(names) if names else "NONE"
    return value.name


def _params_out(params: List[ParameterRecord], readable: bool) -> List[Dict[str, Any]]:
    return [
        {"name": p.name, "type": p.type, "modifier": _enum_out(p.modifier, readable)}
        for p in params
    ]


def _enum_record_out(record: EnumRecord, readable: bool) -> Dict[str, Any]:
    return {
        "protection": _enum_out(record.protection, readable),
        "name": record.name,
        "values": list(record.values),
    }


def _class_out(record: ClassRecord, readable: bool) -> Dict[str, Any]:
    return {
        "namespace": record.namespace,
        "protection": _enum_out(record.protection, readable),
        "modifier": _enum_out(record.modifier, readable),
        "kind": _enum_out(record.kind, readable),
        "name": record.name,
        "guid": record.guid,
        "inheritors": list(record.inheritors),
        "enums": [_enum_record_out(e, readable) for e in record.enums],
        "fields": [
            {
                "protection": _enum_out(f.protection, readable),
                "modifier": _enum_out(f.modifier, readable),
                "name": f.name,
                "type": f.type,
            }
            for f in record.fields
        ],
        "properties": [
            {
                "getter": _enum_out(p.getter, readable),
                "setter": _enum_out(p.setter, readable),
                "modifier": _enum_out(p.modifier, readable),
                "name": p.name,
                "type": p.type,
            }
            for p in record.properties
        ],
        "indexers": [
            {
                "protection": _enum_out(i.protection, readable),
                "modifier": _enum_out(i.modifier, readable),
                "has_getter": i.has_getter,
                "has_setter": i.has_setter,
                "parameters": _params_out(i.parameters, readable),
                "return": i.return_type,
            }
            for i in record.indexers
        ],
        "methods": [
            {
                "protection": _enum_out(m.protection, readable),
                "modifier": _enum_out(m.modifier, readable),
                "name": m.name,
                "parameters": _params_out(m.parameters, readable),
                "return": m.return_type,
            }
            for m in record.methods
        ],
    }


def to_dict(fingerprint: Fingerprint, readable: bool = False) -> Dict[str, Any]:
    """Convert a fingerprint to plain JSON-compatible data."""
    return {
        "package_id": fingerprint.package_id,
        "version": str(fingerprint.version),
        "min_host_version": str(fingerprint.min_host_version),
        "global_enums": {
            name: _enum_record_out(record, readable)
            for name, record in fingerprint.global_enums.items()
        },
        "classes": {
            name: _class_out(record, readable)
            for name, record in fingerprint.classes.items()
        },
    }


def dumps(fingerprint: Fingerprint, readable: bool = False) -> str:
    if readable:
        return json.dumps(to_dict(fingerprint, readable=True), indent=2, sort_keys=True)
    return json.dumps(to_dict(fingerprint))


def _params_in(items: List[Dict[str, Any]]) -> List[ParameterRecord]:
    return [
        ParameterRecord(type=p["type"], name=p["name"], modifier=ParameterModifier(p["modifier"]))
        for p in items
    ]


def _optional_protection(value: Optional[int]) -> Optional[ProtectionLevel]:
    return None if value is None else ProtectionLevel(value)


def _enum_record_in(data: Dict[str, Any]) -> EnumRecord:
    return EnumRecord(
        protection=ProtectionLevel(data["protection"]),
        name=data["name"],
        values=list(data["values"]),
    )


def _class_in(data: Dict[str, Any]) -> ClassRecord:
    return ClassRecord(
        namespace=data["namespace"],
        protection=ProtectionLevel(data["protection"]),
        modifier=Modifier(data["modifier"]),
        kind=ClassKind(data["kind"]),
        name=data["name"],
        guid=data.get("guid"),
        inheritors=list(data["inheritors"]),
        enums=[_enum_record_in(e) for e in data["enums"]],
        fields=[
            FieldRecord(
                protection=ProtectionLevel(f["protection"]),
                modifier=Modifier(f["modifier"]),
                name=f["name"],
                type=f["type"],
            )
            for f in data["fields"]
        ],
        properties=[
            PropertyRecord(
                getter=_optional_protection(p["getter"]),
                setter=_optional_protection(p["setter"]),
                modifier=Modifier(p["modifier"]),
                name=p["name"],
                type=p["type"],
            )
            for p in data["properties"]
        ],
        indexers=[
            IndexerRecord(
                protection=ProtectionLevel(i["protection"]),
                modifier=Modifier(i["modifier"]),
                has_getter=bool(i["has_getter"]),
                has_setter=bool(i["has_setter"]),
                parameters=_params_in(i["parameters"]),
                return_type=i["return"],
            )
            for i in data["indexers"]
        ],
        methods=[
            MethodRecord(
                protection=ProtectionLevel(m["protection"]),
                modifier=Modifier(m["modifier"]),
                name=m["name"],
                parameters=_params_in(m["parameters"]),
                return_type=m["return"],
            )
            for m in data["methods"]
        ],
    )


def from_dict(data: Dict[str, Any]) -> Fingerprint:
    """Rebuild a fingerprint from :func:`to_dict` output.

    Raises:
        FingerprintFormatError: If a key is missing or a value is out of range.
    """
    try:
        return Fingerprint(
            package_id=data["package_id"],
            version=parse_package_version(data["version"]),
            min_host_version=parse_host_version(data["min_host_version"]),
            global_enums={name: _enum_record_in(e) for name, e in data["global_enums"].items()},
            classes={name: _class_in(c) for name, c in data["classes"].items()},
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise FingerprintFormatError(f"Invalid fingerprint document: {exc}") from exc


def loads(text: str) -> Fingerprint:
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise FingerprintFormatError(f"Fingerprint is not valid JSON: {exc}") from exc
    return from_dict(data)
