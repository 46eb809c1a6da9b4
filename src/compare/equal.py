"""Unweighted strategy: the fraction of structural facts that match exactly."""

from __future__ import annotations

from typing import List, Optional, Sequence, Tuple

from fingerprint.models import (
    ClassRecord,
    EnumRecord,
    FieldRecord,
    Fingerprint,
    IndexerRecord,
    MethodRecord,
    ParameterRecord,
    PropertyRecord,
)

from .base import CompareStrategy, by_name, check_bound, overloads

Tally = Tuple[int, int]  # (matched facts, possible facts)


def _parameters(source: Sequence[ParameterRecord], target: Sequence[ParameterRecord]) -> Tally:
    matched = 0
    for index, param in enumerate(source):
        if index >= len(target):
            break
        other = target[index]
        matched += (param.modifier == other.modifier) + (param.type == other.type)
    return matched, 2 * len(source)


def _enum(source: EnumRecord, target: Optional[EnumRecord]) -> Tally:
    possible = len(source.values) + 1
    if target is None:
        return 0, possible
    matched = sum(
        1 for index, value in enumerate(source.values)
        if index < len(target.values) and target.values[index] == value
    )
    matched += source.protection == target.protection
    return matched, possible


def _field(source: FieldRecord, target: Optional[FieldRecord]) -> Tally:
    if target is None:
        return 0, 3
    return (
        (source.protection == target.protection)
        + (source.modifier == target.modifier)
        + (source.type == target.type),
        3,
    )


def _property(source: PropertyRecord, target: Optional[PropertyRecord]) -> Tally:
    if target is None:
        return 0, 4
    return (
        (source.getter == target.getter)
        + (source.setter == target.setter)
        + (source.modifier == target.modifier)
        + (source.type == target.type),
        4,
    )


def _indexer(source: IndexerRecord, target: IndexerRecord) -> Tally:
    matched, possible = _parameters(source.parameters, target.parameters)
    matched += (
        (source.protection == target.protection)
        + (source.modifier == target.modifier)
        + (source.has_getter == target.has_getter)
        + (source.has_setter == target.has_setter)
        + (source.return_type == target.return_type)
    )
    return matched, possible + 5


def _method(source: MethodRecord, target: MethodRecord) -> Tally:
    matched, possible = _parameters(source.parameters, target.parameters)
    matched += (
        (source.protection == target.protection)
        + (source.modifier == target.modifier)
        + (source.return_type == target.return_type)
    )
    return matched, possible + 3


def _best(tallies: List[Tally], possible: int) -> Tally:
    """Best candidate's matches; the possible count depends on the source only."""
    return max((matched for matched, _ in tallies), default=0), possible


class EqualStrategy(CompareStrategy):
    """Every matching fact adds one; every fact of the source counts toward the maximum."""

    name = "equal"

    def compare(self, source: Fingerprint, target: Fingerprint) -> float:
        matched = possible = 0
        for key, enum in source.global_enums.items():
            m, p = _enum(enum, target.global_enums.get(key))
            matched, possible = matched + m, possible + p
        for key, record in source.classes.items():
            m, p = self._class(record, target.classes.get(key))
            matched, possible = matched + m, possible + p
        if possible == 0:
            return 0.0
        return check_bound(matched / possible, 1.0, f"{source.package_id} equal")

    @staticmethod
    def _class(source: ClassRecord, target: Optional[ClassRecord]) -> Tally:
        enums = by_name(target.enums) if target else {}
        fields = by_name(target.fields) if target else {}
        properties = by_name(target.properties) if target else {}
        methods = overloads(target.methods) if target else {}
        indexers = target.indexers if target else []

        tallies: List[Tally] = []
        if target is None:
            tallies.append((0, 4))
        else:
            tallies.append((
                (source.namespace == target.namespace)
                + (source.protection == target.protection)
                + (source.modifier == target.modifier)
                + (source.kind == target.kind),
                4,
            ))
        tallies.extend(_enum(e, enums.get(e.name)) for e in source.enums)
        tallies.extend(_field(f, fields.get(f.name)) for f in source.fields)
        tallies.extend(_property(p, properties.get(p.name)) for p in source.properties)
        for indexer in source.indexers:
            possible = 5 + 2 * len(indexer.parameters)
            tallies.append(_best([_indexer(indexer, other) for other in indexers], possible))
        for method in source.methods:
            possible = 3 + 2 * len(method.parameters)
            tallies.append(_best([_method(method, other) for other in methods.get(method.name, [])], possible))

        return sum(m for m, _ in tallies), sum(p for _, p in tallies)
