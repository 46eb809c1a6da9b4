"""Weighted strategy tolerant of private implementation churn.

Members below ``protected`` visibility score 1 unconditionally, so renaming
or retyping private details between releases never lowers a score.
"""

from __future__ import annotations

from typing import Optional, Sequence

from fingerprint.models import (
    ClassRecord,
    EnumRecord,
    FieldRecord,
    Fingerprint,
    IndexerRecord,
    MethodRecord,
    ParameterRecord,
    PropertyRecord,
    ProtectionLevel,
)

from .base import CompareStrategy, by_name, check_bound, overloads

NAMESPACE_PENALTY = 0.8
PROTECTION_PENALTY = 0.95
MODIFIER_PENALTY = 0.95
KIND_PENALTY = 0.8
ENUM_PROTECTION_PENALTY = 0.9

INDEXER_PARAMETERS_WEIGHT = 0.25
METHOD_PARAMETERS_WEIGHT = 0.5


def _hidden(level: Optional[ProtectionLevel]) -> bool:
    return level is not None and level < ProtectionLevel.PROTECTED


def parameter_score(source: ParameterRecord, target: ParameterRecord) -> float:
    score = 0.0
    if source.modifier == target.modifier:
        score += 0.5
    if source.type == target.type:
        score += 0.5
    return score


def _parameters_score(
    source: Sequence[ParameterRecord], target: Sequence[ParameterRecord], weight: float
) -> float:
    """Positional parameter similarity scaled into ``weight``."""
    if not source:
        return weight
    total = sum(parameter_score(s, t) for s, t in zip(source, target))
    return check_bound(total / len(source) * weight, weight, "parameter list")


def enum_score(source: EnumRecord, target: EnumRecord) -> float:
    if source.values:
        matched = sum(
            1 for index, value in enumerate(source.values)
            if index < len(target.values) and target.values[index] == value
        )
        score = matched / len(source.values)
    else:
        score = 1.0
    if source.protection != target.protection:
        score *= ENUM_PROTECTION_PENALTY
    return check_bound(score, 1.0, f"enum {source.name}")


def field_score(source: FieldRecord, target: Optional[FieldRecord]) -> float:
    if _hidden(source.protection):
        return 1.0
    if target is None:
        return 0.0
    score = 0.0
    if source.modifier == target.modifier:
        score += 0.5
    if source.type == target.type:
        score += 0.5
    return score


def _accessor_matches(source: Optional[ProtectionLevel], target: Optional[ProtectionLevel]) -> bool:
    """Both absent, or both present with the source at least as visible."""
    if source is None or target is None:
        return source is None and target is None
    return source >= target


def property_score(source: PropertyRecord, target: Optional[PropertyRecord]) -> float:
    if _hidden(source.protection):
        return 1.0
    if target is None:
        return 0.0
    score = 0.0
    if _accessor_matches(source.getter, target.getter):
        score += 0.25
    if _accessor_matches(source.setter, target.setter):
        score += 0.25
    if source.modifier == target.modifier:
        score += 0.2
    if source.type == target.type:
        score += 0.3
    return check_bound(score, 1.0, f"property {source.name}")


def indexer_score(source: IndexerRecord, target: IndexerRecord) -> float:
    score = _parameters_score(source.parameters, target.parameters, INDEXER_PARAMETERS_WEIGHT)
    if source.has_getter == target.has_getter:
        score += 0.2
    if source.has_setter == target.has_setter:
        score += 0.2
    if source.modifier == target.modifier:
        score += 0.1
    if source.return_type == target.return_type:
        score += 0.25
    return check_bound(score, 1.0, f"indexer {source}")


def method_score(source: MethodRecord, target: MethodRecord) -> float:
    score = _parameters_score(source.parameters, target.parameters, METHOD_PARAMETERS_WEIGHT)
    if source.modifier == target.modifier:
        score += 0.2
    if source.return_type == target.return_type:
        score += 0.3
    return check_bound(score, 1.0, f"method {source}")


class BalancedStrategy(CompareStrategy):
    """Weighted per-member similarity averaged per class, then per package."""

    name = "balanced"

    def compare(self, source: Fingerprint, target: Fingerprint) -> float:
        count = len(source.global_enums) + len(source.classes)
        if count == 0:
            return 0.0
        total = 0.0
        for key, enum in source.global_enums.items():
            other = target.global_enums.get(key)
            if other is not None:
                total += enum_score(enum, other)
        for key, record in source.classes.items():
            other = target.classes.get(key)
            if other is not None:
                total += self.class_score(record, other)
        return check_bound(total / count, 1.0, f"{source.package_id} balanced")

    def class_score(self, source: ClassRecord, target: ClassRecord) -> float:
        count = source.member_count()
        if count == 0:
            score = 1.0
        else:
            enums = by_name(target.enums)
            fields = by_name(target.fields)
            properties = by_name(target.properties)
            methods = overloads(target.methods)
            total = 0.0
            for enum in source.enums:
                if _hidden(enum.protection):
                    total += 1.0
                elif enum.name in enums:
                    total += enum_score(enum, enums[enum.name])
            total += sum(field_score(f, fields.get(f.name)) for f in source.fields)
            total += sum(property_score(p, properties.get(p.name)) for p in source.properties)
            for indexer in source.indexers:
                if _hidden(indexer.protection):
                    total += 1.0
                else:
                    total += max((indexer_score(indexer, other) for other in target.indexers), default=0.0)
            for method in source.methods:
                if _hidden(method.protection):
                    total += 1.0
                else:
                    total += max(
                        (method_score(method, other) for other in methods.get(method.name, [])),
                        default=0.0,
                    )
            score = check_bound(total / count, 1.0, f"class {source.name}")

        if source.namespace != target.namespace:
            score *= NAMESPACE_PENALTY
        if source.protection != target.protection:
            score *= PROTECTION_PENALTY
        if source.modifier != target.modifier:
            score *= MODIFIER_PENALTY
        if source.kind != target.kind:
            score *= KIND_PENALTY
        return score
