"""Tests for the equal and balanced comparison strategies."""

import copy

import pytest

from compare.balanced import BalancedStrategy, enum_score, method_score, property_score
from compare.base import ScoreInvariantError, check_bound
from compare.equal import EqualStrategy
from compare.selection import get_strategy
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
)

PUBLIC = ProtectionLevel.PUBLIC
PRIVATE = ProtectionLevel.PRIVATE


def _class(name="Widget", namespace="N", **members):
    record = ClassRecord(namespace, PUBLIC, Modifier.NONE, ClassKind.CLASS, name)
    for key, value in members.items():
        setattr(record, key, value)
    return record


def _fingerprint(*classes, enums=None):
    fingerprint = Fingerprint(package_id="com.unity.sample")
    for record in classes:
        fingerprint.add_class(record)
    fingerprint.global_enums.update(enums or {})
    return fingerprint


def _method(name, *param_types, return_type="Void", protection=PUBLIC):
    params = [ParameterRecord(t, f"p{i}") for i, t in enumerate(param_types)]
    return MethodRecord(protection, Modifier.NONE, name, params, return_type)


class TestStrategySelection:
    """Tests for strategy lookup."""

    def test_known_names(self):
        assert isinstance(get_strategy("balanced"), BalancedStrategy)
        assert isinstance(get_strategy("EQUAL"), EqualStrategy)

    def test_unknown_name(self):
        with pytest.raises(ValueError):
            get_strategy("fuzzy")


class TestEqualStrategy:
    """Tests for the unweighted strategy."""

    def test_identical_fingerprints_score_one(self):
        source = _fingerprint(
            _class(fields=[FieldRecord(PUBLIC, Modifier.NONE, "a", "Int32")], methods=[_method("Run", "Int32")]),
            enums={"N.Color": EnumRecord(PUBLIC, "Color", ["Red", "Green"])},
        )
        assert EqualStrategy().compare(source, copy.deepcopy(source)) == 1.0

    def test_empty_source_scores_zero(self):
        assert EqualStrategy().compare(_fingerprint(), _fingerprint(_class())) == 0.0

    def test_fact_fraction(self):
        source = _fingerprint(_class(fields=[FieldRecord(PUBLIC, Modifier.NONE, "a", "Int32")]))
        target = _fingerprint(_class(fields=[FieldRecord(PUBLIC, Modifier.NONE, "a", "Int64")]))
        # class: 4 of 4, field: 2 of 3
        assert EqualStrategy().compare(source, target) == pytest.approx(6 / 7)

    def test_missing_class_counts_in_denominator(self):
        widget = _class(fields=[FieldRecord(PUBLIC, Modifier.NONE, "a", "Int32")])
        source = _fingerprint(widget, _class(name="Gadget"))
        target = _fingerprint(copy.deepcopy(widget))
        assert EqualStrategy().compare(source, target) == pytest.approx(7 / 11)

    def test_best_overload_is_used(self):
        source = _fingerprint(_class(methods=[_method("Run", "Int32")]))
        target = _fingerprint(_class(methods=[_method("Run"), _method("Run", "Int32")]))
        assert EqualStrategy().compare(source, target) == 1.0

    def test_more_members_in_target_do_not_lower_score(self):
        source = _fingerprint(_class())
        target = _fingerprint(_class(methods=[_method("Extra")]))
        assert EqualStrategy().compare(source, target) == 1.0


class TestBalancedStrategy:
    """Tests for the weighted strategy."""

    def test_identical_fingerprints_score_one(self):
        source = _fingerprint(
            _class(
                fields=[FieldRecord(PUBLIC, Modifier.STATIC, "a", "Int32")],
                properties=[PropertyRecord(PUBLIC, PUBLIC, Modifier.NONE, "Name", "String")],
                indexers=[IndexerRecord(PUBLIC, Modifier.NONE, True, True, [ParameterRecord("Int32", "i")], "Single")],
                methods=[_method("Run", "Int32", "String")],
                enums=[EnumRecord(PUBLIC, "Mode", ["On", "Off"])],
            ),
            enums={"N.Color": EnumRecord(PUBLIC, "Color", ["Red"])},
        )
        assert BalancedStrategy().compare(source, copy.deepcopy(source)) == pytest.approx(1.0)

    def test_private_members_never_lower_the_score(self):
        source = _fingerprint(_class(
            fields=[FieldRecord(PRIVATE, Modifier.NONE, "m_Old", "Int32")],
            methods=[_method("Helper", "Int32", protection=ProtectionLevel.INTERNAL)],
        ))
        target = _fingerprint(_class(fields=[FieldRecord(PRIVATE, Modifier.READONLY, "m_New", "String")]))
        assert BalancedStrategy().compare(source, target) == 1.0

    def test_get_only_against_get_set_is_partial(self):
        source = _fingerprint(_class(properties=[PropertyRecord(PUBLIC, None, Modifier.NONE, "Count", "Int32")]))
        target = _fingerprint(_class(properties=[PropertyRecord(PUBLIC, PUBLIC, Modifier.NONE, "Count", "Int32")]))
        score = BalancedStrategy().compare(source, target)
        assert 0.0 < score < 1.0
        assert score == pytest.approx(0.75)

    def test_missing_member_scores_zero(self):
        source = _fingerprint(_class(methods=[_method("Run"), _method("Stop")]))
        target = _fingerprint(_class(methods=[_method("Run")]))
        assert BalancedStrategy().compare(source, target) == pytest.approx(0.5)

    def test_missing_class_and_empty_source(self):
        source = _fingerprint(_class(), _class(name="Gone"))
        assert BalancedStrategy().compare(source, _fingerprint(_class())) == pytest.approx(0.5)
        assert BalancedStrategy().compare(_fingerprint(), _fingerprint(_class())) == 0.0

    def test_class_penalties_multiply(self):
        source = _fingerprint(_class())
        changed = _class()
        changed.protection = ProtectionLevel.INTERNAL
        changed.modifier = Modifier.SEALED
        changed.kind = ClassKind.STRUCT
        score = BalancedStrategy().compare(source, _fingerprint(changed))
        assert score == pytest.approx(0.95 * 0.95 * 0.8)

    def test_namespace_penalty(self):
        source = _fingerprint(_class(name="B", namespace="A"))
        target = Fingerprint(package_id="com.unity.sample")
        target.classes["A.B"] = _class(name="A.B", namespace="")
        assert BalancedStrategy().compare(source, target) == pytest.approx(0.8)


class TestBalancedMemberScores:
    """Tests for individual member weights."""

    def test_enum_ordinal_match_and_visibility(self):
        source = EnumRecord(PUBLIC, "Mode", ["A", "B", "C", "D"])
        target = EnumRecord(ProtectionLevel.INTERNAL, "Mode", ["A", "B", "X"])
        assert enum_score(source, target) == pytest.approx(0.5 * 0.9)
        assert enum_score(EnumRecord(PUBLIC, "Empty"), EnumRecord(PUBLIC, "Empty")) == 1.0

    def test_setter_less_visible_in_source_does_not_match(self):
        source = PropertyRecord(PUBLIC, PRIVATE, Modifier.NONE, "Value", "Int32")
        target = PropertyRecord(PUBLIC, PUBLIC, Modifier.NONE, "Value", "Int32")
        assert property_score(source, target) == pytest.approx(0.75)
        assert property_score(target, source) == pytest.approx(1.0)

    def test_method_parameter_weight(self):
        source = MethodRecord(PUBLIC, Modifier.NONE, "Run", [
            ParameterRecord("Int32", "a"), ParameterRecord("String", "b", ParameterModifier.REF),
        ], "Void")
        target = MethodRecord(PUBLIC, Modifier.NONE, "Run", [
            ParameterRecord("Int32", "a"), ParameterRecord("Object", "b"),
        ], "Void")
        # parameters: (1.0 + 0.0) / 2 * 0.5, modifiers 0.2, return 0.3
        assert method_score(source, target) == pytest.approx(0.75)

    def test_bound_violation_raises(self):
        assert check_bound(1.0 + 1e-12, 1.0, "rounding") == 1.0 + 1e-12
        with pytest.raises(ScoreInvariantError):
            check_bound(1.01, 1.0, "class")
        assert issubclass(ScoreInvariantError, ArithmeticError)
