"""Strategy interface and helpers shared by the comparison strategies."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, TypeVar

from fingerprint.models import Fingerprint, MethodRecord

T = TypeVar("T")

# Weighted sums of float terms may overshoot their bound by a few ulps.
SCORE_TOLERANCE = 1e-9


class ScoreInvariantError(ArithmeticError):
    """A similarity exceeded its maximum; indicates a bug, never clamped."""


def check_bound(value: float, maximum: float, what: str) -> float:
    """Return ``value`` or raise if it exceeds ``maximum``."""
    if value > maximum + SCORE_TOLERANCE:
        raise ScoreInvariantError(f"{what} similarity {value!r} exceeds its maximum {maximum!r}")
    return value


def by_name(items: Iterable[T]) -> Dict[str, T]:
    """Index records by ``name``; a later duplicate replaces an earlier one."""
    return {item.name: item for item in items}  # type: ignore[attr-defined]


def overloads(methods: Iterable[MethodRecord]) -> Dict[str, List[MethodRecord]]:
    grouped: Dict[str, List[MethodRecord]] = {}
    for method in methods:
        grouped.setdefault(method.name, []).append(method)
    return grouped


class CompareStrategy(ABC):
    """Scores how similar a source fingerprint is to a target fingerprint."""

    name: str = ""

    @abstractmethod
    def compare(self, source: Fingerprint, target: Fingerprint) -> float:
        """Similarity in [0, 1] of ``source`` (the binary) to ``target`` (a release)."""
