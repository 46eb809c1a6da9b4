"""Lookup of comparison strategies by their command-line name."""

from __future__ import annotations

from typing import Dict, Type

from constants import Strategies

from .balanced import BalancedStrategy
from .base import CompareStrategy
from .equal import EqualStrategy

_STRATEGIES: Dict[str, Type[CompareStrategy]] = {
    Strategies.BALANCED.value: BalancedStrategy,
    Strategies.EQUAL.value: EqualStrategy,
}


def get_strategy(name: str) -> CompareStrategy:
    """Instantiate the strategy called ``name`` (case-insensitive).

    Raises:
        ValueError: If no strategy has that name.
    """
    try:
        return _STRATEGIES[name.strip().lower()]()
    except KeyError:
        known = ", ".join(sorted(_STRATEGIES))
        raise ValueError(f"Unknown strategy {name!r}; expected one of: {known}") from None
