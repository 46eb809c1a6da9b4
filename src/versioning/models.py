"""Data models for release versions and host runtime versions."""

from dataclasses import dataclass, field
from enum import IntEnum
from functools import total_ordering
from typing import ClassVar, Optional, Tuple

# System.Version semantics: an undefined component sorts below any defined one.
_UNDEFINED_COMPONENT = -1
_CORE_WIDTH = 4


@total_ordering
@dataclass(frozen=True)
class PackageVersion:
    """Release version: dotted numeric core plus an optional pre-release qualifier.

    ``1.2.0-pre.4a`` has core ``(1, 2, 0)``, separator ``pre``, counter ``4`` and
    suffix ``a``. Equality requires all four parts to match; ordering ignores the
    separator text, so two differently-named qualifiers with the same counter
    tie without being equal.
    """
    core: Tuple[int, ...]
    separator: Optional[str] = None
    counter: Optional[int] = None
    suffix: Optional[str] = None

    ZERO: ClassVar["PackageVersion"]

    @property
    def is_prerelease(self) -> bool:
        return self.separator is not None

    def sort_key(self) -> Tuple:
        """Key realizing the release ordering; a release outranks its pre-releases."""
        padded = self.core + (_UNDEFINED_COMPONENT,) * (_CORE_WIDTH - len(self.core))
        return (
            padded,
            0 if self.is_prerelease else 1,
            self.counter if self.counter is not None else -1,
            self.suffix or "",
        )

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, PackageVersion):
            return NotImplemented
        return self.sort_key() < other.sort_key()

    def __str__(self) -> str:
        text = ".".join(str(part) for part in self.core)
        if self.separator is None:
            return text
        text = f"{text}-{self.separator}"
        if self.counter is None:
            return text
        return f"{text}.{self.counter}{self.suffix or ''}"


PackageVersion.ZERO = PackageVersion(core=(0, 0, 0))


class ReleaseType(IntEnum):
    """Host build channel, ordered from earliest to latest in a version line."""
    ALPHA = 0
    BETA = 1
    CHINA = 2
    FINAL = 3
    PATCH = 4
    EXPERIMENTAL = 5


RELEASE_TYPE_LETTERS = {
    "a": ReleaseType.ALPHA,
    "b": ReleaseType.BETA,
    "c": ReleaseType.CHINA,
    "f": ReleaseType.FINAL,
    "p": ReleaseType.PATCH,
    "x": ReleaseType.EXPERIMENTAL,
}


@dataclass(frozen=True, order=True)
class HostVersion:
    """Host runtime version such as ``2020.3.15f1``.

    Missing build/type/number default to the lowest values, so ``2020.1`` is
    the earliest build of the 2020.1 line.
    """
    major: int
    minor: int
    build: int = 0
    release_type: ReleaseType = ReleaseType.ALPHA
    release_number: int = 0
    text: str = field(default="", compare=False)

    MIN: ClassVar["HostVersion"]

    def admits(self, minimum: "HostVersion") -> bool:
        """True if a release requiring ``minimum`` is eligible on this host."""
        return minimum <= self

    def __str__(self) -> str:
        if self.text:
            return self.text
        letter = next(k for k, v in RELEASE_TYPE_LETTERS.items() if v == self.release_type)
        return f"{self.major}.{self.minor}.{self.build}{letter}{self.release_number}"


HostVersion.MIN = HostVersion(0, 0, 0, ReleaseType.ALPHA, 0, "0.0")
