"""Result containers and ranking."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from common.errors import PkgMatchError
from versioning.models import PackageVersion

Ranked = List[Tuple[PackageVersion, float]]


@dataclass
class PackageCompareResult:
    """Similarity of one shipped binary to every eligible release of its package."""
    package_id: str
    scores: Dict[PackageVersion, float] = field(default_factory=dict)
    binary: Optional[str] = None

    def ranked(self, top_n: Optional[int] = None) -> Ranked:
        """Versions by descending score; ties go to the newer version."""
        ordered = sorted(
            self.scores.items(),
            key=lambda item: (item[1], item[0].sort_key()),
            reverse=True,
        )
        return ordered[:top_n] if top_n is not None else ordered

    def best(self) -> Optional[Tuple[PackageVersion, float]]:
        ranked = self.ranked(1)
        return ranked[0] if ranked else None


@dataclass
class CompareResults:
    """Outcome of a batch run over a managed directory."""
    results: Dict[str, PackageCompareResult] = field(default_factory=dict)
    failures: Dict[str, PkgMatchError] = field(default_factory=dict)
    skipped: List[str] = field(default_factory=list)

    def has_scores(self) -> bool:
        return any(result.scores for result in self.results.values())
