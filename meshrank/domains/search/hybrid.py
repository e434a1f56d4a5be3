"""
Hybrid Merger - Blends semantic and keyword rankings.

hybrid = w * semantic + (1 - w) * keyword

Results found by only one leg keep their partial score rather than being
dropped, so keyword-only matches still rank, just lower.
"""

from __future__ import annotations

import logging
import re

from .models import HybridSearchResult
from .ranking import clamp_score, rank

logger = logging.getLogger(__name__)

__all__ = ["HybridMerger", "build_tsquery", "keyword_score_from_rank"]

# ts_rank_cd values around 4 already indicate a very strong match
KEYWORD_RANK_SCALE = 4.0

_TOKEN = re.compile(r"\w+")


def keyword_score_from_rank(ts_rank: float) -> float:
    """Normalize a full-text rank into [0, 1]."""
    return clamp_score(min(1.0, ts_rank / KEYWORD_RANK_SCALE))


def build_tsquery(keywords: list[str]) -> str:
    """
    AND-join keywords into a to_tsquery expression.

    Multi-word keywords are split into tokens; tsquery operators in user
    input are dropped.

    Example:
        >>> build_tsquery(["retry", "webhook delivery"])
        'retry & webhook & delivery'
    """
    tokens: list[str] = []
    for keyword in keywords:
        for token in _TOKEN.findall(keyword):
            if token not in tokens:
                tokens.append(token)
    return " & ".join(tokens)


class HybridMerger:
    """
    Weighted merge of semantic and keyword result sets keyed by result id.

    Example:
        >>> merger = HybridMerger()
        >>> merged = merger.merge(semantic_results, keyword_results, weight=0.7)
    """

    def merge(
        self,
        semantic: list[HybridSearchResult],
        keyword: list[HybridSearchResult],
        weight: float,
        limit: int | None = None,
    ) -> list[HybridSearchResult]:
        """
        Merge both legs into one ranking.

        Args:
            semantic: Results carrying ``semantic_score``
            keyword: Results carrying ``keyword_score``
            weight: Semantic weight in [0, 1]
            limit: Optional truncation after ranking

        Returns:
            Results sorted by ``hybrid_score`` descending, ties by id
        """
        w = clamp_score(weight)
        merged: dict[str, HybridSearchResult] = {}

        for result in semantic:
            merged[result.id] = result.model_copy(
                update={"hybrid_score": clamp_score(w * result.semantic_score)}
            )

        for result in keyword:
            existing = merged.get(result.id)
            if existing is not None:
                merged[result.id] = existing.model_copy(
                    update={
                        "keyword_score": result.keyword_score,
                        "hybrid_score": clamp_score(
                            w * existing.semantic_score + (1 - w) * result.keyword_score
                        ),
                    }
                )
            else:
                merged[result.id] = result.model_copy(
                    update={"hybrid_score": clamp_score((1 - w) * result.keyword_score)}
                )

        ranked = rank(
            merged.values(),
            score=lambda r: r.hybrid_score,
            identity=lambda r: r.id,
            limit=limit,
        )

        logger.debug(
            "Hybrid merge: semantic=%d keyword=%d merged=%d weight=%.2f",
            len(semantic),
            len(keyword),
            len(ranked),
            w,
        )
        return ranked
