"""
Cross-Model Normalizer - Makes similarities from different embedding spaces comparable.

Scoring pipeline:
- Dimension-mismatch penalty (at most 10%)
- Model calibration by family (identical, same family, cross-family table)
- Model quality blend weighted by task type
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from types import MappingProxyType

from .models import TaskType
from .ranking import clamp_score

logger = logging.getLogger(__name__)

__all__ = ["CrossModelNormalizer", "model_family"]

DEFAULT_QUALITY_SCORES: Mapping[str, float] = MappingProxyType({
    "text-embedding-3-large": 0.95,
    "text-embedding-3-small": 0.90,
    "text-embedding-ada-002": 0.85,
    "voyage-large-2": 0.93,
    "voyage-2": 0.88,
    "voyage-code-2": 0.92,
    "amazon.titan-embed-text-v2:0": 0.87,
    "cohere.embed-english-v3": 0.89,
    "cohere.embed-multilingual-v3": 0.91,
})

# source family -> target family; not symmetric
DEFAULT_FAMILY_CALIBRATION: Mapping[str, Mapping[str, float]] = MappingProxyType({
    "openai": MappingProxyType({"voyage": 0.92, "bedrock": 0.90, "cohere": 0.88}),
    "voyage": MappingProxyType({"openai": 0.93, "bedrock": 0.91, "cohere": 0.89}),
    "bedrock": MappingProxyType({"openai": 0.91, "voyage": 0.90, "cohere": 0.92}),
})

TASK_WEIGHTS: Mapping[TaskType, tuple[float, float]] = MappingProxyType({
    TaskType.RESEARCH: (0.6, 0.4),
    TaskType.CODE_ANALYSIS: (0.7, 0.3),
    TaskType.MULTILINGUAL: (0.65, 0.35),
    TaskType.DEFAULT: (0.8, 0.2),
})

SAME_MODEL_CALIBRATION = 1.0
SAME_FAMILY_CALIBRATION = 0.95
UNKNOWN_PAIR_CALIBRATION = 0.85
UNKNOWN_MODEL_QUALITY = 0.80


def model_family(model: str) -> str:
    """Group a model name by provider lineage."""
    if "text-embedding-ada" in model or "text-embedding-3" in model:
        return "openai"
    if "voyage" in model:
        return "voyage"
    # Bedrock hosts both Titan and Cohere models
    if "amazon.titan" in model or "cohere" in model:
        return "bedrock"
    if "embed-" in model:
        return "cohere"
    return "unknown"


class CrossModelNormalizer:
    """
    Calibrates raw similarities between heterogeneous embedding models.

    Tables are copied into read-only mappings owned by the instance, so
    per-tenant overrides never leak between normalizers.

    Example:
        >>> normalizer = CrossModelNormalizer()
        >>> similarity, quality, final = normalizer.score(
        ...     0.9, "voyage-2", "text-embedding-3-small", 1024, 1536
        ... )
    """

    def __init__(
        self,
        quality_scores: Mapping[str, float] | None = None,
        family_calibration: Mapping[str, Mapping[str, float]] | None = None,
        task_weights: Mapping[TaskType, tuple[float, float]] | None = None,
    ) -> None:
        """
        Initialize normalizer.

        Args:
            quality_scores: Model -> quality score in [0, 1]
            family_calibration: Source family -> target family -> multiplier
            task_weights: Task type -> (similarity weight, quality weight)
        """
        self._quality = MappingProxyType(dict(quality_scores or DEFAULT_QUALITY_SCORES))
        self._calibration = MappingProxyType({
            source: MappingProxyType(dict(targets))
            for source, targets in (family_calibration or DEFAULT_FAMILY_CALIBRATION).items()
        })
        self._task_weights = MappingProxyType(dict(task_weights or TASK_WEIGHTS))

    def dimension_penalty(self, source_dim: int, target_dim: int) -> float:
        """Multiplier in [0.9, 1.0]; 1.0 when dimensions match."""
        if source_dim == target_dim or source_dim <= 0 or target_dim <= 0:
            return 1.0
        ratio = min(source_dim, target_dim) / max(source_dim, target_dim)
        return 0.9 + 0.1 * ratio

    def calibration(self, source_model: str, target_model: str) -> float:
        """Multiplier correcting systematic score differences between models."""
        if source_model == target_model:
            return SAME_MODEL_CALIBRATION

        source_family = model_family(source_model)
        target_family = model_family(target_model)
        if source_family == target_family:
            return SAME_FAMILY_CALIBRATION

        return self._calibration.get(source_family, {}).get(
            target_family, UNKNOWN_PAIR_CALIBRATION
        )

    def quality(self, model: str) -> float:
        """Empirical quality score of a model."""
        return self._quality.get(model, UNKNOWN_MODEL_QUALITY)

    def normalize(
        self,
        raw_similarity: float,
        source_model: str,
        target_model: str,
        source_dim: int,
        target_dim: int,
    ) -> float:
        """Calibrated similarity in [0, 1]."""
        normalized = raw_similarity * self.dimension_penalty(source_dim, target_dim)
        normalized *= self.calibration(source_model, target_model)
        return clamp_score(normalized)

    def final_score(
        self,
        similarity: float,
        quality: float,
        task_type: TaskType | str = TaskType.DEFAULT,
    ) -> float:
        """Blend calibrated similarity with model quality for a task."""
        try:
            task = TaskType(task_type)
        except ValueError:
            logger.debug("Unknown task type %r, using default weights", task_type)
            task = TaskType.DEFAULT
        sim_weight, qual_weight = self._task_weights.get(task, TASK_WEIGHTS[TaskType.DEFAULT])
        return clamp_score(sim_weight * similarity + qual_weight * quality)

    def score(
        self,
        raw_similarity: float,
        source_model: str,
        target_model: str,
        source_dim: int,
        target_dim: int,
        task_type: TaskType | str = TaskType.DEFAULT,
    ) -> tuple[float, float, float]:
        """Return (calibrated similarity, model quality, final score)."""
        similarity = self.normalize(
            raw_similarity, source_model, target_model, source_dim, target_dim
        )
        quality = self.quality(source_model)
        return similarity, quality, self.final_score(similarity, quality, task_type)
