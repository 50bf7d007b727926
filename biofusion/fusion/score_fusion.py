"""
Score Fusion: combine per-algorithm scores of one comparison into one score.

Each slot's raw score is calibrated by the slot's normalizer, then the
present (non-NaN) values are combined with the scheme's weights:

    mean: sum(w_i * v_i) / sum(w_i)   over present slots
    sum:  sum(w_i * v_i) * sum(w) / sum(w_i)   over present slots
    max:  max(v_i)
    min:  min(v_i)

Sums use math.fsum, so the fused value does not depend on the order in
which the algorithms are listed. Absent algorithms are skipped and their
weight is redistributed, never counted as zero: under "sum" the present
scores are scaled up to the full weight, so an identity found by fewer
algorithms is not penalized for the missing ones.
"""

import logging
import math
from typing import Optional, Sequence

import numpy as np

from biofusion.fusion.normalizers import ScoreNormalizer
from biofusion.fusion.scheme import FusionScheme
from biofusion.types import (
    FailedExtractionError,
    InputCountError,
    InputParseError,
    as_vector,
)

logger = logging.getLogger(__name__)

COMBINATION_RULES = ("mean", "sum", "max", "min")


def combine_normalized(values: np.ndarray, weights: np.ndarray, rule: str) -> float:
    """
    Combine calibrated scores of one comparison.

    Args:
        values: (K,) normalized scores, NaN where an algorithm is absent.
        weights: (K,) positive weights.
        rule: One of COMBINATION_RULES.

    Returns:
        The fused score. NaN if no value is present.
    """
    present = ~np.isnan(values)
    if not np.any(present):
        return float("nan")

    v = values[present]
    w = weights[present]

    if rule == "mean":
        return math.fsum(w * v) / math.fsum(w)
    if rule == "sum":
        total = math.fsum(w * v)
        if v.size == values.size:
            return total
        return total / math.fsum(w) * math.fsum(weights)
    if rule == "max":
        return float(np.max(v))
    if rule == "min":
        return float(np.min(v))
    raise ValueError(f"Unknown combination rule: {rule}")


class CalibratedScoreFusion:
    """
    Normalize-then-combine fusion of K algorithm scores.

    Args:
        normalizers: One normalizer per slot, in slot order.
        weights: One positive weight per slot.
        rule: Combination rule (see COMBINATION_RULES).
        min_valid_scores: Minimum number of present scores to produce an output.
        output_normalizer: Optional normalizer whose inverse maps the fused
            value back onto that algorithm's raw scale.
    """

    def __init__(
        self,
        normalizers: Sequence[ScoreNormalizer],
        weights: Sequence[float],
        rule: str = "mean",
        min_valid_scores: int = 1,
        output_normalizer: Optional[ScoreNormalizer] = None,
    ):
        if rule not in COMBINATION_RULES:
            raise ValueError(f"Unknown combination rule: {rule}")
        if len(normalizers) != len(weights):
            raise ValueError("normalizers and weights must have the same length")

        self.normalizers = list(normalizers)
        self.weights = np.asarray(weights, dtype=np.float64)
        self.rule = rule
        self.min_valid_scores = max(1, int(min_valid_scores))
        self.output_normalizer = output_normalizer

    @classmethod
    def from_scheme(cls, scheme: FusionScheme, defaults: dict) -> "CalibratedScoreFusion":
        """
        Build the fusion rule of a loaded scheme.

        Args:
            scheme: Loaded FusionScheme.
            defaults: score_fusion config section, used where the scheme is silent.
        """
        output_normalizer = None
        if scheme.output_scale is not None:
            output_normalizer = scheme.algorithm(scheme.output_scale).normalizer

        return cls(
            normalizers=[a.normalizer for a in scheme.algorithms],
            weights=scheme.weights,
            rule=scheme.combination or defaults.get("combination", "mean"),
            min_valid_scores=scheme.min_valid_scores or defaults.get("min_valid_scores", 1),
            output_normalizer=output_normalizer,
        )

    @property
    def num_slots(self) -> int:
        return len(self.normalizers)

    def normalize(self, raw: np.ndarray) -> np.ndarray:
        """
        Calibrate a (..., K) array of raw scores slot by slot.

        NaN entries stay NaN.
        """
        raw = np.asarray(raw, dtype=np.float64)
        out = np.empty_like(raw)
        for k, normalizer in enumerate(self.normalizers):
            out[..., k] = normalizer(raw[..., k])
        return out

    def combine(self, normalized: np.ndarray) -> float:
        """Combine one row of normalized scores and map it to the output scale."""
        fused = combine_normalized(normalized, self.weights, self.rule)
        if self.output_normalizer is not None and not math.isnan(fused):
            fused = float(self.output_normalizer.inverse(np.array(fused)))
        return fused

    def fuse(self, scores) -> float:
        """
        Fuse the K verification scores of one comparison.

        Args:
            scores: K >= 2 raw scores in slot order; NaN marks an algorithm
                    whose comparison failed.

        Returns:
            The fused score.

        Raises:
            InputCountError: If fewer than 2 scores, or not one per slot.
            InputParseError: If a score is infinite or not numeric.
            FailedExtractionError: If too few scores are present.
        """
        raw = as_vector(scores, "input scores")

        if raw.size < 2:
            raise InputCountError(f"score fusion needs at least 2 scores, got {raw.size}")
        if raw.size != self.num_slots:
            raise InputCountError(
                f"scheme fuses {self.num_slots} algorithms, got {raw.size} scores"
            )
        if np.any(np.isinf(raw)):
            raise InputParseError("input scores contain infinite values")

        n_present = int(np.sum(~np.isnan(raw)))
        if n_present < self.min_valid_scores:
            raise FailedExtractionError(
                f"only {n_present} of {raw.size} scores present, "
                f"need {self.min_valid_scores}"
            )

        fused = self.combine(self.normalize(raw))
        logger.debug(f"Fused {raw.size} scores ({n_present} present) -> {fused:.6g}")
        return fused
