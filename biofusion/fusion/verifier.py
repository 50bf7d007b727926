"""
Verifier: one-to-one comparison of fused templates.

All metrics return non-negative similarities, higher = more similar:

  - l1:     100 / (1 + sum |a - b|)
  - l2:     100 / (1 + ||a - b||)
  - cosine: 50 * (1 + cos(a, b)), cos taken as 0 for a zero vector

The same metric objects score a probe against a whole gallery matrix and
describe the space a kd-tree must be built in for exact nearest search.
"""

import logging
from typing import Optional, Tuple

import numpy as np

from biofusion.types import (
    FailedExtractionError,
    TemplateShapeError,
    as_vector,
    check_finite,
)

logger = logging.getLogger(__name__)


class SimilarityMetric:
    """Distance-based similarity between fused templates."""

    name = "abstract"
    # Minkowski p of the kd-tree space
    minkowski_p = 2

    def pairwise(self, a: np.ndarray, b: np.ndarray) -> float:
        return float(self.against(a, b[np.newaxis, :])[0])

    def against(self, probe: np.ndarray, matrix: np.ndarray) -> np.ndarray:
        """Similarities of one probe (D,) to every row of matrix (N, D)."""
        raise NotImplementedError

    def tree_space(self, vectors: np.ndarray) -> np.ndarray:
        """Map vectors into the space where kd-tree distance order equals similarity order."""
        return vectors

    def tree_supports(self, probe: np.ndarray) -> bool:
        """False when tree distances from this probe do not order similarities."""
        return True


class L1Similarity(SimilarityMetric):
    name = "l1"
    minkowski_p = 1

    def against(self, probe, matrix):
        distances = np.abs(matrix - probe).sum(axis=1)
        return 100.0 / (1.0 + distances)


class L2Similarity(SimilarityMetric):
    name = "l2"
    minkowski_p = 2

    def against(self, probe, matrix):
        distances = np.sqrt(((matrix - probe) ** 2).sum(axis=1))
        return 100.0 / (1.0 + distances)


class CosineSimilarity(SimilarityMetric):
    name = "cosine"
    minkowski_p = 2

    def against(self, probe, matrix):
        unit_probe = _unit_rows(probe[np.newaxis, :])[0]
        cos = _unit_rows(matrix) @ unit_probe
        cos = np.clip(cos, -1.0, 1.0)
        return 50.0 * (1.0 + cos)

    def tree_space(self, vectors):
        # Zero rows sit on an extra axis, at the cos = 0 distance (sqrt 2) from every unit row
        zero = np.linalg.norm(vectors, axis=1, keepdims=True) <= 1e-12
        return np.hstack([_unit_rows(vectors), zero.astype(np.float64)])

    def tree_supports(self, probe):
        # A zero probe scores 50 against every row
        return bool(np.linalg.norm(probe) > 1e-12)


def _unit_rows(vectors: np.ndarray) -> np.ndarray:
    norms = np.linalg.norm(vectors, axis=1, keepdims=True)
    return np.divide(vectors, norms, out=np.zeros_like(vectors), where=norms > 1e-12)


METRICS = {
    "l1": L1Similarity,
    "l2": L2Similarity,
    "cosine": CosineSimilarity,
}


def get_metric(name: str) -> SimilarityMetric:
    """Return the similarity metric registered under name."""
    if name not in METRICS:
        raise ValueError(f"Unknown metric '{name}'. Available: {list(METRICS)}")
    return METRICS[name]()


class Verifier:
    """
    Compare fused templates under a fixed metric and template length.

    Args:
        metric: Metric name (see METRICS).
        fused_dim: Required template length, or None to only require that
                   both operands have the same length.
    """

    def __init__(self, metric: str = "l1", fused_dim: Optional[int] = None):
        self.metric = get_metric(metric)
        self.fused_dim = fused_dim

    def check_template(self, template, name: str = "template") -> np.ndarray:
        """
        Validate one fused template.

        Raises:
            FailedExtractionError: If the template is empty.
            TemplateShapeError: If its length does not match the scheme.
            InputParseError: If it is not numeric or holds non-finite values.
        """
        vec = as_vector(template, name)
        if vec.size == 0:
            raise FailedExtractionError(f"{name} is empty (failed extraction or fusion)")
        if self.fused_dim is not None and vec.size != self.fused_dim:
            raise TemplateShapeError(
                f"{name} has length {vec.size}, scheme expects {self.fused_dim}"
            )
        check_finite(vec, name)
        return vec

    def check_pair(self, enroll, authentication) -> Tuple[np.ndarray, np.ndarray]:
        a = self.check_template(enroll, "enrollment template")
        b = self.check_template(authentication, "authentication template")
        if a.size != b.size:
            raise TemplateShapeError(f"template lengths differ: {a.size} vs {b.size}")
        return a, b

    def compare(self, enroll, authentication) -> float:
        """
        Similarity of an authentication template to an enrollment template.

        Returns:
            Non-negative similarity score.
        """
        a, b = self.check_pair(enroll, authentication)
        return self.metric.pairwise(b, a)
