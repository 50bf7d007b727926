"""
Score Normalizers: map one algorithm's raw scores onto a common scale.

Each normalizer is a monotonic non-decreasing function, so ranking within a
single algorithm is never changed by calibration. All of them operate on
numpy arrays and pass NaN (absent score) through unchanged.

Includes:
  - IdentityNormalizer: raw scores, no calibration
  - ZScoreNormalizer: (s - position) / scale, from impostor statistics
  - MinMaxNormalizer: (s - low) / (high - low)
  - TanhNormalizer: robust tanh-estimator, squashed into (0, 1)
  - EmpiricalCdfNormalizer: rank-based, fraction of a reference table <= s
"""

from abc import ABC, abstractmethod
from typing import Optional

import numpy as np


class ScoreNormalizer(ABC):
    """Calibration function of one contributing algorithm."""

    name = "abstract"

    @abstractmethod
    def __call__(self, scores: np.ndarray) -> np.ndarray:
        """Map raw scores onto the common scale."""

    @abstractmethod
    def inverse(self, values: np.ndarray) -> np.ndarray:
        """Map common-scale values back onto this algorithm's raw scale."""

    def describe(self) -> dict:
        return {"normalizer": self.name}


class IdentityNormalizer(ScoreNormalizer):
    name = "identity"

    def __call__(self, scores):
        return np.asarray(scores, dtype=np.float64)

    def inverse(self, values):
        return np.asarray(values, dtype=np.float64)


class ZScoreNormalizer(ScoreNormalizer):
    """
    Affine z-normalization.

    position/scale are usually the mean and standard deviation of the
    algorithm's impostor score distribution.
    """

    name = "znorm"

    def __init__(self, position: float, scale: float):
        self.position = float(position)
        self.scale = float(scale)

    def __call__(self, scores):
        return (np.asarray(scores, dtype=np.float64) - self.position) / self.scale

    def inverse(self, values):
        return np.asarray(values, dtype=np.float64) * self.scale + self.position

    def describe(self):
        return {"normalizer": self.name, "position": self.position, "scale": self.scale}


class MinMaxNormalizer(ScoreNormalizer):
    name = "minmax"

    def __init__(self, low: float, high: float):
        self.low = float(low)
        self.high = float(high)

    def __call__(self, scores):
        return (np.asarray(scores, dtype=np.float64) - self.low) / (self.high - self.low)

    def inverse(self, values):
        return np.asarray(values, dtype=np.float64) * (self.high - self.low) + self.low

    def describe(self):
        return {"normalizer": self.name, "low": self.low, "high": self.high}


class TanhNormalizer(ScoreNormalizer):
    """
    Tanh-estimator normalization (Hampel et al.).

    v = 0.5 * (tanh(0.01 * (s - position) / scale) + 1), in (0, 1).
    """

    name = "tanh"

    def __init__(self, position: float, scale: float):
        self.position = float(position)
        self.scale = float(scale)

    def __call__(self, scores):
        z = (np.asarray(scores, dtype=np.float64) - self.position) / self.scale
        return 0.5 * (np.tanh(0.01 * z) + 1.0)

    def inverse(self, values):
        v = np.clip(np.asarray(values, dtype=np.float64), 1e-12, 1.0 - 1e-12)
        return np.arctanh(2.0 * v - 1.0) * 100.0 * self.scale + self.position

    def describe(self):
        return {"normalizer": self.name, "position": self.position, "scale": self.scale}


class EmpiricalCdfNormalizer(ScoreNormalizer):
    """
    Rank-based calibration against a stored reference score table.

    v = fraction of reference scores <= s, in [0, 1]. With an impostor
    table this is 1 - (false match rate at threshold s).
    """

    name = "ecdf"

    def __init__(self, table: np.ndarray):
        table = np.asarray(table, dtype=np.float64).ravel()
        if table.size == 0:
            raise ValueError("ecdf table is empty")
        if not np.all(np.isfinite(table)):
            raise ValueError("ecdf table contains non-finite values")
        self.table = np.sort(table)

    def __call__(self, scores):
        scores = np.asarray(scores, dtype=np.float64)
        ranks = np.searchsorted(self.table, scores, side="right") / self.table.size
        return np.where(np.isnan(scores), np.nan, ranks)

    def inverse(self, values):
        values = np.asarray(values, dtype=np.float64)
        safe = np.clip(np.nan_to_num(values, nan=0.0), 0.0, 1.0)
        return np.where(np.isnan(values), np.nan, np.quantile(self.table, safe))

    def describe(self):
        return {"normalizer": self.name, "table_size": int(self.table.size)}


def build_normalizer(spec, table: Optional[np.ndarray] = None) -> ScoreNormalizer:
    """
    Construct the normalizer described by an AlgorithmSpec.

    Args:
        spec: biofusion.schemas.AlgorithmSpec (or any object with the same fields).
        table: Reference score table, required for "ecdf".

    Raises:
        ValueError: If the spec names an unknown normalizer or the ecdf table is missing.
    """
    if spec.normalizer == "identity":
        return IdentityNormalizer()
    if spec.normalizer == "znorm":
        return ZScoreNormalizer(spec.position, spec.scale)
    if spec.normalizer == "minmax":
        return MinMaxNormalizer(spec.low, spec.high)
    if spec.normalizer == "tanh":
        return TanhNormalizer(spec.position, spec.scale)
    if spec.normalizer == "ecdf":
        if table is None:
            raise ValueError(f"algorithm '{spec.name}' uses ecdf but has no reference table")
        return EmpiricalCdfNormalizer(table)
    raise ValueError(f"Unknown normalizer: {spec.normalizer}")
