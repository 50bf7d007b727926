"""
Tests for verification score fusion.

This test suite verifies:
- Combination rules on known values
- Absent (NaN) scores are skipped, not counted as zero
- Independence from the order in which algorithms are listed
- Monotonicity in each input score
- Output scale mapping
- Input validation and error types

Run with: pytest tests/test_score_fusion.py -v
"""

import os
import sys

import numpy as np
import pytest
import yaml

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from biofusion.fusion.normalizers import IdentityNormalizer, ZScoreNormalizer
from biofusion.fusion.scheme import SCHEME_FILE, load_scheme
from biofusion.fusion.score_fusion import CalibratedScoreFusion, combine_normalized
from biofusion.types import FailedExtractionError, InputCountError, InputParseError


@pytest.fixture
def znorm_fusion():
    """Two algorithms: z(0, 1) and z(10, 2), equal weights, mean rule."""
    return CalibratedScoreFusion(
        normalizers=[ZScoreNormalizer(0.0, 1.0), ZScoreNormalizer(10.0, 2.0)],
        weights=[1.0, 1.0],
        rule="mean",
    )


class TestCombineNormalized:
    """Tests for the combination rules."""

    def test_weighted_mean(self):
        value = combine_normalized(np.array([1.0, 4.0]), np.array([1.0, 3.0]), "mean")
        assert value == pytest.approx(13.0 / 4.0)

    def test_sum(self):
        value = combine_normalized(np.array([1.0, 4.0]), np.array([1.0, 3.0]), "sum")
        assert value == pytest.approx(13.0)

    def test_sum_rescales_absent_values(self):
        """One strong score outranks two moderate ones: absent slots are not zero."""
        single = combine_normalized(np.array([3.0, np.nan]), np.array([1.0, 1.0]), "sum")
        both = combine_normalized(np.array([2.0, 2.0]), np.array([1.0, 1.0]), "sum")
        assert single == pytest.approx(6.0)
        assert both == pytest.approx(4.0)
        assert single > both

    def test_sum_rescale_uses_weights(self):
        value = combine_normalized(np.array([np.nan, 4.0]), np.array([1.0, 3.0]), "sum")
        assert value == pytest.approx(16.0)

    def test_max_min(self):
        values = np.array([1.0, 4.0, -2.0])
        weights = np.ones(3)
        assert combine_normalized(values, weights, "max") == 4.0
        assert combine_normalized(values, weights, "min") == -2.0

    def test_absent_values_skipped(self):
        """A missing score redistributes its weight instead of counting as zero."""
        value = combine_normalized(np.array([np.nan, 4.0]), np.array([1.0, 1.0]), "mean")
        assert value == pytest.approx(4.0)

    def test_all_absent_is_nan(self):
        assert np.isnan(combine_normalized(np.array([np.nan, np.nan]), np.ones(2), "mean"))

    def test_unknown_rule(self):
        with pytest.raises(ValueError):
            combine_normalized(np.array([1.0, 2.0]), np.ones(2), "median")


class TestCalibratedScoreFusion:
    """Tests for normalize-then-combine fusion."""

    def test_known_value(self, znorm_fusion):
        # z-scores 1.0 and 2.0
        assert znorm_fusion.fuse([1.0, 14.0]) == pytest.approx(1.5)

    def test_sum_rule(self):
        fusion = CalibratedScoreFusion(
            [ZScoreNormalizer(0.0, 1.0), ZScoreNormalizer(10.0, 2.0)], [1.0, 1.0], rule="sum"
        )
        assert fusion.fuse([1.0, 14.0]) == pytest.approx(3.0)

    def test_deterministic(self, znorm_fusion):
        scores = [0.37, 11.9]
        assert znorm_fusion.fuse(scores) == znorm_fusion.fuse(scores)

    def test_order_independent(self):
        """Listing the same algorithms in another order gives the identical value."""
        rng = np.random.default_rng(3)
        positions = rng.normal(size=5)
        scales = rng.uniform(0.5, 2.0, size=5)
        weights = rng.uniform(0.5, 2.0, size=5)
        scores = rng.normal(size=5)
        perm = rng.permutation(5)

        forward = CalibratedScoreFusion(
            [ZScoreNormalizer(p, s) for p, s in zip(positions, scales)], weights
        )
        permuted = CalibratedScoreFusion(
            [ZScoreNormalizer(positions[i], scales[i]) for i in perm], weights[perm]
        )
        assert forward.fuse(scores) == permuted.fuse(scores[perm])

    def test_monotonic_in_each_score(self, znorm_fusion):
        base = np.array([1.0, 14.0])
        for k in range(2):
            higher = base.copy()
            higher[k] += 0.5
            assert znorm_fusion.fuse(higher) > znorm_fusion.fuse(base)

    def test_missing_score_skipped(self, znorm_fusion):
        assert znorm_fusion.fuse([np.nan, 14.0]) == pytest.approx(2.0)

    def test_all_missing(self, znorm_fusion):
        with pytest.raises(FailedExtractionError):
            znorm_fusion.fuse([np.nan, np.nan])

    def test_min_valid_scores(self):
        fusion = CalibratedScoreFusion(
            [IdentityNormalizer(), IdentityNormalizer()], [1.0, 1.0], min_valid_scores=2
        )
        assert fusion.fuse([1.0, 2.0]) == pytest.approx(1.5)
        with pytest.raises(FailedExtractionError):
            fusion.fuse([1.0, np.nan])

    def test_infinite_score(self, znorm_fusion):
        with pytest.raises(InputParseError):
            znorm_fusion.fuse([np.inf, 1.0])

    def test_non_numeric(self, znorm_fusion):
        with pytest.raises(InputParseError):
            znorm_fusion.fuse(["high", "low"])

    def test_too_few_scores(self, znorm_fusion):
        with pytest.raises(InputCountError):
            znorm_fusion.fuse([1.0])

    def test_count_differs_from_scheme(self, znorm_fusion):
        with pytest.raises(InputCountError):
            znorm_fusion.fuse([1.0, 2.0, 3.0])

    def test_output_scale(self):
        """Fused values are mapped back onto the named algorithm's raw scale."""
        venus = ZScoreNormalizer(10.0, 2.0)
        fusion = CalibratedScoreFusion(
            [ZScoreNormalizer(0.0, 1.0), venus], [1.0, 1.0], output_normalizer=venus
        )
        # z-mean 1.5 -> 1.5 * 2 + 10
        assert fusion.fuse([1.0, 14.0]) == pytest.approx(13.0)

    def test_normalize_keeps_nan(self, znorm_fusion):
        out = znorm_fusion.normalize(np.array([[1.0, np.nan], [np.nan, 12.0]]))
        assert out.shape == (2, 2)
        assert np.isnan(out[0, 1]) and np.isnan(out[1, 0])
        assert out[1, 1] == pytest.approx(1.0)

    def test_invalid_construction(self):
        with pytest.raises(ValueError):
            CalibratedScoreFusion([IdentityNormalizer()] * 2, [1.0, 1.0], rule="vote")
        with pytest.raises(ValueError):
            CalibratedScoreFusion([IdentityNormalizer()] * 2, [1.0])


class TestFromScheme:
    """Tests for building fusion from a loaded scheme."""

    def _write(self, directory, document):
        directory.mkdir(parents=True, exist_ok=True)
        with open(directory / SCHEME_FILE, "w", encoding="utf-8") as f:
            yaml.safe_dump(document, f)
        return directory

    def test_scheme_values_used(self, tmp_path):
        directory = self._write(tmp_path / "s", {
            "combination": "sum",
            "min_valid_scores": 2,
            "algorithms": [
                {"name": "pluto", "normalizer": "znorm", "position": 3.0, "scale": 0.2},
                {"name": "venus", "normalizer": "znorm", "position": 50.0, "scale": 2.0},
            ],
        })
        fusion = CalibratedScoreFusion.from_scheme(load_scheme(directory), {})

        assert fusion.rule == "sum"
        assert fusion.min_valid_scores == 2
        assert fusion.fuse([3.2, 54.0]) == pytest.approx(3.0)

    def test_defaults_fill_gaps(self, tmp_path):
        directory = self._write(tmp_path / "s", {
            "algorithms": [{"name": "a"}, {"name": "b"}],
        })
        fusion = CalibratedScoreFusion.from_scheme(
            load_scheme(directory), {"combination": "max", "min_valid_scores": 1}
        )
        assert fusion.rule == "max"
        assert fusion.fuse([1.0, 7.0]) == 7.0

    def test_output_scale_from_scheme(self, tmp_path):
        directory = self._write(tmp_path / "s", {
            "output_scale": "venus",
            "algorithms": [
                {"name": "pluto", "normalizer": "znorm", "position": 0.0, "scale": 1.0},
                {"name": "venus", "normalizer": "znorm", "position": 10.0, "scale": 2.0},
            ],
        })
        fusion = CalibratedScoreFusion.from_scheme(load_scheme(directory), {})
        assert fusion.fuse([1.0, 14.0]) == pytest.approx(13.0)
