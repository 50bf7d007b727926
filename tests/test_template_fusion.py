"""
Tests for template fusion.

This test suite verifies:
- Per-slot standardization and weighting on known values
- Concatenate and project layouts
- Failed extractions (empty templates) imputed by the population mean
- Refusal below min_valid_inputs
- Output length independent of which inputs were present
- Input validation

Run with: pytest tests/test_template_fusion.py -v
"""

import os
import sys

import numpy as np
import pytest
import yaml

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from biofusion.fusion.scheme import LEGACY_CONCAT_FILE, SCHEME_FILE, TABLES_FILE, load_scheme
from biofusion.fusion.template_fusion import TemplateFusion
from biofusion.types import (
    FusionRefused,
    InputCountError,
    InputParseError,
    TemplateShapeError,
)


TABLES = {
    "mean_a": np.ones(3),
    "std_a": np.full(3, 2.0),
    "mean_b": np.zeros(2),
    "std_b": np.ones(2),
}


def write_template_scheme(directory, template=None, tables=None):
    """Slot a: 3 features, mean 1, std 2. Slot b: 2 features, weight 2."""
    directory.mkdir(parents=True, exist_ok=True)
    document = {
        "algorithms": [
            {"name": "a", "dimension": 3},
            {"name": "b", "dimension": 2, "weight": 2.0},
        ],
        "template": template or {"mode": "concatenate"},
    }
    with open(directory / SCHEME_FILE, "w", encoding="utf-8") as f:
        yaml.safe_dump(document, f)
    np.savez_compressed(str(directory / TABLES_FILE), **(tables or TABLES))
    return load_scheme(directory)


@pytest.fixture
def concat_scheme(tmp_path):
    return write_template_scheme(tmp_path / "concat")


@pytest.fixture
def project_scheme(tmp_path):
    tables = dict(TABLES)
    tables["proj_a"] = np.array([[1.0, 0.0, 0.0], [0.0, 1.0, 0.0]])
    tables["proj_b"] = np.eye(2)
    return write_template_scheme(
        tmp_path / "project", {"mode": "project", "output_dim": 2}, tables
    )


class TestConcatenate:
    """Tests for the concatenate layout."""

    def test_known_value(self, concat_scheme):
        fused = TemplateFusion(concat_scheme).fuse([[3, 3, 3], [1, -1]])
        np.testing.assert_allclose(fused, [1, 1, 1, 2, -2])

    def test_length_matches_scheme(self, concat_scheme):
        fusion = TemplateFusion(concat_scheme)
        assert fusion.output_dim == 5
        assert fusion.fuse([np.zeros(3), np.zeros(2)]).shape == (5,)

    def test_mean_template_fuses_to_zero(self, concat_scheme):
        fused = TemplateFusion(concat_scheme).fuse([np.ones(3), np.zeros(2)])
        np.testing.assert_allclose(fused, np.zeros(5))

    def test_failed_slot_imputed(self, concat_scheme):
        fused = TemplateFusion(concat_scheme).fuse([[], [1, -1]])
        np.testing.assert_allclose(fused, [0, 0, 0, 2, -2])

    def test_length_independent_of_failures(self, concat_scheme):
        fusion = TemplateFusion(concat_scheme)
        full = fusion.fuse([[3, 3, 3], [1, -1]])
        partial = fusion.fuse([[3, 3, 3], []])
        assert full.shape == partial.shape

    def test_normalize_output(self, tmp_path):
        scheme = write_template_scheme(
            tmp_path / "norm", {"mode": "concatenate", "normalize_output": True}
        )
        fused = TemplateFusion(scheme).fuse([[3, 3, 3], [1, -1]])
        assert np.linalg.norm(fused) == pytest.approx(1.0)
        np.testing.assert_allclose(fused, np.array([1, 1, 1, 2, -2]) / np.sqrt(11))

    def test_deterministic(self, concat_scheme):
        fusion = TemplateFusion(concat_scheme)
        inputs = [[0.3, 1.7, 2.2], [0.5, 0.25]]
        np.testing.assert_array_equal(fusion.fuse(inputs), fusion.fuse(inputs))


class TestProject:
    """Tests for the project layout."""

    def test_known_value(self, project_scheme):
        fused = TemplateFusion(project_scheme).fuse([[3, 3, 3], [1, -1]])
        np.testing.assert_allclose(fused, [3, -1])

    def test_failed_slot_contributes_nothing(self, project_scheme):
        fused = TemplateFusion(project_scheme).fuse([[3, 3, 3], []])
        np.testing.assert_allclose(fused, [1, 1])

    def test_output_dim(self, project_scheme):
        assert TemplateFusion(project_scheme).output_dim == 2


class TestRefusal:
    """Tests for elective refusal."""

    def test_all_inputs_failed(self, concat_scheme):
        with pytest.raises(FusionRefused):
            TemplateFusion(concat_scheme).fuse([[], []])

    def test_min_valid_inputs_argument(self, concat_scheme):
        fusion = TemplateFusion(concat_scheme, min_valid_inputs=2)
        assert fusion.fuse([[3, 3, 3], [1, -1]]).shape == (5,)
        with pytest.raises(FusionRefused):
            fusion.fuse([[3, 3, 3], []])

    def test_min_valid_inputs_from_scheme(self, tmp_path):
        scheme = write_template_scheme(
            tmp_path / "strict", {"mode": "concatenate", "min_valid_inputs": 2}
        )
        with pytest.raises(FusionRefused):
            TemplateFusion(scheme).fuse([[], [1, -1]])

    def test_undeclared_dimension_cannot_be_imputed(self, tmp_path):
        (tmp_path / LEGACY_CONCAT_FILE).write_text("2\n")
        fusion = TemplateFusion(load_scheme(tmp_path))
        with pytest.raises(FusionRefused):
            fusion.fuse([[1.0, 2.0], []])


class TestLegacyConcatenation:
    """Tests for the plain concatenator scheme."""

    def test_plain_concatenation(self, tmp_path):
        (tmp_path / LEGACY_CONCAT_FILE).write_text("3\n")
        fusion = TemplateFusion(load_scheme(tmp_path))
        fused = fusion.fuse([[1.0, 2.0], [3.0], [4.0, 5.0, 6.0]])
        np.testing.assert_array_equal(fused, [1, 2, 3, 4, 5, 6])
        assert fusion.output_dim is None


class TestValidation:
    """Tests for input validation."""

    def test_too_few_templates(self, concat_scheme):
        with pytest.raises(InputCountError):
            TemplateFusion(concat_scheme).fuse([[1, 2, 3]])

    def test_count_differs_from_scheme(self, concat_scheme):
        with pytest.raises(InputCountError):
            TemplateFusion(concat_scheme).fuse([[1, 2, 3], [1, 2], [1]])

    def test_wrong_length(self, concat_scheme):
        with pytest.raises(TemplateShapeError):
            TemplateFusion(concat_scheme).fuse([[1, 2], [1, 2]])

    def test_non_finite(self, concat_scheme):
        with pytest.raises(InputParseError):
            TemplateFusion(concat_scheme).fuse([[1, np.nan, 3], [1, 2]])

    def test_not_one_dimensional(self, concat_scheme):
        with pytest.raises(InputParseError):
            TemplateFusion(concat_scheme).fuse([[[1, 2, 3]], [1, 2]])
