"""
Tests for the shared data types.

This test suite verifies:
- ReturnCode values and ReturnStatus helpers
- Candidate defaults
- FusionError subclasses carry the right return code
- Input vector coercion and finiteness checks

Run with: pytest tests/test_types.py -v
"""

import os
import sys

import numpy as np
import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from biofusion.types import (
    MAX_IDENTITY,
    SUCCESS,
    Candidate,
    EngineStateError,
    FailedExtractionError,
    FusionError,
    FusionRefused,
    InputCountError,
    InputParseError,
    MissingInputError,
    NonCongruentError,
    NotInitializedError,
    ReturnCode,
    ReturnStatus,
    SchemeConfigError,
    TemplateShapeError,
    as_vector,
    check_finite,
)


class TestReturnCode:
    """Tests for the ReturnCode enumeration."""

    def test_codes_are_in_declared_order(self):
        """Success is zero and the remaining codes follow in order."""
        assert ReturnCode.Success == 0
        assert ReturnCode.ConfigError == 1
        assert ReturnCode.ParseError == 2
        assert ReturnCode.TemplateCreationError == 3
        assert ReturnCode.VerifTemplateError == 4
        assert ReturnCode.NumDataError == 5
        assert ReturnCode.TemplateFormatError == 6
        assert ReturnCode.InputLocationError == 7
        assert ReturnCode.MemoryError == 8
        assert ReturnCode.NotImplemented == 9
        assert ReturnCode.NonCongruentVectors == 10
        assert ReturnCode.VendorError == 11

    def test_codes_are_unique(self):
        values = [code.value for code in ReturnCode]
        assert len(values) == len(set(values))


class TestReturnStatus:
    """Tests for the ReturnStatus completion signal."""

    def test_default_is_success(self):
        status = ReturnStatus()
        assert status.ok
        assert status.code == ReturnCode.Success
        assert status == SUCCESS

    def test_failure_is_not_ok(self):
        status = ReturnStatus(ReturnCode.NumDataError, "expected 2 scores")
        assert not status.ok
        assert not status.is_refusal

    def test_refusal_flag(self):
        """Only TemplateCreationError counts as an elective refusal."""
        assert ReturnStatus(ReturnCode.TemplateCreationError).is_refusal
        assert not ReturnStatus(ReturnCode.VerifTemplateError).is_refusal

    def test_str_includes_info(self):
        status = ReturnStatus(ReturnCode.ParseError, "bad value")
        assert "bad value" in str(status)
        assert str(status).startswith(status.description)

    def test_str_without_info(self):
        status = ReturnStatus(ReturnCode.MemoryError)
        assert str(status) == status.description

    def test_every_code_has_description(self):
        for code in ReturnCode:
            assert ReturnStatus(code).description != "Undefined error"

    def test_status_is_immutable(self):
        status = ReturnStatus()
        with pytest.raises(Exception):
            status.code = ReturnCode.VendorError


class TestCandidate:
    """Tests for the Candidate dataclass."""

    def test_defaults(self):
        candidate = Candidate()
        assert candidate.identity == 0
        assert candidate.score == 0.0

    def test_equality(self):
        assert Candidate(5, 1.5) == Candidate(identity=5, score=1.5)
        assert Candidate(5, 1.5) != Candidate(6, 1.5)


class TestFusionErrors:
    """Tests for the internal exception hierarchy."""

    @pytest.mark.parametrize(
        "error_cls, code",
        [
            (SchemeConfigError, ReturnCode.ConfigError),
            (InputParseError, ReturnCode.ParseError),
            (FusionRefused, ReturnCode.TemplateCreationError),
            (FailedExtractionError, ReturnCode.VerifTemplateError),
            (InputCountError, ReturnCode.NumDataError),
            (TemplateShapeError, ReturnCode.TemplateFormatError),
            (MissingInputError, ReturnCode.InputLocationError),
            (NotInitializedError, ReturnCode.NotImplemented),
            (NonCongruentError, ReturnCode.NonCongruentVectors),
            (EngineStateError, ReturnCode.VendorError),
        ],
    )
    def test_error_maps_to_code(self, error_cls, code):
        error = error_cls("details")
        assert isinstance(error, FusionError)
        status = error.to_status()
        assert status.code == code
        assert status.info == "details"


class TestVectorHelpers:
    """Tests for as_vector and check_finite."""

    def test_list_becomes_float_array(self):
        vec = as_vector([1, 2, 3])
        assert vec.dtype == np.float64
        assert vec.shape == (3,)

    def test_empty_is_allowed(self):
        assert as_vector([]).size == 0

    def test_two_dimensional_rejected(self):
        with pytest.raises(InputParseError):
            as_vector([[1.0, 2.0], [3.0, 4.0]])

    def test_non_numeric_rejected(self):
        with pytest.raises(InputParseError):
            as_vector(["a", "b"])

    def test_check_finite(self):
        check_finite(np.array([1.0, 2.0]))
        with pytest.raises(InputParseError):
            check_finite(np.array([1.0, np.nan]))
        with pytest.raises(InputParseError):
            check_finite(np.array([np.inf]))

    def test_identity_range(self):
        assert MAX_IDENTITY == 4294967295
