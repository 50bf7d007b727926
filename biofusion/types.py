"""
Shared Data Types for the Fusion Engine

This module defines the plain data types exchanged between the driving
harness and the fusion engines, plus the internal exception hierarchy
used to carry a return code up to the public interface.

Types:
    - ReturnCode / ReturnStatus: completion signal of every public call
    - Candidate / CandidateList: ranked identity hypotheses
    - Template / ScoreSet: numeric feature vectors and score sets

Usage:
    from biofusion.types import Candidate, ReturnCode, ReturnStatus

    status = ReturnStatus(ReturnCode.NumDataError, "expected 2 scores")
    if not status.ok:
        print(status)
"""

from dataclasses import dataclass
from enum import IntEnum
from typing import List, Sequence, Union

import numpy as np


# Identities are 32-bit unsigned labels
MAX_IDENTITY = 2**32 - 1

Template = Union[Sequence[float], np.ndarray]
ScoreSet = Union[Sequence[float], np.ndarray]


class ReturnCode(IntEnum):
    """Result codes for every public engine operation."""

    Success = 0
    ConfigError = 1
    ParseError = 2
    TemplateCreationError = 3
    VerifTemplateError = 4
    NumDataError = 5
    TemplateFormatError = 6
    InputLocationError = 7
    MemoryError = 8
    NotImplemented = 9
    NonCongruentVectors = 10
    VendorError = 11


_DESCRIPTIONS = {
    ReturnCode.Success: "Success",
    ReturnCode.ConfigError: "Error reading configuration files",
    ReturnCode.ParseError: "Cannot parse the input data",
    ReturnCode.TemplateCreationError: "Elective refusal to produce a template",
    ReturnCode.VerifTemplateError: "Either/both inputs were result of failed feature extraction",
    ReturnCode.NumDataError: "Number of inputs not supported",
    ReturnCode.TemplateFormatError: "Template is an incorrect format or defective",
    ReturnCode.InputLocationError: "Cannot locate the input data",
    ReturnCode.MemoryError: "Memory allocation failed",
    ReturnCode.NotImplemented: "Function is not implemented",
    ReturnCode.NonCongruentVectors: "Vectors of different lengths passed to function expecting same lengths",
    ReturnCode.VendorError: "Vendor-defined error",
}


@dataclass(frozen=True)
class ReturnStatus:
    """
    Completion signal of a public engine call.

    Attributes:
        code: The ReturnCode; Success on success.
        info: Optional free-text diagnostic.
    """

    code: ReturnCode = ReturnCode.Success
    info: str = ""

    @property
    def ok(self) -> bool:
        return self.code == ReturnCode.Success

    @property
    def is_refusal(self) -> bool:
        """True when the engine electively declined to produce an output."""
        return self.code == ReturnCode.TemplateCreationError

    @property
    def description(self) -> str:
        return _DESCRIPTIONS.get(self.code, "Undefined error")

    def __str__(self) -> str:
        if self.info:
            return f"{self.description}: {self.info}"
        return self.description


SUCCESS = ReturnStatus()


@dataclass
class Candidate:
    """
    One identity hypothesis for a probe.

    Attributes:
        identity: Gallery identity label (unsigned 32-bit).
        score: Similarity or fused score, higher = more confident.
    """

    identity: int = 0
    score: float = 0.0


CandidateList = List[Candidate]


# ============================================================
# Internal errors (converted to ReturnStatus at the interface)
# ============================================================


class FusionError(Exception):
    """Base class for failures that map onto a ReturnCode."""

    code = ReturnCode.VendorError

    def __init__(self, info: str = ""):
        super().__init__(info)
        self.info = info

    def to_status(self) -> ReturnStatus:
        return ReturnStatus(self.code, self.info)


class SchemeConfigError(FusionError):
    code = ReturnCode.ConfigError


class InputParseError(FusionError):
    code = ReturnCode.ParseError


class FusionRefused(FusionError):
    code = ReturnCode.TemplateCreationError


class FailedExtractionError(FusionError):
    code = ReturnCode.VerifTemplateError


class InputCountError(FusionError):
    code = ReturnCode.NumDataError


class TemplateShapeError(FusionError):
    code = ReturnCode.TemplateFormatError


class MissingInputError(FusionError):
    code = ReturnCode.InputLocationError


class NotInitializedError(FusionError):
    code = ReturnCode.NotImplemented


class NonCongruentError(FusionError):
    code = ReturnCode.NonCongruentVectors


class EngineStateError(FusionError):
    code = ReturnCode.VendorError


def as_vector(values, name: str = "input") -> np.ndarray:
    """
    Convert a template or score set to a 1-D float64 array.

    Raises:
        InputParseError: If the values cannot be read as a flat numeric vector.
    """
    try:
        arr = np.asarray(values, dtype=np.float64)
    except (TypeError, ValueError) as e:
        raise InputParseError(f"{name} is not numeric: {e}") from e
    if arr.ndim != 1:
        raise InputParseError(f"{name} must be one-dimensional, got shape {arr.shape}")
    return arr


def check_finite(vec: np.ndarray, name: str = "input") -> None:
    """Raise InputParseError if vec contains NaN or infinite values."""
    if not np.all(np.isfinite(vec)):
        raise InputParseError(f"{name} contains non-finite values")
