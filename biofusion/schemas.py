"""
Pydantic Schemas for Fusion Scheme Files

This module defines the models used to validate a scheme directory's
fusion_scheme.yaml before any engine state is built from it.

These schemas provide:
- Type validation of calibration parameters
- Cross-field checks (positive scales, unique algorithm names)
- One documented place for the scheme file layout

Example fusion_scheme.yaml:

    version: "1.0"
    combination: mean
    algorithms:
      - name: pluto
        normalizer: znorm
        position: 3.0
        scale: 0.2
        dimension: 16
      - name: venus
        normalizer: znorm
        position: 50.0
        scale: 2.0
        dimension: 20
    template:
      mode: concatenate
    verifier:
      metric: l1
"""

from typing import List, Literal, Optional

from pydantic import BaseModel, Field, model_validator


NormalizerName = Literal["identity", "znorm", "minmax", "tanh", "ecdf"]
CombinationRule = Literal["mean", "sum", "max", "min"]
MetricName = Literal["l1", "l2", "cosine"]


class AlgorithmSpec(BaseModel):
    """Calibration of one contributing algorithm (one input slot)."""

    name: str = Field(..., min_length=1, description="Algorithm label, unique in the scheme")
    normalizer: NormalizerName = Field("identity", description="Score calibration function")
    position: float = Field(0.0, description="Location for znorm/tanh (impostor mean)")
    scale: float = Field(1.0, description="Spread for znorm/tanh (impostor sd)")
    low: float = Field(0.0, description="Lower bound for minmax")
    high: float = Field(1.0, description="Upper bound for minmax")
    weight: float = Field(1.0, gt=0.0, description="Combination weight")
    dimension: Optional[int] = Field(None, ge=1, description="Template length of this slot")

    @model_validator(mode="after")
    def check_calibration(self):
        if self.normalizer in ("znorm", "tanh") and self.scale <= 0.0:
            raise ValueError(f"algorithm '{self.name}': scale must be positive, got {self.scale}")
        if self.normalizer == "minmax" and self.high <= self.low:
            raise ValueError(
                f"algorithm '{self.name}': high ({self.high}) must exceed low ({self.low})"
            )
        return self


class TemplateSpec(BaseModel):
    """Template-level fusion settings."""

    mode: Literal["concatenate", "project"] = "concatenate"
    output_dim: Optional[int] = Field(None, ge=1, description="Fused length in project mode")
    normalize_output: bool = Field(False, description="L2-normalize fused templates")
    min_valid_inputs: Optional[int] = Field(
        None, ge=1, description="Refuse fusion below this many non-empty inputs"
    )

    @model_validator(mode="after")
    def check_projection(self):
        if self.mode == "project" and self.output_dim is None:
            raise ValueError("template.output_dim is required in project mode")
        return self


class VerifierSpec(BaseModel):
    """Comparison metric for fused templates."""

    metric: Optional[MetricName] = None


class FusionSchemeFile(BaseModel):
    """Top-level layout of fusion_scheme.yaml."""

    version: str = "1.0"
    algorithms: List[AlgorithmSpec] = Field(..., min_length=2)
    combination: Optional[CombinationRule] = None
    min_valid_scores: Optional[int] = Field(None, ge=1)
    output_scale: Optional[str] = Field(
        None, description="Map fused scores back onto this algorithm's raw scale"
    )
    template: TemplateSpec = Field(default_factory=TemplateSpec)
    verifier: VerifierSpec = Field(default_factory=VerifierSpec)

    @model_validator(mode="after")
    def check_names(self):
        names = [a.name for a in self.algorithms]
        if len(set(names)) != len(names):
            raise ValueError(f"algorithm names must be unique, got {names}")
        if self.output_scale is not None and self.output_scale not in names:
            raise ValueError(f"output_scale '{self.output_scale}' is not a listed algorithm")
        return self
