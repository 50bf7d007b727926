"""
Fusion Module

This package contains the multi-algorithm fusion components and the
engines that expose them to a driving harness.

Components:
    - interfaces: capability interfaces and their enums
    - scheme: fusion scheme directory loader
    - normalizers: per-algorithm score calibration
    - score_fusion: weighted combination of calibrated scores
    - candidate_fusion: merge of ranked candidate lists
    - template_fusion: fusion of per-algorithm templates
    - verifier: similarity metrics for fused templates
    - gallery: gallery index and top-M search
    - engines: concrete engines and factories

Usage:
    from biofusion.fusion import get_template_fuser, TemplateAction

    engine = get_template_fuser()
    engine.initialize("models/template_level", TemplateAction.Identify)
"""

from biofusion.fusion.interfaces import (
    ScoreFuserInterface,
    ScoreFuserType,
    TemplateAction,
    TemplateFuserInterface,
)
from biofusion.fusion.normalizers import (
    ScoreNormalizer,
    IdentityNormalizer,
    ZScoreNormalizer,
    MinMaxNormalizer,
    TanhNormalizer,
    EmpiricalCdfNormalizer,
    build_normalizer,
)
from biofusion.fusion.score_fusion import CalibratedScoreFusion, combine_normalized
from biofusion.fusion.candidate_fusion import CandidateListFusion
from biofusion.fusion.template_fusion import TemplateFusion
from biofusion.fusion.verifier import Verifier, get_metric
from biofusion.fusion.gallery import GalleryIndex
from biofusion.fusion.engines import (
    CalibratedScoreFuser,
    StandardizedTemplateFuser,
    get_score_fuser,
    get_template_fuser,
)

__all__ = [
    # Interfaces
    "ScoreFuserInterface",
    "ScoreFuserType",
    "TemplateAction",
    "TemplateFuserInterface",
    # Normalizers
    "ScoreNormalizer",
    "IdentityNormalizer",
    "ZScoreNormalizer",
    "MinMaxNormalizer",
    "TanhNormalizer",
    "EmpiricalCdfNormalizer",
    "build_normalizer",
    # Fusion components
    "CalibratedScoreFusion",
    "combine_normalized",
    "CandidateListFusion",
    "TemplateFusion",
    "Verifier",
    "get_metric",
    "GalleryIndex",
    # Engines
    "CalibratedScoreFuser",
    "StandardizedTemplateFuser",
    "get_score_fuser",
    "get_template_fuser",
]
