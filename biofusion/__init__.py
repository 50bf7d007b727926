"""
BioFusion: multi-algorithm biometric score and template fusion

This package fuses the outputs of several recognition algorithms:
verification scores, identification candidate lists and feature
templates, plus one-to-one verification and gallery search over fused
templates.

Main components:
    - types: return codes, candidates and internal errors
    - config: runtime configuration (config.yaml)
    - fusion: scheme loader, normalizers, fusers, verifier, gallery and engines
    - training: fit fusion schemes from labelled data
    - evaluation: DET / EER / CMC accuracy measures

Usage:
    from biofusion import get_score_fuser, ScoreFuserType

    fuser = get_score_fuser()
    status = fuser.initialize("models/pluto_venus", ScoreFuserType.Verification)
    status, fused = fuser.fuse_verification_scores([3.4, 55.1])
"""

from biofusion.types import (
    Candidate,
    CandidateList,
    ReturnCode,
    ReturnStatus,
)

from biofusion.config import get_config, get_section, configure_logging

from biofusion.fusion.scheme import FusionScheme, load_scheme

from biofusion.fusion import (
    ScoreFuserInterface,
    ScoreFuserType,
    TemplateAction,
    TemplateFuserInterface,
    get_score_fuser,
    get_template_fuser,
)

__version__ = "0.1.0"

__all__ = [
    # Data types
    "Candidate",
    "CandidateList",
    "ReturnCode",
    "ReturnStatus",
    # Configuration
    "get_config",
    "get_section",
    "configure_logging",
    # Schemes
    "FusionScheme",
    "load_scheme",
    # Engines
    "ScoreFuserInterface",
    "ScoreFuserType",
    "TemplateAction",
    "TemplateFuserInterface",
    "get_score_fuser",
    "get_template_fuser",
]
