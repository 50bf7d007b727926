"""
Fusion Engines: concrete implementations of the capability interfaces.

Includes:
  - CalibratedScoreFuser: score and candidate-list fusion (normalize, then
    weighted combination)
  - StandardizedTemplateFuser: template fusion by per-slot standardization,
    metric verification and gallery search
  - get_score_fuser / get_template_fuser: factories returning a new engine
    behind its interface

Each public method runs its implementation through _guarded(), which turns
FusionError subclasses into their ReturnStatus, Python MemoryError into
ReturnCode.MemoryError and anything else into ReturnCode.VendorError.
"""

import logging
import threading
from pathlib import Path
from typing import Any, Dict, Optional

from biofusion.config import get_config
from biofusion.fusion.candidate_fusion import CandidateListFusion
from biofusion.fusion.gallery import GalleryIndex
from biofusion.fusion.interfaces import (
    ScoreFuserInterface,
    ScoreFuserType,
    TemplateAction,
    TemplateFuserInterface,
)
from biofusion.fusion.score_fusion import CalibratedScoreFusion
from biofusion.fusion.template_fusion import TemplateFusion
from biofusion.fusion.verifier import Verifier
from biofusion.fusion.scheme import FusionScheme, load_scheme
from biofusion.types import (
    SUCCESS,
    EngineStateError,
    FusionError,
    InputParseError,
    MissingInputError,
    NotInitializedError,
    ReturnCode,
    ReturnStatus,
    SchemeConfigError,
)

logger = logging.getLogger(__name__)


def _guarded(operation: str, fn, *args):
    """Run fn(*args) and report (ReturnStatus, output); output is None on failure."""
    try:
        return SUCCESS, fn(*args)
    except FusionError as e:
        status = e.to_status()
        if status.is_refusal:
            logger.info(f"{operation}: {status}")
        else:
            logger.warning(f"{operation} failed: {status}")
        return status, None
    except MemoryError as e:
        logger.error(f"{operation} ran out of memory")
        return ReturnStatus(ReturnCode.MemoryError, str(e)), None
    except Exception as e:
        logger.exception(f"{operation} failed unexpectedly")
        return ReturnStatus(ReturnCode.VendorError, f"{type(e).__name__}: {e}"), None


def _coerce(enum_cls, value):
    """Accept an enum member, its name or its integer value."""
    if isinstance(value, enum_cls):
        return value
    try:
        if isinstance(value, str):
            return enum_cls[value.strip().capitalize()]
        return enum_cls(value)
    except (KeyError, ValueError) as e:
        raise InputParseError(
            f"{value!r} is not a {enum_cls.__name__} ({[m.name for m in enum_cls]})"
        ) from e


class _SchemeOwner:
    """Loads one scheme per engine and tracks which capabilities are ready."""

    def __init__(self):
        self._scheme: Optional[FusionScheme] = None
        self._directory: Optional[Path] = None
        self._initialized = set()

    @property
    def scheme(self) -> Optional[FusionScheme]:
        return self._scheme

    def _claim(self, directory, capability) -> FusionScheme:
        if capability in self._initialized:
            raise EngineStateError(f"{capability.name} is already initialized")

        directory = Path(directory)
        if self._scheme is None:
            self._scheme = load_scheme(directory)
            self._directory = directory
        elif directory.resolve() != self._directory.resolve():
            raise EngineStateError(
                f"engine already holds the scheme from {self._directory}, got {directory}"
            )
        return self._scheme


class CalibratedScoreFuser(_SchemeOwner, ScoreFuserInterface):
    """
    Score fuser built on per-algorithm calibration and weighted combination.

    Args:
        config: score_fusion settings; defaults to the config.yaml section.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        super().__init__()
        self.config = config if config is not None else get_config().get("score_fusion", {})
        self._score_fusion: Optional[CalibratedScoreFusion] = None
        self._list_fusion: Optional[CandidateListFusion] = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def initialize(self, directory, fusion_type):
        status, _ = _guarded("initialize", self._initialize, directory, fusion_type)
        return status

    def fuse_verification_scores(self, input_scores):
        return _guarded("fuse_verification_scores", self._fuse_scores, input_scores)

    def fuse_candidate_lists(self, input_lists):
        return _guarded("fuse_candidate_lists", self._fuse_lists, input_lists)

    # ------------------------------------------------------------------
    # Implementation
    # ------------------------------------------------------------------

    def _initialize(self, directory, fusion_type):
        fusion_type = _coerce(ScoreFuserType, fusion_type)
        scheme = self._claim(directory, fusion_type)

        try:
            fusion = CalibratedScoreFusion.from_scheme(scheme, self.config)
        except (KeyError, ValueError) as e:
            raise SchemeConfigError(str(e)) from e

        if fusion_type == ScoreFuserType.Verification:
            self._score_fusion = fusion
        else:
            self._list_fusion = CandidateListFusion(fusion)
        self._initialized.add(fusion_type)

        logger.info(
            f"Score fuser initialized for {fusion_type.name}: "
            f"rule={fusion.rule}, algorithms={list(scheme.names)}"
        )

    def _fuse_scores(self, input_scores):
        if self._score_fusion is None:
            raise NotInitializedError("initialize(Verification) has not been called")
        return self._score_fusion.fuse(input_scores)

    def _fuse_lists(self, input_lists):
        if self._list_fusion is None:
            raise NotInitializedError("initialize(Identification) has not been called")
        return self._list_fusion.fuse(input_lists)


class StandardizedTemplateFuser(_SchemeOwner, TemplateFuserInterface):
    """
    Template fuser with metric verification and gallery search.

    verify() is available after initialize(Verify) or initialize(Identify);
    create_gallery() and search() need initialize(Identify).

    create_gallery() swaps a fully built index in under a lock, so searches
    running concurrently always see one complete gallery.

    Args:
        config: Full runtime config (sections gallery, template_fusion,
                verifier); defaults to config.yaml.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        super().__init__()
        self.config = config if config is not None else get_config()
        self._fusion: Optional[TemplateFusion] = None
        self._verifier: Optional[Verifier] = None
        self._gallery: Optional[GalleryIndex] = None
        self._lock = threading.Lock()

    @property
    def gallery_size(self) -> int:
        gallery = self._gallery
        return gallery.size if gallery is not None else 0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def initialize(self, directory, action):
        status, _ = _guarded("initialize", self._initialize, directory, action)
        return status

    def fuse_templates(self, input_templates):
        return _guarded("fuse_templates", self._fuse_templates, input_templates)

    def verify(self, enroll, authentication):
        return _guarded("verify", self._verify, enroll, authentication)

    def create_gallery(self, templates, ids):
        status, _ = _guarded("create_gallery", self._create_gallery, templates, ids)
        return status

    def search(self, probe, candidates):
        return _guarded("search", self._search, probe, candidates)

    # ------------------------------------------------------------------
    # Implementation
    # ------------------------------------------------------------------

    def _initialize(self, directory, action):
        action = _coerce(TemplateAction, action)
        scheme = self._claim(directory, action)

        if action == TemplateAction.Fuse:
            defaults = self.config.get("template_fusion", {})
            self._fusion = TemplateFusion(
                scheme, min_valid_inputs=defaults.get("min_valid_inputs", 1)
            )
        elif self._verifier is None:
            metric = scheme.metric or self.config.get("verifier", {}).get("metric", "l1")
            self._verifier = Verifier(metric=metric, fused_dim=scheme.fused_dim)
        self._initialized.add(action)

        logger.info(
            f"Template fuser initialized for {action.name}: mode={scheme.template_mode}, "
            f"fused_dim={scheme.fused_dim}"
        )

    def _fuse_templates(self, input_templates):
        if self._fusion is None:
            raise NotInitializedError("initialize(Fuse) has not been called")
        return self._fusion.fuse(input_templates)

    def _verify(self, enroll, authentication):
        if self._verifier is None:
            raise NotInitializedError("initialize(Verify) has not been called")
        return self._verifier.compare(enroll, authentication)

    def _create_gallery(self, templates, ids):
        if TemplateAction.Identify not in self._initialized:
            raise NotInitializedError("initialize(Identify) has not been called")

        gallery_config = self.config.get("gallery", {})
        index = GalleryIndex.build(
            templates,
            ids,
            self._verifier,
            kdtree_min_size=gallery_config.get("kdtree_min_size", 2048),
            leafsize=gallery_config.get("leafsize", 32),
        )
        with self._lock:
            self._gallery = index

    def _search(self, probe, candidates):
        if TemplateAction.Identify not in self._initialized:
            raise NotInitializedError("initialize(Identify) has not been called")

        with self._lock:
            gallery = self._gallery
        if gallery is None:
            raise MissingInputError("no gallery: create_gallery() has not been called")

        try:
            requested = len(candidates)
        except TypeError as e:
            raise InputParseError("candidates must be a list sized to the requested output") from e
        if not isinstance(candidates, list):
            raise InputParseError(f"candidates must be a list, got {type(candidates).__name__}")

        candidates[:] = gallery.search(probe, requested)
        return candidates


# ============================================================
# Factories
# ============================================================

SCORE_FUSERS = {
    "calibrated": CalibratedScoreFuser,
}

TEMPLATE_FUSERS = {
    "standardized": StandardizedTemplateFuser,
}


def get_score_fuser(
    variant: str = "calibrated", config: Optional[Dict[str, Any]] = None
) -> ScoreFuserInterface:
    """
    Create a new score fuser.

    Args:
        variant: Registered implementation name (see SCORE_FUSERS).
        config: Optional score_fusion settings overriding config.yaml.

    Raises:
        ValueError: If the variant is unknown.
    """
    if variant not in SCORE_FUSERS:
        raise ValueError(f"Unknown score fuser '{variant}'. Available: {list(SCORE_FUSERS)}")
    return SCORE_FUSERS[variant](config)


def get_template_fuser(
    variant: str = "standardized", config: Optional[Dict[str, Any]] = None
) -> TemplateFuserInterface:
    """
    Create a new template fuser.

    Args:
        variant: Registered implementation name (see TEMPLATE_FUSERS).
        config: Optional full runtime config overriding config.yaml.

    Raises:
        ValueError: If the variant is unknown.
    """
    if variant not in TEMPLATE_FUSERS:
        raise ValueError(
            f"Unknown template fuser '{variant}'. Available: {list(TEMPLATE_FUSERS)}"
        )
    return TEMPLATE_FUSERS[variant](config)
