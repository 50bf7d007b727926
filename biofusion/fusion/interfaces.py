"""
Fusion Interfaces Module

This module defines the two capability interfaces a fusion engine offers
to the driving harness:

1. ScoreFuserInterface - fuses verification scores and candidate lists
2. TemplateFuserInterface - fuses templates, verifies, builds and searches galleries

Every operation reports a ReturnStatus; operations with an output return
a (ReturnStatus, output) pair whose output is None on failure. No
exception crosses these interfaces.

Callers obtain an engine from the factories in biofusion.fusion.engines
and depend only on these interfaces.

Usage:
    from biofusion.fusion import get_score_fuser, ScoreFuserType

    fuser = get_score_fuser()
    status = fuser.initialize("models/pluto_venus", ScoreFuserType.Verification)
    status, fused = fuser.fuse_verification_scores([3.1, 52.0])
"""

from abc import ABC, abstractmethod
from enum import IntEnum
from typing import List, Optional, Sequence, Tuple

from biofusion.types import CandidateList, ReturnStatus, ScoreSet, Template


class ScoreFuserType(IntEnum):
    """Which fusion scheme initialize() prepares a score fuser for."""

    Verification = 0
    Identification = 1


class TemplateAction(IntEnum):
    """Which capability initialize() prepares a template fuser for."""

    Fuse = 0
    Verify = 1
    Identify = 2


class ScoreFuserInterface(ABC):
    """
    Abstract base class for fusion of verification scores and candidate lists.

    Implementations read a pre-computed fusion scheme (normalization and
    weighting) from a read-only directory in initialize().
    """

    @abstractmethod
    def initialize(self, directory: str, fusion_type: ScoreFuserType) -> ReturnStatus:
        """
        Load the fusion scheme for one kind of fusion.

        Args:
            directory: Read-only directory holding the scheme files.
            fusion_type: Verification (score fusion) or
                         Identification (candidate list fusion).
        """
        pass

    @abstractmethod
    def fuse_verification_scores(
        self, input_scores: ScoreSet
    ) -> Tuple[ReturnStatus, Optional[float]]:
        """
        Fuse K >= 2 scores of one comparison, one per algorithm.

        Returns:
            (status, fused score)
        """
        pass

    @abstractmethod
    def fuse_candidate_lists(
        self, input_lists: Sequence[CandidateList]
    ) -> Tuple[ReturnStatus, Optional[CandidateList]]:
        """
        Fuse K >= 2 candidate lists of equal length L, one per algorithm.

        Returns:
            (status, fused list of length L <= x <= 2L)
        """
        pass


class TemplateFuserInterface(ABC):
    """
    Abstract base class for template-level fusion, verification and search.

    The state machine is Uninitialized -> Loaded -> GalleryBuilt; search is
    valid only once a gallery has been created.
    """

    @abstractmethod
    def initialize(self, directory: str, action: TemplateAction) -> ReturnStatus:
        """
        Prepare one capability from the scheme directory.

        Args:
            directory: Read-only directory holding the scheme files.
            action: Fuse, Verify or Identify.
        """
        pass

    @abstractmethod
    def fuse_templates(
        self, input_templates: Sequence[Template]
    ) -> Tuple[ReturnStatus, Optional[Template]]:
        """
        Fuse K >= 2 templates of one sample, one per algorithm.

        Returns:
            (status, fused template)
        """
        pass

    @abstractmethod
    def verify(
        self, enroll: Template, authentication: Template
    ) -> Tuple[ReturnStatus, Optional[float]]:
        """
        Compare two fused templates.

        Returns:
            (status, similarity score)
        """
        pass

    @abstractmethod
    def create_gallery(
        self, templates: Sequence[Template], ids: Sequence[int]
    ) -> ReturnStatus:
        """
        Enroll N fused templates; ids[i] labels templates[i].
        """
        pass

    @abstractmethod
    def search(
        self, probe: Template, candidates: List
    ) -> Tuple[ReturnStatus, Optional[CandidateList]]:
        """
        Search a fused probe against the gallery.

        Args:
            probe: Fused probe template.
            candidates: Caller-allocated list; its length on entry is the
                        number of candidates M to return. Filled in place.

        Returns:
            (status, the filled candidates list)
        """
        pass
