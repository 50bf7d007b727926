"""
Gallery Index: enrolled fused templates searchable by similarity.

Small galleries are scanned exactly with one vectorized numpy pass. Large
galleries (>= kdtree_min_size entries) are indexed with a scipy cKDTree
built in the metric's own space (Minkowski p=1 for l1, p=2 for l2 and for
unit vectors under cosine, zero vectors on an extra axis), so the nearest
entries are also the most similar ones. Probes the tree cannot order (a
zero probe under cosine) are scanned exactly.

Both paths return the same ranking: top-M by similarity, ties broken by
ascending identity and then enrollment order. The kd-tree path collects
every entry within the M-th nearest distance before ranking, so entries
tied at the cut-off are never dropped arbitrarily.

Usage:
    index = GalleryIndex.build(templates, ids, verifier, kdtree_min_size=2048)
    candidates = index.search(probe, 10)
"""

import logging
import time
from typing import Sequence

import numpy as np
from scipy.spatial import cKDTree

from biofusion.fusion.verifier import Verifier
from biofusion.types import (
    MAX_IDENTITY,
    Candidate,
    CandidateList,
    FailedExtractionError,
    InputParseError,
    NonCongruentError,
    TemplateShapeError,
)

logger = logging.getLogger(__name__)


class GalleryIndex:
    """
    Immutable (template, identity) index.

    Attributes:
        templates: (N, D) float64 enrolled templates.
        ids: (N,) int64 identity labels (uint32 range).
        verifier: Verifier providing the metric and template checks.
        tree: cKDTree over the metric space, or None for exact scanning.
    """

    def __init__(
        self,
        templates: np.ndarray,
        ids: np.ndarray,
        verifier: Verifier,
        kdtree_min_size: int = 2048,
        leafsize: int = 32,
    ):
        self.templates = templates
        self.ids = ids
        self.verifier = verifier
        self.metric = verifier.metric
        self.tree = None

        if len(ids) > 0 and len(ids) >= kdtree_min_size:
            self.tree = cKDTree(self.metric.tree_space(templates), leafsize=leafsize)

    @classmethod
    def build(
        cls,
        templates: Sequence,
        ids: Sequence[int],
        verifier: Verifier,
        kdtree_min_size: int = 2048,
        leafsize: int = 32,
    ) -> "GalleryIndex":
        """
        Validate and index N enrolled templates.

        Empty templates (failed extraction) are skipped.

        Raises:
            NonCongruentError: If templates and ids differ in length.
            TemplateShapeError: If a template has the wrong length.
            InputParseError: If an id is outside the uint32 range or a
                             template is not numeric.
        """
        if len(templates) != len(ids):
            raise NonCongruentError(
                f"{len(templates)} templates but {len(ids)} identities"
            )

        start = time.time()
        rows = []
        kept_ids = []
        skipped = 0

        for i, (template, identity) in enumerate(zip(templates, ids)):
            try:
                label = int(identity)
            except (TypeError, ValueError) as e:
                raise InputParseError(f"identity at position {i} is not an integer") from e
            if label != identity:
                raise InputParseError(f"identity {identity!r} at position {i} is not integral")
            identity = label
            if not 0 <= identity <= MAX_IDENTITY:
                raise InputParseError(f"identity {identity} at position {i} out of uint32 range")

            try:
                vec = verifier.check_template(template, f"gallery template {i}")
            except FailedExtractionError:
                skipped += 1
                continue
            rows.append(vec)
            kept_ids.append(identity)

        if skipped:
            logger.warning(f"Skipped {skipped} empty gallery template(s)")

        if rows:
            lengths = {row.size for row in rows}
            if len(lengths) != 1:
                raise TemplateShapeError(f"gallery templates have different lengths: {sorted(lengths)}")
            matrix = np.vstack(rows)
        else:
            matrix = np.empty((0, verifier.fused_dim or 0))

        index = cls(
            matrix,
            np.asarray(kept_ids, dtype=np.int64),
            verifier,
            kdtree_min_size=kdtree_min_size,
            leafsize=leafsize,
        )
        logger.info(
            f"Gallery built: {index.size} entries, "
            f"{len(np.unique(index.ids))} identities, "
            f"index={'kdtree' if index.tree is not None else 'exact'}, "
            f"took {(time.time() - start) * 1000:.1f} ms"
        )
        return index

    @property
    def size(self) -> int:
        return int(self.ids.size)

    def search(self, probe, num_candidates: int) -> CandidateList:
        """
        Return the num_candidates most similar gallery entries.

        Args:
            probe: Fused probe template.
            num_candidates: Requested list size M.

        Returns:
            min(M, N) candidates, descending score, ties by ascending identity.

        Raises:
            FailedExtractionError / TemplateShapeError / InputParseError:
                If the probe is not a valid fused template.
        """
        vec = self.verifier.check_template(probe, "probe template")
        if self.size and vec.size != self.templates.shape[1]:
            raise TemplateShapeError(
                f"probe has length {vec.size}, gallery templates have {self.templates.shape[1]}"
            )

        m = min(int(num_candidates), self.size)
        if m <= 0:
            return []

        if self.tree is None or not self.metric.tree_supports(vec):
            rows = np.arange(self.size)
        else:
            rows = self._tree_candidates(vec, m)

        scores = self.metric.against(vec, self.templates[rows])
        # lexsort: last key is primary
        order = np.lexsort((rows, self.ids[rows], -scores))[:m]

        return [
            Candidate(identity=int(self.ids[rows[i]]), score=float(scores[i]))
            for i in order
        ]

    def _tree_candidates(self, vec: np.ndarray, m: int) -> np.ndarray:
        """Rows within the m-th nearest distance of the probe (ties included)."""
        point = self.metric.tree_space(vec[np.newaxis, :])[0]
        p = self.metric.minkowski_p

        distances, nearest = self.tree.query(point, k=m, p=p)
        distances = np.atleast_1d(distances)
        nearest = np.atleast_1d(nearest)

        radius = float(distances[-1])
        radius = radius * (1.0 + 1e-9) + 1e-12
        within = self.tree.query_ball_point(point, r=radius, p=p)

        return np.union1d(nearest, np.asarray(within, dtype=np.int64))
