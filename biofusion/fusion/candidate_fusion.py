"""
Candidate-List Fusion: merge K ranked candidate lists for one probe.

Pipeline:
  1. Validate K >= 2 lists of one common length L
  2. Build the union of identities (an identity listed twice in one list
     keeps its best entry)
  3. Calibrate each available score with its list's normalizer and combine
     with the same rule as verification score fusion; algorithms that did
     not list an identity are absent, not zero
  4. Rank by fused score descending, then smallest original rank, then
     identity
  5. Keep at most 2L candidates

The output holds every identity of the union when it fits in 2L, so its
length x satisfies L <= x <= 2L whenever each list names L distinct
identities.
"""

import logging
import math
from typing import Dict, List, Sequence

import numpy as np

from biofusion.fusion.score_fusion import CalibratedScoreFusion
from biofusion.types import (
    MAX_IDENTITY,
    Candidate,
    CandidateList,
    InputCountError,
    InputParseError,
    NonCongruentError,
)

logger = logging.getLogger(__name__)


class CandidateListFusion:
    """
    Fuse candidate lists produced by different algorithms.

    Args:
        score_fusion: Calibrated fusion rule; list k is calibrated with slot k.
    """

    def __init__(self, score_fusion: CalibratedScoreFusion):
        self.score_fusion = score_fusion

    def fuse(self, input_lists: Sequence[CandidateList]) -> CandidateList:
        """
        Merge K ranked lists into one.

        Args:
            input_lists: K >= 2 candidate lists of equal length L, list k
                         from the scheme's k-th algorithm.

        Returns:
            Fused list sorted by descending fused score, at most 2L long.

        Raises:
            InputCountError: If K < 2 or K differs from the scheme.
            NonCongruentError: If the lists differ in length.
            InputParseError: If an entry is not a valid Candidate.
        """
        k = len(input_lists)
        if k < 2:
            raise InputCountError(f"list fusion needs at least 2 lists, got {k}")
        if k != self.score_fusion.num_slots:
            raise InputCountError(
                f"scheme fuses {self.score_fusion.num_slots} algorithms, got {k} lists"
            )

        lengths = {len(lst) for lst in input_lists}
        if len(lengths) != 1:
            raise NonCongruentError(f"candidate lists have different lengths: {sorted(lengths)}")
        list_length = lengths.pop()
        if list_length == 0:
            return []

        raw_scores, best_rank, identities = self._collect(input_lists)

        normalized = self.score_fusion.normalize(raw_scores)
        fused = np.array([self.score_fusion.combine(row) for row in normalized])

        # lexsort: last key is primary
        order = np.lexsort((identities, best_rank, -fused))
        order = order[: 2 * list_length]

        result = [Candidate(identity=int(identities[i]), score=float(fused[i])) for i in order]
        logger.debug(
            f"Fused {k} lists of length {list_length}: union={len(identities)}, "
            f"output={len(result)}"
        )
        return result

    def _collect(self, input_lists):
        """
        Build the (U, K) raw score matrix of the identity union.

        Returns:
            raw_scores: (U, K) with NaN where list k does not name the identity.
            best_rank: (U,) smallest rank of the identity over all lists.
            identities: (U,) identity labels, in order of first appearance.
        """
        k = len(input_lists)
        row_of: Dict[int, int] = {}
        rows: List[List[float]] = []
        ranks: List[int] = []

        for slot, candidates in enumerate(input_lists):
            for rank, candidate in enumerate(candidates):
                identity, score = _unpack(candidate, slot, rank)

                row = row_of.get(identity)
                if row is None:
                    row = len(rows)
                    row_of[identity] = row
                    rows.append([math.nan] * k)
                    ranks.append(rank)
                else:
                    ranks[row] = min(ranks[row], rank)

                current = rows[row][slot]
                if math.isnan(current) or score > current:
                    rows[row][slot] = score

        identities = np.fromiter(row_of.keys(), dtype=np.int64, count=len(row_of))
        return (
            np.asarray(rows, dtype=np.float64),
            np.asarray(ranks, dtype=np.int64),
            identities,
        )


def _unpack(candidate, slot: int, rank: int):
    try:
        identity = int(candidate.identity)
        score = float(candidate.score)
    except (AttributeError, TypeError, ValueError) as e:
        raise InputParseError(f"list {slot}, rank {rank}: not a Candidate ({e})") from e

    if identity != candidate.identity:
        raise InputParseError(
            f"list {slot}, rank {rank}: identity {candidate.identity!r} is not integral"
        )

    if not 0 <= identity <= MAX_IDENTITY:
        raise InputParseError(f"list {slot}, rank {rank}: identity {identity} out of range")
    if not math.isfinite(score):
        raise InputParseError(f"list {slot}, rank {rank}: score is not finite")
    return identity, score
