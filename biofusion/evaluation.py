"""
Evaluation Module for Fusion Accuracy.

Provides accuracy measures for fused (and single-algorithm) outputs:
- Verification: DET points at fixed false match rates, EER and AUC
- Identification: CMC curve (rank-k identification rate) of candidate lists

Usage:
    from biofusion.evaluation import FusionEvaluator

    evaluator = FusionEvaluator()
    result = evaluator.evaluate(fused_scores, genuine)
    for point in result.det_points:
        print(point.fmr, point.fnmr)
"""

import os
from dataclasses import dataclass
from typing import List, Optional, Sequence

import matplotlib.pyplot as plt
import numpy as np
from sklearn.metrics import auc, roc_curve

from biofusion.config import get_evaluation_config
from biofusion.types import CandidateList


@dataclass
class DetPoint:
    """One operating point: threshold with its false match / non-match rates."""

    threshold: float
    fmr: float
    fnmr: float


@dataclass
class EvaluationResult:
    """Container for verification metrics."""

    det_points: List[DetPoint]
    eer: float
    eer_threshold: float
    auc_score: float
    n_genuine: int
    n_impostor: int


class FusionEvaluator:
    """
    Verification and identification accuracy of score outputs.

    Scores are similarities: a comparison is accepted when score >= threshold.
    """

    def __init__(self, fmr_targets: Optional[Sequence[float]] = None):
        """
        Args:
            fmr_targets: False match rates at which DET points are reported.
                         Defaults to the evaluation section of config.yaml.
        """
        if fmr_targets is None:
            fmr_targets = get_evaluation_config().get("fmr_targets", [0.001, 0.01, 0.1])
        self.fmr_targets = [float(f) for f in fmr_targets]

    def evaluate(self, scores, genuine) -> EvaluationResult:
        """
        Evaluate verification performance.

        Args:
            scores: Similarity scores; NaN entries (no score) are left out.
            genuine: Boolean mask, True for genuine comparisons.

        Returns:
            EvaluationResult with DET points, EER and AUC.
        """
        scores, genuine = self._clean(scores, genuine)
        eer_val, eer_thresh = self.compute_eer(scores, genuine)
        fpr, tpr, _ = roc_curve(genuine.astype(int), scores)

        return EvaluationResult(
            det_points=self.compute_det(scores, genuine),
            eer=eer_val,
            eer_threshold=eer_thresh,
            auc_score=float(auc(fpr, tpr)),
            n_genuine=int(genuine.sum()),
            n_impostor=int((~genuine).sum()),
        )

    def compute_det(self, scores, genuine) -> List[DetPoint]:
        """
        DET points at the configured false match rates.

        The threshold for a target FMR f is the (1 - f) quantile of the
        impostor scores; FMR and FNMR are then measured at that threshold.
        """
        scores, genuine = self._clean(scores, genuine)
        impostor = scores[~genuine]
        mated = scores[genuine]

        points = []
        for target in self.fmr_targets:
            threshold = float(np.quantile(impostor, 1.0 - target))
            points.append(
                DetPoint(
                    threshold=threshold,
                    fmr=float(np.mean(impostor >= threshold)),
                    fnmr=float(np.mean(mated < threshold)),
                )
            )
        return points

    @staticmethod
    def compute_eer(scores, genuine):
        """Find the Equal Error Rate (threshold where FMR = FNMR)."""
        fpr, tpr, thresholds = roc_curve(np.asarray(genuine).astype(int), scores)
        fnr = 1 - tpr
        # Find where FPR and FNR cross
        eer_index = np.argmin(np.abs(fpr - fnr))
        eer = float((fpr[eer_index] + fnr[eer_index]) / 2)
        return eer, float(thresholds[eer_index])

    @staticmethod
    def cmc(
        candidate_lists: Sequence[CandidateList],
        true_ids: Sequence[int],
        max_rank: int = 20,
    ) -> np.ndarray:
        """
        Cumulative match characteristic of identification searches.

        Args:
            candidate_lists: One ranked list per probe.
            true_ids: Mated gallery identity of each probe.
            max_rank: Largest rank reported.

        Returns:
            (max_rank,) array; entry r-1 is the fraction of probes whose
            mate appears within the top r candidates.
        """
        if len(candidate_lists) != len(true_ids):
            raise ValueError("need one true identity per candidate list")
        if not candidate_lists:
            return np.zeros(max_rank)

        hits = np.zeros(max_rank)
        for candidates, true_id in zip(candidate_lists, true_ids):
            for rank, candidate in enumerate(candidates[:max_rank]):
                if candidate.identity == true_id:
                    hits[rank:] += 1
                    break
        return hits / len(candidate_lists)

    def plot_det(self, curves: dict, show: bool = True, save_path: Optional[str] = None):
        """
        Plot DET curves (FNMR against FMR, log-scaled FMR).

        Args:
            curves: Mapping of label -> (scores, genuine).
            show: Display the figure.
            save_path: If given, save the figure as PNG.
        """
        plt.figure(figsize=(7, 6))
        for label, (scores, genuine) in curves.items():
            scores, genuine = self._clean(scores, genuine)
            fpr, tpr, _ = roc_curve(genuine.astype(int), scores)
            keep = fpr > 0
            plt.plot(fpr[keep], 1 - tpr[keep], label=label)
        plt.xscale("log")
        plt.xlabel("False Match Rate (FMR)")
        plt.ylabel("False Non-Match Rate (FNMR)")
        plt.title("DET Curve")
        plt.legend()
        plt.tight_layout()
        if save_path:
            os.makedirs(os.path.dirname(save_path) or ".", exist_ok=True)
            plt.savefig(save_path, dpi=150)
        if show:
            plt.show()
        else:
            plt.close()

    @staticmethod
    def _clean(scores, genuine):
        scores = np.asarray(scores, dtype=np.float64)
        genuine = np.asarray(genuine, dtype=bool)
        if scores.shape != genuine.shape:
            raise ValueError(f"scores {scores.shape} and labels {genuine.shape} differ in shape")
        keep = ~np.isnan(scores)
        scores, genuine = scores[keep], genuine[keep]
        if genuine.all() or not genuine.any():
            raise ValueError("need both genuine and impostor scores")
        return scores, genuine
