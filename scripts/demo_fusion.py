"""
Fusion Demo: exercise every engine operation on synthetic data.

Steps:
  1. Generate scores of two fictitious algorithms ("pluto", "venus") on the
     same comparisons, genuine scores shifted up
  2. Train a z-norm score scheme and report DET points per algorithm and
     for the fusion
  3. Fuse two synthetic candidate lists
  4. Train a template scheme, fuse templates, verify, build a gallery and
     search it

Usage:
    python scripts/demo_fusion.py
    python scripts/demo_fusion.py --out models/demo --n 20000 --seed 1
    python scripts/demo_fusion.py --plot reports/det.png
"""

import argparse
import logging
import sys
import tempfile
from pathlib import Path

import numpy as np

PROJECT_ROOT = Path(__file__).parent.parent.resolve()
sys.path.insert(0, str(PROJECT_ROOT))

from biofusion import (  # noqa: E402
    Candidate,
    ScoreFuserType,
    TemplateAction,
    configure_logging,
    get_score_fuser,
    get_template_fuser,
)
from biofusion.evaluation import FusionEvaluator  # noqa: E402
from biofusion.training import genuine_mask, train_score_scheme, train_template_scheme  # noqa: E402

logger = logging.getLogger("demo_fusion")


def synthetic_scores(n: int, rng: np.random.Generator):
    """Two algorithms on different scales, about 8% genuine comparisons."""
    genuine = rng.random(n) > 0.92
    id1 = np.arange(1, n + 1)
    id2 = np.where(genuine, id1, id1 + n)

    pluto = rng.normal(3.0, 0.2, n)
    pluto[genuine] += 0.5
    venus = rng.normal(50.0, 2.0, n)
    venus[genuine] += 7.0
    return np.column_stack([pluto, venus]), id1, id2


def run_score_level(out_dir: Path, n: int, rng, plot_path=None):
    logger.info(f"Generating {n} synthetic comparisons")
    scores, id1, id2 = synthetic_scores(n, rng)
    genuine = genuine_mask(id1, id2)

    scheme_dir = out_dir / "score_level"
    train_score_scheme(scores, genuine, ["pluto", "venus"], scheme_dir, normalizer="znorm")

    fuser = get_score_fuser()
    status = fuser.initialize(str(scheme_dir), ScoreFuserType.Verification)
    if not status.ok:
        raise SystemExit(f"initialize failed: {status}")

    fused = np.empty(n)
    for i in range(n):
        status, value = fuser.fuse_verification_scores(scores[i])
        fused[i] = value if status.ok else np.nan

    evaluator = FusionEvaluator()
    for label, values in (("pluto", scores[:, 0]), ("venus", scores[:, 1]), ("fused", fused)):
        result = evaluator.evaluate(values, genuine)
        points = ", ".join(f"FMR={p.fmr:.4f} FNMR={p.fnmr:.4f}" for p in result.det_points)
        print(f"{label:>6}: EER={result.eer:.4f}  {points}")

    if plot_path:
        evaluator.plot_det(
            {
                "pluto": (scores[:, 0], genuine),
                "venus": (scores[:, 1], genuine),
                "fused": (fused, genuine),
            },
            show=False,
            save_path=str(plot_path),
        )
        print(f"DET plot saved to {plot_path}")

    # Candidate lists of length L from the two algorithms
    list_length = 20
    ids_a = np.arange(102, 102 + list_length)
    scores_a = np.sort(5 + rng.random(list_length))[::-1]
    ids_b = rng.choice(np.arange(101, 181), size=list_length, replace=False)
    scores_b = np.sort(scores_a + rng.normal(0, 0.2, list_length))[::-1]

    list_fuser = get_score_fuser()
    list_fuser.initialize(str(scheme_dir), ScoreFuserType.Identification)
    status, fused_list = list_fuser.fuse_candidate_lists([
        [Candidate(int(i), float(s)) for i, s in zip(ids_a, scores_a)],
        [Candidate(int(i), float(s)) for i, s in zip(ids_b, scores_b)],
    ])
    print(f"\nCandidate list fusion: {status}, {len(fused_list or [])} candidates")
    for candidate in (fused_list or [])[:5]:
        print(f"  id={candidate.identity:>4}  score={candidate.score:.3f}")


def run_template_level(out_dir: Path, rng):
    pluto_dim, venus_dim = 16, 20
    n_train = 500
    train_pluto = rng.normal(size=(n_train, pluto_dim))
    train_venus = rng.exponential(size=(n_train, venus_dim))

    scheme_dir = out_dir / "template_level"
    train_template_scheme(
        [train_pluto, train_venus], ["pluto", "venus"], scheme_dir, metric="l1"
    )

    engine = get_template_fuser()
    for action in (TemplateAction.Fuse, TemplateAction.Identify):
        status = engine.initialize(str(scheme_dir), action)
        if not status.ok:
            raise SystemExit(f"initialize({action.name}) failed: {status}")

    status, fused = engine.fuse_templates([rng.normal(size=pluto_dim), rng.exponential(size=venus_dim)])
    print(f"\nTemplate fusion: {status}, length {len(fused)}")

    status, score = engine.verify(fused, fused + rng.normal(0, 0.02, fused.size))
    print(f"Verification of a near-duplicate: {status}, score={score:.3f}")

    n_people = 28
    gallery = rng.normal(size=(n_people, fused.size))
    gallery[0] = fused
    ids = list(range(101, 101 + n_people))
    print(f"Gallery: {engine.create_gallery(list(gallery), ids)}")

    candidates = [Candidate() for _ in range(5)]
    status, candidates = engine.search(fused, candidates)
    print(f"Search: {status}")
    for candidate in candidates:
        print(f"  id={candidate.identity:>4}  score={candidate.score:.3f}")


def main():
    parser = argparse.ArgumentParser(description="Score and template fusion demo")
    parser.add_argument("--out", type=str, default=None,
                        help="Directory for trained schemes (default: temporary)")
    parser.add_argument("--n", type=int, default=20000, help="Number of comparisons")
    parser.add_argument("--seed", type=int, default=0, help="Random seed")
    parser.add_argument("--plot", type=str, default=None, help="Save a DET plot here")
    parser.add_argument("--log-level", type=str, default=None, help="Logging level")
    args = parser.parse_args()

    configure_logging(args.log_level)
    rng = np.random.default_rng(args.seed)

    if args.out:
        out_dir = Path(args.out)
        run_score_level(out_dir, args.n, rng, args.plot)
        run_template_level(out_dir, rng)
    else:
        with tempfile.TemporaryDirectory() as tmp:
            run_score_level(Path(tmp), args.n, rng, args.plot)
            run_template_level(Path(tmp), rng)


if __name__ == "__main__":
    main()
