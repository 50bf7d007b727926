"""
Scheme Training Module

This module fits fusion schemes from labelled development data and writes
them as scheme directories that the engines load in initialize().

Score-level schemes are fitted from comparison scores of K algorithms on
the same comparisons, labelled genuine or impostor:
    - znorm / tanh: impostor mean and standard deviation per algorithm
    - minmax: observed score range per algorithm
    - ecdf: the impostor score table itself

Template-level schemes are fitted from per-algorithm templates of the same
samples: per-feature mean and scale per slot, plus an optional PCA
projection of the standardized concatenation (project mode).

Usage:
    from biofusion.training import train_score_scheme, genuine_mask

    genuine = genuine_mask(id1, id2)
    train_score_scheme(scores, genuine, ["pluto", "venus"], "models/pluto_venus")
"""

import logging
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import numpy as np
import yaml
from sklearn.decomposition import PCA

from biofusion.fusion.scheme import (
    LEGACY_ZNORM_FILE,
    SCHEME_FILE,
    TABLES_FILE,
)

logger = logging.getLogger(__name__)

# Feature scales below this are treated as constant features
MIN_FEATURE_STD = 1e-8


def genuine_mask(id1: Sequence[int], id2: Sequence[int]) -> np.ndarray:
    """Boolean mask of genuine comparisons (same identity on both sides)."""
    return np.asarray(id1) == np.asarray(id2)


def fit_normalizer(scores: np.ndarray, genuine: np.ndarray, normalizer: str) -> Dict:
    """
    Fit one algorithm's normalizer parameters.

    Args:
        scores: (n,) raw scores of one algorithm; NaN entries are ignored.
        genuine: (n,) boolean mask, True for genuine comparisons.
        normalizer: Normalizer name.

    Returns:
        Dict of AlgorithmSpec fields; an "ecdf" entry carries the table
        under the key "_table".

    Raises:
        ValueError: If there are no impostor scores or they have zero spread.
    """
    scores = np.asarray(scores, dtype=np.float64)
    genuine = np.asarray(genuine, dtype=bool)
    valid = ~np.isnan(scores)
    impostor = scores[valid & ~genuine]

    if normalizer == "identity":
        return {"normalizer": "identity"}

    if normalizer == "minmax":
        observed = scores[valid]
        if observed.size == 0 or observed.max() <= observed.min():
            raise ValueError("minmax needs at least two distinct scores")
        return {"normalizer": "minmax", "low": float(observed.min()), "high": float(observed.max())}

    if impostor.size < 2:
        raise ValueError(f"{normalizer} needs at least 2 impostor scores, got {impostor.size}")

    if normalizer in ("znorm", "tanh"):
        scale = float(np.std(impostor, ddof=1))
        if scale <= 0.0:
            raise ValueError("impostor scores have zero spread")
        return {"normalizer": normalizer, "position": float(np.mean(impostor)), "scale": scale}

    if normalizer == "ecdf":
        return {"normalizer": "ecdf", "_table": np.sort(impostor)}

    raise ValueError(f"Unknown normalizer: {normalizer}")


def train_score_scheme(
    scores,
    genuine,
    algorithms: Sequence[str],
    directory,
    normalizer: str = "znorm",
    combination: str = "mean",
    weights: Optional[Sequence[float]] = None,
    output_scale: Optional[str] = None,
) -> Path:
    """
    Fit and write a score-level fusion scheme.

    Args:
        scores: (n, K) raw scores, column k from algorithms[k].
        genuine: (n,) boolean mask of genuine comparisons.
        algorithms: K algorithm names, in slot order.
        directory: Output scheme directory (created if missing).
        normalizer: Normalizer fitted for every algorithm.
        combination: Combination rule written to the scheme.
        weights: Optional K combination weights (default equal).
        output_scale: Optional algorithm whose raw scale fused scores use.

    Returns:
        Path of the written fusion_scheme.yaml.
    """
    scores = np.asarray(scores, dtype=np.float64)
    if scores.ndim != 2 or scores.shape[1] != len(algorithms):
        raise ValueError(
            f"scores must have shape (n, {len(algorithms)}), got {scores.shape}"
        )
    weights = [1.0] * len(algorithms) if weights is None else [float(w) for w in weights]

    entries = []
    tables = {}
    for k, name in enumerate(algorithms):
        params = fit_normalizer(scores[:, k], genuine, normalizer)
        table = params.pop("_table", None)
        if table is not None:
            tables[f"ecdf_{name}"] = table
        entries.append({"name": name, **params, "weight": weights[k]})

    document = {
        "version": "1.0",
        "combination": combination,
        "algorithms": entries,
    }
    if output_scale is not None:
        document["output_scale"] = output_scale

    path = _write_scheme(directory, document, tables)
    logger.info(f"Wrote {normalizer} score scheme for {list(algorithms)} to {path}")
    return path


def write_legacy_znorm(scores, genuine, algorithms: Sequence[str], directory) -> Path:
    """
    Write the plain-text z_norm.txt table (Algorithm position scale).

    Engines loading this table fuse by the sum of z-normalized scores.
    """
    scores = np.asarray(scores, dtype=np.float64)
    out_dir = Path(directory)
    out_dir.mkdir(parents=True, exist_ok=True)

    lines = ["Algorithm position scale"]
    for k, name in enumerate(algorithms):
        params = fit_normalizer(scores[:, k], genuine, "znorm")
        lines.append(f"{name} {params['position']!r} {params['scale']!r}")

    path = out_dir / LEGACY_ZNORM_FILE
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    logger.info(f"Wrote z-norm table for {list(algorithms)} to {path}")
    return path


def train_template_scheme(
    slot_samples: Sequence[np.ndarray],
    algorithms: Sequence[str],
    directory,
    output_dim: Optional[int] = None,
    normalize_output: bool = False,
    metric: str = "l1",
    weights: Optional[Sequence[float]] = None,
    min_valid_inputs: Optional[int] = None,
) -> Path:
    """
    Fit and write a template-level fusion scheme.

    Args:
        slot_samples: K arrays of shape (n, d_k), row i of every array
                      from the same sample. Rows with a non-finite value in
                      any slot are left out of the fit.
        algorithms: K algorithm names, in slot order.
        directory: Output scheme directory (created if missing).
        output_dim: If set, fit a PCA of this size (project mode);
                    otherwise templates are concatenated.
        normalize_output: L2-normalize fused templates.
        metric: Verifier metric written to the scheme.
        weights: Optional K slot weights.
        min_valid_inputs: Optional refusal threshold written to the scheme.

    Returns:
        Path of the written fusion_scheme.yaml.
    """
    if len(slot_samples) != len(algorithms):
        raise ValueError("need one sample array per algorithm")
    weights = [1.0] * len(algorithms) if weights is None else [float(w) for w in weights]

    samples = [np.asarray(s, dtype=np.float64) for s in slot_samples]
    n_rows = {s.shape[0] for s in samples}
    if len(n_rows) != 1:
        raise ValueError(f"slot sample arrays have different row counts: {sorted(n_rows)}")

    complete = np.all([np.all(np.isfinite(s), axis=1) for s in samples], axis=0)
    samples = [s[complete] for s in samples]
    if samples[0].shape[0] < 2:
        raise ValueError("need at least 2 complete training samples")

    tables = {}
    entries = []
    standardized: List[np.ndarray] = []
    for name, weight, s in zip(algorithms, weights, samples):
        mean = s.mean(axis=0)
        std = s.std(axis=0)
        std[std < MIN_FEATURE_STD] = 1.0
        tables[f"mean_{name}"] = mean
        tables[f"std_{name}"] = std
        standardized.append(weight * (s - mean) / std)
        entries.append({"name": name, "weight": weight, "dimension": int(s.shape[1])})

    template = {"mode": "concatenate", "normalize_output": bool(normalize_output)}
    if min_valid_inputs is not None:
        template["min_valid_inputs"] = int(min_valid_inputs)

    if output_dim is not None:
        pca = PCA(n_components=int(output_dim))
        pca.fit(np.hstack(standardized))
        offsets = np.cumsum([0] + [e["dimension"] for e in entries])
        for i, name in enumerate(algorithms):
            tables[f"proj_{name}"] = pca.components_[:, offsets[i]:offsets[i + 1]]
        template.update({"mode": "project", "output_dim": int(output_dim)})
        logger.info(
            f"PCA projection to {output_dim} dims keeps "
            f"{pca.explained_variance_ratio_.sum():.1%} of the variance"
        )

    document = {
        "version": "1.0",
        "algorithms": entries,
        "template": template,
        "verifier": {"metric": metric},
    }
    path = _write_scheme(directory, document, tables)
    logger.info(f"Wrote {template['mode']} template scheme for {list(algorithms)} to {path}")
    return path


def _write_scheme(directory, document: Dict, tables: Dict[str, np.ndarray]) -> Path:
    out_dir = Path(directory)
    out_dir.mkdir(parents=True, exist_ok=True)

    path = out_dir / SCHEME_FILE
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(document, f, sort_keys=False)

    tables_path = out_dir / TABLES_FILE
    if tables:
        np.savez_compressed(str(tables_path), **tables)
    elif tables_path.exists():
        # Stale tables from an earlier scheme would be picked up by the loader
        tables_path.unlink()
    return path
