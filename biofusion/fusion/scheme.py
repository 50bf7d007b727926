"""
Fusion Scheme Loader

This module reads a pre-computed fusion scheme from a read-only directory
and turns it into an immutable FusionScheme used by the engines.

Directory layout (file names are fixed by this implementation):
- fusion_scheme.yaml: algorithms, calibration, weights, template and
  verifier settings (validated with biofusion.schemas)
- fusion_tables.npz: optional numeric tables, keyed per algorithm name:
    ecdf_<name>  reference scores for the ecdf normalizer
    mean_<name>  per-feature mean of the slot's templates
    std_<name>   per-feature scale of the slot's templates
    proj_<name>  (output_dim, dimension) projection block

Plain-text schemes are read when no YAML file is present:
- z_norm.txt: whitespace table with header "Algorithm position scale";
  scores are fused as the sum of z-normalized scores
- t_concatenator.txt: a single integer K; templates are concatenated

Usage:
    from biofusion.fusion.scheme import load_scheme

    scheme = load_scheme("models/pluto_venus")
    print(scheme.names, scheme.fused_dim)
"""

import logging
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Tuple

import numpy as np
import yaml
from pydantic import ValidationError

from biofusion.fusion.normalizers import ScoreNormalizer, build_normalizer
from biofusion.schemas import AlgorithmSpec, FusionSchemeFile
from biofusion.types import MissingInputError, SchemeConfigError

logger = logging.getLogger(__name__)

SCHEME_FILE = "fusion_scheme.yaml"
TABLES_FILE = "fusion_tables.npz"
LEGACY_ZNORM_FILE = "z_norm.txt"
LEGACY_CONCAT_FILE = "t_concatenator.txt"


@dataclass(frozen=True)
class AlgorithmCalibration:
    """
    Everything the engines need to know about one input slot.

    Attributes:
        name: Algorithm label.
        normalizer: Score calibration function.
        weight: Positive combination weight.
        dimension: Expected template length, or None if unknown.
        mean: Per-feature template mean (dimension,), or None.
        std: Per-feature template scale (dimension,), or None.
        projection: (output_dim, dimension) projection block, or None.
    """

    name: str
    normalizer: ScoreNormalizer
    weight: float = 1.0
    dimension: Optional[int] = None
    mean: Optional[np.ndarray] = None
    std: Optional[np.ndarray] = None
    projection: Optional[np.ndarray] = None


@dataclass(frozen=True)
class FusionScheme:
    """
    Immutable calibration state loaded by initialize().

    Fields left as None fall back to the runtime config defaults.
    """

    algorithms: Tuple[AlgorithmCalibration, ...]
    combination: Optional[str] = None
    min_valid_scores: Optional[int] = None
    output_scale: Optional[str] = None
    template_mode: str = "concatenate"
    output_dim: Optional[int] = None
    normalize_output: bool = False
    min_valid_inputs: Optional[int] = None
    metric: Optional[str] = None
    source: str = ""
    legacy: bool = False

    @property
    def num_algorithms(self) -> int:
        return len(self.algorithms)

    @property
    def names(self) -> Tuple[str, ...]:
        return tuple(a.name for a in self.algorithms)

    @property
    def weights(self) -> np.ndarray:
        return np.array([a.weight for a in self.algorithms], dtype=np.float64)

    @property
    def fused_dim(self) -> Optional[int]:
        """Length of fused templates, or None when slot dimensions are unknown."""
        if self.template_mode == "project":
            return self.output_dim
        dims = [a.dimension for a in self.algorithms]
        if any(d is None for d in dims):
            return None
        return int(sum(dims))

    def algorithm(self, name: str) -> AlgorithmCalibration:
        for calib in self.algorithms:
            if calib.name == name:
                return calib
        raise KeyError(f"No algorithm named '{name}' in scheme {self.source}")


def load_scheme(directory) -> FusionScheme:
    """
    Load the fusion scheme stored in a directory.

    Args:
        directory: Path to the read-only scheme directory.

    Returns:
        A validated FusionScheme.

    Raises:
        MissingInputError: If the directory does not exist.
        SchemeConfigError: If no scheme file is found or it is invalid.
    """
    path = Path(directory)
    if not path.is_dir():
        raise MissingInputError(f"Scheme directory not found: {path}")

    if (path / SCHEME_FILE).exists():
        spec = _read_yaml_scheme(path / SCHEME_FILE)
        tables = _read_tables(path / TABLES_FILE)
        scheme = _build_scheme(spec, tables, source=str(path))
    elif (path / LEGACY_ZNORM_FILE).exists():
        spec = _read_znorm_table(path / LEGACY_ZNORM_FILE)
        scheme = _build_scheme(spec, {}, source=str(path), legacy=True)
    elif (path / LEGACY_CONCAT_FILE).exists():
        spec = _read_concatenator(path / LEGACY_CONCAT_FILE)
        scheme = _build_scheme(spec, {}, source=str(path), legacy=True)
    else:
        raise SchemeConfigError(
            f"No scheme file in {path}: expected {SCHEME_FILE}, "
            f"{LEGACY_ZNORM_FILE} or {LEGACY_CONCAT_FILE}"
        )

    logger.info(
        f"Loaded fusion scheme from {path}: algorithms={list(scheme.names)}, "
        f"template_mode={scheme.template_mode}, fused_dim={scheme.fused_dim}"
    )
    return scheme


# ------------------------------------------------------------------
# File readers
# ------------------------------------------------------------------


def _read_yaml_scheme(file_path: Path) -> FusionSchemeFile:
    try:
        with open(file_path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise SchemeConfigError(f"Cannot read {file_path.name}: {e}") from e

    if not isinstance(raw, dict):
        raise SchemeConfigError(f"{file_path.name} must contain a mapping")

    try:
        return FusionSchemeFile.model_validate(raw)
    except ValidationError as e:
        raise SchemeConfigError(f"Invalid {file_path.name}: {e}") from e


def _read_tables(file_path: Path) -> Dict[str, np.ndarray]:
    if not file_path.exists():
        return {}
    try:
        with np.load(str(file_path), allow_pickle=False) as data:
            return {key: np.asarray(data[key], dtype=np.float64) for key in data.files}
    except (OSError, ValueError, zipfile.BadZipFile) as e:
        raise SchemeConfigError(f"Cannot read {file_path.name}: {e}") from e


def _read_znorm_table(file_path: Path) -> FusionSchemeFile:
    rows = [
        line.split()
        for line in file_path.read_text(encoding="utf-8").splitlines()
        if line.strip()
    ]
    if not rows:
        raise SchemeConfigError(f"{file_path.name} is empty")

    header = [h.lower() for h in rows[0]]
    try:
        i_name = header.index("algorithm")
        i_pos = header.index("position")
        i_scale = header.index("scale")
    except ValueError as e:
        raise SchemeConfigError(
            f"{file_path.name} header must name Algorithm, position and scale columns"
        ) from e

    try:
        algorithms = [
            AlgorithmSpec(
                name=row[i_name],
                normalizer="znorm",
                position=float(row[i_pos]),
                scale=float(row[i_scale]),
            )
            for row in rows[1:]
        ]
        # Sum of z-norms
        return FusionSchemeFile(algorithms=algorithms, combination="sum")
    except (IndexError, ValueError, ValidationError) as e:
        raise SchemeConfigError(f"Invalid {file_path.name}: {e}") from e


def _read_concatenator(file_path: Path) -> FusionSchemeFile:
    tokens = file_path.read_text(encoding="utf-8").split()
    try:
        k = int(tokens[0])
    except (IndexError, ValueError) as e:
        raise SchemeConfigError(f"{file_path.name} must hold the number of inputs") from e

    try:
        algorithms = [AlgorithmSpec(name=f"slot{i}") for i in range(k)]
        return FusionSchemeFile(algorithms=algorithms)
    except ValidationError as e:
        raise SchemeConfigError(f"Invalid {file_path.name}: {e}") from e


# ------------------------------------------------------------------
# Assembly and cross-checks
# ------------------------------------------------------------------


def _build_scheme(
    spec: FusionSchemeFile,
    tables: Dict[str, np.ndarray],
    source: str,
    legacy: bool = False,
) -> FusionScheme:
    project = spec.template.mode == "project"
    algorithms = []

    for alg in spec.algorithms:
        try:
            normalizer = build_normalizer(alg, tables.get(f"ecdf_{alg.name}"))
        except ValueError as e:
            raise SchemeConfigError(str(e)) from e

        mean = tables.get(f"mean_{alg.name}")
        std = tables.get(f"std_{alg.name}")
        projection = tables.get(f"proj_{alg.name}")

        dimension = alg.dimension
        if dimension is None and mean is not None:
            dimension = int(mean.size)

        if mean is not None:
            mean = mean.ravel()
            if mean.size != dimension:
                raise SchemeConfigError(
                    f"mean_{alg.name} has {mean.size} values, slot dimension is {dimension}"
                )
        if std is not None:
            std = std.ravel()
            if dimension is None or std.size != dimension:
                raise SchemeConfigError(
                    f"std_{alg.name} has {std.size} values, slot dimension is {dimension}"
                )
            if np.any(std <= 0.0):
                raise SchemeConfigError(f"std_{alg.name} must be strictly positive")

        if project:
            if dimension is None:
                raise SchemeConfigError(f"algorithm '{alg.name}' needs a dimension in project mode")
            expected = (spec.template.output_dim, dimension)
            if projection is None or projection.shape != expected:
                got = None if projection is None else projection.shape
                raise SchemeConfigError(
                    f"proj_{alg.name} must have shape {expected}, got {got}"
                )

        algorithms.append(
            AlgorithmCalibration(
                name=alg.name,
                normalizer=normalizer,
                weight=alg.weight,
                dimension=dimension,
                mean=mean,
                std=std,
                projection=projection if project else None,
            )
        )

    return FusionScheme(
        algorithms=tuple(algorithms),
        combination=spec.combination,
        min_valid_scores=spec.min_valid_scores,
        output_scale=spec.output_scale,
        template_mode=spec.template.mode,
        output_dim=spec.template.output_dim,
        normalize_output=spec.template.normalize_output,
        min_valid_inputs=spec.template.min_valid_inputs,
        metric=spec.verifier.metric,
        source=source,
        legacy=legacy,
    )
