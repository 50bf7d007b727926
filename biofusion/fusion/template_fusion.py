"""
Template Fusion: combine K per-algorithm templates of one sample into one.

Each non-empty input slot is standardized with the slot's mean/std and
scaled by its weight. Two layouts are supported:

  - concatenate: fused = [w_1 z_1, ..., w_K z_K]
  - project:     fused = sum_k P_k (w_k z_k), P_k of shape (output_dim, d_k)

An empty input template marks a failed extraction. Its slot is imputed by
the population mean, which is zero after standardization, so the fused
length never depends on which algorithms contributed. When fewer than
min_valid_inputs slots are usable the fuser refuses instead.
"""

import logging
from typing import List, Optional, Sequence

import numpy as np

from biofusion.fusion.scheme import FusionScheme
from biofusion.types import (
    FusionRefused,
    InputCountError,
    TemplateShapeError,
    as_vector,
    check_finite,
)

logger = logging.getLogger(__name__)


class TemplateFusion:
    """
    Fuse per-algorithm templates according to a loaded scheme.

    Args:
        scheme: Loaded FusionScheme; slot k receives algorithm k's template.
        min_valid_inputs: Refusal threshold used when the scheme sets none.
    """

    def __init__(self, scheme: FusionScheme, min_valid_inputs: int = 1):
        self.scheme = scheme
        self.min_valid_inputs = max(1, int(scheme.min_valid_inputs or min_valid_inputs))
        self.output_dim = scheme.fused_dim

    def fuse(self, input_templates: Sequence) -> np.ndarray:
        """
        Fuse one template per slot.

        Args:
            input_templates: K >= 2 templates in slot order; an empty
                             template marks a failed extraction.

        Returns:
            Fused template, float64 of length scheme.fused_dim (or the sum
            of input lengths when slot dimensions are not declared).

        Raises:
            InputCountError: If fewer than 2 templates or not one per slot.
            TemplateShapeError: If a template has the wrong length.
            InputParseError: If a template holds non-finite values.
            FusionRefused: If too few templates are usable.
        """
        k = len(input_templates)
        if k < 2:
            raise InputCountError(f"template fusion needs at least 2 templates, got {k}")
        if k != self.scheme.num_algorithms:
            raise InputCountError(
                f"scheme fuses {self.scheme.num_algorithms} algorithms, got {k} templates"
            )

        slots = self._validate(input_templates)
        n_valid = sum(slot is not None for slot in slots)
        if n_valid < self.min_valid_inputs:
            raise FusionRefused(
                f"only {n_valid} of {k} templates usable, need {self.min_valid_inputs}"
            )

        if n_valid < k:
            unknown = [
                calib.name
                for calib, slot in zip(self.scheme.algorithms, slots)
                if slot is None and calib.dimension is None
            ]
            if unknown:
                raise FusionRefused(f"cannot impute slots of undeclared dimension: {unknown}")
            logger.debug(f"Imputing {k - n_valid} failed slot(s) by the population mean")

        if self.scheme.template_mode == "project":
            fused = self._project(slots)
        else:
            fused = self._concatenate(slots)

        if self.scheme.normalize_output:
            norm = np.linalg.norm(fused)
            if norm > 1e-12:
                fused = fused / norm

        return fused

    # ------------------------------------------------------------------
    # Implementation
    # ------------------------------------------------------------------

    def _validate(self, input_templates) -> List[Optional[np.ndarray]]:
        """Return the standardized, weighted slot vectors (None = failed slot)."""
        slots: List[Optional[np.ndarray]] = []
        for calib, template in zip(self.scheme.algorithms, input_templates):
            vec = as_vector(template, f"template '{calib.name}'")
            if vec.size == 0:
                slots.append(None)
                continue
            if calib.dimension is not None and vec.size != calib.dimension:
                raise TemplateShapeError(
                    f"template '{calib.name}' has length {vec.size}, expected {calib.dimension}"
                )
            check_finite(vec, f"template '{calib.name}'")

            if calib.mean is not None:
                vec = vec - calib.mean
            if calib.std is not None:
                vec = vec / calib.std
            slots.append(calib.weight * vec)
        return slots

    def _concatenate(self, slots) -> np.ndarray:
        parts = [
            slot if slot is not None else np.zeros(calib.dimension)
            for calib, slot in zip(self.scheme.algorithms, slots)
        ]
        return np.concatenate(parts)

    def _project(self, slots) -> np.ndarray:
        fused = np.zeros(self.scheme.output_dim)
        for calib, slot in zip(self.scheme.algorithms, slots):
            if slot is not None:
                fused += calib.projection @ slot
        return fused
