"""Conversion of unfolded event counts into differential cross sections."""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Mapping, Optional, Sequence, Union

import numpy as np

from xsecforge.core._types import UnfoldingResult
from xsecforge.core.exceptions import ConfigurationError
from xsecforge.covariance.estimator import BeamMode

logger = logging.getLogger(__name__)

FluxSpec = Union[float, Mapping[BeamMode, float]]


def integrated_flux_for(integrated_flux: FluxSpec, beam_mode: BeamMode) -> float:
    """Pick the integrated flux for ``beam_mode`` from a number or a per-mode table."""
    beam_mode = BeamMode(beam_mode)
    if isinstance(integrated_flux, Mapping):
        table = {BeamMode(k): float(v) for k, v in integrated_flux.items()}
        if beam_mode not in table:
            raise ConfigurationError(f"No integrated flux configured for beam mode '{beam_mode.value}'")
        return table[beam_mode]
    return float(integrated_flux)


def normalize(
    result: UnfoldingResult,
    integrated_flux: FluxSpec,
    num_targets: float,
    bin_widths: Optional[Sequence[float]] = None,
    beam_mode: BeamMode = BeamMode.FHC,
) -> UnfoldingResult:
    """Scale unfolded events to a cross section per target per unit flux (per bin width).

    The unfolded vector and the unfolding matrix scale by ``1 / (flux * targets * width)``
    per true bin, the covariance by the outer product of those factors. The
    additional smearing matrix is dimensionless in this basis and is rescaled
    as ``S A S^-1``.
    """
    flux = integrated_flux_for(integrated_flux, beam_mode)
    if flux <= 0 or num_targets <= 0:
        raise ConfigurationError(
            f"Integrated flux and number of targets must be positive, got {flux} and {num_targets}"
        )
    widths = np.ones(result.n_true) if bin_widths is None else np.asarray(bin_widths, dtype=float)
    if widths.shape != (result.n_true,):
        raise ConfigurationError(f"Expected {result.n_true} bin widths, got {widths.size}")
    if np.any(widths <= 0):
        raise ConfigurationError("Bin widths must be positive")

    scale = 1.0 / (flux * num_targets * widths)
    logger.info(f"Normalizing {result.n_true} bins to cross section ({BeamMode(beam_mode).value.upper()})")
    add_smear = scale[:, None] * result.add_smear_matrix / scale[None, :]
    return replace(
        result,
        unfolded_signal=scale * result.unfolded_signal,
        cov_matrix=np.outer(scale, scale) * result.cov_matrix,
        unfolding_matrix=scale[:, None] * result.unfolding_matrix,
        add_smear_matrix=add_smear,
        details={**result.details, "xsec_scale": scale, "beam_mode": BeamMode(beam_mode).value},
    )
