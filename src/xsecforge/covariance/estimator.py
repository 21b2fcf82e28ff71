"""
Multi-universe covariance estimation.

Turns a :class:`UniverseCollection` into the four unfolding inputs:

- ``data_covmat``: sum over systematic groups of the sample covariance of
  the per-universe reco prediction, plus data (and optionally MC)
  statistical terms;
- ``smearcept``: nominal migration divided by the nominal true histogram;
- ``prior_true_signal``: nominal true histogram;
- ``data_signal``: measured data minus the nominal background prediction.

All outputs are restricted to ordinary (signal) bins when a
:class:`BinRegistry` is supplied.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

import numpy as np

from xsecforge.core._types import UnfoldingInputs
from xsecforge.core.bins import BinRegistry
from xsecforge.core.exceptions import ConfigurationError
from xsecforge.core.linalg import safe_divide
from xsecforge.core.universes import Universe, UniverseCollection, VariationKind

logger = logging.getLogger(__name__)

DATA_STAT = "data_stat"
MC_STAT = "mc_stat"


class DataStatModel(Enum):
    """Statistical model for the measured counts."""

    POISSON = "poisson"
    BINOMIAL = "binomial"


class BeamMode(Enum):
    """Beam configuration the universes were generated for."""

    FHC = "fhc"  # forward horn current (neutrino mode)
    RHC = "rhc"  # reverse horn current (antineutrino mode)


@dataclass
class CovarianceConfig:
    """Options for :class:`CovarianceEstimator`.

    Attributes:
        beam_mode: Runtime beam configuration, passed on to flux normalization.
        data_stat: Statistical model for the data term.
        include_data_stat: Add the diagonal data statistical term.
        include_mc_stat: Add the diagonal nominal MC statistical term
            (requires ``reco_sumw2`` on the nominal universe).
        fixed_signal_response: Build each universe's prediction as
            ``smearcept_u @ prior_cv + background_u`` so cross-section
            model variations act only through the detector response.
        fractional_uncertainties: Fully correlated normalization terms,
            name -> fractional uncertainty.
        max_workers: Thread-pool size for per-universe work.
    """

    beam_mode: BeamMode = BeamMode.FHC
    data_stat: DataStatModel = DataStatModel.POISSON
    include_data_stat: bool = True
    include_mc_stat: bool = False
    fixed_signal_response: bool = False
    fractional_uncertainties: Dict[str, float] = field(default_factory=dict)
    max_workers: Optional[int] = None

    def __post_init__(self) -> None:
        self.beam_mode = BeamMode(self.beam_mode)
        self.data_stat = DataStatModel(self.data_stat)
        for name, frac in self.fractional_uncertainties.items():
            if frac < 0:
                raise ConfigurationError(f"Fractional uncertainty for '{name}' must be non-negative, got {frac}")


@dataclass
class CovarianceBreakdown:
    """Per-source covariance terms over all reco bins."""

    terms: Dict[str, np.ndarray]
    beam_mode: BeamMode = BeamMode.FHC
    n_bins: int = 0

    @property
    def total(self) -> np.ndarray:
        n = next(iter(self.terms.values())).shape[0] if self.terms else self.n_bins
        total = np.zeros((n, n))
        for term in self.terms.values():
            total += term
        return total

    def fractional(self, name: str, cv: np.ndarray) -> np.ndarray:
        return safe_divide(self.terms[name], np.outer(cv, cv))

    def __getitem__(self, name: str) -> np.ndarray:
        if name == "total":
            return self.total
        return self.terms[name]


def smearing_matrix(universe: Universe) -> np.ndarray:
    """Smearing matrix ``N(t, r) / N(t)``, shape (N_reco, N_true).

    Columns for true bins with no events are all zero.
    """
    return safe_divide(universe.migration.T, universe.true[None, :])


def sample_covariance(predictions: np.ndarray, center: np.ndarray) -> np.ndarray:
    """Covariance of ``predictions`` (n_universes x n_bins) about ``center``.

    Only the upper triangle is accumulated; it is mirrored afterwards so the
    result is exactly symmetric.
    """
    n_universes, n_bins = predictions.shape
    diffs = predictions - center[None, :]
    cov = np.zeros((n_bins, n_bins))
    for i in range(n_bins):
        cov[i, i:] = diffs[:, i] @ diffs[:, i:]
    cov /= n_universes
    return np.triu(cov) + np.triu(cov, k=1).T


def data_stat_covariance(data: np.ndarray, model: DataStatModel = DataStatModel.POISSON) -> np.ndarray:
    counts = np.clip(np.asarray(data, dtype=float), 0.0, None)
    if DataStatModel(model) is DataStatModel.BINOMIAL:
        total = counts.sum()
        variance = counts * (1.0 - safe_divide(counts, total)) if total > 0 else np.zeros_like(counts)
    else:
        variance = counts
    return np.diag(variance)


class CovarianceEstimator:
    """Computes unfolding inputs and covariance terms from universe predictions."""

    def __init__(self, config: Optional[CovarianceConfig] = None, registry: Optional[BinRegistry] = None) -> None:
        self.config = config or CovarianceConfig()
        self.registry = registry

    def _check(self, collection: UniverseCollection) -> None:
        collection.validate()
        if self.registry is not None and (
            self.registry.n_true != collection.n_true or self.registry.n_reco != collection.n_reco
        ):
            raise ConfigurationError(
                f"Bin registry has {self.registry.n_true} true / {self.registry.n_reco} reco bins, "
                f"universes have {collection.n_true} / {collection.n_reco}"
            )
        for name in collection.names:
            if (
                collection.kind_of(name) is VariationKind.FULLY_CORRELATED
                and name not in self.config.fractional_uncertainties
            ):
                raise ConfigurationError(f"Fully correlated systematic '{name}' has no fractional uncertainty")

    def prediction(self, collection: UniverseCollection, universe: Universe) -> np.ndarray:
        """Reco-space prediction used for the covariance of one universe."""
        if self.config.fixed_signal_response:
            return smearing_matrix(universe) @ collection.nominal.true + collection.background_reco(universe)
        return np.asarray(universe.reco, dtype=float)

    def _predictions(self, collection: UniverseCollection, universes: List[Universe]) -> np.ndarray:
        workers = self.config.max_workers
        if workers is not None and workers > 1 and len(universes) > 1:
            with ThreadPoolExecutor(max_workers=workers) as pool:
                rows = list(pool.map(lambda u: self.prediction(collection, u), universes))
        else:
            rows = [self.prediction(collection, u) for u in universes]
        return np.vstack(rows)

    def breakdown(self, collection: UniverseCollection) -> CovarianceBreakdown:
        """Covariance term per systematic group and statistical source, over all reco bins.

        Raises:
            ConfigurationError: On inconsistent binning, before any numeric work.
        """
        self._check(collection)
        cv = self.prediction(collection, collection.nominal)
        terms: Dict[str, np.ndarray] = {}

        for name, universes in collection:
            kind = collection.kind_of(name)
            if kind is VariationKind.FULLY_CORRELATED:
                frac = self.config.fractional_uncertainties[name]
                terms[name] = frac ** 2 * np.outer(cv, cv)
                continue
            predictions = self._predictions(collection, universes)
            center = predictions.mean(axis=0) if kind is VariationKind.MULTI_UNIVERSE else cv
            terms[name] = sample_covariance(predictions, center)
            logger.debug(
                f"{name}: {len(universes)} universes ({kind.value}), "
                f"sqrt(trace) = {np.sqrt(np.trace(terms[name])):.4g}"
            )

        for name, frac in self.config.fractional_uncertainties.items():
            if name not in terms:
                terms[name] = frac ** 2 * np.outer(cv, cv)

        if self.config.include_mc_stat:
            sumw2 = collection.nominal.reco_sumw2
            if sumw2 is None:
                raise ConfigurationError("include_mc_stat requires reco_sumw2 on the nominal universe")
            terms[MC_STAT] = np.diag(sumw2)

        if self.config.include_data_stat:
            if collection.data is None:
                raise ConfigurationError("Data statistical term requested but the collection has no data")
            terms[DATA_STAT] = data_stat_covariance(collection.data, self.config.data_stat)

        logger.info(
            f"Computed {len(terms)} covariance term(s) from {collection.n_universes} universes "
            f"({self.config.beam_mode.value.upper()})"
        )
        return CovarianceBreakdown(terms=terms, beam_mode=self.config.beam_mode, n_bins=collection.n_reco)

    def compute(self, collection: UniverseCollection) -> UnfoldingInputs:
        """Build ``(data_signal, data_covmat, smearcept, prior_true_signal)``."""
        if collection.data is None:
            collection.validate()
            raise ConfigurationError("Cannot build data_signal: the universe collection has no data")
        breakdown = self.breakdown(collection)
        if not breakdown.terms:
            raise ConfigurationError(
                "No covariance terms: the collection has no systematic groups and "
                "both statistical terms are disabled"
            )
        covariance = breakdown.total

        nominal = collection.nominal
        smearcept = smearing_matrix(nominal)
        prior = np.asarray(nominal.true, dtype=float)
        signal = collection.data - collection.background_reco(nominal)

        if self.registry is not None:
            t = self.registry.ordinary_true_indices()
            r = self.registry.ordinary_reco_indices()
            signal = signal[r]
            covariance = covariance[np.ix_(r, r)]
            smearcept = smearcept[np.ix_(r, t)]
            prior = prior[t]

        return UnfoldingInputs(
            data_signal=signal,
            data_covmat=covariance,
            smearcept=smearcept,
            prior_true_signal=prior,
        )


def compute_covariance(
    collection: UniverseCollection,
    config: Optional[CovarianceConfig] = None,
    registry: Optional[BinRegistry] = None,
) -> UnfoldingInputs:
    """Functional form of :meth:`CovarianceEstimator.compute`."""
    return CovarianceEstimator(config, registry).compute(collection)
