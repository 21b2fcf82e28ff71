"""Algorithm dispatch for the unfolding engine.

An :class:`Unfolder` wraps one algorithm configuration. The configuration
type selects the algorithm when the unfolder is built; configuration strings
map to configuration factories through :data:`UNFOLDER_REGISTRY`.
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, Union

from xsecforge.core._types import UnfoldingResult, check_dimensions
from xsecforge.core.exceptions import ConfigurationError, NumericalError
from xsecforge.core.linalg import as_matrix, as_vector, require_finite
from xsecforge.solvers.dagostini import DAgostiniConfig, dagostini_unfold
from xsecforge.solvers.wiener_svd import WienerSVDConfig, wiener_svd_unfold

logger = logging.getLogger(__name__)

AlgorithmConfig = Union[WienerSVDConfig, DAgostiniConfig]

_ALGORITHMS: Dict[type, Callable[..., UnfoldingResult]] = {
    WienerSVDConfig: wiener_svd_unfold,
    DAgostiniConfig: dagostini_unfold,
}

UNFOLDER_REGISTRY: Dict[str, Callable[..., AlgorithmConfig]] = {
    "WienerSVD": WienerSVDConfig,
    "DAgostini": DAgostiniConfig,
}


class Unfolder:
    """Unfolds a reco-space signal with a fixed algorithm configuration.

    Instances hold no per-invocation state, so one unfolder can serve many
    blocks concurrently.
    """

    def __init__(self, config: AlgorithmConfig) -> None:
        if type(config) not in _ALGORITHMS:
            raise ConfigurationError(f"Unsupported unfolding configuration: {type(config).__name__}")
        self.config = config
        self._run = _ALGORITHMS[type(config)]

    @property
    def algorithm(self) -> str:
        return self.config.algorithm

    def __repr__(self) -> str:
        return f"Unfolder({self.config!r})"

    def unfold(self, signal, covariance, smearing, prior) -> UnfoldingResult:
        """Unfold ``signal`` into true space.

        Inputs are copied, never modified.

        Raises:
            ConfigurationError: If the input dimensions are inconsistent.

        Returns:
            UnfoldingResult with status COMPLETE, or FAILED (NaN-filled, with
            ``details["step"]`` and ``details["error"]``) when non-finite
            values are met.
        """
        signal = as_vector(signal, "data_signal")
        covariance = as_matrix(covariance, "data_covmat")
        smearing = as_matrix(smearing, "smearcept")
        prior = as_vector(prior, "prior_true_signal")
        check_dimensions(signal, covariance, smearing, prior)
        n_reco, n_true = smearing.shape

        logger.debug(f"{self.algorithm}: running on {n_reco} reco x {n_true} true bins")
        try:
            for name, arr in (
                ("data_signal", signal),
                ("data_covmat", covariance),
                ("smearcept", smearing),
                ("prior_true_signal", prior),
            ):
                require_finite(arr, name, algorithm=self.algorithm, step="input validation")
            result = self._run(signal, covariance, smearing, prior, self.config)
        except NumericalError as exc:
            logger.error(f"{self.algorithm} unfolding failed: {exc}")
            return UnfoldingResult.failed(
                n_true,
                n_reco,
                self.algorithm,
                step=exc.step,
                error=exc.reason,
            )
        return result


def make_unfolder(name: str, **params) -> Unfolder:
    """Build an unfolder from a registered algorithm name and its parameters."""
    try:
        factory = UNFOLDER_REGISTRY[name]
    except KeyError as exc:
        known = ", ".join(sorted(UNFOLDER_REGISTRY))
        raise ConfigurationError(f"Unknown unfolding algorithm '{name}' (expected one of: {known})") from exc
    try:
        config = factory(**params)
    except TypeError as exc:
        raise ConfigurationError(f"Bad parameters for {name}: {exc}") from exc
    return Unfolder(config)
