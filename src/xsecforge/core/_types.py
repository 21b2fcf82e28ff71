"""
Shared value types passed between the covariance estimator, the unfolding
engine and the I/O layer.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict

import numpy as np

from xsecforge.core.exceptions import ConfigurationError
from xsecforge.core.linalg import as_matrix, as_vector


def _readonly(arr: np.ndarray) -> np.ndarray:
    arr.setflags(write=False)
    return arr


@dataclass(frozen=True, eq=False)
class UnfoldingInputs:
    """The four matrices an unfolding needs.

    Attributes
    ----------
    data_signal : np.ndarray
        Background-subtracted measured counts, shape (N_reco,). Entries may
        be negative.
    data_covmat : np.ndarray
        Covariance of ``data_signal``, shape (N_reco, N_reco).
    smearcept : np.ndarray
        Smearing matrix including efficiency, shape (N_reco, N_true).
    prior_true_signal : np.ndarray
        Central-value true-space signal prediction, shape (N_true,).
    """

    data_signal: np.ndarray
    data_covmat: np.ndarray
    smearcept: np.ndarray
    prior_true_signal: np.ndarray

    def __post_init__(self) -> None:
        object.__setattr__(self, "data_signal", _readonly(as_vector(self.data_signal, "data_signal")))
        object.__setattr__(self, "data_covmat", _readonly(as_matrix(self.data_covmat, "data_covmat")))
        object.__setattr__(self, "smearcept", _readonly(as_matrix(self.smearcept, "smearcept")))
        object.__setattr__(
            self, "prior_true_signal", _readonly(as_vector(self.prior_true_signal, "prior_true_signal"))
        )
        check_dimensions(self.data_signal, self.data_covmat, self.smearcept, self.prior_true_signal)

    @property
    def n_true(self) -> int:
        return int(self.prior_true_signal.size)

    @property
    def n_reco(self) -> int:
        return int(self.data_signal.size)

    def __iter__(self):
        # unpacks as (data_signal, data_covmat, smearcept, prior_true_signal)
        return iter((self.data_signal, self.data_covmat, self.smearcept, self.prior_true_signal))


def check_dimensions(
    signal: np.ndarray,
    covariance: np.ndarray,
    smearing: np.ndarray,
    prior: np.ndarray,
) -> None:
    """Raise ConfigurationError unless the four inputs are mutually consistent."""
    n_reco = signal.size
    n_true = prior.size
    if covariance.shape != (n_reco, n_reco):
        raise ConfigurationError(
            f"data_covmat has shape {covariance.shape}, expected ({n_reco}, {n_reco}) from data_signal"
        )
    if smearing.shape[0] != n_reco:
        raise ConfigurationError(f"smearcept has {smearing.shape[0]} reco rows, data_signal has {n_reco} bins")
    if smearing.shape[1] != n_true:
        raise ConfigurationError(
            f"smearcept has {smearing.shape[1]} true columns, prior_true_signal has {n_true} bins"
        )


class UnfoldingStatus(Enum):
    """Lifecycle of one unfolding invocation."""

    CONFIGURED = "configured"
    RUNNING = "running"
    COMPLETE = "complete"
    FAILED = "failed"


@dataclass(frozen=True, eq=False)
class UnfoldingResult:
    """Result container for one unfolding (whole-space, per-block, or merged).

    Attributes
    ----------
    unfolded_signal : np.ndarray
        Unfolded true-space signal, shape (N_true,).
    cov_matrix : np.ndarray
        Covariance of ``unfolded_signal``, shape (N_true, N_true).
    unfolding_matrix : np.ndarray
        Matrix M with ``unfolded_signal ~= M @ data_signal``, shape (N_true, N_reco).
    add_smear_matrix : np.ndarray
        Regularization bias ``M @ smearcept - I``, shape (N_true, N_true).
    algorithm : str
        Name of the algorithm that produced the result.
    status : UnfoldingStatus
        COMPLETE or FAILED.
    degraded : bool
        True when an iterative algorithm stopped at its cap without
        converging. The vectors are still usable.
    iterations : int
        Iterations performed (1 for one-shot algorithms).
    details : dict
        Algorithm diagnostics (filter weights, figure-of-merit history,
        failure step, per-block information).
    """

    unfolded_signal: np.ndarray
    cov_matrix: np.ndarray
    unfolding_matrix: np.ndarray
    add_smear_matrix: np.ndarray
    algorithm: str = ""
    status: UnfoldingStatus = UnfoldingStatus.COMPLETE
    degraded: bool = False
    iterations: int = 0
    details: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        for name in ("unfolded_signal", "cov_matrix", "unfolding_matrix", "add_smear_matrix"):
            arr = np.array(getattr(self, name), dtype=float)
            object.__setattr__(self, name, _readonly(arr))

    @classmethod
    def failed(cls, n_true: int, n_reco: int, algorithm: str, **details: Any) -> "UnfoldingResult":
        """NaN-filled result for an invocation that could not complete."""
        return cls(
            unfolded_signal=np.full(n_true, np.nan),
            cov_matrix=np.full((n_true, n_true), np.nan),
            unfolding_matrix=np.full((n_true, n_reco), np.nan),
            add_smear_matrix=np.full((n_true, n_true), np.nan),
            algorithm=algorithm,
            status=UnfoldingStatus.FAILED,
            details=details,
        )

    @property
    def ok(self) -> bool:
        return self.status is UnfoldingStatus.COMPLETE

    @property
    def n_true(self) -> int:
        return int(self.unfolded_signal.size)

    @property
    def n_reco(self) -> int:
        return int(self.unfolding_matrix.shape[1])

    @property
    def uncertainties(self) -> np.ndarray:
        """1-sigma uncertainties from the covariance diagonal."""
        return np.sqrt(np.clip(np.diag(self.cov_matrix), 0.0, None))

    @property
    def effective_smearing(self) -> np.ndarray:
        """``M @ smearcept``, the matrix theory predictions are folded with before comparison."""
        return self.add_smear_matrix + np.eye(self.n_true)

    def with_details(self, **details: Any) -> "UnfoldingResult":
        merged = dict(self.details)
        merged.update(details)
        return replace(self, details=merged)
