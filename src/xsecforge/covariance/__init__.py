"""Covariance estimation from universe predictions."""

from xsecforge.covariance.estimator import (
    DATA_STAT,
    MC_STAT,
    BeamMode,
    CovarianceBreakdown,
    CovarianceConfig,
    CovarianceEstimator,
    DataStatModel,
    compute_covariance,
    data_stat_covariance,
    sample_covariance,
    smearing_matrix,
)

__all__ = [
    "DATA_STAT",
    "MC_STAT",
    "BeamMode",
    "CovarianceBreakdown",
    "CovarianceConfig",
    "CovarianceEstimator",
    "DataStatModel",
    "compute_covariance",
    "data_stat_covariance",
    "sample_covariance",
    "smearing_matrix",
]
