"""Shared fixtures for xsecforge tests."""

import numpy as np
import pytest

from xsecforge.core._types import UnfoldingInputs
from xsecforge.core.universes import UniverseCollection, VariationKind


@pytest.fixture
def golden_inputs():
    """2 x 2 regression fixture with a symmetric 10% migration."""
    return UnfoldingInputs(
        data_signal=[95.0, 95.0],
        data_covmat=np.diag([95.0, 95.0]),
        smearcept=[[0.9, 0.1], [0.1, 0.9]],
        prior_true_signal=[100.0, 100.0],
    )


@pytest.fixture
def tridiagonal_problem():
    """Three-bin problem with exact (noise-free) data and a known truth."""
    smearing = np.array([
        [0.85, 0.05, 0.0],
        [0.05, 0.80, 0.05],
        [0.0, 0.05, 0.85],
    ])
    truth = np.array([100.0, 200.0, 150.0])
    signal = smearing @ truth
    return {
        "smearing": smearing,
        "truth": truth,
        "signal": signal,
        "covariance": np.diag(signal),
        "prior": np.full(3, 150.0),
    }


@pytest.fixture
def two_block_problem():
    """Two disconnected observables: true/reco bins 0-2 in block 0, 3-4 in block 1."""
    rng = np.random.default_rng(7)
    n_true, n_reco = 5, 5
    smearing = np.zeros((n_reco, n_true))
    smearing[:3, :3] = np.array([
        [0.7, 0.1, 0.0],
        [0.1, 0.7, 0.1],
        [0.0, 0.1, 0.7],
    ])
    smearing[3:, 3:] = np.array([
        [0.8, 0.15],
        [0.1, 0.75],
    ])
    prior = np.array([120.0, 300.0, 180.0, 90.0, 60.0])
    signal = smearing @ (prior * rng.uniform(0.9, 1.1, size=n_true))
    a = rng.normal(size=(n_reco, n_reco))
    covariance = np.diag(signal) + 0.5 * (a @ a.T)
    return {
        "signal": signal,
        "covariance": covariance,
        "smearing": smearing,
        "prior": prior,
        "true_blocks": [0, 0, 0, 1, 1],
        "reco_blocks": [0, 0, 0, 1, 1],
    }


def make_collection(n_universes=50, seed=11, with_data=True, sumw2=False):
    """Nominal plus two systematic groups on a 3 true x 4 reco binning."""
    rng = np.random.default_rng(seed)
    migration = np.array([
        [40.0, 8.0, 1.0, 0.0],
        [6.0, 55.0, 9.0, 2.0],
        [0.0, 0.0, 0.0, 0.0],
    ])
    true = np.array([60.0, 90.0, 0.0])
    background = np.array([5.0, 7.0, 3.0, 10.0])
    reco = migration.sum(axis=0) + background

    def throw(scale):
        factors = 1.0 + scale * rng.normal(size=migration.shape)
        mig = migration * factors
        return {
            "reco": mig.sum(axis=0) + background * (1.0 + scale * rng.normal(size=4)),
            "true": true * factors.mean(axis=1),
            "migration": mig,
        }

    nominal = {"reco": reco, "true": true, "migration": migration}
    if sumw2:
        nominal["reco_sumw2"] = 0.1 * reco
    data = reco + rng.normal(scale=2.0, size=4) if with_data else None
    return UniverseCollection.from_arrays(
        nominal,
        {
            "flux": [throw(0.05) for _ in range(n_universes)],
            "detector": [throw(0.1) for _ in range(3)],
        },
        data=data,
        variation_kinds={"flux": VariationKind.MULTI_UNIVERSE, "detector": VariationKind.UNISIM},
    )


@pytest.fixture
def collection():
    return make_collection()


@pytest.fixture
def collection_factory():
    return make_collection
