"""Unfolding engine."""

from xsecforge.solvers.base import UNFOLDER_REGISTRY, Unfolder, make_unfolder
from xsecforge.solvers.blockwise import BlockwiseUnfolder, blockwise_unfold
from xsecforge.solvers.dagostini import DAgostiniConfig, StoppingCriterion, dagostini_unfold
from xsecforge.solvers.wiener_svd import RegularizationType, WienerSVDConfig, wiener_svd_unfold

__all__ = [
    "UNFOLDER_REGISTRY",
    "Unfolder",
    "make_unfolder",
    "BlockwiseUnfolder",
    "blockwise_unfold",
    "DAgostiniConfig",
    "StoppingCriterion",
    "dagostini_unfold",
    "RegularizationType",
    "WienerSVDConfig",
    "wiener_svd_unfold",
]
