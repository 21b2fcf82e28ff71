"""Core data structures and utilities."""

from xsecforge.core._types import UnfoldingInputs, UnfoldingResult, UnfoldingStatus
from xsecforge.core.bins import Bin, BinKind, BinRegistry, BinType, Block, BlockAssignment
from xsecforge.core.exceptions import (
    ConfigurationError,
    ConvergenceWarning,
    NumericalError,
    XsecForgeError,
)
from xsecforge.core.universes import Universe, UniverseCollection, VariationKind

__all__ = [
    "UnfoldingInputs",
    "UnfoldingResult",
    "UnfoldingStatus",
    "Bin",
    "BinKind",
    "BinRegistry",
    "BinType",
    "Block",
    "BlockAssignment",
    "ConfigurationError",
    "ConvergenceWarning",
    "NumericalError",
    "XsecForgeError",
    "Universe",
    "UniverseCollection",
    "VariationKind",
]
