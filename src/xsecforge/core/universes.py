"""Universe predictions consumed by the covariance estimator.

A universe is one reweighted prediction of the analysis histograms: the
central value (nominal) or one systematic variation. Each holds a reco-space
histogram of the total prediction, a true-space histogram of signal events,
and the true x reco migration histogram of signal events.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from xsecforge.core.exceptions import ConfigurationError


class VariationKind(Enum):
    """How a systematic group of universes turns into a covariance term."""

    MULTI_UNIVERSE = "multi_universe"  # many random throws, centered on their mean
    UNISIM = "unisim"  # one-sided variations, centered on the nominal
    FULLY_CORRELATED = "fully_correlated"  # single fractional normalization uncertainty


def _frozen(values, ndim: int, name: str) -> np.ndarray:
    arr = np.array(values, dtype=float)
    if arr.ndim != ndim:
        raise ConfigurationError(f"{name} must be {ndim}-dimensional, got shape {arr.shape}")
    arr.setflags(write=False)
    return arr


@dataclass(frozen=True, eq=False)
class Universe:
    """Histograms for one universe.

    Attributes:
        name: Systematic variation name ("CV" for the nominal).
        index: Universe index within its variation.
        reco: Total reco-space prediction, shape (N_reco,).
        true: Signal true-space histogram, shape (N_true,).
        migration: Signal migration histogram, shape (N_true, N_reco).
        reco_sumw2: Optional sum of squared weights per reco bin, for MC statistics.
    """

    name: str
    index: int
    reco: np.ndarray
    true: np.ndarray
    migration: np.ndarray
    reco_sumw2: Optional[np.ndarray] = None

    def __post_init__(self) -> None:
        label = f"universe {self.name}[{self.index}]"
        object.__setattr__(self, "reco", _frozen(self.reco, 1, f"{label} reco"))
        object.__setattr__(self, "true", _frozen(self.true, 1, f"{label} true"))
        object.__setattr__(self, "migration", _frozen(self.migration, 2, f"{label} migration"))
        if self.reco_sumw2 is not None:
            object.__setattr__(self, "reco_sumw2", _frozen(self.reco_sumw2, 1, f"{label} reco_sumw2"))

    @property
    def shape(self) -> Tuple[int, int]:
        """(N_true, N_reco) implied by the migration histogram."""
        return self.migration.shape  # type: ignore[return-value]

    def check_consistent(self) -> None:
        n_true, n_reco = self.shape
        label = f"universe {self.name}[{self.index}]"
        if self.true.size != n_true:
            raise ConfigurationError(
                f"{label}: true histogram has {self.true.size} bins, migration has {n_true} true bins"
            )
        if self.reco.size != n_reco:
            raise ConfigurationError(
                f"{label}: reco histogram has {self.reco.size} bins, migration has {n_reco} reco bins"
            )
        if self.reco_sumw2 is not None and self.reco_sumw2.size != n_reco:
            raise ConfigurationError(f"{label}: reco_sumw2 has {self.reco_sumw2.size} bins, expected {n_reco}")

    @property
    def signal_reco(self) -> np.ndarray:
        """Reco-space signal prediction (column sums of the migration histogram)."""
        return self.migration.sum(axis=0)


@dataclass
class UniverseCollection:
    """Nominal prediction plus named groups of systematic universes.

    Attributes:
        nominal: Central-value universe.
        variations: Mapping from systematic name to its universes.
        data: Measured reco-space counts. Required to build ``data_signal``.
        ext: Optional beam-off (external) background, added to every
            universe's background prediction.
        variation_kinds: Covariance convention per systematic name; names not
            listed default to ``VariationKind.MULTI_UNIVERSE``.
    """

    nominal: Universe
    variations: Dict[str, List[Universe]] = field(default_factory=dict)
    data: Optional[np.ndarray] = None
    ext: Optional[np.ndarray] = None
    variation_kinds: Dict[str, VariationKind] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.variations = {name: list(universes) for name, universes in self.variations.items()}
        if self.data is not None:
            self.data = _frozen(self.data, 1, "data")
        if self.ext is not None:
            self.ext = _frozen(self.ext, 1, "ext")
        self.variation_kinds = {
            name: VariationKind(kind) for name, kind in self.variation_kinds.items()
        }

    @classmethod
    def from_arrays(
        cls,
        nominal: Mapping[str, Sequence],
        variations: Optional[Mapping[str, Sequence[Mapping[str, Sequence]]]] = None,
        *,
        data: Optional[Sequence[float]] = None,
        ext: Optional[Sequence[float]] = None,
        variation_kinds: Optional[Mapping[str, VariationKind]] = None,
    ) -> "UniverseCollection":
        """Build a collection from plain ``{"reco", "true", "migration"}`` mappings."""
        nominal_universe = Universe("CV", 0, **nominal)
        groups: Dict[str, List[Universe]] = {}
        for name, universes in (variations or {}).items():
            groups[name] = [Universe(name, i, **u) for i, u in enumerate(universes)]
        return cls(
            nominal=nominal_universe,
            variations=groups,
            data=data,
            ext=ext,
            variation_kinds=dict(variation_kinds or {}),
        )

    @property
    def n_true(self) -> int:
        return self.nominal.shape[0]

    @property
    def n_reco(self) -> int:
        return self.nominal.shape[1]

    @property
    def names(self) -> List[str]:
        return list(self.variations)

    @property
    def n_universes(self) -> int:
        return sum(len(u) for u in self.variations.values())

    def kind_of(self, name: str) -> VariationKind:
        return self.variation_kinds.get(name, VariationKind.MULTI_UNIVERSE)

    def __iter__(self) -> Iterator[Tuple[str, List[Universe]]]:
        return iter(self.variations.items())

    def validate(self) -> None:
        """Check that every histogram shares the nominal binning.

        Raises:
            ConfigurationError: On any bin-count mismatch.
        """
        self.nominal.check_consistent()
        expected = self.nominal.shape
        for name, universes in self.variations.items():
            if not universes and self.kind_of(name) is not VariationKind.FULLY_CORRELATED:
                raise ConfigurationError(f"Systematic '{name}' has no universes")
            for universe in universes:
                universe.check_consistent()
                if universe.shape != expected:
                    raise ConfigurationError(
                        f"universe {name}[{universe.index}] has binning {universe.shape}, "
                        f"nominal has {expected} (true, reco)"
                    )
        for label, hist in (("data", self.data), ("ext", self.ext)):
            if hist is not None and hist.size != self.n_reco:
                raise ConfigurationError(f"{label} histogram has {hist.size} bins, expected {self.n_reco}")

    def background_reco(self, universe: Optional[Universe] = None) -> np.ndarray:
        """Non-signal reco-space prediction: total minus signal, plus beam-off."""
        universe = universe if universe is not None else self.nominal
        background = universe.reco - universe.signal_reco
        if self.ext is not None:
            background = background + self.ext
        return background
