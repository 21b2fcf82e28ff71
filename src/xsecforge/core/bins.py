"""Bin metadata and block assignments for blockwise unfolding."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Sequence

import numpy as np

from xsecforge.core.exceptions import ConfigurationError


class BinKind(Enum):
    """Space a bin lives in."""

    TRUE = "true"
    RECO = "reco"


class BinType(Enum):
    """Role of a bin in the analysis. Only ordinary bins are unfolded."""

    ORDINARY = "ordinary"  # signal bins
    SIDEBAND = "sideband"  # control-region bins used for constraints
    BACKGROUND = "background"  # true-space bins for non-signal events


@dataclass(frozen=True)
class Bin:
    """Single true-space or reco-space bin."""

    index: int
    kind: BinKind
    bin_type: BinType = BinType.ORDINARY
    block_index: int = 0
    label: str = ""

    def __post_init__(self) -> None:
        if self.index < 0:
            raise ConfigurationError(f"Bin index must be non-negative, got {self.index}")
        if self.block_index < 0:
            raise ConfigurationError(
                f"Block index must be non-negative, got {self.block_index} for {self.kind.value} bin {self.index}"
            )

    @property
    def is_ordinary(self) -> bool:
        return self.bin_type is BinType.ORDINARY


@dataclass(frozen=True, eq=False)
class Block:
    """Index-set view over the true and reco bins sharing a block index.

    Indices are positions within the ordinary-bin vectors, sorted ascending.
    """

    block_index: int
    true_indices: np.ndarray
    reco_indices: np.ndarray

    @property
    def n_true(self) -> int:
        return int(self.true_indices.size)

    @property
    def n_reco(self) -> int:
        return int(self.reco_indices.size)


def _as_block_array(values: Iterable[int], kind: str) -> np.ndarray:
    arr = np.asarray(list(values), dtype=np.int64)
    if arr.ndim != 1:
        raise ConfigurationError(f"{kind} block indices must be one-dimensional")
    if arr.size and arr.min() < 0:
        raise ConfigurationError(f"{kind} block indices must be non-negative")
    arr.setflags(write=False)
    return arr


@dataclass(frozen=True, eq=False)
class BlockAssignment:
    """Block index for every ordinary true bin and every ordinary reco bin.

    Attributes:
        true_blocks: Block index per ordinary true bin, in bin order.
        reco_blocks: Block index per ordinary reco bin, in bin order.
    """

    true_blocks: np.ndarray
    reco_blocks: np.ndarray

    def __post_init__(self) -> None:
        object.__setattr__(self, "true_blocks", _as_block_array(self.true_blocks, "True"))
        object.__setattr__(self, "reco_blocks", _as_block_array(self.reco_blocks, "Reco"))
        if self.true_blocks.size == 0 or self.reco_blocks.size == 0:
            raise ConfigurationError("Block assignment needs at least one true bin and one reco bin")
        true_ids = set(self.true_blocks.tolist())
        reco_ids = set(self.reco_blocks.tolist())
        if true_ids != reco_ids:
            only_true = sorted(true_ids - reco_ids)
            only_reco = sorted(reco_ids - true_ids)
            raise ConfigurationError(
                "Every block needs both true and reco bins "
                f"(true-only blocks: {only_true}, reco-only blocks: {only_reco})"
            )

    @classmethod
    def single_block(cls, n_true: int, n_reco: int) -> "BlockAssignment":
        """Every bin in block 0, equivalent to whole-space unfolding."""
        return cls(np.zeros(n_true, dtype=np.int64), np.zeros(n_reco, dtype=np.int64))

    @property
    def n_true(self) -> int:
        return int(self.true_blocks.size)

    @property
    def n_reco(self) -> int:
        return int(self.reco_blocks.size)

    def block_indices(self) -> List[int]:
        return sorted(set(self.true_blocks.tolist()))

    def blocks(self) -> List[Block]:
        return [
            Block(
                block_index=b,
                true_indices=np.flatnonzero(self.true_blocks == b),
                reco_indices=np.flatnonzero(self.reco_blocks == b),
            )
            for b in self.block_indices()
        ]

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, BlockAssignment):
            return NotImplemented
        return np.array_equal(self.true_blocks, other.true_blocks) and np.array_equal(
            self.reco_blocks, other.reco_blocks
        )

    def __hash__(self) -> int:
        return hash((self.true_blocks.tobytes(), self.reco_blocks.tobytes()))


@dataclass
class BinRegistry:
    """Static true-space and reco-space bin definitions."""

    true_bins: List[Bin]
    reco_bins: List[Bin] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.true_bins = sorted(self.true_bins, key=lambda b: b.index)
        self.reco_bins = sorted(self.reco_bins, key=lambda b: b.index)
        self._check(self.true_bins, BinKind.TRUE)
        self._check(self.reco_bins, BinKind.RECO)

    @staticmethod
    def _check(bins: Sequence[Bin], kind: BinKind) -> None:
        seen: Dict[int, Bin] = {}
        for b in bins:
            if b.kind is not kind:
                raise ConfigurationError(f"Bin {b.index} has kind {b.kind.value}, expected {kind.value}")
            if b.index in seen:
                raise ConfigurationError(f"Duplicate {kind.value} bin index {b.index}")
            seen[b.index] = b
        expected = list(range(len(bins)))
        if sorted(seen) != expected:
            raise ConfigurationError(f"{kind.value} bin indices must be contiguous from 0")

    @classmethod
    def uniform(cls, n_true: int, n_reco: int) -> "BinRegistry":
        """Registry with all bins ordinary and in block 0."""
        return cls(
            true_bins=[Bin(i, BinKind.TRUE) for i in range(n_true)],
            reco_bins=[Bin(i, BinKind.RECO) for i in range(n_reco)],
        )

    @property
    def n_true(self) -> int:
        return len(self.true_bins)

    @property
    def n_reco(self) -> int:
        return len(self.reco_bins)

    def ordinary_true_indices(self) -> np.ndarray:
        return np.array([b.index for b in self.true_bins if b.is_ordinary], dtype=np.int64)

    def ordinary_reco_indices(self) -> np.ndarray:
        return np.array([b.index for b in self.reco_bins if b.is_ordinary], dtype=np.int64)

    def block_assignment(self) -> BlockAssignment:
        """Block assignment over ordinary bins, in bin order."""
        return BlockAssignment(
            true_blocks=[b.block_index for b in self.true_bins if b.is_ordinary],
            reco_blocks=[b.block_index for b in self.reco_bins if b.is_ordinary],
        )
