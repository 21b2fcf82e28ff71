"""Tests for bin metadata and block assignments."""

import numpy as np
import pytest

from xsecforge.core.bins import Bin, BinKind, BinRegistry, BinType, BlockAssignment
from xsecforge.core.exceptions import ConfigurationError


class TestBin:

    def test_defaults(self):
        b = Bin(3, BinKind.TRUE)
        assert b.bin_type is BinType.ORDINARY
        assert b.block_index == 0
        assert b.is_ordinary

    def test_sideband_is_not_ordinary(self):
        assert not Bin(0, BinKind.RECO, BinType.SIDEBAND).is_ordinary

    @pytest.mark.parametrize("kwargs", [{"index": -1}, {"index": 0, "block_index": -2}])
    def test_negative_indices(self, kwargs):
        with pytest.raises(ConfigurationError):
            Bin(kind=BinKind.TRUE, **kwargs)


class TestBlockAssignment:

    def test_blocks_group_indices(self):
        assignment = BlockAssignment([0, 1, 0, 1], [1, 0, 0])
        blocks = assignment.blocks()
        assert [b.block_index for b in blocks] == [0, 1]
        np.testing.assert_array_equal(blocks[0].true_indices, [0, 2])
        np.testing.assert_array_equal(blocks[0].reco_indices, [1, 2])
        np.testing.assert_array_equal(blocks[1].true_indices, [1, 3])
        np.testing.assert_array_equal(blocks[1].reco_indices, [0])
        assert blocks[1].n_true == 2
        assert blocks[1].n_reco == 1

    def test_single_block(self):
        assignment = BlockAssignment.single_block(3, 4)
        assert assignment.block_indices() == [0]
        assert assignment.n_true == 3
        assert assignment.n_reco == 4

    def test_non_contiguous_block_ids_allowed(self):
        assert BlockAssignment([5, 2], [2, 5]).block_indices() == [2, 5]

    def test_block_without_reco_bins(self):
        with pytest.raises(ConfigurationError, match="true-only blocks: \\[1\\]"):
            BlockAssignment([0, 1], [0, 0])

    def test_empty(self):
        with pytest.raises(ConfigurationError):
            BlockAssignment([], [0])

    def test_negative_block(self):
        with pytest.raises(ConfigurationError):
            BlockAssignment([-1], [-1])

    def test_arrays_are_read_only(self):
        assignment = BlockAssignment([0, 0], [0])
        with pytest.raises(ValueError):
            assignment.true_blocks[0] = 1

    def test_equality_and_hash(self):
        a = BlockAssignment([0, 1], [1, 0])
        b = BlockAssignment(np.array([0, 1]), [1, 0])
        assert a == b
        assert hash(a) == hash(b)
        assert a != BlockAssignment([0, 1], [0, 1])


class TestBinRegistry:

    def test_uniform(self):
        registry = BinRegistry.uniform(3, 5)
        assert registry.n_true == 3
        assert registry.n_reco == 5
        assert registry.block_assignment() == BlockAssignment.single_block(3, 5)

    def test_ordinary_indices_and_blocks(self):
        registry = BinRegistry(
            true_bins=[
                Bin(0, BinKind.TRUE, block_index=0),
                Bin(1, BinKind.TRUE, BinType.BACKGROUND),
                Bin(2, BinKind.TRUE, block_index=1),
            ],
            reco_bins=[
                Bin(2, BinKind.RECO, BinType.SIDEBAND),
                Bin(0, BinKind.RECO, block_index=1),
                Bin(1, BinKind.RECO, block_index=0),
            ],
        )
        np.testing.assert_array_equal(registry.ordinary_true_indices(), [0, 2])
        np.testing.assert_array_equal(registry.ordinary_reco_indices(), [0, 1])
        assignment = registry.block_assignment()
        np.testing.assert_array_equal(assignment.true_blocks, [0, 1])
        np.testing.assert_array_equal(assignment.reco_blocks, [1, 0])

    def test_duplicate_index(self):
        with pytest.raises(ConfigurationError, match="Duplicate"):
            BinRegistry([Bin(0, BinKind.TRUE), Bin(0, BinKind.TRUE)])

    def test_gap_in_indices(self):
        with pytest.raises(ConfigurationError, match="contiguous"):
            BinRegistry([Bin(0, BinKind.TRUE), Bin(2, BinKind.TRUE)])

    def test_wrong_kind(self):
        with pytest.raises(ConfigurationError, match="kind"):
            BinRegistry([Bin(0, BinKind.RECO)])
