"""Tests for the blocks file format."""

import pytest

from xsecforge.core.bins import BlockAssignment
from xsecforge.core.exceptions import ConfigurationError
from xsecforge.io.blocks import format_blocks, parse_blocks, read_blocks_file, write_blocks_file

TWO_BLOCKS = """\
# true bins
3
0 0
1 0
2 1

# reco bins
4
0 0
1 0   # trailing comment
2 1
3 1
"""


class TestParse:

    def test_two_blocks(self):
        assignment = parse_blocks(TWO_BLOCKS)
        assert assignment.true_blocks.tolist() == [0, 0, 1]
        assert assignment.reco_blocks.tolist() == [0, 0, 1, 1]

    def test_bins_in_any_order(self):
        assignment = parse_blocks("2\n1 0\n0 1\n2\n0 1\n1 0\n")
        assert assignment.true_blocks.tolist() == [1, 0]
        assert assignment.reco_blocks.tolist() == [1, 0]

    def test_round_trip(self, tmp_path):
        original = BlockAssignment([0, 2, 2, 0], [2, 0, 0])
        path = tmp_path / "blocks.txt"
        write_blocks_file(path, original)
        assert read_blocks_file(path) == original
        assert parse_blocks(format_blocks(original)) == original

    def test_single_block_format(self):
        assert format_blocks(BlockAssignment.single_block(2, 1)) == "2\n0 0\n1 0\n1\n0 0\n"


class TestErrors:

    def _error(self, text):
        with pytest.raises(ConfigurationError) as excinfo:
            parse_blocks(text, path="blocks.txt")
        return excinfo.value

    def test_fewer_true_bins_than_declared(self):
        error = self._error("3\n0 0\n1 0\n2\n0 0\n1 0\n")
        assert error.line_number == 4
        assert "Declared 3 true bins but found only 2" in str(error)
        assert str(error).startswith("blocks.txt:4: ")

    def test_more_true_bins_than_declared(self):
        error = self._error("2\n0 0\n1 0\n2 0\n1\n0 0\n")
        assert error.line_number == 4
        assert "more true bins listed than declared" in str(error)

    def test_fewer_reco_bins_at_end_of_file(self):
        error = self._error("1\n0 0\n3\n0 0\n1 0\n")
        assert "Declared 3 reco bins but found only 2" in str(error)

    def test_trailing_content(self):
        error = self._error("1\n0 0\n1\n0 0\n1 0\n")
        assert error.line_number == 5

    def test_duplicate_index(self):
        error = self._error("2\n0 0\n0 1\n1\n0 0\n")
        assert "Duplicate true bin index 0" in str(error)
        assert error.line_number == 3

    def test_index_out_of_range(self):
        error = self._error("2\n0 0\n2 0\n1\n0 0\n")
        assert "outside 0..1" in str(error)

    def test_non_integer(self):
        error = self._error("2\n0 0\n1 x\n1\n0 0\n")
        assert "Expected integer block index" in str(error)

    def test_missing_reco_section(self):
        error = self._error("1\n0 0\n")
        assert "Missing reco bin count" in str(error)

    def test_block_without_reco_bins(self):
        error = self._error("2\n0 0\n1 1\n1\n0 0\n")
        assert "true-only blocks: [1]" in str(error)

    def test_empty(self):
        assert "Missing true bin count" in str(self._error("# nothing here\n"))
