"""xsecforge I/O module for matrices, blocks files and job configuration."""

from xsecforge.io.artifacts import read_artifact, read_records, write_artifact, write_records
from xsecforge.io.blocks import format_blocks, parse_blocks, read_blocks_file, write_blocks_file
from xsecforge.io.config import UnfoldingJobConfig, parse_config, read_config
from xsecforge.io.matrices import (
    read_unfolding_inputs,
    read_unfolding_result,
    write_unfolding_inputs,
    write_unfolding_result,
)

__all__ = [
    "read_artifact",
    "read_records",
    "write_artifact",
    "write_records",
    "format_blocks",
    "parse_blocks",
    "read_blocks_file",
    "write_blocks_file",
    "UnfoldingJobConfig",
    "parse_config",
    "read_config",
    "read_unfolding_inputs",
    "read_unfolding_result",
    "write_unfolding_inputs",
    "write_unfolding_result",
]
