"""
Standalone unfolding job.

Loads the four input matrices and the optional blocks file named in an
:class:`UnfoldingJobConfig`, runs the block orchestrator and writes the
result records.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Union

from xsecforge.core._types import UnfoldingResult
from xsecforge.core.bins import BlockAssignment
from xsecforge.io.blocks import read_blocks_file
from xsecforge.io.config import UnfoldingJobConfig, read_config
from xsecforge.io.matrices import read_unfolding_inputs, write_unfolding_result
from xsecforge.solvers.blockwise import blockwise_unfold

logger = logging.getLogger(__name__)


def run_job(config: UnfoldingJobConfig, *, write_output: bool = True) -> UnfoldingResult:
    """Run an unfolding job.

    All inputs are loaded and validated before any numeric work starts.
    The result is written even when some blocks failed, so the missing
    blocks are visible in the output.
    """
    inputs = read_unfolding_inputs(config.input_file)
    if config.blocks_file is not None:
        assignment = read_blocks_file(config.blocks_file)
    else:
        assignment = BlockAssignment.single_block(inputs.n_true, inputs.n_reco)

    unfolder = config.make_unfolder()
    logger.info(
        f"Unfolding {inputs.n_reco} reco bins into {inputs.n_true} true bins "
        f"with {unfolder.algorithm} ({len(assignment.block_indices())} block(s))"
    )
    result = blockwise_unfold(
        inputs.data_signal,
        inputs.data_covmat,
        inputs.smearcept,
        inputs.prior_true_signal,
        assignment,
        unfolder,
        max_workers=config.max_workers,
    )

    if write_output:
        write_unfolding_result(config.output_file, result)
    if result.degraded:
        logger.warning(f"Result is degraded (blocks {result.details.get('degraded_blocks')})")
    return result


def run_config_file(path: Union[str, Path]) -> UnfoldingResult:
    return run_job(read_config(path))
