"""
Blockwise unfolding.

Disconnected observables (blocks) are unfolded independently and the
results are embedded block-diagonally into whole-space arrays. Cross-block
covariance is never computed: it is exactly zero in the merged result, so a
shared global fit cannot correlate physically independent observables.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Optional, Tuple

import numpy as np

from xsecforge.core._types import UnfoldingResult, UnfoldingStatus, check_dimensions
from xsecforge.core.bins import Block, BlockAssignment
from xsecforge.core.exceptions import ConfigurationError, NumericalError
from xsecforge.core.linalg import as_matrix, as_vector
from xsecforge.solvers.base import Unfolder

logger = logging.getLogger(__name__)


def _unfold_block(
    unfolder: Unfolder,
    block: Block,
    signal: np.ndarray,
    covariance: np.ndarray,
    smearing: np.ndarray,
    prior: np.ndarray,
) -> Tuple[Block, UnfoldingResult]:
    t, r = block.true_indices, block.reco_indices
    result = unfolder.unfold(
        signal[r],
        covariance[np.ix_(r, r)],
        smearing[np.ix_(r, t)],
        prior[t],
    )
    return block, result


def blockwise_unfold(
    signal,
    covariance,
    smearing,
    prior,
    block_assignment: BlockAssignment,
    unfolder: Unfolder,
    *,
    max_workers: Optional[int] = None,
    strict: bool = False,
) -> UnfoldingResult:
    """Unfold each block independently and reassemble the whole-space result.

    Args:
        signal: Reco-space signal, shape (N_reco,).
        covariance: Signal covariance, shape (N_reco, N_reco).
        smearing: Smearing matrix, shape (N_reco, N_true).
        prior: True-space prior, shape (N_true,).
        block_assignment: Block index per true and reco bin.
        unfolder: Algorithm applied to every block.
        max_workers: Thread-pool size; ``None`` or 1 runs the blocks serially.
        strict: Raise NumericalError on the first failed block instead of
            returning a FAILED result with the block marked missing.

    Returns:
        Merged UnfoldingResult. Entries belonging to a failed block are NaN
        and ``details["failed_blocks"]`` maps the block index to the failing
        step.
    """
    signal = as_vector(signal, "data_signal")
    covariance = as_matrix(covariance, "data_covmat")
    smearing = as_matrix(smearing, "smearcept")
    prior = as_vector(prior, "prior_true_signal")
    check_dimensions(signal, covariance, smearing, prior)
    n_reco, n_true = smearing.shape
    if block_assignment.n_true != n_true or block_assignment.n_reco != n_reco:
        raise ConfigurationError(
            f"Block assignment covers {block_assignment.n_true} true / {block_assignment.n_reco} reco bins, "
            f"inputs have {n_true} true / {n_reco} reco bins"
        )

    blocks = block_assignment.blocks()
    logger.info(f"Unfolding {len(blocks)} block(s) with {unfolder.algorithm}")

    args = (signal, covariance, smearing, prior)
    if max_workers is not None and max_workers > 1 and len(blocks) > 1:
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            futures = [pool.submit(_unfold_block, unfolder, block, *args) for block in blocks]
            outcomes = [f.result() for f in futures]
    else:
        outcomes = [_unfold_block(unfolder, block, *args) for block in blocks]

    unfolded = np.zeros(n_true)
    cov = np.zeros((n_true, n_true))
    unfolding_matrix = np.zeros((n_true, n_reco))
    add_smear = np.zeros((n_true, n_true))

    failed_blocks: Dict[int, Dict[str, str]] = {}
    block_details: Dict[int, Dict] = {}
    degraded_blocks: List[int] = []
    iterations = 0
    for block, result in outcomes:
        t, r = block.true_indices, block.reco_indices
        unfolded[t] = result.unfolded_signal
        cov[np.ix_(t, t)] = result.cov_matrix
        unfolding_matrix[np.ix_(t, r)] = result.unfolding_matrix
        add_smear[np.ix_(t, t)] = result.add_smear_matrix

        iterations = max(iterations, result.iterations)
        block_details[block.block_index] = {
            "status": result.status.value,
            "degraded": result.degraded,
            "iterations": result.iterations,
            **result.details,
        }
        if result.degraded:
            degraded_blocks.append(block.block_index)
        if not result.ok:
            failure = {
                "step": str(result.details.get("step")),
                "error": str(result.details.get("error")),
            }
            failed_blocks[block.block_index] = failure
            if strict:
                raise NumericalError(
                    failure["error"], algorithm=unfolder.algorithm, step=failure["step"], block=block.block_index
                )

    status = UnfoldingStatus.FAILED if failed_blocks else UnfoldingStatus.COMPLETE
    if failed_blocks:
        logger.error(f"{len(failed_blocks)} of {len(blocks)} block(s) failed: {sorted(failed_blocks)}")
    return UnfoldingResult(
        unfolded_signal=unfolded,
        cov_matrix=cov,
        unfolding_matrix=unfolding_matrix,
        add_smear_matrix=add_smear,
        algorithm=unfolder.algorithm,
        status=status,
        degraded=bool(degraded_blocks),
        iterations=iterations,
        details={
            "blocks": block_details,
            "failed_blocks": failed_blocks,
            "degraded_blocks": degraded_blocks,
        },
    )


class BlockwiseUnfolder:
    """Binds an unfolder to a block assignment."""

    def __init__(
        self,
        unfolder: Unfolder,
        block_assignment: BlockAssignment,
        *,
        max_workers: Optional[int] = None,
        strict: bool = False,
    ) -> None:
        self.unfolder = unfolder
        self.block_assignment = block_assignment
        self.max_workers = max_workers
        self.strict = strict

    def unfold(self, signal, covariance, smearing, prior) -> UnfoldingResult:
        return blockwise_unfold(
            signal,
            covariance,
            smearing,
            prior,
            self.block_assignment,
            self.unfolder,
            max_workers=self.max_workers,
            strict=self.strict,
        )
