"""Readers and writers for unfolding inputs and results."""

from __future__ import annotations

from pathlib import Path
from typing import Union

import numpy as np

from xsecforge.core._types import UnfoldingInputs, UnfoldingResult, UnfoldingStatus
from xsecforge.core.exceptions import ConfigurationError
from xsecforge.io.artifacts import read_records, require_records, write_records

PathLike = Union[str, Path]

INPUT_RECORDS = ("data_signal", "data_covmat", "smearcept", "prior_true_signal")
OUTPUT_RECORDS = ("unfolded_signal", "cov_matrix", "unfolding_matrix", "add_smear_matrix")


def read_unfolding_inputs(path: PathLike) -> UnfoldingInputs:
    """Load ``data_signal``, ``data_covmat``, ``smearcept`` and ``prior_true_signal``.

    Raises:
        ConfigurationError: If a record is missing or the dimensions disagree.
    """
    path = Path(path)
    records, _ = read_records(path)
    require_records(records, INPUT_RECORDS, path)
    try:
        return UnfoldingInputs(**{name: records[name] for name in INPUT_RECORDS})
    except ConfigurationError as exc:
        raise ConfigurationError(str(exc), path=path) from exc


def write_unfolding_inputs(path: PathLike, inputs: UnfoldingInputs) -> None:
    write_records(
        Path(path),
        {name: getattr(inputs, name) for name in INPUT_RECORDS},
        schema="unfolding_inputs",
    )


def write_unfolding_result(path: PathLike, result: UnfoldingResult) -> None:
    """Store the four result records plus status metadata."""
    failed_blocks = result.details.get("failed_blocks") or {}
    metadata = {
        "algorithm": result.algorithm,
        "status": result.status.value,
        "degraded": result.degraded,
        "iterations": result.iterations,
        "failed_blocks": {str(k): v for k, v in failed_blocks.items()},
    }
    write_records(
        Path(path),
        {name: getattr(result, name) for name in OUTPUT_RECORDS},
        schema="unfolding_result",
        metadata=metadata,
    )


def read_unfolding_result(path: PathLike) -> UnfoldingResult:
    path = Path(path)
    records, metadata = read_records(path)
    require_records(records, OUTPUT_RECORDS, path)
    failed_blocks = {int(k): v for k, v in (metadata.get("failed_blocks") or {}).items()}
    return UnfoldingResult(
        unfolded_signal=np.asarray(records["unfolded_signal"]).reshape(-1),
        cov_matrix=records["cov_matrix"],
        unfolding_matrix=records["unfolding_matrix"],
        add_smear_matrix=records["add_smear_matrix"],
        algorithm=str(metadata.get("algorithm", "")),
        status=UnfoldingStatus(metadata.get("status", UnfoldingStatus.COMPLETE.value)),
        degraded=bool(metadata.get("degraded", False)),
        iterations=int(metadata.get("iterations", 0)),
        details={"failed_blocks": failed_blocks} if failed_blocks else {},
    )
