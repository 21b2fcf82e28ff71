"""Command-line interface for xsecforge using argparse."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

from xsecforge.core.bins import BlockAssignment
from xsecforge.core.exceptions import XsecForgeError
from xsecforge.core.linalg import chi2
from xsecforge.io.blocks import write_blocks_file
from xsecforge.io.config import read_config
from xsecforge.io.matrices import read_unfolding_inputs, read_unfolding_result
from xsecforge.workflows.unfold_job import run_job

logger = logging.getLogger("xsecforge")


def cmd_unfold(args: argparse.Namespace) -> int:
    config = read_config(args.config)
    result = run_job(config)
    print(f"Wrote unfolded result ({result.status.value}) to {config.output_file}")
    if not result.ok:
        failed = result.details.get("failed_blocks", {})
        for block, failure in sorted(failed.items()):
            print(f"  block {block} failed at {failure['step']}: {failure['error']}", file=sys.stderr)
        return 1
    return 0


def cmd_single_block(args: argparse.Namespace) -> int:
    write_blocks_file(args.output, BlockAssignment.single_block(args.n_true, args.n_reco))
    print(f"Wrote single-block assignment to {args.output}")
    return 0


def cmd_chi2(args: argparse.Namespace) -> int:
    inputs = read_unfolding_inputs(args.input_file)
    result = read_unfolding_result(args.result_file)
    folded = inputs.smearcept @ result.unfolded_signal
    value = chi2(folded, inputs.data_signal, inputs.data_covmat)
    print(f"chi2 = {value:.4f} for {inputs.n_reco} reco bins")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Blockwise unfolding with multi-universe covariance propagation")
    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument("-v", "--verbose", action="store_true", help="Log debug output")
    verbosity.add_argument("-q", "--quiet", action="store_true", help="Log warnings and errors only")
    subparsers = parser.add_subparsers(dest="command", required=True)

    unfold = subparsers.add_parser("unfold", help="Run an unfolding job from a configuration file")
    unfold.add_argument("config", type=Path)
    unfold.set_defaults(func=cmd_unfold)

    single = subparsers.add_parser("single-block", help="Write a blocks file mapping every bin to block 0")
    single.add_argument("n_true", type=int)
    single.add_argument("n_reco", type=int)
    single.add_argument("--output", type=Path, default=Path("blocks.txt"))
    single.set_defaults(func=cmd_single_block)

    check = subparsers.add_parser("chi2", help="Chi-square of the folded unfolded result against the data")
    check.add_argument("input_file", type=Path)
    check.add_argument("result_file", type=Path)
    check.set_defaults(func=cmd_chi2)
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    level = logging.DEBUG if args.verbose else logging.WARNING if args.quiet else logging.INFO
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")
    try:
        return args.func(args)
    except (XsecForgeError, FileNotFoundError) as exc:
        logger.error(str(exc))
        return 2


if __name__ == "__main__":
    sys.exit(main())
