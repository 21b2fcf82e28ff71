"""
Blocks file reader and writer.

Format (whitespace separated; blank lines and ``#`` comments ignored)::

    <num_true_bins>
    <true_bin_index> <block_index>     (num_true_bins lines)
    <num_reco_bins>
    <reco_bin_index> <block_index>     (num_reco_bins lines)

Bin indices count ordinary (signal) bins only and must cover
``0 .. num_bins - 1`` exactly once, in any order.
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterator, List, Optional, Tuple, Union

import numpy as np

from xsecforge.core.bins import BlockAssignment
from xsecforge.core.exceptions import ConfigurationError

PathLike = Union[str, Path]


def _content_lines(text: str) -> Iterator[Tuple[int, List[str]]]:
    for line_number, raw in enumerate(text.splitlines(), start=1):
        line = raw.split("#", 1)[0].strip()
        if line:
            yield line_number, line.split()


def _parse_int(token: str, what: str, line_number: int, path: Optional[Path]) -> int:
    try:
        return int(token)
    except ValueError as exc:
        raise ConfigurationError(f"Expected integer {what}, got '{token}'", path=path, line_number=line_number) from exc


def _parse_section(
    lines: Iterator[Tuple[int, List[str]]], kind: str, path: Optional[Path]
) -> np.ndarray:
    try:
        line_number, tokens = next(lines)
    except StopIteration:
        raise ConfigurationError(f"Missing {kind} bin count", path=path) from None
    if len(tokens) != 1:
        hint = " (more true bins listed than declared?)" if kind == "reco" else ""
        raise ConfigurationError(
            f"Expected a single {kind} bin count, got {len(tokens)} tokens{hint}",
            path=path,
            line_number=line_number,
        )
    count = _parse_int(tokens[0], f"{kind} bin count", line_number, path)
    if count <= 0:
        raise ConfigurationError(f"{kind} bin count must be positive, got {count}", path=path, line_number=line_number)

    blocks = np.full(count, -1, dtype=np.int64)
    for n_read in range(count):
        try:
            line_number, tokens = next(lines)
        except StopIteration:
            raise ConfigurationError(
                f"Declared {count} {kind} bins but found only {n_read}", path=path
            ) from None
        if len(tokens) != 2:
            raise ConfigurationError(
                f"Declared {count} {kind} bins but found only {n_read} "
                f"(expected '<bin_index> <block_index>', got {len(tokens)} tokens)",
                path=path,
                line_number=line_number,
            )
        bin_index = _parse_int(tokens[0], f"{kind} bin index", line_number, path)
        block_index = _parse_int(tokens[1], "block index", line_number, path)
        if not 0 <= bin_index < count:
            raise ConfigurationError(
                f"{kind} bin index {bin_index} outside 0..{count - 1}", path=path, line_number=line_number
            )
        if blocks[bin_index] >= 0:
            raise ConfigurationError(f"Duplicate {kind} bin index {bin_index}", path=path, line_number=line_number)
        if block_index < 0:
            raise ConfigurationError(
                f"Block index must be non-negative, got {block_index}", path=path, line_number=line_number
            )
        blocks[bin_index] = block_index
    return blocks


def parse_blocks(text: str, path: Optional[PathLike] = None) -> BlockAssignment:
    """Parse blocks-file text into a :class:`BlockAssignment`."""
    source = Path(path) if path is not None else None
    lines = _content_lines(text)
    true_blocks = _parse_section(lines, "true", source)
    reco_blocks = _parse_section(lines, "reco", source)
    leftover = next(lines, None)
    if leftover is not None:
        raise ConfigurationError(
            "Unexpected content after the reco bin section (declared counts do not match the listed bins)",
            path=source,
            line_number=leftover[0],
        )
    try:
        return BlockAssignment(true_blocks, reco_blocks)
    except ConfigurationError as exc:
        raise ConfigurationError(str(exc), path=source) from exc


def read_blocks_file(path: PathLike) -> BlockAssignment:
    path = Path(path)
    return parse_blocks(path.read_text(encoding="utf-8"), path=path)


def format_blocks(assignment: BlockAssignment) -> str:
    lines = [str(assignment.n_true)]
    lines += [f"{i} {b}" for i, b in enumerate(assignment.true_blocks.tolist())]
    lines.append(str(assignment.n_reco))
    lines += [f"{i} {b}" for i, b in enumerate(assignment.reco_blocks.tolist())]
    return "\n".join(lines) + "\n"


def write_blocks_file(path: PathLike, assignment: BlockAssignment) -> None:
    Path(path).write_text(format_blocks(assignment), encoding="utf-8")
