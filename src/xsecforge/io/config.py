"""
Parser for the line-oriented unfolding job configuration.

Recognized commands (one per line, whitespace-separated tokens, ``#`` starts
a comment)::

    InputFile   <path>
    OutputFile  <path>
    BlocksFile  <path>
    Unfold WienerSVD <0|1> <identity|first-deriv|second-deriv>
    Unfold DAgostini iter <int>
    Unfold DAgostini fm <float>
    MaxWorkers  <int>

Relative paths are resolved against the directory of the configuration file.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union

from xsecforge.core.exceptions import ConfigurationError
from xsecforge.solvers.base import UNFOLDER_REGISTRY, AlgorithmConfig, Unfolder
from xsecforge.solvers.dagostini import StoppingCriterion
from xsecforge.solvers.wiener_svd import RegularizationType

PathLike = Union[str, Path]


@dataclass
class UnfoldingJobConfig:
    """Everything needed to run one standalone unfolding job."""

    input_file: Path
    output_file: Path
    algorithm: AlgorithmConfig
    blocks_file: Optional[Path] = None
    max_workers: Optional[int] = None

    def make_unfolder(self) -> Unfolder:
        return Unfolder(self.algorithm)


class _LineError(Exception):
    pass


def _wiener_svd_params(args: List[str]) -> Dict:
    if len(args) != 2:
        raise _LineError(
            "Unfold WienerSVD expects 2 arguments: <0|1> <identity|first-deriv|second-deriv>"
        )
    toggle, regularization = args
    if toggle not in ("0", "1"):
        raise _LineError(f"Wiener filter toggle must be 0 or 1, got '{toggle}'")
    try:
        reg = RegularizationType(regularization)
    except ValueError:
        choices = "|".join(r.value for r in RegularizationType)
        raise _LineError(f"Unknown regularization '{regularization}' (expected {choices})") from None
    return {"use_filter": toggle == "1", "regularization": reg}


def _dagostini_params(args: List[str]) -> Dict:
    if len(args) != 2:
        raise _LineError("Unfold DAgostini expects 2 arguments: iter <int> or fm <float>")
    mode, value = args
    if mode == StoppingCriterion.FIXED_ITERATIONS.value:
        try:
            n_iterations = int(value)
        except ValueError:
            raise _LineError(f"Iteration count must be an integer, got '{value}'") from None
        return {"criterion": StoppingCriterion.FIXED_ITERATIONS, "n_iterations": n_iterations}
    if mode == StoppingCriterion.FIGURE_OF_MERIT.value:
        try:
            threshold = float(value)
        except ValueError:
            raise _LineError(f"Figure-of-merit threshold must be a number, got '{value}'") from None
        return {"criterion": StoppingCriterion.FIGURE_OF_MERIT, "figure_of_merit": threshold}
    raise _LineError(f"Unknown DAgostini stopping mode '{mode}' (expected iter or fm)")


# Argument parsers per algorithm name registered in UNFOLDER_REGISTRY.
_UNFOLD_ARGUMENTS: Dict[str, Callable[[List[str]], Dict]] = {
    "WienerSVD": _wiener_svd_params,
    "DAgostini": _dagostini_params,
}


def _single_path(args: List[str], command: str, base_dir: Path) -> Path:
    if len(args) != 1:
        raise _LineError(f"{command} expects exactly one path, got {len(args)} tokens")
    path = Path(args[0]).expanduser()
    return path if path.is_absolute() else base_dir / path


def parse_config(text: str, base_dir: Optional[PathLike] = None, path: Optional[PathLike] = None) -> UnfoldingJobConfig:
    """Parse configuration text.

    Raises:
        ConfigurationError: On unknown commands, bad arguments, duplicated
            commands, or missing ``InputFile`` / ``OutputFile`` / ``Unfold``.
    """
    base = Path(base_dir) if base_dir is not None else Path.cwd()
    source = Path(path) if path is not None else None
    values: Dict[str, object] = {}

    for line_number, raw in enumerate(text.splitlines(), start=1):
        tokens = raw.split("#", 1)[0].split()
        if not tokens:
            continue
        command, args = tokens[0], tokens[1:]
        try:
            if command in values:
                raise _LineError(f"Duplicate {command} command")
            if command in ("InputFile", "OutputFile", "BlocksFile"):
                values[command] = _single_path(args, command, base)
            elif command == "Unfold":
                if not args:
                    raise _LineError("Unfold expects an algorithm name")
                name = args[0]
                if name not in UNFOLDER_REGISTRY or name not in _UNFOLD_ARGUMENTS:
                    known = ", ".join(sorted(UNFOLDER_REGISTRY))
                    raise _LineError(f"Unknown unfolding algorithm '{name}' (expected one of: {known})")
                params = _UNFOLD_ARGUMENTS[name](args[1:])
                values[command] = UNFOLDER_REGISTRY[name](**params)
            elif command == "MaxWorkers":
                if len(args) != 1 or not args[0].isdigit() or int(args[0]) < 1:
                    raise _LineError("MaxWorkers expects one positive integer")
                values[command] = int(args[0])
            else:
                raise _LineError(f"Unknown command '{command}'")
        except _LineError as exc:
            raise ConfigurationError(str(exc), path=source, line_number=line_number) from None
        except ConfigurationError as exc:
            raise ConfigurationError(str(exc), path=source, line_number=line_number) from exc

    missing = [c for c in ("InputFile", "OutputFile", "Unfold") if c not in values]
    if missing:
        raise ConfigurationError(f"Missing required command(s): {', '.join(missing)}", path=source)

    return UnfoldingJobConfig(
        input_file=values["InputFile"],  # type: ignore[arg-type]
        output_file=values["OutputFile"],  # type: ignore[arg-type]
        algorithm=values["Unfold"],  # type: ignore[arg-type]
        blocks_file=values.get("BlocksFile"),  # type: ignore[arg-type]
        max_workers=values.get("MaxWorkers"),  # type: ignore[arg-type]
    )


def read_config(path: PathLike) -> UnfoldingJobConfig:
    path = Path(path)
    if not path.exists():
        raise ConfigurationError("Configuration file not found", path=path)
    return parse_config(path.read_text(encoding="utf-8"), base_dir=path.parent, path=path)
