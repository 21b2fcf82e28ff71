"""Exception and warning types shared across xsecforge."""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Union


class XsecForgeError(Exception):
    """Base class for xsecforge errors."""
    pass


class ConfigurationError(XsecForgeError, ValueError):
    """Malformed configuration, blocks file, or inconsistent input dimensions.

    Raised before any numeric work starts. ``path`` and ``line_number`` point
    at the offending input when it came from a file.
    """

    def __init__(
        self,
        message: str,
        *,
        path: Optional[Union[str, Path]] = None,
        line_number: Optional[int] = None,
    ) -> None:
        self.path = Path(path) if path is not None else None
        self.line_number = line_number
        location = ""
        if self.path is not None:
            location = f"{self.path}"
            if line_number is not None:
                location += f":{line_number}"
            location += ": "
        elif line_number is not None:
            location = f"line {line_number}: "
        super().__init__(f"{location}{message}")


class NumericalError(XsecForgeError, ArithmeticError):
    """Non-finite values or a decomposition without a usable fallback.

    Attributes:
        algorithm: Name of the unfolding algorithm (or component) that failed.
        step: Algorithm step where the failure was detected.
        block: Block index for blockwise unfolding, if known.
    """

    def __init__(
        self,
        message: str,
        *,
        algorithm: Optional[str] = None,
        step: Optional[str] = None,
        block: Optional[int] = None,
    ) -> None:
        self.algorithm = algorithm
        self.step = step
        self.block = block
        self.reason = message
        super().__init__(self._describe())

    def _describe(self) -> str:
        context = []
        if self.block is not None:
            context.append(f"block {self.block}")
        if self.algorithm:
            context.append(self.algorithm)
        if self.step:
            context.append(f"step '{self.step}'")
        prefix = f"[{', '.join(context)}] " if context else ""
        return f"{prefix}{self.reason}"

    def in_block(self, block: int) -> "NumericalError":
        """Return a copy of this error tagged with a block index."""
        return NumericalError(self.reason, algorithm=self.algorithm, step=self.step, block=block)


class ConvergenceWarning(UserWarning):
    """Iterative unfolding stopped at its cap before meeting the figure of merit."""
    pass
