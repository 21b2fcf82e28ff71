"""Dense linear algebra helpers built on numpy and scipy.linalg."""

from __future__ import annotations

import logging
from typing import Optional, Tuple

import numpy as np
from scipy import linalg

from xsecforge.core.exceptions import ConfigurationError, NumericalError

logger = logging.getLogger(__name__)

Vector = np.ndarray
Matrix = np.ndarray

# Relative singular-value cutoff used wherever pseudo-inverse semantics apply.
RCOND = 1e-12


def as_vector(values, name: str = "vector") -> Vector:
    """Copy ``values`` into a 1-D float array, flattening N x 1 column vectors."""
    arr = np.array(values, dtype=float)
    if arr.ndim == 2 and 1 in arr.shape:
        arr = arr.reshape(-1)
    if arr.ndim != 1:
        raise ConfigurationError(f"{name} must be a vector, got shape {arr.shape}")
    return arr


def as_matrix(values, name: str = "matrix") -> Matrix:
    arr = np.array(values, dtype=float)
    if arr.ndim == 1 and arr.size == 1:
        arr = arr.reshape(1, 1)
    if arr.ndim != 2:
        raise ConfigurationError(f"{name} must be a matrix, got shape {arr.shape}")
    return arr


def require_finite(arr: np.ndarray, name: str, *, algorithm: Optional[str] = None, step: Optional[str] = None) -> None:
    if not np.all(np.isfinite(arr)):
        n_bad = int(np.size(arr) - np.count_nonzero(np.isfinite(arr)))
        raise NumericalError(
            f"{name} contains {n_bad} non-finite entries",
            algorithm=algorithm,
            step=step or name,
        )


def symmetrize(mat: Matrix) -> Matrix:
    """Mirror the upper triangle onto the lower one."""
    upper = np.triu(mat)
    return upper + np.triu(mat, k=1).T


def safe_divide(num: np.ndarray, den: np.ndarray, fill: float = 0.0) -> np.ndarray:
    """Elementwise ``num / den`` with ``fill`` wherever ``den == 0``."""
    num = np.asarray(num, dtype=float)
    den = np.asarray(den, dtype=float)
    out = np.full(np.broadcast(num, den).shape, fill, dtype=float)
    np.divide(num, den, out=out, where=den != 0)
    return out


def pseudo_inverse(mat: Matrix, rcond: float = RCOND) -> Matrix:
    """Moore-Penrose pseudo-inverse via SVD."""
    return linalg.pinv(mat, rtol=rcond)


def invert(mat: Matrix, name: str = "matrix") -> Matrix:
    """Invert a square matrix, falling back to the pseudo-inverse when singular."""
    try:
        inv = linalg.inv(mat)
    except (linalg.LinAlgError, ValueError):
        inv = None
    if inv is None or not np.all(np.isfinite(inv)) or np.linalg.cond(mat) > 1.0 / RCOND:
        logger.warning(f"{name} is singular or ill-conditioned; using pseudo-inverse")
        return pseudo_inverse(mat)
    return inv


def inverse_sqrt(cov: Matrix, name: str = "covariance") -> Tuple[Matrix, bool]:
    """Whitening operator Q with ``Q.T @ Q == inv(cov)``.

    Uses the Cholesky factor ``cov = L L^T`` and returns ``Q = L^-1``. When
    ``cov`` is not positive definite, falls back to an eigen-decomposition
    with eigenvalues floored at ``RCOND * max(eigenvalue)``, so zero-variance
    directions get the largest weight instead of dropping out of the fit.

    Returns:
        (Q, exact) where ``exact`` is False when the fallback was used.
    """
    try:
        lower = linalg.cholesky(cov, lower=True)
        q = linalg.solve_triangular(lower, np.eye(cov.shape[0]), lower=True)
        if np.all(np.isfinite(q)):
            return q, True
    except (linalg.LinAlgError, ValueError):
        pass

    evals, evecs = linalg.eigh(symmetrize(cov))
    largest = float(np.max(evals)) if evals.size else 0.0
    floor = RCOND * largest if largest > 0 else 1.0
    n_floored = int(np.count_nonzero(evals < floor))
    logger.warning(f"{name} is not positive definite; flooring {n_floored} eigenvalue(s) at {floor:.3g}")
    scale = 1.0 / np.sqrt(np.maximum(evals, floor))
    return scale[:, None] * evecs.T, False


def difference_matrix(n: int, order: int, epsilon: float = 0.0) -> Matrix:
    """Square discrete-derivative matrix over ``n`` ordered bins plus ``epsilon * I``.

    Order 0 is the identity. Orders 1 and 2 use forward first differences
    and central second differences, with the boundary rows truncated so the
    matrix stays ``n x n``; ``epsilon`` keeps it invertible.
    """
    if order == 0:
        return np.eye(n)
    mat = np.zeros((n, n))
    if order == 1:
        for i in range(n - 1):
            mat[i, i] = -1.0
            mat[i, i + 1] = 1.0
    elif order == 2:
        for i in range(n):
            mat[i, i] = -2.0
            if i > 0:
                mat[i, i - 1] = 1.0
            if i < n - 1:
                mat[i, i + 1] = 1.0
        if n > 1:
            mat[0, 0] = -1.0
            mat[n - 1, n - 1] = -1.0
    else:
        raise ValueError(f"Order must be 0, 1, or 2, got {order}")
    return mat + epsilon * np.eye(n)


def correlation_matrix(cov: Matrix) -> Matrix:
    """Correlation matrix; bins with zero variance get zero rows and columns."""
    sigma = np.sqrt(np.clip(np.diag(cov), 0.0, None))
    return safe_divide(cov, np.outer(sigma, sigma))


def fractional_covariance(cov: Matrix, cv: Vector) -> Matrix:
    """Covariance divided by ``cv_i * cv_j``; zero where the central value is zero."""
    return safe_divide(cov, np.outer(cv, cv))


def chi2(prediction: Vector, data: Vector, cov: Matrix) -> float:
    """Chi-square of ``data - prediction`` under ``cov`` (pseudo-inverse if singular)."""
    diff = np.asarray(data, dtype=float) - np.asarray(prediction, dtype=float)
    inv_cov = invert(np.asarray(cov, dtype=float), name="chi2 covariance")
    return float(diff @ inv_cov @ diff)
