"""
Dense matrix helpers for the EKF-SLAM engine.

Thin, shape-checked wrappers around numpy used to build Jacobians, propagate
covariances and compute Kalman gains. Every function returns a new float64
array (no aliasing with its inputs) except ``symmetrize``, which works in
place on the covariance matrix it is given.

Shape errors raise ``DimensionMismatch``: they indicate a defect in the
Jacobian or covariance bookkeeping, not a recoverable runtime condition.

Examples
--------
>>> import numpy as np
>>> from slam_fusion.utils.linalg import invert2x2, multiply
>>> S = np.array([[2.0, 0.0], [0.0, 4.0]])
>>> invert2x2(S)
array([[0.5 , 0.  ],
       [0.  , 0.25]])
>>> invert2x2([[1.0, 1.0], [1.0, 1.0]])  # singular: identity fallback
array([[1., 0.],
       [0., 1.]])
"""

import numpy as np

from slam_fusion.errors import DimensionMismatch

# Below this |det| a 2x2 innovation covariance is treated as singular
DEGENERATE_DETERMINANT = 1e-10


def as_matrix(A, name="A"):
    """
    Convert an array-like to a 2-D float64 array.

    Parameters
    ----------
    A : array_like
        Nested sequence or ndarray with rows outer, columns inner.
    name : str, optional
        Operand name used in error messages.

    Returns
    -------
    ndarray of shape (rows, cols)

    Raises
    ------
    DimensionMismatch
        If ``A`` is not two-dimensional.
    """
    matrix = np.array(A, dtype=float)
    if matrix.ndim != 2:
        raise DimensionMismatch(
            f"{name} must be a 2-D matrix, got an array with {matrix.ndim} dimension(s)"
        )
    return matrix


def multiply(A, B):
    """
    Matrix product ``A · B``.

    Requires ``cols(A) == rows(B)`` and returns a ``rows(A) × cols(B)`` matrix.
    """
    A = as_matrix(A, "A")
    B = as_matrix(B, "B")
    if A.shape[1] != B.shape[0]:
        raise DimensionMismatch(
            f"Cannot multiply {A.shape[0]}x{A.shape[1]} by {B.shape[0]}x{B.shape[1]}"
        )
    return A @ B


def _check_same_shape(A, B, operation):
    if A.shape != B.shape:
        raise DimensionMismatch(
            f"Cannot {operation} {A.shape[0]}x{A.shape[1]} and {B.shape[0]}x{B.shape[1]}"
        )


def add(A, B):
    """Elementwise sum of two matrices with identical dimensions."""
    A = as_matrix(A, "A")
    B = as_matrix(B, "B")
    _check_same_shape(A, B, "add")
    return A + B


def subtract(A, B):
    """Elementwise difference ``A - B`` of two matrices with identical dimensions."""
    A = as_matrix(A, "A")
    B = as_matrix(B, "B")
    _check_same_shape(A, B, "subtract")
    return A - B


def transpose(A):
    """Return the ``cols(A) × rows(A)`` transpose as a new array."""
    return as_matrix(A).T.copy()


def identity(n):
    """Return the ``n × n`` identity matrix."""
    if n < 0:
        raise DimensionMismatch(f"Identity size must be non-negative, got {n}")
    return np.identity(n)


def determinant2x2(A):
    """Closed-form determinant ``ad - bc`` of a 2x2 matrix."""
    A = as_matrix(A)
    if A.shape != (2, 2):
        raise DimensionMismatch(f"Expected a 2x2 matrix, got {A.shape[0]}x{A.shape[1]}")
    return A[0, 0] * A[1, 1] - A[0, 1] * A[1, 0]


def is_degenerate2x2(A, eps=DEGENERATE_DETERMINANT):
    """True when the 2x2 matrix is numerically singular (|det| < eps) or not finite."""
    det = determinant2x2(A)
    return not np.isfinite(det) or abs(det) < eps


def invert2x2(A, eps=DEGENERATE_DETERMINANT):
    """
    Closed-form inverse of a 2x2 matrix.

    Parameters
    ----------
    A : array_like, shape (2, 2)
        Matrix to invert, typically the innovation covariance S.
    eps : float, optional
        Determinant magnitude below which ``A`` is considered singular.

    Returns
    -------
    ndarray of shape (2, 2)
        ``A⁻¹``, or the 2x2 identity when ``A`` is singular. This function
        never raises for a 2x2 input and never returns NaN.

    Notes
    -----
        A⁻¹ = 1/(ad - bc) · [[ d, -b],
                              [-c,  a]]
    """
    A = as_matrix(A)
    if is_degenerate2x2(A, eps):
        return np.identity(2)
    a, b = A[0]
    c, d = A[1]
    inv_det = 1.0 / (a * d - b * c)
    return np.array([[d * inv_det, -b * inv_det], [-c * inv_det, a * inv_det]])


def submatrix(A, row_range, col_range):
    """
    Extract a block of ``A``.

    Parameters
    ----------
    A : array_like
        Source matrix.
    row_range, col_range : tuple of int
        Inclusive ``(start, end)`` index ranges.

    Returns
    -------
    ndarray
        Copy of ``A[row_start:row_end+1, col_start:col_end+1]``.
    """
    A = as_matrix(A)
    (r0, r1), (c0, c1) = row_range, col_range
    if not (0 <= r0 <= r1 < A.shape[0] and 0 <= c0 <= c1 < A.shape[1]):
        raise DimensionMismatch(
            f"Block rows {r0}..{r1}, cols {c0}..{c1} outside {A.shape[0]}x{A.shape[1]} matrix"
        )
    return A[r0 : r1 + 1, c0 : c1 + 1].copy()


def symmetrize(A):
    """
    Replace each off-diagonal pair of a square matrix with its average, in place.

    Counters the asymmetry that accumulates in ``(I - K·H)·P`` through
    floating-point round-off.

    Parameters
    ----------
    A : ndarray of shape (n, n)
        Float matrix, modified in place.

    Returns
    -------
    ndarray
        The same array object, now exactly symmetric.
    """
    if not isinstance(A, np.ndarray) or A.ndim != 2 or A.shape[0] != A.shape[1]:
        raise DimensionMismatch("symmetrize requires a square 2-D ndarray")
    A[...] = 0.5 * (A + A.T)
    return A
