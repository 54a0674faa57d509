"""
Tensor Arithmetic
=================

Dense vector/matrix primitives used by every other module. They are thin
wrappers around NumPy that check shapes before doing any arithmetic, so a
mismatch surfaces as a ShapeError naming both dimensions instead of a
broadcasting surprise.

Conventions:
- Vectors are 1-D float64 arrays
- Matrices are 2-D float64 arrays, row-major, shape (rows, cols)
- A weight matrix has shape (out_dim, in_dim): row i feeds output unit i
"""

import numpy as np

from .errors import ShapeError

DTYPE = np.float64


def as_vector(values, length=None, what="vector"):
    """
    Coerce values to a 1-D float64 array.

    Args:
        values: Sequence or array of numbers
        length: Required length, or None to accept any
        what: Name used in error messages

    Returns:
        1-D ndarray of dtype DTYPE (no copy if already conforming)
    """
    vec = np.asarray(values, dtype=DTYPE)
    if vec.ndim == 0:
        vec = vec.reshape(1)
    if vec.ndim != 1:
        raise ShapeError(what, "1-D", vec.shape)
    if length is not None and vec.shape[0] != length:
        raise ShapeError(what, (length,), vec.shape)
    return vec


def _check_vector(v, what):
    if v.ndim != 1:
        raise ShapeError(what, "1-D", v.shape)


def _check_matrix(m, what):
    if m.ndim != 2:
        raise ShapeError(what, "2-D", m.shape)


def dot(a, b):
    """Inner product of two equal-length vectors."""
    _check_vector(a, "dot lhs")
    _check_vector(b, "dot rhs")
    if a.shape != b.shape:
        raise ShapeError("dot rhs", a.shape, b.shape)
    return float(a @ b)


def mat_vec(W, x):
    """
    Matrix-vector product.

    Args:
        W: Matrix, shape (rows, cols)
        x: Vector, shape (cols,)

    Returns:
        Vector, shape (rows,)
    """
    _check_matrix(W, "mat_vec matrix")
    _check_vector(x, "mat_vec vector")
    if W.shape[1] != x.shape[0]:
        raise ShapeError("mat_vec vector", (W.shape[1],), x.shape)
    return W @ x


def outer(a, b):
    """Outer product: result[i, j] = a[i] * b[j], shape (len(a), len(b))."""
    _check_vector(a, "outer lhs")
    _check_vector(b, "outer rhs")
    return np.outer(a, b)


def transpose(W):
    """Transposed view of a matrix."""
    _check_matrix(W, "transpose")
    return W.T


def add_in_place(target, other):
    """target += other, element-wise. Returns target."""
    if target.shape != other.shape:
        raise ShapeError("add_in_place operand", target.shape, other.shape)
    target += other
    return target


def scale_in_place(target, factor):
    """target *= factor. Returns target."""
    target *= factor
    return target


def elementwise_map(v, f):
    """
    Apply f to every element of v.

    f may be a NumPy ufunc (applied vectorised) or any scalar function,
    which is applied element by element. The result has the same shape.
    """
    if isinstance(f, np.ufunc):
        return f(v).astype(DTYPE, copy=False)
    out = np.empty_like(v, dtype=DTYPE)
    flat_in = v.reshape(-1)
    flat_out = out.reshape(-1)
    for i in range(flat_in.shape[0]):
        flat_out[i] = f(flat_in[i])
    return out
