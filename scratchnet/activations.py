"""
Activation Functions
====================

Non-linear activation functions applied after each layer's affine transform.

Mathematical Background:
- Without non-linearities, stacking layers = single linear transformation
- Activations introduce non-linearity, enabling universal function approximation

The set of activations is closed: each one is a member of ActivationKind and
both its function and its derivative are explicit branches below. Adding an
activation means adding an enum member (with a new checkpoint code) and one
branch in each of apply() and derivative().

The enum values double as the checkpoint activation codes.
"""

from enum import IntEnum

import numpy as np

from .tensor import DTYPE


class ActivationKind(IntEnum):
    """Closed set of supported activations. Values are checkpoint codes."""

    IDENTITY = 0
    SIGMOID = 1
    RELU = 2
    SOFTMAX = 3

    def apply(self, z):
        return apply(self, z)

    def derivative(self, z, output):
        return derivative(self, z, output)

    def __str__(self):
        return self.name.lower()


def _sigmoid(z):
    """
    Sigmoid: f(x) = 1 / (1 + exp(-x))

    Numerical Stability:
        exp(-x) overflows for large negative x. For x < 0 we use the
        equivalent form exp(x) / (1 + exp(x)), so exp() only ever sees
        non-positive arguments.
    """
    out = np.empty_like(z, dtype=DTYPE)
    pos = z >= 0
    out[pos] = 1.0 / (1.0 + np.exp(-z[pos]))
    ez = np.exp(z[~pos])
    out[~pos] = ez / (1.0 + ez)
    return out


def _softmax(z):
    """
    Softmax: f(x_i) = exp(x_i) / sum(exp(x_j))

    We subtract max(x) before exp to prevent overflow.
    This doesn't change the result: exp(x-c)/sum(exp(x-c)) = exp(x)/sum(exp(x))
    """
    shifted = z - np.max(z)
    e = np.exp(shifted)
    return e / np.sum(e)


def apply(kind, z):
    """
    Compute the activation output for a pre-activation vector.

    Args:
        kind: ActivationKind
        z: Pre-activation vector

    Returns:
        Output vector, same shape as z
    """
    if kind is ActivationKind.IDENTITY:
        return z.astype(DTYPE, copy=True)
    if kind is ActivationKind.SIGMOID:
        return _sigmoid(z)
    if kind is ActivationKind.RELU:
        return np.maximum(z, 0.0)
    if kind is ActivationKind.SOFTMAX:
        return _softmax(z)
    raise ValueError(f"Unknown activation {kind!r}")


def derivative(kind, z, output):
    """
    Element-wise factor d(output)/dz used in backpropagation.

    Args:
        kind: ActivationKind
        z: Pre-activation vector cached by the forward pass
        output: Activation output cached by the forward pass

    Derivatives:
        identity: 1
        sigmoid:  f(x) * (1 - f(x))    (reuses the cached output)
        relu:     1 if x > 0 else 0
        softmax:  1 - the Jacobian is folded into the cross-entropy
                  gradient (output - target), which is already dL/dz
    """
    if kind is ActivationKind.IDENTITY:
        return np.ones_like(z, dtype=DTYPE)
    if kind is ActivationKind.SIGMOID:
        return output * (1.0 - output)
    if kind is ActivationKind.RELU:
        return (z > 0).astype(DTYPE)
    if kind is ActivationKind.SOFTMAX:
        return np.ones_like(z, dtype=DTYPE)
    raise ValueError(f"Unknown activation {kind!r}")


# ====================================
# Activation Registry
# ====================================

ACTIVATIONS = {
    'identity': ActivationKind.IDENTITY,
    'linear': ActivationKind.IDENTITY,
    'none': ActivationKind.IDENTITY,
    'sigmoid': ActivationKind.SIGMOID,
    'relu': ActivationKind.RELU,
    'softmax': ActivationKind.SOFTMAX,
}


def get_activation(name):
    """
    Get activation kind by name, code or kind.

    Args:
        name: String name ('relu', 'sigmoid', ...), integer checkpoint code,
            ActivationKind, or None (identity)

    Returns:
        ActivationKind

    Example:
        >>> get_activation('relu')
        <ActivationKind.RELU: 2>
    """
    if isinstance(name, ActivationKind):
        return name

    if name is None:
        return ActivationKind.IDENTITY

    if isinstance(name, (int, np.integer)):
        try:
            return ActivationKind(int(name))
        except ValueError:
            raise ValueError(f"Unknown activation code {name}") from None

    name_lower = name.lower().replace('-', '_')
    if name_lower not in ACTIVATIONS:
        available = ', '.join(ACTIVATIONS.keys())
        raise ValueError(f"Unknown activation '{name}'. Available: {available}")

    return ACTIVATIONS[name_lower]
