"""
Error Types
===========

Every failure the training engine reports derives from NetworkError, so
callers can catch the whole family at once. Each error also derives from
the closest builtin exception, which keeps `except ValueError` style code
working.

- ShapeError: a vector/matrix has the wrong dimensions
- StateError: a method was called out of its required order
- DivergenceError: a loss or gradient became NaN or infinite
- FormatError: a checkpoint file is malformed or truncated
- IoError: a checkpoint could not be read or written
"""


class NetworkError(Exception):
    """Base class for all scratchnet errors."""


class ShapeError(NetworkError, ValueError):
    """
    Dimension mismatch.

    Args:
        what: Short description of the offending value
        expected: Expected shape (int or tuple)
        actual: Shape that was received
    """

    def __init__(self, what, expected, actual):
        self.what = what
        self.expected = expected
        self.actual = actual
        super().__init__(f"{what}: expected shape {expected}, got {actual}")


class StateError(NetworkError, RuntimeError):
    """A component method was invoked out of sequence."""


class DivergenceError(NetworkError, ArithmeticError):
    """
    A loss or gradient value is not finite.

    The caller may lower the learning rate and retry; parameters are left
    at their last applied state.
    """

    def __init__(self, message, value=None):
        self.value = value
        super().__init__(message)


class FormatError(NetworkError, ValueError):
    """Checkpoint header, version or structure is invalid."""


class IoError(NetworkError, OSError):
    """Checkpoint storage failure."""
