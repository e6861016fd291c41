"""Exceptions raised by the StackNet engine."""

from __future__ import annotations


class ShapeMismatchError(ValueError):
    """Two shapes that must agree (layer chain, batch vs network) do not."""


class TensorReleasedError(RuntimeError):
    """An owned tensor was released twice or accessed after release."""


class NumericOverflowError(ArithmeticError):
    """Training diverged and the network parameters are no longer finite."""


__all__ = ["NumericOverflowError", "ShapeMismatchError", "TensorReleasedError"]
