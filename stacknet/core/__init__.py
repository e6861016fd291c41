"""Numerical primitives: tensors, activations, costs, layers and networks."""

from . import activations, binary, costs, errors, layers, network, tensor, types

__all__ = ["activations", "binary", "costs", "errors", "layers", "network", "tensor", "types"]
