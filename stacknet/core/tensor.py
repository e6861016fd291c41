"""Shaped views over float32 buffers used to move activations between layers.

A :class:`Tensor` is either *borrowed* (a zero-copy view over memory owned by
the caller) or *owned* (allocated by the engine and released exactly once).
Owned tensors are context managers, and :class:`TensorArena` scopes a whole
group of them so every exit path of a computation releases its memory.
"""

from __future__ import annotations

from typing import List

import numpy as np

from .errors import ShapeMismatchError, TensorReleasedError
from .types import DTYPE, Array


class Tensor:
    """A ``rows x columns`` row-major view, one row per sample."""

    __slots__ = ("_data", "rows", "columns", "_owned", "_released")

    def __init__(self, data: Array, owned: bool) -> None:
        self._data = data
        self.rows, self.columns = (int(d) for d in data.shape)
        self._owned = owned
        self._released = False

    # ------------------------------------------------------------------
    # Construction

    @classmethod
    def reshape(cls, buffer: Array, rows: int, columns: int) -> "Tensor":
        """Bind a borrowed view over ``buffer`` without copying it.

        The caller keeps ownership of ``buffer`` and must keep it alive for as
        long as the returned view is used.
        """

        if rows <= 0 or columns <= 0:
            raise ValueError(f"Invalid tensor extents ({rows}, {columns})")
        if not isinstance(buffer, np.ndarray) or buffer.dtype != DTYPE:
            raise TypeError("Tensor.reshape requires a float32 numpy buffer")
        if not buffer.flags.c_contiguous:
            raise TypeError("Tensor.reshape requires a C-contiguous buffer")
        if rows * columns > buffer.size:
            raise ShapeMismatchError(
                f"Cannot view {buffer.size} elements as a {rows}x{columns} tensor"
            )
        view = buffer.reshape(-1)[: rows * columns].reshape(rows, columns)
        return cls(view, owned=False)

    @classmethod
    def allocate(cls, rows: int, columns: int, zeroed: bool = True) -> "Tensor":
        """Return an engine-owned tensor; release it with :meth:`free`."""

        if rows <= 0 or columns <= 0:
            raise ValueError(f"Invalid tensor extents ({rows}, {columns})")
        factory = np.zeros if zeroed else np.empty
        return cls(factory((rows, columns), dtype=DTYPE), owned=True)

    @classmethod
    def like(cls, other: "Tensor", zeroed: bool = True) -> "Tensor":
        return cls.allocate(other.rows, other.columns, zeroed=zeroed)

    # ------------------------------------------------------------------
    # Access

    @property
    def data(self) -> Array:
        if self._released:
            raise TensorReleasedError("Tensor accessed after being released")
        return self._data

    @property
    def shape(self) -> tuple[int, int]:
        return self.rows, self.columns

    @property
    def size(self) -> int:
        return self.rows * self.columns

    @property
    def is_owned(self) -> bool:
        return self._owned

    @property
    def is_released(self) -> bool:
        return self._released

    def to_array(self) -> Array:
        """Copy the contents into a new flat array."""

        return self.data.reshape(-1).copy()

    def to_array_2d(self) -> Array:
        """Copy the contents into a new ``rows x columns`` array."""

        return self.data.copy()

    # ------------------------------------------------------------------
    # Release

    def free(self) -> None:
        """Release engine-owned memory; borrowed views are left untouched."""

        if not self._owned:
            return
        if self._released:
            raise TensorReleasedError("Tensor released twice")
        self._released = True
        self._data = None  # type: ignore[assignment]

    def __enter__(self) -> "Tensor":
        return self

    def __exit__(self, *exc_info) -> None:
        if self._owned and not self._released:
            self.free()

    def __repr__(self) -> str:
        mode = "owned" if self._owned else "borrowed"
        state = ", released" if self._released else ""
        return f"Tensor({self.rows}x{self.columns}, {mode}{state})"


class TensorArena:
    """Scope that releases every tensor it tracks when closed."""

    def __init__(self) -> None:
        self._live: List[Tensor] = []
        self._closed = False

    def allocate(self, rows: int, columns: int, zeroed: bool = True) -> Tensor:
        return self.adopt(Tensor.allocate(rows, columns, zeroed=zeroed))

    def adopt(self, tensor: Tensor) -> Tensor:
        """Take ownership of ``tensor``; borrowed views are returned as-is."""

        if self._closed:
            raise TensorReleasedError("Cannot adopt tensors into a closed arena")
        if tensor.is_owned:
            self._live.append(tensor)
        return tensor

    def release(self, tensor: Tensor) -> None:
        """Free ``tensor`` before the arena closes."""

        if not tensor.is_owned:
            return
        self._live = [t for t in self._live if t is not tensor]
        tensor.free()

    def close(self) -> None:
        live, self._live = self._live, []
        self._closed = True
        for tensor in live:
            if not tensor.is_released:
                tensor.free()

    def __len__(self) -> int:
        return len(self._live)

    def __enter__(self) -> "TensorArena":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


__all__ = ["Tensor", "TensorArena"]
