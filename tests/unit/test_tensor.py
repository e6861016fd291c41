import numpy as np
import pytest

from stacknet.core.errors import ShapeMismatchError, TensorReleasedError
from stacknet.core.tensor import Tensor, TensorArena


def test_reshape_is_a_zero_copy_view():
    buffer = np.arange(6, dtype=np.float32)
    view = Tensor.reshape(buffer, 2, 3)
    assert view.shape == (2, 3)
    assert not view.is_owned
    buffer[4] = 42.0
    assert view.data[1, 1] == 42.0


def test_reshape_rejects_small_or_wrong_buffers():
    with pytest.raises(ShapeMismatchError):
        Tensor.reshape(np.zeros(5, dtype=np.float32), 2, 3)
    with pytest.raises(ValueError):
        Tensor.reshape(np.zeros(6, dtype=np.float32), 0, 3)
    with pytest.raises(TypeError):
        Tensor.reshape(np.zeros(6, dtype=np.float64), 2, 3)


def test_reshape_uses_leading_elements_of_larger_buffer():
    buffer = np.arange(10, dtype=np.float32)
    view = Tensor.reshape(buffer, 2, 2)
    np.testing.assert_array_equal(view.to_array(), [0, 1, 2, 3])


def test_allocate_zeroed_and_copies_are_independent():
    tensor = Tensor.allocate(2, 2)
    assert tensor.is_owned
    np.testing.assert_array_equal(tensor.data, np.zeros((2, 2), dtype=np.float32))
    flat = tensor.to_array()
    flat[0] = 5.0
    assert tensor.data[0, 0] == 0.0
    assert tensor.to_array_2d().shape == (2, 2)


def test_double_free_and_use_after_free_are_detected():
    tensor = Tensor.allocate(1, 3)
    tensor.free()
    assert tensor.is_released
    with pytest.raises(TensorReleasedError):
        tensor.free()
    with pytest.raises(TensorReleasedError):
        _ = tensor.data


def test_freeing_borrowed_view_is_noop():
    view = Tensor.reshape(np.ones(4, dtype=np.float32), 2, 2)
    view.free()
    view.free()
    assert not view.is_released
    np.testing.assert_array_equal(view.data, np.ones((2, 2)))


def test_context_manager_releases_owned_tensor():
    with Tensor.allocate(2, 2) as tensor:
        tensor.data[...] = 1.0
    assert tensor.is_released


def test_arena_releases_on_error_path():
    tracked = []
    with pytest.raises(RuntimeError):
        with TensorArena() as arena:
            tracked.append(arena.allocate(2, 2))
            tracked.append(arena.adopt(Tensor.allocate(3, 1)))
            assert len(arena) == 2
            raise RuntimeError("boom")
    assert all(t.is_released for t in tracked)


def test_arena_early_release_and_borrowed_passthrough():
    borrowed = Tensor.reshape(np.zeros(2, dtype=np.float32), 1, 2)
    arena = TensorArena()
    owned = arena.allocate(1, 2)
    assert arena.adopt(borrowed) is borrowed
    assert len(arena) == 1
    arena.release(owned)
    assert owned.is_released
    assert len(arena) == 0
    arena.close()
    arena.close()
    with pytest.raises(TensorReleasedError):
        arena.allocate(1, 1)
