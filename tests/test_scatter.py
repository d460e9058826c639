from __future__ import annotations

import jax.numpy as jnp
import pytest

from infolm.core.errors import DimensionError
from infolm.core.types import Key
from infolm.linear.measurement import MeasurementFactor
from infolm.linear.scatter import Scatter, SlotEntry


def test_scatter_slots_offsets_and_constant_slot():
    """
    Two variables, dims 2 and 1, plus the implicit constant slot:
        total dimension = 2 + 1 + 1 = 4
    """
    s = Scatter([Key(3), Key(1)], {Key(3): 2, Key(1): 1})

    assert s[Key(3)] == SlotEntry(slot=0, dimension=2)
    assert s[Key(1)] == SlotEntry(slot=1, dimension=1)
    assert len(s) == 2
    assert s.constant_slot == 2
    assert s.total_dim == 4
    assert s.block_dims() == [2, 1, 1]
    assert [s.offset(i) for i in range(3)] == [0, 2, 3]

    assert s.block_range(Key(3), Key(1)) == (0, 2, 2, 1)
    assert s.block_range(Key(1), None) == (2, 3, 1, 1)
    assert s.block_range(None, None) == (3, 3, 1, 1)


def test_from_factors_puts_frontals_first():
    f1 = MeasurementFactor([Key(0), Key(2)], [jnp.eye(2), jnp.eye(2)], jnp.zeros(2))
    f2 = MeasurementFactor([Key(2), Key(5)], [jnp.ones((1, 2)), jnp.ones((1, 1))], jnp.zeros(1))

    # Separators ranked by key when no ordering is given
    s = Scatter.from_factors([f1, f2], [Key(2)])
    assert s.keys_in_order == (2, 0, 5)

    # ... and by their position in the ordering otherwise
    s = Scatter.from_factors([f1, f2], [Key(2)], ordering=[Key(2), Key(5), Key(0)])
    assert s.keys_in_order == (2, 5, 0)
    assert s.dims() == [2, 1, 2]
    assert s.total_dim == 6


def test_from_factors_rejects_inconsistent_dimensions():
    f1 = MeasurementFactor([Key(0)], [jnp.eye(2)], jnp.zeros(2))
    f2 = MeasurementFactor([Key(0)], [jnp.eye(3)], jnp.zeros(3))
    with pytest.raises(DimensionError):
        Scatter.from_factors([f1, f2], [Key(0)])


def test_from_factors_rejects_untouched_frontal():
    f1 = MeasurementFactor([Key(0)], [jnp.eye(2)], jnp.zeros(2))
    with pytest.raises(DimensionError):
        Scatter.from_factors([f1], [Key(7)])


def test_duplicate_keys_rejected():
    with pytest.raises(DimensionError):
        Scatter([Key(1), Key(1)], {Key(1): 2})
