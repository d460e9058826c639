# Copyright (c) 2025.
# This file is part of InfoLM, released under the MIT License.
"""
Nonlinear estimate container.

`Values` holds the current value of every variable together with the
manifold it lives on. It is treated as immutable by the optimizer:
`retract` returns a new container, so a rejected trial step never
disturbs the last accepted estimate.
"""

from __future__ import annotations

from typing import Dict, Iterator, Mapping, Optional

import jax.numpy as jnp

from ..linear.vector_values import VectorValues
from ..slam.manifold import local, retract
from .types import Key


class Values:
    """Mapping Key -> value, with a manifold tag per key."""

    def __init__(
        self,
        values: Optional[Mapping[Key, jnp.ndarray]] = None,
        manifolds: Optional[Mapping[Key, str]] = None,
    ) -> None:
        self._values: Dict[Key, jnp.ndarray] = {}
        self._manifolds: Dict[Key, str] = {}
        manifolds = manifolds or {}
        for key, value in (values or {}).items():
            self.insert(key, value, manifolds.get(key, "euclidean"))

    def insert(self, key: Key, value: jnp.ndarray, manifold: str = "euclidean") -> None:
        if key in self._values:
            raise KeyError(f"Variable {key} already present")
        self._values[key] = jnp.asarray(value, dtype=jnp.float64).reshape(-1)
        self._manifolds[key] = manifold

    def __getitem__(self, key: Key) -> jnp.ndarray:
        return self._values[key]

    def __contains__(self, key: object) -> bool:
        return key in self._values

    def __iter__(self) -> Iterator[Key]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def keys(self):
        return self._values.keys()

    def items(self):
        return self._values.items()

    def manifold(self, key: Key) -> str:
        return self._manifolds[key]

    def dim(self, key: Key) -> int:
        return int(self._values[key].shape[0])

    def dims(self) -> Dict[Key, int]:
        return {k: int(v.shape[0]) for k, v in self._values.items()}

    def copy(self) -> "Values":
        return Values(self._values, self._manifolds)

    def retract(self, delta: Mapping[Key, jnp.ndarray]) -> "Values":
        """New estimate ``self ⊕ delta``; keys absent from ``delta`` are unchanged."""
        out = Values()
        for key, value in self._values.items():
            m = self._manifolds[key]
            new = retract(m, value, jnp.asarray(delta[key])) if key in delta else value
            out.insert(key, new, m)
        return out

    def local_coordinates(self, other: "Values") -> VectorValues:
        return VectorValues({
            key: local(self._manifolds[key], value, other[key]) for key, value in self._values.items()
        })

    def __repr__(self) -> str:
        body = ", ".join(f"{k}: {v}" for k, v in self._values.items())
        return f"Values({{{body}}})"
