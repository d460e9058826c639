# Copyright (c) 2025.
# This file is part of InfoLM, released under the MIT License.
"""
World-level wrapper around the core factor graph.

This module defines the *world model* abstraction: a thin, typed layer on
top of `core.factor_graph.FactorGraph` that knows about planar robot
poses and landmarks but still remains generic enough for any estimation
problem the factor graph can express.

Key responsibilities
--------------------
- Manage the underlying `FactorGraph` instance.
- Provide ergonomic helpers to:
    • Add variables with automatically assigned `Key`s.
    • Add typed factors with optional noise models.
    • Run Levenberg–Marquardt and write the result back into the graph.
- Maintain simple bookkeeping (semantic names -> `Key`) so that
  experiments do not need to manipulate keys directly.

Experiments typically:

    1. Construct a `WorldModel`.
    2. Add variables & factors according to a scenario.
    3. Call `optimize()`.
    4. Read back the estimate through `get_variable_value`.
"""

from dataclasses import dataclass
from typing import Dict, Optional

import jax.numpy as jnp

from ..core.factor_graph import FactorGraph, ResidualFn
from ..core.types import Variable, Factor, Key, FactorId
from ..linear.noise import NoiseModel
from ..optimization.config import LMConfig
from ..optimization.levenberg_marquardt import LevenbergMarquardtOptimizer
from ..utils.diagnostics import Diagnostics


@dataclass
class WorldModel:
    """High-level world model built on top of :class:`FactorGraph`.

    The name maps are purely for convenience; they do not affect the
    optimization.
    """

    fg: FactorGraph
    pose_ids: Dict[str, Key]
    landmark_ids: Dict[str, Key]

    def __init__(self) -> None:
        self.fg = FactorGraph()
        self.pose_ids = {}
        self.landmark_ids = {}

    def add_variable(self, var_type: str, value: jnp.ndarray) -> Key:
        """
        Allocate a new variable key, create the Variable, add it to the graph,
        and return its Key.
        """
        key = Key(len(self.fg.variables))
        self.fg.add_variable(Variable(id=key, type=var_type, value=jnp.asarray(value, dtype=jnp.float64)))
        return key

    def add_pose2(self, value: jnp.ndarray, name: Optional[str] = None) -> Key:
        """Add a planar pose ``[x, y, θ]``.

        :param value: Initial pose.
        :param name: Optional semantic name registered in :attr:`pose_ids`.
        :returns: The :class:`Key` of the new pose.
        """
        key = self.add_variable("pose2", value)
        if name is not None:
            self.pose_ids[name] = key
        return key

    def add_point2(self, value: jnp.ndarray, name: Optional[str] = None) -> Key:
        """Add a planar landmark ``[x, y]``.

        :param value: Initial landmark position.
        :param name: Optional semantic name registered in :attr:`landmark_ids`.
        :returns: The :class:`Key` of the new landmark.
        """
        key = self.add_variable("landmark2d", value)
        if name is not None:
            self.landmark_ids[name] = key
        return key

    def register_residual(self, factor_type: str, fn: ResidualFn) -> None:
        self.fg.register_residual(factor_type, fn)

    def add_factor(
        self,
        f_type: str,
        var_ids,
        params: Dict,
        noise: Optional[NoiseModel] = None,
    ) -> FactorId:
        """
        Allocate a new factor id, create the Factor, add it to the graph,
        and return its FactorId.
        """
        fid = FactorId(len(self.fg.factors))
        keys = tuple(Key(int(vid)) for vid in var_ids)
        self.fg.add_factor(Factor(id=fid, type=f_type, var_ids=keys, params=params, noise=noise))
        return fid

    def optimize(
        self,
        config: Optional[LMConfig] = None,
        diagnostics: Optional[Diagnostics] = None,
    ) -> LevenbergMarquardtOptimizer:
        """
        Optimize the current factor graph in-place with Levenberg–Marquardt.

        Returns the optimizer so callers can inspect the final error,
        lambda and iteration counts.
        """
        optimizer = LevenbergMarquardtOptimizer(self.fg, config=config, diagnostics=diagnostics)
        values = optimizer.optimize()

        # Write back
        for key, val in values.items():
            self.fg.variables[key].value = val
        return optimizer

    def get_variable_value(self, key: Key) -> jnp.ndarray:
        return self.fg.variables[key].value

    def snapshot_state(self) -> Dict[int, jnp.ndarray]:
        """Capture a shallow snapshot of the current world state.

        :returns: A dictionary mapping ``int(Key)`` to JAX arrays.
        """
        return {int(key): jnp.array(var.value) for key, var in self.fg.variables.items()}
