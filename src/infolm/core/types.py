# Copyright (c) 2025.
# This file is part of InfoLM, released under the MIT License.
"""
Core typed data structures for InfoLM.

This module defines the lightweight container classes shared by the
nonlinear factor graph and the linear elimination machinery. These types
are intentionally minimal: they store only structural information and
initial values, while all numerical work happens in `linear/` and
`optimization/`.

Classes
-------
Key
    Opaque integer identifier naming one unknown block. Keys double as
    dense indices into the elimination ordering.

Variable
    A node in the nonlinear factor graph:
    - id:    Unique `Key`
    - type:  String tag selecting a manifold (see `slam.manifold`)
    - value: Initial numeric state, a 1-D JAX array

Factor
    A nonlinear constraint between one or more variables:
    - id:      Unique identifier
    - type:    String key selecting a registered residual function
    - var_ids: Ordered tuple of variable keys used by the residual
    - params:  Dictionary of measurement parameters
    - noise:   Optional noise model; unit noise when omitted

Notes
-----
Importing this module switches JAX to 64-bit floats. The elimination and
damping code compares quantities against thresholds as small as 1e-15,
which single precision cannot represent.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import NewType, Dict, Any, Optional

import jax

jax.config.update("jax_enable_x64", True)

Key = NewType("Key", int)
FactorId = NewType("FactorId", int)


@dataclass
class Variable:
    """Generic optimization variable node in the factor graph."""
    id: Key
    type: str          # e.g. "point1d", "point2d", "pose2", "heading"
    value: Any         # 1-D JAX array


@dataclass
class Factor:
    """Nonlinear factor connecting variables."""
    id: FactorId
    type: str          # e.g. "prior", "between", "range", "bearing"
    var_ids: tuple[Key, ...]
    params: Dict[str, Any]
    noise: Optional[Any] = None  # linear.noise.NoiseModel
