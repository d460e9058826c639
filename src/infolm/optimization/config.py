# Copyright (c) 2025.
# This file is part of InfoLM, released under the MIT License.
"""
Levenberg–Marquardt configuration.

`LMConfig` is a plain dataclass, constructible directly, from a
dictionary or from a YAML file. Dictionary and YAML keys may use either
the Python field names (``lambda_initial``) or the camelCase names used
by other LM implementations (``lambdaInitial``); unknown keys are
ignored.

Example YAML
------------
    optimizer:
      lambdaInitial: 1.0e-3
      lambdaUpperBound: 1.0e+6
      diagonalDamping: true
      verbosity: TRYLAMBDA
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from enum import IntEnum
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml


class LMVerbosity(IntEnum):
    SILENT = 0
    TERMINATION = 1
    LAMBDA = 2
    TRYLAMBDA = 3
    TRYCONFIG = 4
    TRYDELTA = 5
    DAMPED = 6

    @classmethod
    def parse(cls, value: Union[str, int, "LMVerbosity"]) -> "LMVerbosity":
        """Accept a member, its integer value or its name (any case).
        Unrecognized names fall back to SILENT."""
        if isinstance(value, cls):
            return value
        if isinstance(value, int):
            return cls(value)
        return cls.__members__.get(str(value).upper(), cls.SILENT)


ORDERING_TYPES = ("min_degree", "natural")

_CAMEL_CASE_ALIASES: Dict[str, str] = {
    "lambdaInitial": "lambda_initial",
    "lambdaFactor": "lambda_factor",
    "lambdaUpperBound": "lambda_upper_bound",
    "lambdaLowerBound": "lambda_lower_bound",
    "useFixedLambdaFactor": "use_fixed_lambda_factor",
    "diagonalDamping": "diagonal_damping",
    "minModelFidelity": "min_model_fidelity",
    "relativeErrorTol": "relative_error_tol",
    "absoluteErrorTol": "absolute_error_tol",
    "errorTol": "error_tol",
    "maxIterations": "max_iterations",
    "minDiagonal": "min_diagonal",
    "maxDiagonal": "max_diagonal",
    "verbosityLM": "verbosity",
    "logFile": "log_file",
    "orderingType": "ordering_type",
}


@dataclass
class LMConfig:
    lambda_initial: float = 1e-5
    lambda_factor: float = 10.0
    lambda_upper_bound: float = 1e5
    lambda_lower_bound: float = 0.0
    use_fixed_lambda_factor: bool = False  # disable the growing-factor schedule
    diagonal_damping: bool = False         # scale damping by diag(Hessian)
    min_model_fidelity: float = 1e-3       # acceptance threshold
    relative_error_tol: float = 1e-5       # also the inner early-stop threshold
    absolute_error_tol: float = 1e-5
    error_tol: float = 0.0
    max_iterations: int = 100
    min_diagonal: float = 1e-6             # clamp for diagonal damping
    max_diagonal: float = 1e32
    verbosity: LMVerbosity = LMVerbosity.SILENT
    log_file: Optional[str] = None         # CSV of inner iterations
    ordering_type: str = "min_degree"      # or "natural"; used when no ordering is given

    def __post_init__(self) -> None:
        self.verbosity = LMVerbosity.parse(self.verbosity)
        if self.lambda_initial <= 0.0:
            raise ValueError(f"lambda_initial must be positive, got {self.lambda_initial}")
        if self.lambda_factor <= 1.0:
            raise ValueError(f"lambda_factor must exceed 1, got {self.lambda_factor}")
        if self.lambda_lower_bound < 0.0 or self.lambda_lower_bound >= self.lambda_upper_bound:
            raise ValueError(
                f"Invalid lambda bounds [{self.lambda_lower_bound}, {self.lambda_upper_bound}]"
            )
        if not 0.0 < self.min_diagonal <= self.max_diagonal:
            raise ValueError(f"Invalid diagonal clamp [{self.min_diagonal}, {self.max_diagonal}]")
        if self.max_iterations < 0:
            raise ValueError("max_iterations must be non-negative")
        self.ordering_type = str(self.ordering_type).lower()
        if self.ordering_type not in ORDERING_TYPES:
            raise ValueError(f"ordering_type must be one of {ORDERING_TYPES}, got {self.ordering_type!r}")

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "LMConfig":
        names = {f.name for f in fields(cls)}
        kwargs = {}
        for key, value in d.items():
            name = _CAMEL_CASE_ALIASES.get(key, key)
            if name in names:
                kwargs[name] = value
        return cls(**kwargs)

    @classmethod
    def from_yaml(cls, path: Union[str, Path], section: Optional[str] = "optimizer") -> "LMConfig":
        """Load from YAML; options may sit at the top level or under ``section``."""
        with open(path, "r", encoding="utf-8") as fh:
            raw = yaml.safe_load(fh) or {}
        if section is not None and isinstance(raw.get(section), dict):
            raw = raw[section]
        return cls.from_dict(raw)

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["verbosity"] = self.verbosity.name
        return d
