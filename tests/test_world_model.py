from __future__ import annotations

import math

import jax.numpy as jnp
import pytest

from infolm.world.model import WorldModel
from infolm.linear.noise import NoiseModel
from infolm.optimization.config import LMConfig
from infolm.slam.measurements import (
    prior_residual,
    between_residual,
    pose2_prior_residual,
    pose2_between_residual,
    range_residual,
    bearing_residual,
)


def test_world_model_scalar_chain():
    """
    Three 1D places with a prior on the first and unit steps between
    them; the estimate is written back into the graph.
    """
    wm = WorldModel()
    wm.register_residual("prior", prior_residual)
    wm.register_residual("between", between_residual)

    p0 = wm.add_variable("scalar", jnp.array([0.5]))
    p1 = wm.add_variable("scalar", jnp.array([2.5]))
    p2 = wm.add_variable("scalar", jnp.array([-3.5]))

    wm.add_factor("prior", (p0,), {"target": jnp.array([0.0])})
    wm.add_factor("between", (p0, p1), {"measurement": jnp.array([1.0])})
    wm.add_factor("between", (p1, p2), {"measurement": jnp.array([1.0])})

    opt = wm.optimize()

    assert float(wm.get_variable_value(p0)[0]) == pytest.approx(0.0, abs=1e-6)
    assert float(wm.get_variable_value(p1)[0]) == pytest.approx(1.0, abs=1e-6)
    assert float(wm.get_variable_value(p2)[0]) == pytest.approx(2.0, abs=1e-6)
    assert opt.error == pytest.approx(0.0, abs=1e-10)

    snap = wm.snapshot_state()
    assert sorted(snap) == [0, 1, 2]


def test_world_model_range_bearing_slam():
    """
    Three planar poses one meter apart along x observe a landmark at (1, 1).

    Ground truth:
      pose0 = (0, 0, 0), pose1 = (1, 0, 0), pose2 = (2, 0, 0)
      landmark = (1, 1)

    Measurements (exact):
      ranges   √2, 1, √2
      bearings π/4, π/2, 3π/4

    Perturbed initial guesses must be pulled back to ground truth.
    """
    wm = WorldModel()
    wm.register_residual("pose2_prior", pose2_prior_residual)
    wm.register_residual("pose2_between", pose2_between_residual)
    wm.register_residual("range", range_residual)
    wm.register_residual("bearing", bearing_residual)

    poses = [
        wm.add_pose2(jnp.array([0.05, -0.05, 0.02]), name="pose0"),
        wm.add_pose2(jnp.array([1.1, 0.1, 0.05]), name="pose1"),
        wm.add_pose2(jnp.array([1.9, -0.1, -0.05]), name="pose2"),
    ]
    landmark = wm.add_point2(jnp.array([1.2, 0.8]), name="tree")

    wm.add_factor("pose2_prior", (poses[0],), {"target": jnp.zeros(3)}, NoiseModel.isotropic(3, 0.01))
    for i in range(2):
        wm.add_factor(
            "pose2_between",
            (poses[i], poses[i + 1]),
            {"measurement": jnp.array([1.0, 0.0, 0.0])},
            NoiseModel.diagonal([0.1, 0.1, 0.05]),
        )

    ranges = [math.sqrt(2.0), 1.0, math.sqrt(2.0)]
    bearings = [math.pi / 4, math.pi / 2, 3 * math.pi / 4]
    for pose, r, b in zip(poses, ranges, bearings):
        wm.add_factor("range", (pose, landmark), {"range": jnp.array(r)}, NoiseModel.isotropic(1, 0.1))
        wm.add_factor("bearing", (pose, landmark), {"bearing": jnp.array(b)}, NoiseModel.isotropic(1, 0.05))

    opt = wm.optimize(LMConfig(max_iterations=50, relative_error_tol=1e-10, absolute_error_tol=1e-10))

    truth = [jnp.array([0.0, 0.0, 0.0]), jnp.array([1.0, 0.0, 0.0]), jnp.array([2.0, 0.0, 0.0])]
    for pose, expected in zip(poses, truth):
        assert jnp.allclose(wm.get_variable_value(pose), expected, atol=1e-4)
    assert jnp.allclose(wm.get_variable_value(landmark), jnp.array([1.0, 1.0]), atol=1e-4)
    assert opt.error < 1e-8
    assert wm.pose_ids["pose1"] == poses[1]
    assert wm.landmark_ids["tree"] == landmark
