# Copyright (c) 2025.
# This file is part of InfoLM, released under the MIT License.

import time
import jax.numpy as jnp

from infolm.world.model import WorldModel
from infolm.linear.noise import NoiseModel
from infolm.slam.measurements import (
    pose2_prior_residual,
    pose2_between_residual,
)
from infolm.optimization.config import LMConfig
from infolm.utils.diagnostics import Diagnostics


def build_pose2_chain_world_model(num_poses: int = 10):
    """
    Planar pose chain backed by a WorldModel:
        pose0 --odom--> pose1 --odom--> ... --odom--> pose_{N-1}
    Prior on pose0, odom edges of +1m in x with a slight left turn.
    """
    wm = WorldModel()
    pose_ids = []

    # Initial guesses: dead reckoning with a heading bias
    for i in range(num_poses):
        init_val = jnp.array(
            [
                i + 0.1 * jnp.sin(0.3 * i),  # x
                0.05 * jnp.cos(0.2 * i),     # y
                0.02 * i,                    # heading
            ]
        )
        pose_ids.append(wm.add_pose2(init_val))

    wm.add_factor(
        f_type="pose2_prior",
        var_ids=(pose_ids[0],),
        params={"target": jnp.zeros(3)},
        noise=NoiseModel.isotropic(3, 0.01),
    )

    meas = jnp.array([1.0, 0.0, 0.01])
    for i in range(num_poses - 1):
        wm.add_factor(
            f_type="pose2_between",
            var_ids=(pose_ids[i], pose_ids[i + 1]),
            params={"measurement": meas},
            noise=NoiseModel.diagonal([0.1, 0.1, 0.02]),
        )

    wm.register_residual("pose2_prior", pose2_prior_residual)
    wm.register_residual("pose2_between", pose2_between_residual)

    return wm, pose_ids


def run_benchmark(num_poses: int = 50, max_iters: int = 20, diagonal_damping: bool = False):
    print("=== Pose2 Levenberg-Marquardt Benchmark (WorldModel) ===")
    print(f"num_poses = {num_poses}, max_iters = {max_iters}, diagonal_damping = {diagonal_damping}")

    cfg = LMConfig(max_iterations=max_iters, diagonal_damping=diagonal_damping)

    # Warmup: compiles the linearization of every factor type
    wm, _ = build_pose2_chain_world_model(num_poses)
    wm.optimize(cfg)

    wm, pose_ids = build_pose2_chain_world_model(num_poses)
    diag = Diagnostics()
    t0 = time.time()
    opt = wm.optimize(cfg, diagnostics=diag)
    t1 = time.time()

    elapsed = t1 - t0
    print(f"Elapsed time: {elapsed * 1000:.3f} ms")
    print(f"iterations = {opt.iterations}, inner = {opt.inner_iterations}, final error = {opt.error:.3e}")
    print(diag.summary())

    p0 = wm.get_variable_value(pose_ids[0])
    plast = wm.get_variable_value(pose_ids[-1])
    print(f"pose0 (opt):   {p0}")
    print(f"poseN-1 (opt): {plast}")


if __name__ == "__main__":
    run_benchmark(num_poses=50, max_iters=20, diagonal_damping=False)
    run_benchmark(num_poses=50, max_iters=20, diagonal_damping=True)
