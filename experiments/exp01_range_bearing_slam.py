from __future__ import annotations

import argparse
import math

import jax.numpy as jnp

from infolm.world.model import WorldModel
from infolm.linear.noise import NoiseModel
from infolm.optimization.config import LMConfig, LMVerbosity
from infolm.slam.measurements import (
    pose2_prior_residual,
    pose2_between_residual,
    range_residual,
    bearing_residual,
)
from infolm.utils.logging_config import get_logger

logger = get_logger("exp01_range_bearing_slam")


def setup_world(num_poses: int = 8, radius: float = 3.0) -> tuple:
    """
    Build a small planar SLAM problem:

      - `num_poses` poses on a circle of `radius`, heading tangent to it.
      - 4 landmarks placed around the circle.

    Factors:
      - prior on pose0
      - pose2 odometry between consecutive poses
      - range + bearing from every pose to every landmark within 5m

    Initial guesses are the ground truth corrupted by a smooth bias, so
    the optimizer has something to fix.
    """
    wm = WorldModel()

    wm.register_residual("pose2_prior", pose2_prior_residual)
    wm.register_residual("pose2_between", pose2_between_residual)
    wm.register_residual("range", range_residual)
    wm.register_residual("bearing", bearing_residual)

    step = 2 * math.pi / num_poses
    truth_poses = []
    for i in range(num_poses):
        a = i * step
        truth_poses.append(jnp.array([radius * math.cos(a), radius * math.sin(a), a + math.pi / 2]))

    truth_landmarks = [
        jnp.array([0.0, 0.0]),
        jnp.array([4.5, 0.0]),
        jnp.array([0.0, 4.5]),
        jnp.array([-4.5, -1.0]),
    ]

    # -------------------------
    # Variables
    # -------------------------
    pose_ids = []
    for i, p in enumerate(truth_poses):
        noisy = p + jnp.array([0.2 * math.sin(i), 0.15 * math.cos(i), 0.05 * i / num_poses])
        pose_ids.append(wm.add_pose2(noisy, name=f"pose{i}"))

    landmark_ids = []
    for j, l in enumerate(truth_landmarks):
        landmark_ids.append(wm.add_point2(l + jnp.array([0.3, -0.2]), name=f"landmark{j}"))

    # -------------------------
    # Factors
    # -------------------------
    wm.add_factor(
        "pose2_prior",
        (pose_ids[0],),
        {"target": truth_poses[0]},
        NoiseModel.isotropic(3, 0.01),
    )

    # Relative motion between consecutive truth poses, in the frame of the first
    for i in range(num_poses - 1):
        pi, pj = truth_poses[i], truth_poses[i + 1]
        c, s = math.cos(float(pi[2])), math.sin(float(pi[2]))
        dx, dy = float(pj[0] - pi[0]), float(pj[1] - pi[1])
        meas = jnp.array([c * dx + s * dy, -s * dx + c * dy, float(pj[2] - pi[2])])
        wm.add_factor(
            "pose2_between",
            (pose_ids[i], pose_ids[i + 1]),
            {"measurement": meas},
            NoiseModel.diagonal([0.05, 0.05, 0.01]),
        )

    num_obs = 0
    for pid, p in zip(pose_ids, truth_poses):
        for lid, l in zip(landmark_ids, truth_landmarks):
            diff = l - p[:2]
            rng = float(jnp.linalg.norm(diff))
            if rng > 5.0:
                continue
            bearing = math.atan2(float(diff[1]), float(diff[0])) - float(p[2])
            bearing = math.atan2(math.sin(bearing), math.cos(bearing))
            wm.add_factor("range", (pid, lid), {"range": jnp.array(rng)}, NoiseModel.isotropic(1, 0.05))
            wm.add_factor("bearing", (pid, lid), {"bearing": jnp.array(bearing)}, NoiseModel.isotropic(1, 0.02))
            num_obs += 1

    logger.info("Built world: %d poses, %d landmarks, %d observations",
                len(pose_ids), len(landmark_ids), num_obs)
    return wm, pose_ids, landmark_ids, truth_poses, truth_landmarks


def main() -> None:
    parser = argparse.ArgumentParser(description="Range-bearing planar SLAM with Levenberg-Marquardt")
    parser.add_argument("--poses", type=int, default=8)
    parser.add_argument("--config", type=str, default=None, help="YAML file with an 'optimizer' section")
    parser.add_argument("--plot", action="store_true")
    args = parser.parse_args()

    # route optimizer progress (LMVerbosity) to the console
    get_logger("infolm")

    wm, pose_ids, landmark_ids, truth_poses, truth_landmarks = setup_world(args.poses)
    initial = wm.snapshot_state()

    if args.config is not None:
        cfg = LMConfig.from_yaml(args.config)
    else:
        cfg = LMConfig(verbosity=LMVerbosity.LAMBDA)

    opt = wm.optimize(cfg)

    print("=== Optimization summary ===")
    print(f"iterations: {opt.iterations} (inner {opt.inner_iterations})")
    print(f"final error: {opt.error:.6e}, final lambda: {opt.lambda_:.3e}")

    print("\n=== Poses (opt vs truth) ===")
    for pid, truth in zip(pose_ids, truth_poses):
        print(f"pose {int(pid):2d}: {wm.get_variable_value(pid)}  truth {truth}")

    print("\n=== Landmarks (opt vs truth) ===")
    for lid, truth in zip(landmark_ids, truth_landmarks):
        print(f"landmark {int(lid):2d}: {wm.get_variable_value(lid)}  truth {truth}")

    if args.plot:
        import matplotlib.pyplot as plt

        plt.figure()
        plt.plot([float(initial[int(p)][0]) for p in pose_ids],
                 [float(initial[int(p)][1]) for p in pose_ids], "x--", label="initial")
        plt.plot([float(wm.get_variable_value(p)[0]) for p in pose_ids],
                 [float(wm.get_variable_value(p)[1]) for p in pose_ids], "o-", label="optimized")
        plt.scatter([float(wm.get_variable_value(l)[0]) for l in landmark_ids],
                    [float(wm.get_variable_value(l)[1]) for l in landmark_ids],
                    marker="*", s=120, label="landmarks")
        plt.axis("equal")
        plt.xlabel("x [m]")
        plt.ylabel("y [m]")
        plt.title("Range-bearing SLAM")
        plt.legend()
        plt.grid(True)
        plt.show()


if __name__ == "__main__":
    main()
