"""Marker + Inertial Camera Tracking Example with a Synthetic Scene.

This example runs the full tracking pipeline without a camera:
    1. Lay out a grid of markers on the floor
    2. Generate a handheld camera orbit above the markers
    3. Render synthetic marker detections and inertial samples
    4. Track the camera: inertial samples at the sensor rate, frames at the
       camera rate, marker map refined in the background
    5. Evaluate the trajectory and the marker map against the ground truth
    6. Plot the results

Usage:
    python -m demos.example_marker_tracking
    python -m demos.example_marker_tracking --frames 600 --pixel-noise 0.5
"""

import argparse
import json
import logging

import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt  # noqa: E402
import numpy as np  # noqa: E402

from artrack.eval import (  # noqa: E402
    camera_centres,
    compute_error_stats,
    compute_marker_map_errors,
    compute_position_errors,
    compute_rotation_errors,
)
from artrack.sim import (  # noqa: E402
    MarkerScene,
    SceneDetector,
    generate_inertial_samples,
    grid_marker_poses,
    orbit_trajectory,
)
from artrack.tracking import (  # noqa: E402
    MarkerMapConfig,
    MarkerTracker,
    RefinementConfig,
    Tracker,
    TrackerConfig,
)
from artrack.vision import CameraIntrinsics  # noqa: E402

logger = logging.getLogger("example_marker_tracking")


def run(args: argparse.Namespace) -> dict:
    intrinsics = CameraIntrinsics(fx=500.0, fy=500.0, cx=320.0, cy=240.0)
    marker_poses = grid_marker_poses(args.rows, args.cols, args.spacing)
    scene = MarkerScene(intrinsics, args.marker_length, marker_poses)

    centre = np.array([(args.cols - 1) * args.spacing / 2, (args.rows - 1) * args.spacing / 2, 0.0])
    n_samples = args.frames * args.imu_per_frame
    poses = orbit_trajectory(
        n_samples, args.radius, args.height, target=centre, arc=args.arc, start_angle=np.pi
    )
    imu_dt = 1.0 / (args.fps * args.imu_per_frame)
    imu = generate_inertial_samples(
        poses, imu_dt, accel_noise_std=args.accel_noise, gyro_noise_std=args.gyro_noise, seed=args.seed
    )

    config = TrackerConfig(
        marker_map=MarkerMapConfig(marker_length=args.marker_length),
        refinement=RefinementConfig(window=args.window),
    )
    detector = SceneDetector(scene, poses, noise_std=args.pixel_noise, seed=args.seed)
    strategy = MarkerTracker(intrinsics, config=config, detector=detector)

    truth_idx, est_pos, est_rot = [], [], []
    tracked = 0
    with Tracker(strategy, config) as tracker:
        for k in range(n_samples):
            tracker.track_sensor(imu.attitude[k], imu.acceleration[k], imu.angular_velocity[k], imu_dt)
            if k % args.imu_per_frame == 0:
                if tracker.track_frame(k, 1.0 / args.fps):
                    tracked += 1
                truth_idx.append(k)
                est_pos.append(tracker.get_position())
                est_rot.append(tracker.get_orientation())
        if strategy.worker is not None:
            strategy.worker.flush(timeout=30.0)
        marker_map = strategy.marker_map.snapshot()

    truth_pos = camera_centres([poses[k] for k in truth_idx])
    truth_rot = np.array([poses[k].rotation for k in truth_idx])
    return {
        "frames": len(truth_idx),
        "tracked": tracked,
        "truth_pos": truth_pos,
        "est_pos": np.array(est_pos),
        "truth_rot": truth_rot,
        "est_rot": np.array(est_rot),
        "marker_truth": marker_poses,
        "marker_map": marker_map,
    }


def plot_results(results: dict, output: str) -> None:
    truth = results["truth_pos"]
    est = results["est_pos"]
    errors = np.linalg.norm(compute_position_errors(truth, est), axis=1)

    fig = plt.figure(figsize=(14, 6))

    ax = fig.add_subplot(1, 2, 1, projection="3d")
    ax.plot(truth[:, 0], truth[:, 1], truth[:, 2], "g-", linewidth=2, label="Ground truth")
    ax.plot(est[:, 0], est[:, 1], est[:, 2], "b--", linewidth=1.5, label="Tracker")
    mapped = results["marker_map"]
    if mapped:
        m = np.array([p.translation for p in mapped.values()])
        ax.scatter(m[:, 0], m[:, 1], m[:, 2], c="r", marker="s", s=40, label="Mapped markers")
    ax.set_xlabel("X [m]")
    ax.set_ylabel("Y [m]")
    ax.set_zlabel("Z [m]")
    ax.set_title("Camera Trajectory", fontweight="bold")
    ax.legend()

    ax = fig.add_subplot(1, 2, 2)
    ax.plot(errors * 100.0, "b-", linewidth=1.5)
    ax.set_xlabel("Frame")
    ax.set_ylabel("Position error [cm]")
    ax.set_title("Position Error", fontweight="bold")
    ax.grid(True, alpha=0.3)

    plt.tight_layout()
    plt.savefig(output, dpi=150, bbox_inches="tight")
    plt.close(fig)
    print(f"\n[OK] Saved figure: {output}")


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(description="Synthetic marker + inertial tracking example")
    parser.add_argument("--frames", type=int, default=300, help="Camera frames (default: 300)")
    parser.add_argument("--fps", type=float, default=30.0, help="Camera rate in Hz (default: 30)")
    parser.add_argument(
        "--imu-per-frame", type=int, default=3, help="Inertial samples per frame (default: 3)"
    )

    scene_group = parser.add_argument_group("Scene Parameters")
    scene_group.add_argument("--rows", type=int, default=2, help="Marker grid rows (default: 2)")
    scene_group.add_argument("--cols", type=int, default=3, help="Marker grid columns (default: 3)")
    scene_group.add_argument(
        "--spacing", type=float, default=0.2, help="Marker spacing in meters (default: 0.2)"
    )
    scene_group.add_argument(
        "--marker-length", type=float, default=0.1, help="Marker side in meters (default: 0.1)"
    )

    traj_group = parser.add_argument_group("Trajectory Parameters")
    traj_group.add_argument("--radius", type=float, default=0.3, help="Orbit radius (default: 0.3)")
    traj_group.add_argument("--height", type=float, default=0.6, help="Orbit height (default: 0.6)")
    traj_group.add_argument(
        "--arc", type=float, default=np.pi / 2, help="Orbit arc in radians (default: pi/2)"
    )

    noise_group = parser.add_argument_group("Noise Parameters")
    noise_group.add_argument(
        "--pixel-noise", type=float, default=0.3, help="Corner noise std in pixels (default: 0.3)"
    )
    noise_group.add_argument(
        "--accel-noise", type=float, default=0.01, help="Accelerometer noise std in g (default: 0.01)"
    )
    noise_group.add_argument(
        "--gyro-noise", type=float, default=0.01, help="Gyroscope noise std in rad/s (default: 0.01)"
    )

    parser.add_argument("--window", type=int, default=20, help="Refinement window (default: 20)")
    parser.add_argument("--seed", type=int, default=42, help="Random seed (default: 42)")
    parser.add_argument(
        "--output",
        type=str,
        default="marker_tracking_results.png",
        help="Output figure path (default: marker_tracking_results.png)",
    )
    parser.add_argument("--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    print("=" * 80)
    print("MARKER + INERTIAL CAMERA TRACKING EXAMPLE")
    print("=" * 80)

    results = run(args)

    position_stats = compute_error_stats(compute_position_errors(results["truth_pos"], results["est_pos"]))
    rotation_errors = np.degrees(compute_rotation_errors(results["truth_rot"], results["est_rot"]))
    map_errors = compute_marker_map_errors(results["marker_truth"], results["marker_map"])

    print(f"\nTracked {results['tracked']} / {results['frames']} frames")
    print(f"Position RMSE: {position_stats['rmse'] * 100:.2f} cm (max {position_stats['max'] * 100:.2f} cm)")
    print(f"Rotation error: mean {np.mean(rotation_errors):.2f} deg, max {np.max(rotation_errors):.2f} deg")
    print(f"Mapped {len(results['marker_map'])} / {len(results['marker_truth'])} markers")
    for marker_id, err in map_errors.items():
        print(f"   Marker {marker_id:3d}: {err * 1000:.1f} mm")

    summary = {
        "frames": results["frames"],
        "tracked": results["tracked"],
        "position_rmse": position_stats["rmse"],
        "rotation_mean_deg": float(np.mean(rotation_errors)),
        "mapped": len(results["marker_map"]),
        "marker_errors": {str(k): v for k, v in map_errors.items()},
    }
    print(f"[TRACKING_SUMMARY] {json.dumps(summary)}")

    plot_results(results, args.output)


if __name__ == "__main__":
    main()
