# vioinit

Building blocks for monocular visual-inertial odometry, with a focus on
getting a sliding-window estimator started.

- `vioinit.config`: reads the estimator and feature-tracker settings from an
  OpenCV-style YAML file (`read_parameters`, `read_tracker_parameters`),
  giving `Parameters` and `TrackerParameters`. `!!opencv-matrix` nodes are
  understood and a leading `%YAML` line is skipped.
- `vioinit.quaternion`: a small immutable `Quaternion` type (Hamilton
  convention, fields `w, x, y, z`) with conversion to and from rotation
  matrices, `from_two_vectors`, `rotate`, `angular_distance`, plus
  `skew_symmetric`.
- `vioinit.integration`: mid-point IMU pre-integration with Jacobian and
  covariance propagation (`IntegrationBase`, `mid_point_integration`,
  `MidPointResult`, `ImuNoise`).
- `vioinit.feature_manager`: bookkeeping of tracked features across a sliding
  window, keyframe parallax checks, depth vectors and multi-view
  triangulation (`FeatureManager`, `FeaturePerId`, `FeaturePerFrame`).
- `vioinit.alignment`: visual-inertial alignment. Solves for the gyroscope
  bias, velocities, gravity and metric scale (`visual_imu_alignment`,
  `linear_alignment`, `refine_gravity`, `solve_gyroscope_bias`,
  `tangent_basis`, `ImageFrame`). Failures raise `AlignmentError`.
- `vioinit.epipolar`: fundamental-matrix estimation with RANSAC
  (`find_fundamental_mat`), triangulation (`triangulate_points`),
  essential-matrix decomposition (`decompose_essential_mat`), pose recovery
  with a cheirality check (`recover_pose`), and `MotionEstimator` for the
  relative pose between two frames.
- `vioinit.ex_rotation`: online calibration of the camera-to-IMU rotation
  (`InitialExRotation`).

## Installation

```
pip install .
```

Install with the `test` extra to run the test suite:

```
pip install ".[test]"
pytest
```

## Example

IMU pre-integration:

```python
import numpy as np
from vioinit.integration import IntegrationBase, ImuNoise

noise = ImuNoise(acc_n=0.08, gyr_n=0.004, acc_w=0.00004, gyr_w=2.0e-6)
pre = IntegrationBase(
    acc_0=np.array([0.0, 0.0, 9.8]),
    gyr_0=np.zeros(3),
    linearized_ba=np.zeros(3),
    linearized_bg=np.zeros(3),
    imu_noise=noise,
)
for _ in range(100):
    pre.push_back(0.005, np.array([0.1, 0.0, 9.8]), np.array([0.0, 0.0, 0.1]))

print(pre.sum_dt, pre.delta_p, pre.delta_v)
print(pre.covariance.shape)  # (15, 15)
```

`repropagate(ba, bg)` integrates every recorded sample again about new
bias estimates.

Relative pose between two frames from normalised correspondences:

```python
from vioinit.epipolar import MotionEstimator

# corres: list of (p_left, p_right) pairs of 3-vectors, at least 15 of them
result = MotionEstimator().solve_relative_rt(corres)
if result is not None:
    rotation, translation = result
```

`solve_relative_rt` returns `None` when there are too few pairs, no
fundamental matrix is found, or fewer than 13 points pass the cheirality
check.

Camera-to-IMU rotation calibration, one call per new frame:

```python
from vioinit.ex_rotation import InitialExRotation

calib = InitialExRotation(window_size=10)
ric = calib.calibration_ex_rotation(corres, delta_q_imu)  # delta_q_imu: Quaternion
# ric is a 3x3 rotation once enough well-spread frames have been seen, else None
```

## Configuration

`read_parameters(path)` loads a YAML file with keys such as `imu_topic`,
`image_topic`, `max_solver_time`, `max_num_iterations`, `keyframe_parallax`,
`output_path`, `acc_n`, `acc_w`, `gyr_n`, `gyr_w`, `g_norm`, `image_width`,
`image_height`, `estimate_extrinsic`, `extrinsicRotation`,
`extrinsicTranslation`, `td`, `estimate_td`, `rolling_shutter`,
`rolling_shutter_tr`, `max_cnt`, `min_dist`, `freq`, `F_threshold`,
`show_track`, `equalize` and `fisheye`. Missing numbers read as zero; `freq`
falls back to 10. When `estimate_extrinsic` is not 2 the extrinsic rotation
and translation must be present. `Parameters.summary()` gives a readable
listing of what was loaded.

`read_tracker_parameters(path, vins_folder)` reads the feature-tracker
subset; there `freq` falls back to 100, and with `fisheye: 1` the mask path
is `vins_folder + "config/fisheye_mask.jpg"`.

## What this package does not do

- It does not read images or track features in them; correspondences and
  per-frame observations must be supplied by the caller.
- It has no non-linear optimiser, no marginalisation and no complete
  sliding-window estimator; it provides the initialisation and bookkeeping
  pieces only.
- It has no perspective-n-point solver or global structure-from-motion.
- It has no command-line program, no visualisation and writes no files.