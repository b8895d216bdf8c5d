"""Estimator and feature-tracker settings read from OpenCV-style YAML files."""

from __future__ import annotations

from dataclasses import dataclass, field
from os import PathLike
from pathlib import Path
from typing import Any, Union

import numpy as np
import yaml

from vioinit.quaternion import Quaternion

PathType = Union[str, "PathLike[str]"]

FOCAL_LENGTH = 460
INIT_DEPTH = 5.0
BIAS_ACC_THRESHOLD = 0.1
BIAS_GYR_THRESHOLD = 0.1
TRACKER_WINDOW_SIZE = 20


class _OpenCvLoader(yaml.SafeLoader):
    """Safe YAML loader that understands the ``!!opencv-matrix`` tag."""


def _construct_matrix(loader: yaml.SafeLoader, node: yaml.Node) -> np.ndarray:
    mapping = loader.construct_mapping(node, deep=True)
    try:
        rows = int(mapping["rows"])
        cols = int(mapping["cols"])
        data = [float(value) for value in mapping["data"]]
    except (KeyError, TypeError, ValueError) as exc:
        raise ValueError(f"malformed opencv-matrix node: {mapping!r}") from exc
    if len(data) != rows * cols:
        raise ValueError(
            f"opencv-matrix holds {len(data)} values, expected {rows * cols}"
        )
    return np.array(data, dtype=float).reshape(rows, cols)


_OpenCvLoader.add_constructor("tag:yaml.org,2002:opencv-matrix", _construct_matrix)


def _load(config_file: PathType) -> dict[str, Any]:
    text = Path(config_file).read_text()
    lines = text.splitlines()
    if lines and lines[0].startswith("%YAML"):
        lines = lines[1:]
    data = yaml.load("\n".join(lines), Loader=_OpenCvLoader)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"{config_file}: settings must be a mapping")
    return data


def _number(data: dict[str, Any], key: str) -> float:
    value = data.get(key)
    return 0.0 if value is None else float(value)


def _integer(data: dict[str, Any], key: str) -> int:
    return int(round(_number(data, key)))


def _string(data: dict[str, Any], key: str) -> str:
    value = data.get(key)
    return "" if value is None else str(value)


def _matrix(data: dict[str, Any], key: str, shape: tuple[int, int]) -> np.ndarray:
    value = data.get(key)
    if value is None:
        raise ValueError(f"missing matrix setting {key!r}")
    matrix = np.asarray(value, dtype=float)
    if matrix.size != shape[0] * shape[1]:
        raise ValueError(f"setting {key!r} must hold {shape[0] * shape[1]} values")
    return matrix.reshape(shape)


@dataclass
class Parameters:
    """Settings of the visual-inertial estimator."""

    config_file: str = ""
    imu_topic: str = ""
    image_topic: str = ""
    focal_length: int = FOCAL_LENGTH
    solver_time: float = 0.0
    num_iterations: int = 0
    min_parallax: float = 0.0
    vins_result_path: str = ""
    ex_calib_result_path: str = ""
    acc_n: float = 0.0
    acc_w: float = 0.0
    gyr_n: float = 0.0
    gyr_w: float = 0.0
    g: np.ndarray = field(default_factory=lambda: np.array([0.0, 0.0, 9.8]))
    row: float = 0.0
    col: float = 0.0
    estimate_extrinsic: int = 0
    ric: list[np.ndarray] = field(default_factory=list)
    tic: list[np.ndarray] = field(default_factory=list)
    init_depth: float = INIT_DEPTH
    bias_acc_threshold: float = BIAS_ACC_THRESHOLD
    bias_gyr_threshold: float = BIAS_GYR_THRESHOLD
    td: float = 0.0
    estimate_td: int = 0
    rolling_shutter: int = 0
    tr: float = 0.0
    max_cnt: int = 0
    min_dist: int = 0
    freq: int = 0
    f_threshold: float = 0.0
    show_track: int = 0
    equalize: int = 0
    fisheye: int = 0
    fisheye_mask: str = ""
    cam_names: list[str] = field(default_factory=list)
    stereo_track: bool = False
    pub_this_frame: bool = False

    def summary(self) -> str:
        """Return a readable listing of the settings."""
        ric = self.ric[0] if self.ric else np.eye(3)
        tic = self.tic[0] if self.tic else np.zeros(3)
        ric_text = "\n".join(
            " ".join(f"{value:g}" for value in row) for row in np.asarray(ric)
        )
        entries = [
            ("INIT_DEPTH: ", self.init_depth),
            ("MIN_PARALLAX: ", self.min_parallax),
            ("ACC_N: ", self.acc_n),
            ("ACC_W: ", self.acc_w),
            ("GYR_N: ", self.gyr_n),
            ("GYR_W: ", self.gyr_w),
            ("RIC:   ", ric_text),
            ("TIC:   ", " ".join(f"{value:g}" for value in tic)),
            ("G:     ", " ".join(f"{value:g}" for value in self.g)),
            ("BIAS_ACC_THRESHOLD:", self.bias_acc_threshold),
            ("BIAS_GYR_THRESHOLD:", self.bias_gyr_threshold),
            ("SOLVER_TIME:", self.solver_time),
            ("NUM_ITERATIONS:", self.num_iterations),
            ("ESTIMATE_EXTRINSIC:", self.estimate_extrinsic),
            ("ESTIMATE_TD:", self.estimate_td),
            ("ROLLING_SHUTTER:", self.rolling_shutter),
            ("ROW:", self.row),
            ("COL:", self.col),
            ("TD:", self.td),
            ("TR:", self.tr),
            ("FOCAL_LENGTH:", self.focal_length),
            ("IMAGE_TOPIC:", self.image_topic),
            ("IMU_TOPIC:", self.imu_topic),
            ("FISHEYE_MASK:", self.fisheye_mask),
            ("CAM_NAMES[0]:", self.cam_names[0] if self.cam_names else ""),
            ("MAX_CNT:", self.max_cnt),
            ("MIN_DIST:", self.min_dist),
            ("FREQ:", self.freq),
            ("F_THRESHOLD:", self.f_threshold),
            ("SHOW_TRACK:", self.show_track),
            ("STEREO_TRACK:", int(self.stereo_track)),
            ("EQUALIZE:", self.equalize),
            ("FISHEYE:", self.fisheye),
            ("PUB_THIS_FRAME:", int(self.pub_this_frame)),
        ]
        lines = ["readParameters:"]
        for label, value in entries:
            text = f"{value:g}" if isinstance(value, float) else str(value)
            lines.append(f"  {label}{text}")
        return "\n".join(lines)


@dataclass
class TrackerParameters:
    """Settings of the feature tracker."""

    config_file: str = ""
    image_topic: str = ""
    imu_topic: str = ""
    max_cnt: int = 0
    min_dist: int = 0
    row: int = 0
    col: int = 0
    freq: int = 0
    f_threshold: float = 0.0
    show_track: int = 0
    equalize: int = 0
    fisheye: int = 0
    fisheye_mask: str = ""
    cam_names: list[str] = field(default_factory=list)
    window_size: int = TRACKER_WINDOW_SIZE
    stereo_track: bool = False
    focal_length: int = FOCAL_LENGTH
    pub_this_frame: bool = False


def read_parameters(config_file: PathType) -> Parameters:
    """Read the estimator settings from *config_file*."""
    data = _load(config_file)
    params = Parameters(config_file=str(config_file))

    params.imu_topic = _string(data, "imu_topic")
    params.solver_time = _number(data, "max_solver_time")
    params.num_iterations = _integer(data, "max_num_iterations")
    params.min_parallax = _number(data, "keyframe_parallax") / params.focal_length

    output_path = _string(data, "output_path")
    params.vins_result_path = output_path + "/vins_result_no_loop.txt"

    params.acc_n = _number(data, "acc_n")
    params.acc_w = _number(data, "acc_w")
    params.gyr_n = _number(data, "gyr_n")
    params.gyr_w = _number(data, "gyr_w")
    params.g = np.array([0.0, 0.0, _number(data, "g_norm")])
    params.row = _number(data, "image_height")
    params.col = _number(data, "image_width")

    params.estimate_extrinsic = _integer(data, "estimate_extrinsic")
    if params.estimate_extrinsic == 2:
        params.ric.append(np.eye(3))
        params.tic.append(np.zeros(3))
        params.ex_calib_result_path = output_path + "/extrinsic_parameter.csv"
    else:
        if params.estimate_extrinsic == 1:
            params.ex_calib_result_path = output_path + "/extrinsic_parameter.csv"
        rotation = _matrix(data, "extrinsicRotation", (3, 3))
        translation = _matrix(data, "extrinsicTranslation", (3, 1)).reshape(3)
        rotation = Quaternion.from_matrix(rotation).normalized().to_matrix()
        params.ric.append(rotation)
        params.tic.append(translation)

    params.td = _number(data, "td")
    params.estimate_td = _integer(data, "estimate_td")
    params.rolling_shutter = _integer(data, "rolling_shutter")
    params.tr = _number(data, "rolling_shutter_tr") if params.rolling_shutter else 0.0

    params.image_topic = _string(data, "image_topic")
    params.max_cnt = _integer(data, "max_cnt")
    params.min_dist = _integer(data, "min_dist")
    params.freq = _integer(data, "freq") or 10
    params.f_threshold = _number(data, "F_threshold")
    params.show_track = _integer(data, "show_track")
    params.equalize = _integer(data, "equalize")
    params.fisheye = _integer(data, "fisheye")
    params.cam_names.append(str(config_file))
    return params


def read_tracker_parameters(config_file: PathType, vins_folder: str) -> TrackerParameters:
    """Read the feature-tracker settings from *config_file*."""
    data = _load(config_file)
    params = TrackerParameters(config_file=str(config_file))
    params.image_topic = _string(data, "image_topic")
    params.imu_topic = _string(data, "imu_topic")
    params.max_cnt = _integer(data, "max_cnt")
    params.min_dist = _integer(data, "min_dist")
    params.row = _integer(data, "image_height")
    params.col = _integer(data, "image_width")
    params.freq = _integer(data, "freq") or 100
    params.f_threshold = _number(data, "F_threshold")
    params.show_track = _integer(data, "show_track")
    params.equalize = _integer(data, "equalize")
    params.fisheye = _integer(data, "fisheye")
    if params.fisheye == 1:
        params.fisheye_mask = str(vins_folder) + "config/fisheye_mask.jpg"
    params.cam_names.append(str(config_file))
    return params