"""Bookkeeping of tracked features across the sliding window of frames."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Iterable, Mapping, Optional, Sequence

import numpy as np

from vioinit.config import INIT_DEPTH

WINDOW_SIZE = 10


def _vector(value) -> np.ndarray:
    return np.array(value, dtype=float).reshape(3)


@dataclass
class FeaturePerFrame:
    """One observation of a feature in one frame."""

    point: np.ndarray
    uv: np.ndarray = field(default_factory=lambda: np.zeros(2))
    velocity: np.ndarray = field(default_factory=lambda: np.zeros(2))
    cur_td: float = 0.0
    is_used: bool = True

    @classmethod
    def from_observation(cls, observation, td: float) -> FeaturePerFrame:
        """Build from a 7-vector ``x, y, z, u, v, vx, vy``."""
        values = np.asarray(observation, dtype=float).reshape(7)
        return cls(
            point=values[0:3].copy(),
            uv=values[3:5].copy(),
            velocity=values[5:7].copy(),
            cur_td=float(td),
        )


@dataclass
class FeaturePerId:
    """A feature together with all of its observations in the window."""

    feature_id: int
    start_frame: int
    feature_per_frame: list[FeaturePerFrame] = field(default_factory=list)
    used_num: int = 0
    is_outlier: bool = False
    estimated_depth: float = -1.0
    solve_flag: int = 0

    def end_frame(self) -> int:
        """Index of the last frame in which the feature was seen."""
        return self.start_frame + len(self.feature_per_frame) - 1


Image = Mapping[int, Sequence[tuple]]


class FeatureManager:
    """Holds every feature seen in the sliding window."""

    def __init__(
        self,
        rs: list,
        window_size: int = WINDOW_SIZE,
        min_parallax: float = 0.0,
        init_depth: float = INIT_DEPTH,
        num_of_cam: int = 1,
    ) -> None:
        self.rs = rs
        self.window_size = window_size
        self.min_parallax = min_parallax
        self.init_depth = init_depth
        self.num_of_cam = num_of_cam
        self.ric = [np.eye(3) for _ in range(num_of_cam)]
        self.feature: list[FeaturePerId] = []
        self.last_track_num = 0

    def _refresh_usable(self, feature: FeaturePerId) -> bool:
        feature.used_num = len(feature.feature_per_frame)
        return feature.used_num >= 2 and feature.start_frame < self.window_size - 2

    def _usable(self) -> Iterable[FeaturePerId]:
        return [f for f in self.feature if self._refresh_usable(f)]

    def set_ric(self, ric) -> None:
        """Set the camera-to-body rotations."""
        self.ric = [np.array(r, dtype=float).reshape(3, 3) for r in list(ric)[: self.num_of_cam]]

    def clear_state(self) -> None:
        self.feature.clear()

    def get_feature_count(self) -> int:
        """Number of features usable for optimisation."""
        return len(self._usable())

    def _find(self, feature_id: int) -> Optional[FeaturePerId]:
        return next((f for f in self.feature if f.feature_id == feature_id), None)

    def add_feature_check_parallax(self, frame_count: int, image: Image, td: float) -> bool:
        """Add a frame's observations; return whether the second newest frame is a keyframe."""
        self.last_track_num = 0
        for feature_id in sorted(image):
            observations = image[feature_id]
            per_frame = FeaturePerFrame.from_observation(observations[0][1], td)
            existing = self._find(feature_id)
            if existing is None:
                new = FeaturePerId(feature_id, frame_count)
                new.feature_per_frame.append(per_frame)
                self.feature.append(new)
            else:
                existing.feature_per_frame.append(per_frame)
                self.last_track_num += 1

        if frame_count < 2 or self.last_track_num < 20:
            return True

        parallaxes = [
            self.compensated_parallax2(f, frame_count)
            for f in self.feature
            if f.start_frame <= frame_count - 2
            and f.start_frame + len(f.feature_per_frame) - 1 >= frame_count - 1
        ]
        if not parallaxes:
            return True
        return sum(parallaxes) / len(parallaxes) >= self.min_parallax

    def get_corresponding(self, frame_count_l: int, frame_count_r: int) -> list[tuple[np.ndarray, np.ndarray]]:
        """Return point pairs of features seen in both frames."""
        corres = []
        for f in self.feature:
            if f.start_frame <= frame_count_l and f.end_frame() >= frame_count_r:
                a = f.feature_per_frame[frame_count_l - f.start_frame].point.copy()
                b = f.feature_per_frame[frame_count_r - f.start_frame].point.copy()
                corres.append((a, b))
        return corres

    def set_depth(self, x) -> None:
        """Set depths from inverse depths; mark features with negative depth as failed."""
        values = iter(np.asarray(x, dtype=float).reshape(-1))
        for f in self._usable():
            f.estimated_depth = 1.0 / next(values)
            f.solve_flag = 2 if f.estimated_depth < 0 else 1

    def remove_failures(self) -> None:
        self.feature = [f for f in self.feature if f.solve_flag != 2]

    def clear_depth(self, x) -> None:
        """Set depths from inverse depths without touching the solve flags."""
        values = iter(np.asarray(x, dtype=float).reshape(-1))
        for f in self._usable():
            f.estimated_depth = 1.0 / next(values)

    def get_depth_vector(self) -> np.ndarray:
        """Inverse depths of the usable features."""
        return np.array([1.0 / f.estimated_depth for f in self._usable()], dtype=float)

    def triangulate(self, ps, tic, ric) -> None:
        """Triangulate the depth of every usable feature that has none yet."""
        if self.num_of_cam != 1:
            raise ValueError("triangulation supports a single camera only")
        tic0 = _vector(tic[0])
        ric0 = np.asarray(ric[0], dtype=float).reshape(3, 3)
        for f in self._usable():
            if f.estimated_depth > 0:
                continue
            imu_i = f.start_frame
            t0 = _vector(ps[imu_i]) + self.rs[imu_i] @ tic0
            r0 = self.rs[imu_i] @ ric0
            rows = []
            for imu_j, frame in enumerate(f.feature_per_frame, start=imu_i):
                t1 = _vector(ps[imu_j]) + self.rs[imu_j] @ tic0
                r1 = self.rs[imu_j] @ ric0
                t = r0.T @ (t1 - t0)
                r = r0.T @ r1
                pose = np.hstack([r.T, (-r.T @ t).reshape(3, 1)])
                fv = frame.point / np.linalg.norm(frame.point)
                rows.append(fv[0] * pose[2] - fv[2] * pose[0])
                rows.append(fv[1] * pose[2] - fv[2] * pose[1])
            _, _, vt = np.linalg.svd(np.array(rows))
            v = vt[-1]
            depth = v[2] / v[3]
            f.estimated_depth = self.init_depth if depth < 0.1 else float(depth)

    def remove_back_shift_depth(self, marg_r, marg_p, new_r, new_p) -> None:
        """Drop the oldest frame, carrying depths over to each feature's new first frame."""
        marg_r = np.asarray(marg_r, dtype=float).reshape(3, 3)
        new_r = np.asarray(new_r, dtype=float).reshape(3, 3)
        marg_p, new_p = _vector(marg_p), _vector(new_p)
        kept = []
        for f in self.feature:
            if f.start_frame != 0:
                f.start_frame -= 1
            else:
                uv_i = f.feature_per_frame.pop(0).point
                if len(f.feature_per_frame) < 2:
                    continue
                pts_i = uv_i * f.estimated_depth
                w_pts_i = marg_r @ pts_i + marg_p
                pts_j = new_r.T @ (w_pts_i - new_p)
                dep_j = pts_j[2]
                f.estimated_depth = float(dep_j) if dep_j > 0 else self.init_depth
            kept.append(f)
        self.feature = kept

    def remove_back(self) -> None:
        """Drop the oldest frame."""
        kept = []
        for f in self.feature:
            if f.start_frame != 0:
                f.start_frame -= 1
            else:
                f.feature_per_frame.pop(0)
                if not f.feature_per_frame:
                    continue
            kept.append(f)
        self.feature = kept

    def remove_front(self, frame_count: int) -> None:
        """Drop the second newest frame."""
        kept = []
        for f in self.feature:
            if f.start_frame == frame_count:
                f.start_frame -= 1
            elif f.end_frame() >= frame_count - 1:
                del f.feature_per_frame[self.window_size - 1 - f.start_frame]
                if not f.feature_per_frame:
                    continue
            kept.append(f)
        self.feature = kept

    def compensated_parallax2(self, feature: FeaturePerId, frame_count: int) -> float:
        """Parallax of a feature between the third and second newest frames."""
        frame_i = feature.feature_per_frame[frame_count - 2 - feature.start_frame]
        frame_j = feature.feature_per_frame[frame_count - 1 - feature.start_frame]
        p_j = frame_j.point
        u_j, v_j = p_j[0], p_j[1]
        p_i = frame_i.point
        p_i_comp = p_i
        du = p_i[0] / p_i[2] - u_j
        dv = p_i[1] / p_i[2] - v_j
        du_comp = p_i_comp[0] / p_i_comp[2] - u_j
        dv_comp = p_i_comp[1] / p_i_comp[2] - v_j
        return max(0.0, math.sqrt(min(du * du + dv * dv, du_comp * du_comp + dv_comp * dv_comp)))