"""Online calibration of the camera-to-IMU rotation from paired rotations."""

from __future__ import annotations

import math
from typing import Optional, Sequence

import numpy as np

from vioinit.epipolar import find_fundamental_mat, triangulate_points
from vioinit.feature_manager import WINDOW_SIZE
from vioinit.quaternion import Quaternion, skew_symmetric

_W = np.array([[0.0, -1.0, 0.0], [1.0, 0.0, 0.0], [0.0, 0.0, 1.0]])


def _compose(u: np.ndarray, vt: np.ndarray):
    r1 = u @ _W @ vt
    r2 = u @ _W.T @ vt
    t1 = u[:, 2].copy()
    t2 = -u[:, 2]
    return r1, r2, t1, t2


def _improper(rotation: np.ndarray) -> bool:
    return np.linalg.det(rotation) + 1.0 < 1e-09


class InitialExRotation:
    """Estimates the camera-to-body rotation from camera and IMU rotations."""

    def __init__(self, window_size: int = WINDOW_SIZE) -> None:
        self.window_size = window_size
        self.frame_count = 0
        self.rc: list[np.ndarray] = [np.eye(3)]
        self.rc_g: list[np.ndarray] = [np.eye(3)]
        self.rimu: list[np.ndarray] = [np.eye(3)]
        self.ric = np.eye(3)

    def calibration_ex_rotation(
        self, corres: Sequence[tuple], delta_q_imu: Quaternion
    ) -> Optional[np.ndarray]:
        """Add one frame pair; return the calibrated rotation once it is well determined."""
        self.frame_count += 1
        self.rc.append(self.solve_relative_r(corres))
        r_imu = delta_q_imu.to_matrix()
        self.rimu.append(r_imu)
        self.rc_g.append(self.ric.T @ r_imu @ self.ric)

        blocks = []
        for rc, rc_g, rimu in zip(self.rc[1:], self.rc_g[1:], self.rimu[1:]):
            r1 = Quaternion.from_matrix(rc)
            r2 = Quaternion.from_matrix(rc_g)
            angular_distance = 180.0 / math.pi * r1.angular_distance(r2)
            huber = 5.0 / angular_distance if angular_distance > 5.0 else 1.0

            left = np.zeros((4, 4))
            w, q = r1.w, r1.vec()
            left[:3, :3] = w * np.eye(3) + skew_symmetric(q)
            left[:3, 3] = q
            left[3, :3] = -q
            left[3, 3] = w

            right = np.zeros((4, 4))
            r_ij = Quaternion.from_matrix(rimu)
            w, q = r_ij.w, r_ij.vec()
            right[:3, :3] = w * np.eye(3) - skew_symmetric(q)
            right[:3, 3] = q
            right[3, :3] = -q
            right[3, 3] = w

            blocks.append(huber * (left - right))

        a = np.vstack(blocks)
        _, singular, vt = np.linalg.svd(a)
        x = vt[3]
        estimated = Quaternion(x[3], x[0], x[1], x[2])
        self.ric = estimated.to_matrix().T
        ric_cov = singular[1:4]
        if self.frame_count >= self.window_size and ric_cov[1] > 0.25:
            return self.ric.copy()
        return None

    def solve_relative_r(self, corres: Sequence[tuple]) -> np.ndarray:
        """Rotation of the second camera in the first, identity if too few pairs."""
        if len(corres) < 9:
            return np.eye(3)
        ll = np.array([np.asarray(a, dtype=float)[:2] for a, _ in corres])
        rr = np.array([np.asarray(b, dtype=float)[:2] for _, b in corres])
        essential, _ = find_fundamental_mat(ll, rr)
        r1, r2, t1, t2 = self.decompose_e(essential)
        if _improper(r1):
            essential = -essential
            r1, r2, t1, t2 = self.decompose_e(essential)
            if _improper(r1):
                u, _, vt = np.linalg.svd(essential)
                u[:, 2] = -u[:, 2]
                r1, r2, t1, t2 = _compose(u, vt)
        ratio1 = max(
            self.test_triangulation(ll, rr, r1, t1),
            self.test_triangulation(ll, rr, r1, t2),
        )
        ratio2 = max(
            self.test_triangulation(ll, rr, r2, t1),
            self.test_triangulation(ll, rr, r2, t2),
        )
        answer = r1 if ratio1 > ratio2 else r2
        return answer.T.copy()

    def test_triangulation(self, left, right, rotation, translation) -> float:
        """Fraction of points that lie in front of both cameras."""
        left = np.asarray(left, dtype=float)
        right = np.asarray(right, dtype=float)
        if len(left) == 0:
            raise ValueError("no points to triangulate")
        pose0 = np.hstack([np.eye(3), np.zeros((3, 1))])
        pose1 = np.hstack(
            [
                np.asarray(rotation, dtype=float).reshape(3, 3),
                np.asarray(translation, dtype=float).reshape(3, 1),
            ]
        )
        cloud = triangulate_points(pose0, pose1, left, right)
        with np.errstate(divide="ignore", invalid="ignore"):
            points = cloud / cloud[3]
            depth_l = (pose0 @ points)[2]
            depth_r = (pose1 @ points)[2]
            front = (depth_l > 0) & (depth_r > 0)
        return float(front.sum()) / cloud.shape[1]

    def decompose_e(self, essential):
        """Return the two rotations and two translations an essential matrix allows."""
        e = np.asarray(essential, dtype=float).reshape(3, 3)
        u, _, vt = np.linalg.svd(e)
        return _compose(u, vt)