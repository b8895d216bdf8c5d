"""Epipolar geometry: fundamental matrices, triangulation and relative pose."""

from __future__ import annotations

import math
import sys
from typing import Optional, Sequence

import numpy as np

_SAMPLE_SIZE = 8
_MAX_ITERS = 1000
_DEPTH_LIMIT = 50.0
_FLT_EPSILON = 1.1920929e-07


def _points(points, name: str) -> np.ndarray:
    arr = np.asarray(points, dtype=float)
    if arr.ndim != 2 or arr.shape[1] != 2:
        raise ValueError(f"{name} must be an N x 2 array of image points")
    return arr


def _matched(points1, points2) -> tuple[np.ndarray, np.ndarray]:
    p1 = _points(points1, "points1")
    p2 = _points(points2, "points2")
    if len(p1) != len(p2):
        raise ValueError("points1 and points2 must hold the same number of points")
    return p1, p2


def _normalizing_transform(points: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    centre = points.mean(axis=0)
    mean_dist = float(np.sqrt(((points - centre) ** 2).sum(axis=1)).mean())
    scale = math.sqrt(2.0) / mean_dist if mean_dist > 0.0 else 1.0
    transform = np.array(
        [
            [scale, 0.0, -scale * centre[0]],
            [0.0, scale, -scale * centre[1]],
            [0.0, 0.0, 1.0],
        ]
    )
    return (points - centre) * scale, transform


def _eight_point(p1: np.ndarray, p2: np.ndarray) -> np.ndarray:
    n1, t1 = _normalizing_transform(p1)
    n2, t2 = _normalizing_transform(p2)
    x1, y1 = n1[:, 0], n1[:, 1]
    x2, y2 = n2[:, 0], n2[:, 1]
    ones = np.ones(len(p1))
    a = np.column_stack([x2 * x1, x2 * y1, x2, y2 * x1, y2 * y1, y2, x1, y1, ones])
    _, _, vt = np.linalg.svd(a)
    f = vt[-1].reshape(3, 3)
    u, s, vt = np.linalg.svd(f)
    s[2] = 0.0
    f = u @ np.diag(s) @ vt
    f = t2.T @ f @ t1
    if abs(f[2, 2]) > _FLT_EPSILON:
        return f / f[2, 2]
    norm = np.linalg.norm(f)
    return f / norm if norm > 0.0 else f


def _epipolar_error(f: np.ndarray, p1: np.ndarray, p2: np.ndarray) -> np.ndarray:
    h1 = np.column_stack([p1, np.ones(len(p1))])
    h2 = np.column_stack([p2, np.ones(len(p2))])
    a = h1 @ f.T
    b = h2 @ f
    with np.errstate(divide="ignore", invalid="ignore"):
        s2 = 1.0 / (a[:, 0] ** 2 + a[:, 1] ** 2)
        s1 = 1.0 / (b[:, 0] ** 2 + b[:, 1] ** 2)
        d2 = (h2 * a).sum(axis=1)
        d1 = (h1 * b).sum(axis=1)
        err = np.maximum(d1 * d1 * s1, d2 * d2 * s2)
    return np.nan_to_num(err, nan=np.inf)


def _update_iterations(confidence: float, outlier_ratio: float, max_iters: int) -> int:
    p = max(1.0 - confidence, sys.float_info.min)
    inlier_prob = (1.0 - outlier_ratio) ** _SAMPLE_SIZE
    denom = 1.0 - inlier_prob
    if denom < sys.float_info.min:
        return 0
    num = math.log(p)
    denom = math.log(denom)
    if denom >= 0.0 or -num >= max_iters * (-denom):
        return max_iters
    return int(round(num / denom))


def find_fundamental_mat(
    points1,
    points2,
    threshold: float = 3.0,
    confidence: float = 0.99,
    ransac: bool = True,
    seed: Optional[int] = 0,
) -> tuple[np.ndarray, np.ndarray]:
    """Estimate the fundamental matrix ``F`` with ``p2^T F p1 = 0``.

    Returns ``(F, inlier_mask)``. With *ransac* the model is fitted to
    random eight-point samples and refitted to the largest inlier set.
    """
    p1, p2 = _matched(points1, points2)
    n = len(p1)
    if n < _SAMPLE_SIZE:
        raise ValueError(f"at least {_SAMPLE_SIZE} point pairs are needed, got {n}")
    if not ransac or n == _SAMPLE_SIZE:
        return _eight_point(p1, p2), np.ones(n, dtype=bool)

    rng = np.random.default_rng(seed)
    threshold2 = float(threshold) ** 2
    best_mask: Optional[np.ndarray] = None
    best_count = 0
    iterations = _MAX_ITERS
    done = 0
    while done < iterations:
        done += 1
        sample = rng.choice(n, _SAMPLE_SIZE, replace=False)
        try:
            model = _eight_point(p1[sample], p2[sample])
        except np.linalg.LinAlgError:
            continue
        mask = _epipolar_error(model, p1, p2) <= threshold2
        count = int(mask.sum())
        if count > best_count:
            best_count = count
            best_mask = mask
            iterations = _update_iterations(confidence, (n - count) / n, iterations)
    if best_mask is None or best_count < _SAMPLE_SIZE:
        raise ValueError("no fundamental matrix is supported by enough points")
    return _eight_point(p1[best_mask], p2[best_mask]), best_mask


def triangulate_points(pose0, pose1, points1, points2) -> np.ndarray:
    """Triangulate point pairs seen by two 3x4 projection matrices.

    Returns a 4 x N array of homogeneous points.
    """
    p0 = np.asarray(pose0, dtype=float).reshape(3, 4)
    p1 = np.asarray(pose1, dtype=float).reshape(3, 4)
    x0, x1 = _matched(points1, points2)
    if len(x0) == 0:
        return np.zeros((4, 0))
    rows = np.stack(
        [
            x0[:, 0:1] * p0[2] - p0[0],
            x0[:, 1:2] * p0[2] - p0[1],
            x1[:, 0:1] * p1[2] - p1[0],
            x1[:, 1:2] * p1[2] - p1[1],
        ],
        axis=1,
    )
    _, _, vt = np.linalg.svd(rows)
    return vt[:, -1, :].T


def decompose_essential_mat(essential) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Split an essential matrix into its two rotations and the translation direction."""
    e = np.asarray(essential, dtype=float).reshape(3, 3)
    u, _, vt = np.linalg.svd(e)
    if np.linalg.det(u) < 0:
        u = -u
    if np.linalg.det(vt) < 0:
        vt = -vt
    w = np.array([[0.0, 1.0, 0.0], [-1.0, 0.0, 0.0], [0.0, 0.0, 1.0]])
    r1 = u @ w @ vt
    r2 = u @ w.T @ vt
    t = u[:, 2].copy()
    return r1, r2, t


def _cheirality(pose: np.ndarray, points1: np.ndarray, points2: np.ndarray) -> np.ndarray:
    p0 = np.hstack([np.eye(3), np.zeros((3, 1))])
    q = triangulate_points(p0, pose, points1, points2)
    with np.errstate(divide="ignore", invalid="ignore"):
        mask = q[2] * q[3] > 0
        q = q / q[3]
        mask &= q[2] < _DEPTH_LIMIT
        q = pose @ q
        mask &= (q[2] > 0) & (q[2] < _DEPTH_LIMIT)
    return mask


def recover_pose(
    essential,
    points1,
    points2,
    camera_matrix=None,
    mask=None,
) -> tuple[int, np.ndarray, np.ndarray, np.ndarray]:
    """Pick the rotation and translation, ``x2 = R x1 + t``, that put most points in front.

    Returns ``(inlier_count, R, t, inlier_mask)``.
    """
    p1, p2 = _matched(points1, points2)
    k = np.eye(3) if camera_matrix is None else np.asarray(camera_matrix, dtype=float)
    if k.shape != (3, 3):
        raise ValueError("camera_matrix must be 3x3")
    fx, fy, cx, cy = k[0, 0], k[1, 1], k[0, 2], k[1, 2]
    offset = np.array([cx, cy])
    focal = np.array([fx, fy])
    p1 = (p1 - offset) / focal
    p2 = (p2 - offset) / focal

    r1, r2, t = decompose_essential_mat(essential)
    candidates = [(r1, t), (r2, t), (r1, -t), (r2, -t)]
    masks = [_cheirality(np.hstack([r, tt.reshape(3, 1)]), p1, p2) for r, tt in candidates]

    if mask is not None:
        given = np.asarray(mask).reshape(-1).astype(bool)
        if len(given) != len(p1):
            raise ValueError("mask must have one entry per point pair")
        masks = [given & m for m in masks]

    counts = [int(m.sum()) for m in masks]
    best = max(range(4), key=lambda i: (counts[i], -i))
    rotation, translation = candidates[best]
    return counts[best], rotation.copy(), translation.copy(), masks[best]


class MotionEstimator:
    """Relative camera motion from normalised point correspondences."""

    def solve_relative_rt(
        self, corres: Sequence[tuple]
    ) -> Optional[tuple[np.ndarray, np.ndarray]]:
        """Return ``(rotation, translation)`` of the second camera in the first, or None."""
        if len(corres) < 15:
            return None
        ll = np.array([np.asarray(a, dtype=float)[:2] for a, _ in corres])
        rr = np.array([np.asarray(b, dtype=float)[:2] for _, b in corres])
        try:
            essential, mask = find_fundamental_mat(ll, rr, 0.3 / 460, 0.99, True)
        except ValueError:
            return None
        inliers, rot, trans, _ = recover_pose(essential, ll, rr, np.eye(3), mask)
        rotation = rot.T
        translation = -rot.T @ trans
        if inliers > 12:
            return rotation, translation
        return None