"""Alignment of the visual structure with pre-integrated IMU measurements."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

import numpy as np

from vioinit.integration import O_BG, O_R, IntegrationBase
from vioinit.quaternion import Quaternion


class AlignmentError(RuntimeError):
    """Raised when visual and inertial measurements cannot be aligned."""


@dataclass
class ImageFrame:
    """An image frame with its pose from structure from motion."""

    points: dict[int, Any] = field(default_factory=dict)
    t: float = 0.0
    rotation: np.ndarray = field(default_factory=lambda: np.eye(3))
    translation: np.ndarray = field(default_factory=lambda: np.zeros(3))
    pre_integration: Optional[IntegrationBase] = None
    is_key_frame: bool = False


def _vector(value) -> np.ndarray:
    return np.array(value, dtype=float).reshape(3)


def _pairs(all_image_frame: Mapping[float, ImageFrame]):
    frames = [frame for _, frame in sorted(all_image_frame.items(), key=lambda item: item[0])]
    return list(zip(frames, frames[1:]))


def _solve(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    try:
        return np.linalg.solve(a, b)
    except np.linalg.LinAlgError:
        return np.linalg.lstsq(a, b, rcond=None)[0]


def solve_gyroscope_bias(all_image_frame: Mapping[float, ImageFrame], bgs: list) -> np.ndarray:
    """Estimate the gyroscope bias correction, apply it to *bgs* and re-integrate.

    Returns the correction that was added to every entry of *bgs*.
    """
    a = np.zeros((3, 3))
    b = np.zeros(3)
    pairs = _pairs(all_image_frame)
    for frame_i, frame_j in pairs:
        q_ij = Quaternion.from_matrix(frame_i.rotation.T @ frame_j.rotation)
        tmp_a = frame_j.pre_integration.jacobian[O_R:O_R + 3, O_BG:O_BG + 3]
        tmp_b = 2.0 * (frame_j.pre_integration.delta_q.inverse() * q_ij).vec()
        a += tmp_a.T @ tmp_a
        b += tmp_a.T @ tmp_b
    delta_bg = _solve(a, b)

    for index, bias in enumerate(bgs):
        bgs[index] = _vector(bias) + delta_bg

    for _, frame_j in pairs:
        frame_j.pre_integration.repropagate(np.zeros(3), bgs[0])
    return delta_bg


def tangent_basis(g0) -> np.ndarray:
    """Return a 3x2 orthonormal basis of the plane orthogonal to *g0*."""
    a = _vector(g0)
    a = a / np.linalg.norm(a)
    tmp = np.array([0.0, 0.0, 1.0])
    if np.array_equal(a, tmp):
        tmp = np.array([1.0, 0.0, 0.0])
    b = tmp - a * (a @ tmp)
    b = b / np.linalg.norm(b)
    c = np.cross(a, b)
    return np.column_stack([b, c])


def refine_gravity(all_image_frame, g, x, gravity_norm, tic):
    """Refine gravity on the sphere of radius *gravity_norm*.

    *x* is the previous solution and is replaced; returns ``(g, x)``.
    """
    tic = _vector(tic)
    g0 = _vector(g)
    g0 = g0 / np.linalg.norm(g0) * gravity_norm
    n_state = len(all_image_frame) * 3 + 2 + 1
    a = np.zeros((n_state, n_state))
    b = np.zeros(n_state)
    pairs = _pairs(all_image_frame)
    eye = np.eye(3)

    for _ in range(4):
        lxly = tangent_basis(g0)
        for i, (frame_i, frame_j) in enumerate(pairs):
            dt = frame_j.pre_integration.sum_dt
            ri_t = frame_i.rotation.T
            tmp_a = np.zeros((6, 9))
            tmp_b = np.zeros(6)
            tmp_a[0:3, 0:3] = -dt * eye
            tmp_a[0:3, 6:8] = ri_t * dt * dt / 2 @ lxly
            tmp_a[0:3, 8] = ri_t @ (frame_j.translation - frame_i.translation) / 100.0
            tmp_b[0:3] = (
                frame_j.pre_integration.delta_p
                + ri_t @ frame_j.rotation @ tic
                - tic
                - ri_t * dt * dt / 2 @ g0
            )
            tmp_a[3:6, 0:3] = -eye
            tmp_a[3:6, 3:6] = ri_t @ frame_j.rotation
            tmp_a[3:6, 6:8] = ri_t * dt @ lxly
            tmp_b[3:6] = frame_j.pre_integration.delta_v - ri_t * dt @ g0

            r_a = tmp_a.T @ tmp_a
            r_b = tmp_a.T @ tmp_b
            k = i * 3
            a[k:k + 6, k:k + 6] += r_a[:6, :6]
            b[k:k + 6] += r_b[:6]
            a[-3:, -3:] += r_a[-3:, -3:]
            b[-3:] += r_b[-3:]
            a[k:k + 6, -3:] += r_a[:6, -3:]
            a[-3:, k:k + 6] += r_a[-3:, :6]
        a = a * 1000.0
        b = b * 1000.0
        x = _solve(a, b)
        dg = x[n_state - 3:n_state - 1]
        g0 = g0 + lxly @ dg
        g0 = g0 / np.linalg.norm(g0) * gravity_norm
    return g0, x


def linear_alignment(all_image_frame, gravity_norm, tic):
    """Solve velocities, gravity and scale; returns ``(g, x)`` with the scale last in *x*."""
    if len(all_image_frame) < 2:
        raise AlignmentError("alignment needs at least two frames")
    tic = _vector(tic)
    n_state = len(all_image_frame) * 3 + 3 + 1
    a = np.zeros((n_state, n_state))
    b = np.zeros(n_state)
    eye = np.eye(3)

    for i, (frame_i, frame_j) in enumerate(_pairs(all_image_frame)):
        dt = frame_j.pre_integration.sum_dt
        ri_t = frame_i.rotation.T
        tmp_a = np.zeros((6, 10))
        tmp_b = np.zeros(6)
        tmp_a[0:3, 0:3] = -dt * eye
        tmp_a[0:3, 6:9] = ri_t * dt * dt / 2
        tmp_a[0:3, 9] = ri_t @ (frame_j.translation - frame_i.translation) / 100.0
        tmp_b[0:3] = frame_j.pre_integration.delta_p + ri_t @ frame_j.rotation @ tic - tic
        tmp_a[3:6, 0:3] = -eye
        tmp_a[3:6, 3:6] = ri_t @ frame_j.rotation
        tmp_a[3:6, 6:9] = ri_t * dt
        tmp_b[3:6] = frame_j.pre_integration.delta_v

        r_a = tmp_a.T @ tmp_a
        r_b = tmp_a.T @ tmp_b
        k = i * 3
        a[k:k + 6, k:k + 6] += r_a[:6, :6]
        b[k:k + 6] += r_b[:6]
        a[-4:, -4:] += r_a[-4:, -4:]
        b[-4:] += r_b[-4:]
        a[k:k + 6, -4:] += r_a[:6, -4:]
        a[-4:, k:k + 6] += r_a[-4:, :6]

    a = a * 1000.0
    b = b * 1000.0
    x = _solve(a, b)
    s = x[n_state - 1] / 100.0
    g = x[n_state - 4:n_state - 1].copy()
    if abs(np.linalg.norm(g) - gravity_norm) > 1.0 or s < 0:
        raise AlignmentError(f"implausible gravity {g} or scale {s}")

    g, x = refine_gravity(all_image_frame, g, x, gravity_norm, tic)
    s = x[-1] / 100.0
    x[-1] = s
    if s < 0.0:
        raise AlignmentError(f"negative scale {s}")
    return g, x


def visual_imu_alignment(all_image_frame, bgs, gravity_norm, tic):
    """Calibrate gyroscope bias, then solve velocities, gravity and scale."""
    solve_gyroscope_bias(all_image_frame, bgs)
    return linear_alignment(all_image_frame, gravity_norm, tic)