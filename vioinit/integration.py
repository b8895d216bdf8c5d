"""IMU pre-integration between two image frames by mid-point integration."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional, Union

import numpy as np

from vioinit.quaternion import Quaternion, skew_symmetric

O_P = 0
O_R = 3
O_V = 6
O_BA = 9
O_BG = 12

STATE_SIZE = 15
NOISE_SIZE = 18


def _vector(value) -> np.ndarray:
    return np.array(value, dtype=float).reshape(3)


@dataclass(frozen=True)
class ImuNoise:
    """Standard deviations of the IMU measurement and bias random-walk noise."""

    acc_n: float = 0.0
    gyr_n: float = 0.0
    acc_w: float = 0.0
    gyr_w: float = 0.0

    @classmethod
    def from_parameters(cls, params: Any) -> ImuNoise:
        """Take the noise levels from an object carrying acc_n, gyr_n, acc_w and gyr_w."""
        return cls(
            acc_n=float(params.acc_n),
            gyr_n=float(params.gyr_n),
            acc_w=float(params.acc_w),
            gyr_w=float(params.gyr_w),
        )

    def matrix(self) -> np.ndarray:
        """Return the 18x18 diagonal noise covariance."""
        eye = np.eye(3)
        noise = np.zeros((NOISE_SIZE, NOISE_SIZE))
        noise[0:3, 0:3] = self.acc_n**2 * eye
        noise[3:6, 3:6] = self.gyr_n**2 * eye
        noise[6:9, 6:9] = self.acc_n**2 * eye
        noise[9:12, 9:12] = self.gyr_n**2 * eye
        noise[12:15, 12:15] = self.acc_w**2 * eye
        noise[15:18, 15:18] = self.gyr_w**2 * eye
        return noise


@dataclass
class MidPointResult:
    """Outcome of one mid-point integration step."""

    delta_p: np.ndarray
    delta_q: Quaternion
    delta_v: np.ndarray
    linearized_ba: np.ndarray
    linearized_bg: np.ndarray
    step_jacobian: Optional[np.ndarray] = None
    step_v: Optional[np.ndarray] = None
    step_covariance: Optional[np.ndarray] = None


def _noise_matrix(noise: Union[ImuNoise, np.ndarray, None]) -> np.ndarray:
    if noise is None:
        return np.zeros((NOISE_SIZE, NOISE_SIZE))
    if isinstance(noise, ImuNoise):
        return noise.matrix()
    matrix = np.asarray(noise, dtype=float)
    if matrix.shape != (NOISE_SIZE, NOISE_SIZE):
        raise ValueError(f"noise matrix must be {NOISE_SIZE}x{NOISE_SIZE}")
    return matrix


def mid_point_integration(
    dt,
    acc_0,
    gyr_0,
    acc_1,
    gyr_1,
    delta_p,
    delta_q,
    delta_v,
    linearized_ba,
    linearized_bg,
    noise=None,
    update_jacobian=True,
) -> MidPointResult:
    """Advance the pre-integrated state by one IMU sample.

    With *update_jacobian* the result also carries the step transition
    matrix, the noise input matrix and the covariance they add.
    """
    dt = float(dt)
    acc_0, gyr_0 = _vector(acc_0), _vector(gyr_0)
    acc_1, gyr_1 = _vector(acc_1), _vector(gyr_1)
    delta_p, delta_v = _vector(delta_p), _vector(delta_v)
    ba, bg = _vector(linearized_ba), _vector(linearized_bg)

    un_acc_0 = delta_q.rotate(acc_0 - ba)
    un_gyr = 0.5 * (gyr_0 + gyr_1) - bg
    half = un_gyr * dt / 2.0
    result_q = delta_q * Quaternion(1.0, half[0], half[1], half[2])
    un_acc_1 = result_q.rotate(acc_1 - ba)
    un_acc = 0.5 * (un_acc_0 + un_acc_1)
    result = MidPointResult(
        delta_p=delta_p + delta_v * dt + 0.5 * un_acc * dt * dt,
        delta_q=result_q,
        delta_v=delta_v + un_acc * dt,
        linearized_ba=ba.copy(),
        linearized_bg=bg.copy(),
    )
    if not update_jacobian:
        return result

    eye = np.eye(3)
    r_w_x = skew_symmetric(0.5 * (gyr_0 + gyr_1) - bg)
    r_a_0_x = skew_symmetric(acc_0 - ba)
    r_a_1_x = skew_symmetric(acc_1 - ba)
    r0 = delta_q.to_matrix()
    r1 = result_q.to_matrix()
    rot_step = eye - r_w_x * dt

    f = np.zeros((STATE_SIZE, STATE_SIZE))
    f[0:3, 0:3] = eye
    f[0:3, 3:6] = (
        -0.25 * r0 @ r_a_0_x * dt * dt
        - 0.25 * r1 @ r_a_1_x @ rot_step * dt * dt
    )
    f[0:3, 6:9] = eye * dt
    f[0:3, 9:12] = -0.25 * (r0 + r1) * dt * dt
    f[0:3, 12:15] = -0.25 * r1 @ r_a_1_x * dt * dt * -dt
    f[3:6, 3:6] = rot_step
    f[3:6, 12:15] = -eye * dt
    f[6:9, 3:6] = -0.5 * r0 @ r_a_0_x * dt - 0.5 * r1 @ r_a_1_x @ rot_step * dt
    f[6:9, 6:9] = eye
    f[6:9, 9:12] = -0.5 * (r0 + r1) * dt
    f[6:9, 12:15] = -0.5 * r1 @ r_a_1_x * dt * -dt
    f[9:12, 9:12] = eye
    f[12:15, 12:15] = eye

    v = np.zeros((STATE_SIZE, NOISE_SIZE))
    v[0:3, 0:3] = 0.25 * r0 * dt * dt
    v[0:3, 3:6] = 0.25 * -r1 @ r_a_1_x * dt * dt * 0.5 * dt
    v[0:3, 6:9] = 0.25 * r1 * dt * dt
    v[0:3, 9:12] = v[0:3, 3:6]
    v[3:6, 3:6] = 0.5 * eye * dt
    v[3:6, 9:12] = 0.5 * eye * dt
    v[6:9, 0:3] = 0.5 * r0 * dt
    v[6:9, 3:6] = 0.5 * -r1 @ r_a_1_x * dt * 0.5 * dt
    v[6:9, 6:9] = 0.5 * r1 * dt
    v[6:9, 9:12] = v[6:9, 3:6]
    v[9:12, 12:15] = eye * dt
    v[12:15, 15:18] = eye * dt

    result.step_jacobian = f
    result.step_v = v
    result.step_covariance = v @ _noise_matrix(noise) @ v.T
    return result


@dataclass
class IntegrationBase:
    """Pre-integrated IMU measurements with their bias Jacobian and covariance."""

    acc_0: np.ndarray
    gyr_0: np.ndarray
    linearized_ba: np.ndarray
    linearized_bg: np.ndarray
    imu_noise: ImuNoise = field(default_factory=ImuNoise)
    dt: float = field(default=0.0, init=False)
    acc_1: np.ndarray = field(init=False)
    gyr_1: np.ndarray = field(init=False)
    linearized_acc: np.ndarray = field(init=False)
    linearized_gyr: np.ndarray = field(init=False)
    jacobian: np.ndarray = field(init=False)
    covariance: np.ndarray = field(init=False)
    noise: np.ndarray = field(init=False)
    sum_dt: float = field(default=0.0, init=False)
    delta_p: np.ndarray = field(init=False)
    delta_q: Quaternion = field(init=False)
    delta_v: np.ndarray = field(init=False)
    dt_buf: list[float] = field(default_factory=list, init=False)
    acc_buf: list[np.ndarray] = field(default_factory=list, init=False)
    gyr_buf: list[np.ndarray] = field(default_factory=list, init=False)

    def __post_init__(self) -> None:
        self.acc_0 = _vector(self.acc_0)
        self.gyr_0 = _vector(self.gyr_0)
        self.linearized_ba = _vector(self.linearized_ba)
        self.linearized_bg = _vector(self.linearized_bg)
        self.acc_1 = self.acc_0.copy()
        self.gyr_1 = self.gyr_0.copy()
        self.linearized_acc = self.acc_0.copy()
        self.linearized_gyr = self.gyr_0.copy()
        self.linearized_acc.setflags(write=False)
        self.linearized_gyr.setflags(write=False)
        self.noise = self.imu_noise.matrix()
        self._reset()

    def _reset(self) -> None:
        self.jacobian = np.eye(STATE_SIZE)
        self.covariance = np.zeros((STATE_SIZE, STATE_SIZE))
        self.sum_dt = 0.0
        self.delta_p = np.zeros(3)
        self.delta_q = Quaternion.identity()
        self.delta_v = np.zeros(3)

    def push_back(self, dt, acc, gyr) -> None:
        """Record one IMU sample and integrate it."""
        acc, gyr = _vector(acc), _vector(gyr)
        self.dt_buf.append(float(dt))
        self.acc_buf.append(acc)
        self.gyr_buf.append(gyr)
        self.propagate(dt, acc, gyr)

    def repropagate(self, linearized_ba, linearized_bg) -> None:
        """Integrate every recorded sample again about new bias estimates."""
        self._reset()
        self.acc_0 = self.linearized_acc.copy()
        self.gyr_0 = self.linearized_gyr.copy()
        self.linearized_ba = _vector(linearized_ba)
        self.linearized_bg = _vector(linearized_bg)
        for dt, acc, gyr in zip(self.dt_buf, self.acc_buf, self.gyr_buf):
            self.propagate(dt, acc, gyr)

    def propagate(self, dt, acc_1, gyr_1) -> None:
        """Integrate one sample without recording it."""
        self.dt = float(dt)
        self.acc_1 = _vector(acc_1)
        self.gyr_1 = _vector(gyr_1)
        step = mid_point_integration(
            self.dt,
            self.acc_0,
            self.gyr_0,
            self.acc_1,
            self.gyr_1,
            self.delta_p,
            self.delta_q,
            self.delta_v,
            self.linearized_ba,
            self.linearized_bg,
            self.noise,
            True,
        )
        self.jacobian = step.step_jacobian @ self.jacobian
        self.covariance = (
            step.step_jacobian @ self.covariance @ step.step_jacobian.T
            + step.step_covariance
        )
        self.delta_p = step.delta_p
        self.delta_q = step.delta_q.normalized()
        self.delta_v = step.delta_v
        self.linearized_ba = step.linearized_ba
        self.linearized_bg = step.linearized_bg
        self.sum_dt += self.dt
        self.acc_0 = self.acc_1.copy()
        self.gyr_0 = self.gyr_1.copy()