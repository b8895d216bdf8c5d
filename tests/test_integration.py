import numpy as np
import pytest

from vioinit.integration import (
    ImuNoise,
    IntegrationBase,
    MidPointResult,
    mid_point_integration,
)
from vioinit.quaternion import Quaternion

NOISE = ImuNoise(acc_n=0.08, gyr_n=0.004, acc_w=0.00004, gyr_w=2.0e-6)


def _integrate(acc, gyr, dt, steps, ba=(0, 0, 0), bg=(0, 0, 0), noise=NOISE):
    pre = IntegrationBase(acc, gyr, ba, bg, noise)
    for _ in range(steps):
        pre.push_back(dt, acc, gyr)
    return pre


def _diagonal_sum(matrix):
    return float(np.sum(np.diag(matrix)))


def test_noise_matrix_blocks():
    matrix = NOISE.matrix()
    assert matrix.shape == (18, 18)
    assert np.allclose(np.diag(matrix)[0:3], NOISE.acc_n**2)
    assert np.allclose(np.diag(matrix)[3:6], NOISE.gyr_n**2)
    assert np.allclose(np.diag(matrix)[6:9], NOISE.acc_n**2)
    assert np.allclose(np.diag(matrix)[9:12], NOISE.gyr_n**2)
    assert np.allclose(np.diag(matrix)[12:15], NOISE.acc_w**2)
    assert np.allclose(np.diag(matrix)[15:18], NOISE.gyr_w**2)
    assert np.count_nonzero(matrix - np.diag(np.diag(matrix))) == 0


def test_noise_from_parameters():
    class Settings:
        acc_n, gyr_n, acc_w, gyr_w = 0.1, 0.2, 0.3, 0.4

    noise = ImuNoise.from_parameters(Settings())
    assert noise == ImuNoise(0.1, 0.2, 0.3, 0.4)


def test_initial_state():
    pre = IntegrationBase([0, 0, 9.8], [0, 0, 0], [0, 0, 0], [0, 0, 0], NOISE)
    assert np.array_equal(pre.jacobian, np.eye(15))
    assert np.array_equal(pre.covariance, np.zeros((15, 15)))
    assert pre.sum_dt == 0.0
    assert pre.delta_q == Quaternion.identity()
    assert np.array_equal(pre.delta_p, np.zeros(3))


def test_constant_acceleration_without_rotation():
    acc = np.array([0.5, -1.0, 9.8])
    dt, steps = 0.01, 50
    pre = _integrate(acc, [0, 0, 0], dt, steps)
    total = dt * steps
    assert pre.sum_dt == pytest.approx(total)
    assert np.allclose(pre.delta_v, acc * total)
    assert np.allclose(pre.delta_p, 0.5 * acc * total**2)
    assert np.allclose(pre.delta_q.to_matrix(), np.eye(3))


def test_buffers_record_samples():
    pre = _integrate([1, 2, 3], [0.1, 0.0, 0.0], 0.005, 4)
    assert pre.dt_buf == [0.005] * 4
    assert len(pre.acc_buf) == len(pre.gyr_buf) == 4
    assert np.allclose(pre.gyr_buf[-1], [0.1, 0.0, 0.0])


def test_constant_rotation_angle():
    omega = np.array([0.0, 0.0, 0.5])
    dt, steps = 0.001, 1000
    pre = _integrate([0, 0, 0], omega, dt, steps)
    angle = pre.delta_q.angular_distance(Quaternion.identity())
    assert angle == pytest.approx(0.5 * dt * steps, rel=1e-4)
    assert np.allclose(pre.delta_q.vec()[:2], 0.0)
    norm = np.sqrt(pre.delta_q.w**2 + np.sum(pre.delta_q.vec() ** 2))
    assert norm == pytest.approx(1.0)


def test_repropagate_with_same_biases_reproduces_state():
    acc = [0.3, 0.2, 9.7]
    gyr = [0.1, -0.2, 0.3]
    pre = _integrate(acc, gyr, 0.005, 100)
    p, v, q = pre.delta_p.copy(), pre.delta_v.copy(), pre.delta_q
    jac, cov = pre.jacobian.copy(), pre.covariance.copy()
    pre.repropagate([0, 0, 0], [0, 0, 0])
    assert np.allclose(pre.delta_p, p)
    assert np.allclose(pre.delta_v, v)
    assert np.allclose(pre.delta_q.vec(), q.vec())
    assert np.allclose(pre.jacobian, jac)
    assert np.allclose(pre.covariance, cov)
    assert pre.sum_dt == pytest.approx(0.5)


def test_acc_bias_jacobian_is_exact_without_rotation():
    acc = np.array([0.2, 0.1, 9.8])
    dt, steps = 0.01, 30
    pre = _integrate(acc, [0, 0, 0], dt, steps)
    base_v = pre.delta_v.copy()
    base_p = pre.delta_p.copy()
    dba = np.array([0.01, -0.02, 0.03])
    jac = pre.jacobian.copy()
    pre.repropagate(dba, [0, 0, 0])
    assert np.allclose(pre.delta_v - base_v, jac[6:9, 9:12] @ dba)
    assert np.allclose(pre.delta_p - base_p, jac[0:3, 9:12] @ dba)
    assert np.allclose(jac[6:9, 9:12], -dt * steps * np.eye(3))


def test_gyro_bias_jacobian_first_order():
    acc = np.array([0.5, 0.3, 9.8])
    gyr = np.array([0.2, -0.1, 0.3])
    pre = _integrate(acc, gyr, 0.005, 200)
    base_v = pre.delta_v.copy()
    jac = pre.jacobian.copy()
    dbg = np.array([1e-3, -1e-3, 1e-3])
    pre.repropagate([0, 0, 0], dbg)
    predicted = jac[6:9, 12:15] @ dbg
    assert np.allclose(pre.delta_v - base_v, predicted, rtol=0.1, atol=1e-5)


def test_covariance_symmetric_and_positive():
    pre = _integrate([0.1, 0.2, 9.8], [0.05, 0.02, -0.1], 0.005, 50)
    cov = pre.covariance
    assert np.allclose(cov, cov.T)
    assert np.min(np.linalg.eigvalsh(cov)) > -1e-15
    assert np.all(np.diag(cov) > 0.0)


def test_covariance_grows_with_time():
    pre = _integrate([0, 0, 9.8], [0, 0, 0], 0.01, 10)
    first = _diagonal_sum(pre.covariance)
    for _ in range(10):
        pre.push_back(0.01, [0, 0, 9.8], [0, 0, 0])
    assert _diagonal_sum(pre.covariance) > first


def test_zero_noise_gives_zero_covariance():
    pre = _integrate([1, 0, 9.8], [0.1, 0, 0], 0.01, 10, noise=ImuNoise())
    assert np.allclose(pre.covariance, 0.0)


def test_mid_point_without_jacobian():
    result = mid_point_integration(
        0.01,
        [0, 0, 9.8],
        [0, 0, 0],
        [0, 0, 9.8],
        [0, 0, 0],
        np.zeros(3),
        Quaternion.identity(),
        np.zeros(3),
        np.zeros(3),
        np.zeros(3),
        NOISE,
        False,
    )
    assert isinstance(result, MidPointResult)
    assert result.step_jacobian is None
    assert result.step_covariance is None
    assert np.allclose(result.delta_v, [0, 0, 0.098])


def test_mid_point_jacobian_shapes():
    result = mid_point_integration(
        0.01,
        [0, 0, 9.8],
        [0.1, 0, 0],
        [0, 0, 9.8],
        [0.1, 0, 0],
        np.zeros(3),
        Quaternion.identity(),
        np.zeros(3),
        np.zeros(3),
        np.zeros(3),
        NOISE,
        True,
    )
    assert result.step_jacobian.shape == (15, 15)
    assert result.step_v.shape == (15, 18)
    assert np.allclose(result.step_jacobian[9:15, 9:15], np.eye(6))
    assert np.allclose(result.step_jacobian[3:6, 12:15], -0.01 * np.eye(3))


def test_bad_noise_shape_rejected():
    with pytest.raises(ValueError):
        mid_point_integration(
            0.01,
            [0, 0, 0],
            [0, 0, 0],
            [0, 0, 0],
            [0, 0, 0],
            np.zeros(3),
            Quaternion.identity(),
            np.zeros(3),
            np.zeros(3),
            np.zeros(3),
            np.eye(3),
            True,
        )