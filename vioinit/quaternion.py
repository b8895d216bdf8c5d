"""Unit quaternions for 3-D rotations, with Hamilton product convention."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Union

import numpy as np

_EPSILON = 1e-12


def skew_symmetric(v) -> np.ndarray:
    """Return the cross-product matrix of the 3-vector *v*."""
    x, y, z = (float(value) for value in np.asarray(v, dtype=float).reshape(3))
    return np.array([[0.0, -z, y], [z, 0.0, -x], [-y, x, 0.0]])


@dataclass(frozen=True)
class Quaternion:
    """A quaternion ``w + xi + yj + zk``."""

    w: float
    x: float
    y: float
    z: float

    @classmethod
    def identity(cls) -> Quaternion:
        return cls(1.0, 0.0, 0.0, 0.0)

    @classmethod
    def from_matrix(cls, matrix) -> Quaternion:
        """Build the quaternion of a 3x3 rotation matrix."""
        m = np.asarray(matrix, dtype=float).reshape(3, 3)
        trace = m[0, 0] + m[1, 1] + m[2, 2]
        if trace > 0.0:
            t = math.sqrt(trace + 1.0)
            w = 0.5 * t
            t = 0.5 / t
            return cls(
                w,
                (m[2, 1] - m[1, 2]) * t,
                (m[0, 2] - m[2, 0]) * t,
                (m[1, 0] - m[0, 1]) * t,
            )
        i = 0
        if m[1, 1] > m[0, 0]:
            i = 1
        if m[2, 2] > m[i, i]:
            i = 2
        j = (i + 1) % 3
        k = (j + 1) % 3
        t = math.sqrt(m[i, i] - m[j, j] - m[k, k] + 1.0)
        coeffs = [0.0, 0.0, 0.0]
        coeffs[i] = 0.5 * t
        t = 0.5 / t
        w = (m[k, j] - m[j, k]) * t
        coeffs[j] = (m[j, i] + m[i, j]) * t
        coeffs[k] = (m[k, i] + m[i, k]) * t
        return cls(w, *coeffs)

    @classmethod
    def from_two_vectors(cls, a, b) -> Quaternion:
        """Return the smallest rotation taking direction *a* to direction *b*."""
        v0 = np.asarray(a, dtype=float).reshape(3)
        v1 = np.asarray(b, dtype=float).reshape(3)
        v0 = v0 / np.linalg.norm(v0)
        v1 = v1 / np.linalg.norm(v1)
        c = float(v1 @ v0)
        if c < -1.0 + _EPSILON:
            c = max(c, -1.0)
            _, _, vt = np.linalg.svd(np.vstack([v0, v1]))
            axis = vt[2]
            w2 = (1.0 + c) * 0.5
            scale = math.sqrt(1.0 - w2)
            return cls(math.sqrt(w2), *(axis * scale))
        axis = np.cross(v0, v1)
        s = math.sqrt((1.0 + c) * 2.0)
        return cls(s * 0.5, *(axis / s))

    def vec(self) -> np.ndarray:
        """Return the imaginary part as a 3-vector."""
        return np.array([self.x, self.y, self.z])

    def _squared_norm(self) -> float:
        return self.w * self.w + self.x * self.x + self.y * self.y + self.z * self.z

    def to_matrix(self) -> np.ndarray:
        """Return the rotation matrix; the quaternion is taken to be unit."""
        tx, ty, tz = 2.0 * self.x, 2.0 * self.y, 2.0 * self.z
        twx, twy, twz = tx * self.w, ty * self.w, tz * self.w
        txx, txy, txz = tx * self.x, ty * self.x, tz * self.x
        tyy, tyz, tzz = ty * self.y, tz * self.y, tz * self.z
        return np.array(
            [
                [1.0 - (tyy + tzz), txy - twz, txz + twy],
                [txy + twz, 1.0 - (txx + tzz), tyz - twx],
                [txz - twy, tyz + twx, 1.0 - (txx + tyy)],
            ]
        )

    def normalized(self) -> Quaternion:
        norm = math.sqrt(self._squared_norm())
        if norm > 0.0:
            return Quaternion(self.w / norm, self.x / norm, self.y / norm, self.z / norm)
        return self

    def conjugate(self) -> Quaternion:
        return Quaternion(self.w, -self.x, -self.y, -self.z)

    def inverse(self) -> Quaternion:
        n2 = self._squared_norm()
        if n2 > 0.0:
            return Quaternion(self.w / n2, -self.x / n2, -self.y / n2, -self.z / n2)
        return Quaternion(0.0, 0.0, 0.0, 0.0)

    def rotate(self, vector) -> np.ndarray:
        """Rotate a 3-vector; the quaternion is taken to be unit."""
        v = np.asarray(vector, dtype=float).reshape(3)
        q = self.vec()
        uv = 2.0 * np.cross(q, v)
        return v + self.w * uv + np.cross(q, uv)

    def angular_distance(self, other: Quaternion) -> float:
        """Return the rotation angle, in radians, between two rotations."""
        d = self * other.conjugate()
        return 2.0 * math.atan2(float(np.linalg.norm(d.vec())), abs(d.w))

    def __mul__(self, other: Union[Quaternion, np.ndarray]):
        if isinstance(other, Quaternion):
            a, b = self, other
            return Quaternion(
                a.w * b.w - a.x * b.x - a.y * b.y - a.z * b.z,
                a.w * b.x + a.x * b.w + a.y * b.z - a.z * b.y,
                a.w * b.y + a.y * b.w + a.z * b.x - a.x * b.z,
                a.w * b.z + a.z * b.w + a.x * b.y - a.y * b.x,
            )
        if isinstance(other, (np.ndarray, list, tuple)):
            return self.rotate(other)
        return NotImplemented