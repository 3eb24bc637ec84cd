"""3D rotations: angle-axis, quaternions, rigid transforms and Euler angles."""

from __future__ import annotations

import argparse
import math
from dataclasses import dataclass

import numpy as np


def _vec3(v) -> np.ndarray:
    a = np.asarray(v, dtype=float).reshape(-1)
    if a.shape != (3,):
        raise ValueError(f"expected a 3-vector, got shape {np.shape(v)}")
    return a


def _mat3(m) -> np.ndarray:
    a = np.asarray(m, dtype=float)
    if a.shape != (3, 3):
        raise ValueError(f"expected a 3x3 matrix, got shape {a.shape}")
    return a


def _skew(v: np.ndarray) -> np.ndarray:
    x, y, z = v
    return np.array([[0.0, -z, y], [z, 0.0, -x], [-y, x, 0.0]])


@dataclass(frozen=True)
class AngleAxis:
    """A rotation by ``angle`` radians about a unit ``axis``."""

    angle: float
    axis: tuple[float, float, float]

    def __post_init__(self) -> None:
        axis = _vec3(self.axis)
        norm = np.linalg.norm(axis)
        if norm == 0.0:
            raise ValueError("rotation axis must be non-zero")
        object.__setattr__(self, "angle", float(self.angle))
        object.__setattr__(self, "axis", tuple(float(c) for c in axis / norm))

    def matrix(self) -> np.ndarray:
        """The 3x3 rotation matrix."""
        k = np.array(self.axis)
        c, s = math.cos(self.angle), math.sin(self.angle)
        return c * np.eye(3) + (1.0 - c) * np.outer(k, k) + s * _skew(k)

    def rotate(self, v) -> np.ndarray:
        """Rotate a 3-vector."""
        return self.matrix() @ _vec3(v)


@dataclass(frozen=True)
class Quaternion:
    """A quaternion with real part ``w`` and imaginary part (x, y, z)."""

    w: float
    x: float
    y: float
    z: float

    @classmethod
    def from_angle_axis(cls, angle_axis: AngleAxis) -> Quaternion:
        half = 0.5 * angle_axis.angle
        s = math.sin(half)
        ax, ay, az = angle_axis.axis
        return cls(math.cos(half), s * ax, s * ay, s * az)

    @classmethod
    def from_matrix(cls, matrix) -> Quaternion:
        m = _mat3(matrix)
        diag_sum = float(m.diagonal().sum())
        if diag_sum > 0.0:
            t = math.sqrt(diag_sum + 1.0)
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
        imag = [0.0, 0.0, 0.0]
        imag[i] = 0.5 * t
        t = 0.5 / t
        w = (m[k, j] - m[j, k]) * t
        imag[j] = (m[j, i] + m[i, j]) * t
        imag[k] = (m[k, i] + m[i, k]) * t
        return cls(w, *imag)

    def coeffs(self) -> np.ndarray:
        """Coefficients in (x, y, z, w) order."""
        return np.array([self.x, self.y, self.z, self.w])

    def matrix(self) -> np.ndarray:
        """The rotation matrix of this (unit) quaternion."""
        w, x, y, z = self.w, self.x, self.y, self.z
        tx, ty, tz = 2 * x, 2 * y, 2 * z
        twx, twy, twz = tx * w, ty * w, tz * w
        txx, txy, txz = tx * x, ty * x, tz * x
        tyy, tyz, tzz = ty * y, tz * y, tz * z
        return np.array(
            [
                [1 - (tyy + tzz), txy - twz, txz + twy],
                [txy + twz, 1 - (txx + tzz), tyz - twx],
                [txz - twy, tyz + twx, 1 - (txx + tyy)],
            ]
        )

    def rotate(self, v) -> np.ndarray:
        """Rotate a 3-vector (q v q^-1)."""
        return self.matrix() @ _vec3(v)


def _rotation_matrix(rotation) -> np.ndarray:
    if isinstance(rotation, (AngleAxis, Quaternion)):
        return rotation.matrix()
    return _mat3(rotation)


class Isometry:
    """A rigid 3D transform x -> linear @ x + translation."""

    def __init__(self, linear=None, translation=None) -> None:
        self._linear = np.eye(3) if linear is None else _mat3(linear).copy()
        self._translation = np.zeros(3) if translation is None else _vec3(translation).copy()

    @classmethod
    def identity(cls) -> Isometry:
        return cls()

    @property
    def linear(self) -> np.ndarray:
        return self._linear.copy()

    @property
    def translation(self) -> np.ndarray:
        return self._translation.copy()

    def rotate(self, rotation) -> Isometry:
        """Apply a rotation on the right; the translation is unchanged."""
        return Isometry(self._linear @ _rotation_matrix(rotation), self._translation)

    def pretranslate(self, t) -> Isometry:
        """Apply a translation on the left."""
        return Isometry(self._linear, self._translation + _vec3(t))

    def matrix(self) -> np.ndarray:
        """The 4x4 homogeneous matrix."""
        m = np.eye(4)
        m[:3, :3] = self._linear
        m[:3, 3] = self._translation
        return m

    def transform(self, v) -> np.ndarray:
        return self._linear @ _vec3(v) + self._translation

    def __repr__(self) -> str:
        return f"Isometry(linear={self._linear.tolist()}, translation={self._translation.tolist()})"


def euler_angles(matrix, a0: int, a1: int, a2: int) -> np.ndarray:
    """Angles (r0, r1, r2) with matrix = R_a0(r0) R_a1(r1) R_a2(r2).

    r0 lies in [0, pi], r1 and r2 in [-pi, pi].
    """
    mat = _mat3(matrix)
    if any(a not in (0, 1, 2) for a in (a0, a1, a2)) or a0 == a1 or a1 == a2:
        raise ValueError("axes must be in 0..2 with consecutive axes different")
    odd = 0 if (a0 + 1) % 3 == a1 else 1
    i = a0
    j = (a0 + 1 + odd) % 3
    k = (a0 + 2 - odd) % 3
    res = np.zeros(3)

    def flip(angle: float) -> bool:
        return (odd and angle < 0.0) or (not odd and angle > 0.0)

    if a0 == a2:
        res[0] = math.atan2(mat[j, i], mat[k, i])
        s2 = math.hypot(mat[j, i], mat[k, i])
        if flip(res[0]):
            res[0] += -math.pi if res[0] > 0.0 else math.pi
            res[1] = -math.atan2(s2, mat[i, i])
        else:
            res[1] = math.atan2(s2, mat[i, i])
        s1, c1 = math.sin(res[0]), math.cos(res[0])
        res[2] = math.atan2(c1 * mat[j, k] - s1 * mat[k, k], c1 * mat[j, j] - s1 * mat[k, j])
    else:
        res[0] = math.atan2(mat[j, k], mat[k, k])
        c2 = math.hypot(mat[i, i], mat[i, j])
        if flip(res[0]):
            res[0] += -math.pi if res[0] > 0.0 else math.pi
            res[1] = math.atan2(-mat[i, k], -c2)
        else:
            res[1] = math.atan2(-mat[i, k], c2)
        s1, c1 = math.sin(res[0]), math.cos(res[0])
        res[2] = math.atan2(s1 * mat[k, i] - c1 * mat[j, i], c1 * mat[j, j] - s1 * mat[k, j])
    if not odd:
        res = -res
    return res


def _g(value: float) -> str:
    return f"{float(value):g}"


def format_rotation(matrix) -> str:
    """Panel text for a rotation matrix, two decimals per entry."""
    m = _mat3(matrix)
    rows = ("[" + ",".join(f"{value:.2f}" for value in row) + "]" for row in m)
    return "=" + ",".join(rows)


def format_vector(v) -> str:
    """Panel text for a 3-vector."""
    return "=[" + ",".join(_g(c) for c in _vec3(v)) + "]"


def format_quaternion(q: Quaternion) -> str:
    """Panel text for a quaternion, coefficients in (x, y, z, w) order."""
    return "=[" + ",".join(_g(c) for c in q.coeffs()) + "]"


def camera_readouts(model_view) -> dict[str, object]:
    """Camera rotation, position, Euler angles and quaternion from a 4x4 model-view matrix."""
    m = np.asarray(model_view, dtype=float)
    if m.shape != (4, 4):
        raise ValueError(f"expected a 4x4 matrix, got shape {m.shape}")
    rotation = m[:3, :3].T.copy()
    translation = -rotation @ m[:3, 3]
    return {
        "R": rotation,
        "t": translation,
        "rpy": euler_angles(rotation.T, 2, 1, 0),
        "q": Quaternion.from_matrix(rotation),
    }


def _show(value) -> str:
    return np.array2string(np.asarray(value), precision=3, suppress_small=True)


def main(argv: list[str] | None = None) -> int:
    """Show the ways of representing and applying a rotation."""
    parser = argparse.ArgumentParser(prog="geometry-demo", description=__doc__)
    parser.parse_args(argv)

    rotation_vector = AngleAxis(math.pi / 4, (0, 0, 1))
    print("rotation matrix =\n" + _show(rotation_vector.matrix()))
    rotation_matrix = rotation_vector.matrix()

    v = np.array([1.0, 0.0, 0.0])
    print("(1,0,0) after rotation = " + _show(rotation_vector.rotate(v)))
    print("(1,0,0) after rotation = " + _show(rotation_matrix @ v))

    print("yaw pitch roll = " + _show(euler_angles(rotation_matrix, 2, 1, 0)))

    transform = Isometry.identity().rotate(rotation_vector).pretranslate((1, 3, 4))
    print("Transform matrix = \n" + _show(transform.matrix()))
    print("v tranformed = " + _show(transform.transform(v)))

    q = Quaternion.from_angle_axis(rotation_vector)
    print("quaternion = \n" + _show(q.coeffs()))
    q = Quaternion.from_matrix(rotation_matrix)
    print("quaternion = \n" + _show(q.coeffs()))
    print("(1,0,0) after rotation = " + _show(q.rotate(v)))
    return 0