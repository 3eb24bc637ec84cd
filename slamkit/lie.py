"""The rotation group SO(3) and rigid-motion group SE(3) with their exponential and log maps."""

from __future__ import annotations

import argparse
import math
from dataclasses import dataclass, field

import numpy as np

from slamkit.geometry import AngleAxis, Quaternion

_SMALL_EPS = 1e-10


def hat(v) -> np.ndarray:
    """Skew-symmetric matrix of a 3-vector."""
    x, y, z = _vec(v, 3)
    return np.array([[0.0, -z, y], [z, 0.0, -x], [-y, x, 0.0]])


def vee(m) -> np.ndarray:
    """3-vector of a skew-symmetric matrix."""
    a = _mat(m, 3)
    return np.array([a[2, 1], a[0, 2], a[1, 0]])


def se3_hat(xi) -> np.ndarray:
    """4x4 twist matrix of a 6-vector (translation part first, rotation part last)."""
    v = _vec(xi, 6)
    m = np.zeros((4, 4))
    m[:3, :3] = hat(v[3:])
    m[:3, 3] = v[:3]
    return m


def se3_vee(m) -> np.ndarray:
    """6-vector (translation part first) of a 4x4 twist matrix."""
    a = _mat(m, 4)
    return np.concatenate([a[:3, 3], vee(a[:3, :3])])


def _vec(v, n: int) -> np.ndarray:
    a = np.asarray(v, dtype=float).reshape(-1)
    if a.shape != (n,):
        raise ValueError(f"expected a {n}-vector, got shape {np.shape(v)}")
    return a


def _mat(m, n: int) -> np.ndarray:
    a = np.asarray(m, dtype=float)
    if a.shape != (n, n):
        raise ValueError(f"expected a {n}x{n} matrix, got shape {a.shape}")
    return a


def _row(v) -> str:
    return " ".join(f"{float(c):g}" for c in np.asarray(v).reshape(-1))


def _unit(q: Quaternion) -> Quaternion:
    norm = math.sqrt(q.w * q.w + q.x * q.x + q.y * q.y + q.z * q.z)
    if norm == 0.0:
        raise ValueError("quaternion must be non-zero")
    return Quaternion(q.w / norm, q.x / norm, q.y / norm, q.z / norm)


@dataclass(frozen=True, eq=False)
class SO3:
    """A 3D rotation."""

    matrix: np.ndarray = field(default_factory=lambda: np.eye(3))

    def __post_init__(self) -> None:
        m = np.array(self.matrix, dtype=float)
        if m.shape != (3, 3):
            raise ValueError(f"expected a 3x3 matrix, got shape {m.shape}")
        m.setflags(write=False)
        object.__setattr__(self, "matrix", m)

    @classmethod
    def exp(cls, v) -> SO3:
        omega = _vec(v, 3)
        theta = float(np.linalg.norm(omega))
        half = 0.5 * theta
        if theta < _SMALL_EPS:
            theta_sq = theta * theta
            imag_factor = 0.5 - theta_sq / 48.0
            real_factor = 1.0 - theta_sq / 8.0
        else:
            imag_factor = math.sin(half) / theta
            real_factor = math.cos(half)
        x, y, z = imag_factor * omega
        return cls.from_quaternion(Quaternion(real_factor, x, y, z))

    @classmethod
    def from_quaternion(cls, q: Quaternion) -> SO3:
        return cls(_unit(q).matrix())

    def log(self) -> np.ndarray:
        """Rotation vector of this rotation."""
        q = _unit(Quaternion.from_matrix(self.matrix))
        imag = np.array([q.x, q.y, q.z])
        n = float(np.linalg.norm(imag))
        w = q.w
        if n < _SMALL_EPS:
            factor = 2.0 / w - 2.0 * n * n / (w * w * w)
        elif abs(w) < _SMALL_EPS:
            factor = math.pi / n if w > 0 else -math.pi / n
        else:
            factor = 2.0 * math.atan(n / w) / n
        return factor * imag

    def inverse(self) -> SO3:
        return SO3(self.matrix.T)

    def __mul__(self, other):
        if not isinstance(other, SO3):
            return NotImplemented
        return SO3(self.matrix @ other.matrix)

    def __str__(self) -> str:
        return _row(self.log())


@dataclass(frozen=True, eq=False)
class SE3:
    """A rigid motion: rotation followed by translation."""

    rotation: SO3 = field(default_factory=SO3)
    translation: np.ndarray = field(default_factory=lambda: np.zeros(3))

    def __post_init__(self) -> None:
        if not isinstance(self.rotation, SO3):
            object.__setattr__(self, "rotation", SO3(self.rotation))
        t = _vec(self.translation, 3).copy()
        t.setflags(write=False)
        object.__setattr__(self, "translation", t)

    @classmethod
    def exp(cls, xi) -> SE3:
        v = _vec(xi, 6)
        upsilon, omega = v[:3], v[3:]
        so3 = SO3.exp(omega)
        theta = float(np.linalg.norm(omega))
        if theta < _SMALL_EPS:
            jacobian = so3.matrix
        else:
            big_omega = hat(omega)
            jacobian = (
                np.eye(3)
                + (1.0 - math.cos(theta)) / (theta * theta) * big_omega
                + (theta - math.sin(theta)) / theta**3 * (big_omega @ big_omega)
            )
        return cls(so3, jacobian @ upsilon)

    def log(self) -> np.ndarray:
        """Twist (translation part first, rotation part last)."""
        omega = self.rotation.log()
        theta = float(np.linalg.norm(omega))
        big_omega = hat(omega)
        if theta < _SMALL_EPS:
            v_inv = np.eye(3) - 0.5 * big_omega + (1.0 / 12.0) * (big_omega @ big_omega)
        else:
            half = 0.5 * theta
            v_inv = (
                np.eye(3)
                - 0.5 * big_omega
                + (1.0 - 0.5 * theta * math.cos(half) / math.sin(half))
                / (theta * theta)
                * (big_omega @ big_omega)
            )
        return np.concatenate([v_inv @ self.translation, omega])

    def matrix(self) -> np.ndarray:
        m = np.eye(4)
        m[:3, :3] = self.rotation.matrix
        m[:3, 3] = self.translation
        return m

    def inverse(self) -> SE3:
        inv = self.rotation.inverse()
        return SE3(inv, -(inv.matrix @ self.translation))

    def transform(self, p) -> np.ndarray:
        return self.rotation.matrix @ _vec(p, 3) + self.translation

    def __mul__(self, other):
        if not isinstance(other, SE3):
            return NotImplemented
        return SE3(self.rotation * other.rotation, self.transform(other.translation))

    def __str__(self) -> str:
        return f"{self.rotation}\n{_row(self.translation)}"


def _show(value) -> str:
    return np.array2string(np.asarray(value), precision=6, suppress_small=True)


def main(argv: list[str] | None = None) -> int:
    """Walk through SO(3) and SE(3) construction, log/exp, hat/vee and perturbation updates."""
    parser = argparse.ArgumentParser(prog="lie-demo", description=__doc__)
    parser.parse_args(argv)

    rotation = AngleAxis(math.pi / 2, (0, 0, 1)).matrix()
    so3_r = SO3(rotation)
    so3_v = SO3.exp((0, 0, math.pi / 2))
    q = Quaternion.from_matrix(rotation)
    so3_q = SO3.from_quaternion(q)
    print(f"SO(3) from matrix: {so3_r}")
    print(f"SO(3) from vector: {so3_v}")
    print(f"SO(3) from quaternion :{so3_q}")

    so3 = so3_r.log()
    print(f"so3 = {_row(so3)}")
    print("so3 hat=\n" + _show(hat(so3)))
    print(f"so3 hat vee= {_row(vee(hat(so3)))}")

    so3_updated = SO3.exp((1e-4, 0, 0)) * so3_r
    print(f"SO3 updated = {so3_updated}")

    print("*" * 30)
    t = np.array([1.0, 0.0, 0.0])
    se3_rt = SE3(SO3(rotation), t)
    se3_qt = SE3(SO3.from_quaternion(q), t)
    print(f"SE3 from R,t= \n{se3_rt}")
    print(f"SE3 from q,t= \n{se3_qt}")
    se3 = se3_rt.log()
    print(f"se3 = {_row(se3)}")
    print("se3 hat = \n" + _show(se3_hat(se3)))
    print(f"se3 hat vee = {_row(se3_vee(se3_hat(se3)))}")

    update_se3 = np.zeros(6)
    update_se3[0] = 1e-4
    se3_updated = SE3.exp(update_se3) * se3_rt
    print("SE3 updated = \n" + _show(se3_updated.matrix()))
    return 0