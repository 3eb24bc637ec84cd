"""Rigid alignment of matched 3D point sets: closed-form SVD solution and Gauss-Newton refinement."""

from __future__ import annotations

import numpy as np

from slamkit.epipolar import TUM_K, pixel2cam
from slamkit.lie import SE3

# Raw depth units per metre in the depth images.
DEPTH_SCALE = 5000.0
# Weight of every point-to-point residual.
_INFORMATION = 1e4
_MIN_STEP = 1e-12


def _array(points, dim: int) -> np.ndarray:
    a = np.asarray(points, dtype=float)
    if a.size == 0:
        return np.zeros((0, dim))
    if a.shape[-1] != dim:
        raise ValueError(f"expected {dim}D points, got shape {a.shape}")
    return a.reshape(-1, dim)


def _pair(points1, points2, dim: int) -> tuple[np.ndarray, np.ndarray]:
    p1, p2 = _array(points1, dim), _array(points2, dim)
    if p1.shape != p2.shape:
        raise ValueError(f"point sets differ in size: {len(p1)} and {len(p2)}")
    return p1, p2


def _skew_batch(p: np.ndarray) -> np.ndarray:
    s = np.zeros((len(p), 3, 3))
    s[:, 0, 1] = -p[:, 2]
    s[:, 0, 2] = p[:, 1]
    s[:, 1, 0] = p[:, 2]
    s[:, 1, 2] = -p[:, 0]
    s[:, 2, 0] = -p[:, 1]
    s[:, 2, 1] = p[:, 0]
    return s


def depth_pairs(pixels1, pixels2, depth1, depth2, K=TUM_K) -> tuple[np.ndarray, np.ndarray]:
    """Back-project matched pixels with their depths; pairs where either depth is zero are dropped.

    Returns two Nx3 arrays of points in the first and second camera frames.
    """
    p1, p2 = _pair(pixels1, pixels2, 2)
    d1, d2 = np.asarray(depth1), np.asarray(depth2)
    out1, out2 = [], []
    for a, b in zip(p1, p2):
        raw1 = float(d1[int(a[1]), int(a[0])])
        raw2 = float(d2[int(b[1]), int(b[0])])
        if raw1 == 0 or raw2 == 0:
            continue
        z1, z2 = raw1 / DEPTH_SCALE, raw2 / DEPTH_SCALE
        c1, c2 = pixel2cam(a, K), pixel2cam(b, K)
        out1.append((c1[0] * z1, c1[1] * z1, z1))
        out2.append((c2[0] * z2, c2[1] * z2, z2))
    return np.array(out1, dtype=float).reshape(-1, 3), np.array(out2, dtype=float).reshape(-1, 3)


def pose_estimation_3d3d(pts1, pts2) -> tuple[np.ndarray, np.ndarray]:
    """Rotation R and translation t with pts1 ~ R @ pts2 + t, by SVD of the cross-covariance."""
    p1, p2 = _pair(pts1, pts2, 3)
    if len(p1) == 0:
        raise ValueError("no point pairs given")
    c1, c2 = p1.mean(axis=0), p2.mean(axis=0)
    w = (p1 - c1).T @ (p2 - c2)
    u, _, vt = np.linalg.svd(w)
    v = vt.T
    if np.linalg.det(u) * np.linalg.det(v) < 0:
        u[:, 2] *= -1
    rotation = u @ v.T
    return rotation, c1 - rotation @ c2


def bundle_adjustment(pts1, pts2, iterations: int = 10) -> SE3:
    """Gauss-Newton refinement, from the identity, of the pose T minimising |pts1 - T pts2|^2."""
    p1, p2 = _pair(pts1, pts2, 3)
    if len(p1) < 3:
        raise ValueError("pose refinement needs at least 3 point pairs")
    n = len(p1)
    pose = SE3()
    minus_identity = np.broadcast_to(-np.eye(3), (n, 3, 3))
    for _ in range(iterations):
        mapped = p2 @ pose.rotation.matrix.T + pose.translation
        error = p1 - mapped
        jac = np.concatenate([minus_identity, _skew_batch(mapped)], axis=2)
        h = _INFORMATION * np.einsum("nij,nik->jk", jac, jac)
        b = -_INFORMATION * np.einsum("nij,ni->j", jac, error)
        step = np.linalg.solve(h, b)
        pose = SE3.exp(step) * pose
        if np.linalg.norm(step) < _MIN_STEP:
            break
    return pose