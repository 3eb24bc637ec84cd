"""Two-view geometry: fundamental, essential and homography estimation, pose recovery, triangulation."""

from __future__ import annotations

import math

import numpy as np

# Intrinsics of the TUM Freiburg2 camera.
TUM_K = np.array([[520.9, 0.0, 325.1], [0.0, 521.0, 249.7], [0.0, 0.0, 1.0]])
TUM_FOCAL = 521.0
TUM_PRINCIPAL_POINT = (325.1, 249.7)

# Triangulated points beyond this depth are treated as points at infinity.
_CHEIRALITY_DISTANCE = 50.0


def _points(points) -> np.ndarray:
    a = np.asarray(points, dtype=float)
    if a.size == 0:
        return np.zeros((0, 2))
    if a.shape[-1] != 2:
        raise ValueError(f"expected 2D points, got shape {a.shape}")
    return a.reshape(-1, 2)


def _pair(points1, points2) -> tuple[np.ndarray, np.ndarray]:
    p1, p2 = _points(points1), _points(points2)
    if p1.shape != p2.shape:
        raise ValueError(f"point sets differ in size: {len(p1)} and {len(p2)}")
    return p1, p2


def _homogeneous(p: np.ndarray) -> np.ndarray:
    return np.column_stack([p, np.ones(len(p))])


def _normalizing_transform(p: np.ndarray) -> np.ndarray:
    centroid = p.mean(axis=0)
    mean_dist = np.linalg.norm(p - centroid, axis=1).mean()
    if mean_dist < 1e-12:
        raise ValueError("points are degenerate")
    s = math.sqrt(2.0) / mean_dist
    return np.array([[s, 0.0, -s * centroid[0]], [0.0, s, -s * centroid[1]], [0.0, 0.0, 1.0]])


def camera_matrix(focal: float, pp=(0.0, 0.0)) -> np.ndarray:
    """Intrinsic matrix with equal focal lengths and principal point ``pp``."""
    cx, cy = pp
    return np.array([[focal, 0.0, cx], [0.0, focal, cy], [0.0, 0.0, 1.0]], dtype=float)


def pixel2cam(p, K) -> np.ndarray:
    """Pixel coordinates to normalized camera coordinates."""
    k = np.asarray(K, dtype=float)
    x, y = np.asarray(p, dtype=float).reshape(2)
    return np.array([(x - k[0, 2]) / k[0, 0], (y - k[1, 2]) / k[1, 1]])


def skew(t) -> np.ndarray:
    """Cross-product matrix of a 3-vector."""
    x, y, z = np.asarray(t, dtype=float).reshape(3)
    return np.array([[0.0, -z, y], [z, 0.0, -x], [-y, x, 0.0]])


def find_fundamental_mat(points1, points2) -> np.ndarray:
    """Normalized eight-point estimate of F with p2^T F p1 = 0, rank 2, scaled so F[2,2] = 1."""
    p1, p2 = _pair(points1, points2)
    if len(p1) < 8:
        raise ValueError("the eight-point algorithm needs at least 8 correspondences")
    t1, t2 = _normalizing_transform(p1), _normalizing_transform(p2)
    n1 = (_homogeneous(p1) @ t1.T)[:, :2]
    n2 = (_homogeneous(p2) @ t2.T)[:, :2]
    x1, y1 = n1.T
    x2, y2 = n2.T
    a = np.column_stack([x2 * x1, x2 * y1, x2, y2 * x1, y2 * y1, y2, x1, y1, np.ones(len(p1))])
    _, _, vt = np.linalg.svd(a)
    f = vt[-1].reshape(3, 3)
    u, s, vt = np.linalg.svd(f)
    s[2] = 0.0
    f = t2.T @ (u @ np.diag(s) @ vt) @ t1
    if abs(f[2, 2]) > np.finfo(float).eps:
        f = f / f[2, 2]
    return f


def find_essential_mat(points1, points2, focal: float, pp=(0.0, 0.0)) -> np.ndarray:
    """Essential matrix K^T F K from pixel correspondences."""
    k = camera_matrix(focal, pp)
    return k.T @ find_fundamental_mat(points1, points2) @ k


def _homography_dlt(p1: np.ndarray, p2: np.ndarray) -> np.ndarray:
    t1, t2 = _normalizing_transform(p1), _normalizing_transform(p2)
    n1 = (_homogeneous(p1) @ t1.T)[:, :2]
    n2 = (_homogeneous(p2) @ t2.T)[:, :2]
    x, y = n1.T
    u, v = n2.T
    zeros, ones = np.zeros(len(p1)), np.ones(len(p1))
    rows_u = np.column_stack([-x, -y, -ones, zeros, zeros, zeros, u * x, u * y, u])
    rows_v = np.column_stack([zeros, zeros, zeros, -x, -y, -ones, v * x, v * y, v])
    _, _, vt = np.linalg.svd(np.vstack([rows_u, rows_v]))
    h = np.linalg.inv(t2) @ vt[-1].reshape(3, 3) @ t1
    if abs(h[2, 2]) < 1e-15:
        raise ValueError("degenerate homography")
    return h / h[2, 2]


def _transfer_error(h: np.ndarray, p1: np.ndarray, p2: np.ndarray) -> np.ndarray:
    proj = _homogeneous(p1) @ h.T
    with np.errstate(divide="ignore", invalid="ignore"):
        mapped = proj[:, :2] / proj[:, 2:]
        err = np.linalg.norm(mapped - p2, axis=1)
    return np.where(np.isfinite(err), err, np.inf)


def find_homography(points1, points2, threshold: float = 3.0, iterations: int = 2000, seed=None):
    """RANSAC homography mapping points1 to points2; returns (H, inlier mask)."""
    p1, p2 = _pair(points1, points2)
    n = len(p1)
    if n < 4:
        raise ValueError("a homography needs at least 4 correspondences")
    rng = np.random.default_rng(seed)
    best_mask = None
    best_count = 0
    for _ in range(max(1, iterations) if n > 4 else 1):
        sample = rng.choice(n, size=4, replace=False) if n > 4 else np.arange(4)
        try:
            h = _homography_dlt(p1[sample], p2[sample])
        except (ValueError, np.linalg.LinAlgError):
            continue
        if not np.all(np.isfinite(h)) or abs(np.linalg.det(h)) < 1e-12:
            continue
        mask = _transfer_error(h, p1, p2) <= threshold
        count = int(mask.sum())
        if count > best_count:
            best_count, best_mask = count, mask
            if count == n:
                break
    if best_mask is None or best_count < 4:
        raise ValueError("no homography consistent with the points was found")
    h = _homography_dlt(p1[best_mask], p2[best_mask])
    return h, _transfer_error(h, p1, p2) <= threshold


def decompose_essential_mat(E) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """The two rotations and the unit translation (up to sign) encoded by E."""
    e = np.asarray(E, dtype=float)
    if e.size != 9:
        raise ValueError(f"expected a 3x3 matrix, got shape {e.shape}")
    u, _, vt = np.linalg.svd(e.reshape(3, 3))
    if np.linalg.det(u) < 0:
        u = -u
    if np.linalg.det(vt) < 0:
        vt = -vt
    w = np.array([[0.0, 1.0, 0.0], [-1.0, 0.0, 0.0], [0.0, 0.0, 1.0]])
    return u @ w @ vt, u @ w.T @ vt, u[:, 2].copy()


def triangulate_points(P1, P2, points1, points2) -> np.ndarray:
    """Linear triangulation; returns homogeneous points as a 4xN array."""
    a, b = np.asarray(P1, dtype=float), np.asarray(P2, dtype=float)
    if a.shape != (3, 4) or b.shape != (3, 4):
        raise ValueError("projection matrices must be 3x4")
    p1, p2 = _pair(points1, points2)
    if len(p1) == 0:
        return np.zeros((4, 0))
    rows = np.stack(
        [
            p1[:, :1] * a[2] - a[0],
            p1[:, 1:] * a[2] - a[1],
            p2[:, :1] * b[2] - b[0],
            p2[:, 1:] * b[2] - b[1],
        ],
        axis=1,
    )
    _, _, vt = np.linalg.svd(rows)
    return vt[:, -1, :].T.copy()


def _cheirality(p0: np.ndarray, p: np.ndarray, n1: np.ndarray, n2: np.ndarray) -> np.ndarray:
    q = triangulate_points(p0, p, n1, n2)
    with np.errstate(divide="ignore", invalid="ignore"):
        valid = q[2] * q[3] > 0
        q = q / q[3]
        valid &= q[2] < _CHEIRALITY_DISTANCE
        depth = (p @ q)[2]
        valid &= (depth > 0) & (depth < _CHEIRALITY_DISTANCE)
    return valid


def recover_pose(E, points1, points2, focal: float = 1.0, pp=(0.0, 0.0), mask=None):
    """Pick the decomposition of E that puts most points in front of both cameras.

    Returns (number of good points, R, t, mask of good points).
    """
    p1, p2 = _pair(points1, points2)
    offset = np.asarray(pp, dtype=float)
    n1, n2 = (p1 - offset) / focal, (p2 - offset) / focal
    r1, r2, t = decompose_essential_mat(E)
    p0 = np.eye(3, 4)
    candidates = [(r1, t), (r2, t), (r1, -t), (r2, -t)]
    masks = [_cheirality(p0, np.column_stack([r, tt]), n1, n2) for r, tt in candidates]
    if mask is not None:
        given = np.asarray(mask).reshape(-1) != 0
        if given.shape[0] != len(p1):
            raise ValueError("mask size does not match the number of points")
        masks = [given & m for m in masks]
    goods = [int(m.sum()) for m in masks]
    best = goods.index(max(goods))
    r, tt = candidates[best]
    return goods[best], r.copy(), tt.copy(), masks[best]


def epipolar_constraint(E, pt1, pt2) -> float:
    """y2^T E y1 for normalized camera coordinates; zero for an exact correspondence."""
    y1 = np.append(np.asarray(pt1, dtype=float).reshape(2), 1.0)
    y2 = np.append(np.asarray(pt2, dtype=float).reshape(2), 1.0)
    return float(y2 @ np.asarray(E, dtype=float) @ y1)


def triangulation(points1, points2, R, t, K=TUM_K) -> np.ndarray:
    """3D points (Nx3, first camera frame) from pixel correspondences and the relative pose."""
    p1, p2 = _pair(points1, points2)
    cam1 = np.array([pixel2cam(p, K) for p in p1]).reshape(-1, 2)
    cam2 = np.array([pixel2cam(p, K) for p in p2]).reshape(-1, 2)
    t1 = np.eye(3, 4)
    t2 = np.column_stack([np.asarray(R, dtype=float), np.asarray(t, dtype=float).reshape(3)])
    q = triangulate_points(t1, t2, cam1, cam2)
    with np.errstate(divide="ignore", invalid="ignore"):
        return (q[:3] / q[3]).T