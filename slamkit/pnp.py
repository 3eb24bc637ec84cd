"""Camera pose from 3D-2D correspondences: linear initialisation, iterative PnP and bundle adjustment."""

from __future__ import annotations

import math

import numpy as np

from slamkit.epipolar import TUM_K, pixel2cam
from slamkit.lie import SE3, SO3

# Raw depth units per metre in the depth images.
DEPTH_SCALE = 5000.0
_PNP_ITERATIONS = 20
_MAX_TRIALS = 10
_MIN_STEP = 1e-12
_PLANAR_RATIO = 1e-6


def _array(points, dim: int) -> np.ndarray:
    a = np.asarray(points, dtype=float)
    if a.size == 0:
        return np.zeros((0, dim))
    if a.shape[-1] != dim:
        raise ValueError(f"expected {dim}D points, got shape {a.shape}")
    return a.reshape(-1, dim)


def _pair(points_3d, points_2d) -> tuple[np.ndarray, np.ndarray]:
    x, uv = _array(points_3d, 3), _array(points_2d, 2)
    if len(x) != len(uv):
        raise ValueError(f"point sets differ in size: {len(x)} and {len(uv)}")
    return x, uv


def _skew_batch(p: np.ndarray) -> np.ndarray:
    s = np.zeros((len(p), 3, 3))
    s[:, 0, 1] = -p[:, 2]
    s[:, 0, 2] = p[:, 1]
    s[:, 1, 0] = p[:, 2]
    s[:, 1, 2] = -p[:, 0]
    s[:, 2, 0] = -p[:, 1]
    s[:, 2, 1] = p[:, 0]
    return s


def _pinhole(cam: np.ndarray, fx: float, fy: float, cx: float, cy: float) -> np.ndarray:
    with np.errstate(divide="ignore", invalid="ignore"):
        return np.column_stack(
            [fx * cam[:, 0] / cam[:, 2] + cx, fy * cam[:, 1] / cam[:, 2] + cy]
        )


def _pinhole_jacobian(cam: np.ndarray, fx: float, fy: float) -> np.ndarray:
    x, y, z = cam.T
    j = np.zeros((len(cam), 2, 3))
    j[:, 0, 0] = fx / z
    j[:, 0, 2] = -fx * x / (z * z)
    j[:, 1, 1] = fy / z
    j[:, 1, 2] = -fy * y / (z * z)
    return j


def _pose_jacobian(cam: np.ndarray) -> np.ndarray:
    """Derivative of exp(delta) * p at p = cam, delta ordered (translation, rotation)."""
    identity = np.broadcast_to(np.eye(3), (len(cam), 3, 3))
    return np.concatenate([identity, -_skew_batch(cam)], axis=2)


def _cost(cam: np.ndarray, proj: np.ndarray, uv: np.ndarray) -> float:
    if np.any(cam[:, 2] <= 0):
        return math.inf
    return float(((uv - proj) ** 2).sum())


def back_project(pixels1, pixels2, depth, K=TUM_K) -> tuple[np.ndarray, np.ndarray]:
    """3D points of the first view (from its depth image) paired with pixels of the second view.

    Pairs whose depth is zero are dropped. Returns (Nx3 points, Nx2 pixels).
    """
    p1, p2 = _array(pixels1, 2), _array(pixels2, 2)
    if p1.shape != p2.shape:
        raise ValueError(f"pixel sets differ in size: {len(p1)} and {len(p2)}")
    d = np.asarray(depth)
    points, pixels = [], []
    for a, b in zip(p1, p2):
        raw = float(d[int(a[1]), int(a[0])])
        if raw == 0:
            continue
        z = raw / DEPTH_SCALE
        c = pixel2cam(a, K)
        points.append((c[0] * z, c[1] * z, z))
        pixels.append((b[0], b[1]))
    return np.array(points, dtype=float).reshape(-1, 3), np.array(pixels, dtype=float).reshape(-1, 2)


def project(R, t, points, K=TUM_K) -> np.ndarray:
    """Pixel coordinates (Nx2) of world points seen by a camera with pose x_cam = R x + t."""
    k = np.asarray(K, dtype=float)
    cam = _array(points, 3) @ np.asarray(R, dtype=float).T + np.asarray(t, dtype=float).reshape(3)
    return _pinhole(cam, k[0, 0], k[1, 1], k[0, 2], k[1, 2])


def _normalizer(p: np.ndarray) -> np.ndarray:
    centroid = p.mean(axis=0)
    mean_dist = np.linalg.norm(p - centroid, axis=1).mean()
    if mean_dist < 1e-12:
        raise ValueError("points are degenerate")
    s = math.sqrt(2.0) / mean_dist
    return np.array([[s, 0.0, -s * centroid[0]], [0.0, s, -s * centroid[1]], [0.0, 0.0, 1.0]])


def _homography(src: np.ndarray, dst: np.ndarray) -> np.ndarray:
    t1, t2 = _normalizer(src), _normalizer(dst)
    ones = np.ones(len(src))
    n1 = (np.column_stack([src, ones]) @ t1.T)[:, :2]
    n2 = (np.column_stack([dst, ones]) @ t2.T)[:, :2]
    x, y = n1.T
    u, v = n2.T
    zeros = np.zeros(len(src))
    rows_u = np.column_stack([-x, -y, -ones, zeros, zeros, zeros, u * x, u * y, u])
    rows_v = np.column_stack([zeros, zeros, zeros, -x, -y, -ones, v * x, v * y, v])
    _, _, vt = np.linalg.svd(np.vstack([rows_u, rows_v]))
    return np.linalg.inv(t2) @ vt[-1].reshape(3, 3) @ t1


def _planar_init(x: np.ndarray, norm: np.ndarray, centroid: np.ndarray, basis: np.ndarray):
    e1, e2 = basis[0], basis[1]
    e3 = np.cross(e1, e2)
    offsets = x - centroid
    plane = np.column_stack([offsets @ e1, offsets @ e2])
    h = _homography(plane, norm)
    h1, h2, h3 = h.T
    scale = 0.5 * (np.linalg.norm(h1) + np.linalg.norm(h2))
    if h3[2] < 0:
        scale = -scale
    r1, r2 = h1 / scale, h2 / scale
    u, _, vt = np.linalg.svd(np.column_stack([r1, r2, np.cross(r1, r2)]))
    rotation = (u @ vt) @ np.vstack([e1, e2, e3])
    return rotation, h3 / scale - rotation @ centroid


def _dlt_init(x: np.ndarray, norm: np.ndarray):
    centroid = x.mean(axis=0)
    mean_dist = np.linalg.norm(x - centroid, axis=1).mean()
    s = math.sqrt(3.0) / mean_dist
    transform = np.eye(4)
    transform[:3, :3] *= s
    transform[:3, 3] = -s * centroid
    xh = np.column_stack([(x - centroid) * s, np.ones(len(x))])
    u, v = norm.T
    zeros = np.zeros((len(x), 4))
    rows1 = np.hstack([xh, zeros, -u[:, None] * xh])
    rows2 = np.hstack([zeros, xh, -v[:, None] * xh])
    _, _, vt = np.linalg.svd(np.vstack([rows1, rows2]))
    p = vt[-1].reshape(3, 4) @ transform
    if np.linalg.det(p[:, :3]) < 0:
        p = -p
    uu, sv, vvt = np.linalg.svd(p[:, :3])
    return uu @ vvt, p[:, 3] / sv.mean()


def _refine_pose(pose: SE3, x: np.ndarray, uv: np.ndarray, k: np.ndarray, iterations: int) -> SE3:
    fx, fy, cx, cy = k[0, 0], k[1, 1], k[0, 2], k[1, 2]

    def evaluate(p: SE3):
        cam = x @ p.rotation.matrix.T + p.translation
        proj = _pinhole(cam, fx, fy, cx, cy)
        return cam, proj, _cost(cam, proj, uv)

    cam, proj, cost = evaluate(pose)
    if not math.isfinite(cost):
        return pose
    damping = None
    for _ in range(iterations):
        residual = uv - proj
        jac = -(_pinhole_jacobian(cam, fx, fy) @ _pose_jacobian(cam))
        h = np.einsum("nij,nik->jk", jac, jac)
        g = np.einsum("nij,ni->j", jac, residual)
        if damping is None:
            damping = 1e-3 * max(float(np.diag(h).max()), 1e-12)
        accepted = False
        for _ in range(_MAX_TRIALS):
            step = np.linalg.solve(h + damping * np.eye(6), -g)
            candidate = SE3.exp(step) * pose
            cand_cam, cand_proj, cand_cost = evaluate(candidate)
            if cand_cost < cost:
                pose, cam, proj, cost = candidate, cand_cam, cand_proj, cand_cost
                damping = max(damping / 3.0, 1e-15)
                accepted = True
                break
            damping *= 2.0
        if not accepted or np.linalg.norm(step) < _MIN_STEP:
            break
    return pose


def solve_pnp(points_3d, points_2d, K=TUM_K) -> tuple[np.ndarray, np.ndarray]:
    """Pose (R, t), x_cam = R x + t, minimising reprojection error of the correspondences.

    Coplanar points need at least 4 correspondences, general points at least 6.
    """
    x, uv = _pair(points_3d, points_2d)
    k = np.asarray(K, dtype=float)
    if len(x) < 4:
        raise ValueError("pose estimation needs at least 4 correspondences")
    norm = (np.column_stack([uv, np.ones(len(uv))]) @ np.linalg.inv(k).T)[:, :2]
    centroid = x.mean(axis=0)
    _, spread, basis = np.linalg.svd(x - centroid, full_matrices=False)
    if spread[0] <= 0.0:
        raise ValueError("points are degenerate")
    if spread[2] <= _PLANAR_RATIO * spread[0]:
        rotation, translation = _planar_init(x, norm, centroid, basis)
    else:
        if len(x) < 6:
            raise ValueError("non-planar pose estimation needs at least 6 correspondences")
        rotation, translation = _dlt_init(x, norm)
    pose = _refine_pose(SE3(SO3(rotation), translation), x, uv, k, _PNP_ITERATIONS)
    return pose.rotation.matrix.copy(), pose.translation.copy()


def bundle_adjustment(points_3d, points_2d, K=TUM_K, R=None, t=None, iterations: int = 100):
    """Levenberg-Marquardt over the camera pose and all points jointly.

    The camera model uses K[0, 0] as focal length on both axes. Returns (R, t, points).
    """
    x, uv = _pair(points_3d, points_2d)
    if len(x) == 0:
        raise ValueError("no correspondences given")
    k = np.asarray(K, dtype=float)
    f, cx, cy = k[0, 0], k[0, 2], k[1, 2]
    rotation = np.eye(3) if R is None else np.asarray(R, dtype=float)
    translation = np.zeros(3) if t is None else np.asarray(t, dtype=float).reshape(3)
    pose = SE3(SO3(rotation), translation)
    points = x.copy()

    def evaluate(p: SE3, pts: np.ndarray):
        cam = pts @ p.rotation.matrix.T + p.translation
        proj = _pinhole(cam, f, f, cx, cy)
        return cam, proj, _cost(cam, proj, uv)

    cam, proj, cost = evaluate(pose, points)
    damping = None
    if math.isfinite(cost):
        for _ in range(iterations):
            residual = uv - proj
            jp = _pinhole_jacobian(cam, f, f)
            j_pose = -(jp @ _pose_jacobian(cam))
            j_point = -(jp @ pose.rotation.matrix)
            h_pp = np.einsum("nij,nik->jk", j_pose, j_pose)
            h_pl = np.einsum("nij,nik->njk", j_pose, j_point)
            h_ll = np.einsum("nij,nik->njk", j_point, j_point)
            g_p = np.einsum("nij,ni->j", j_pose, residual)
            g_l = np.einsum("nij,ni->nj", j_point, residual)
            if damping is None:
                top = max(float(np.diag(h_pp).max()), float(np.einsum("nii->n", h_ll).max()))
                damping = 1e-5 * max(top, 1e-12)
            accepted = False
            for _ in range(_MAX_TRIALS):
                c_inv = np.linalg.inv(h_ll + damping * np.eye(3))
                bc = h_pl @ c_inv
                schur = h_pp + damping * np.eye(6) - np.einsum("nij,nkj->ik", bc, h_pl)
                rhs = -g_p + np.einsum("nij,nj->i", bc, g_l)
                d_pose = np.linalg.solve(schur, rhs)
                d_points = np.einsum(
                    "nij,nj->ni", c_inv, -g_l - np.einsum("nji,j->ni", h_pl, d_pose)
                )
                cand_pose = SE3.exp(d_pose) * pose
                cand_points = points + d_points
                cand_cam, cand_proj, cand_cost = evaluate(cand_pose, cand_points)
                if cand_cost < cost:
                    pose, points = cand_pose, cand_points
                    cam, proj, cost = cand_cam, cand_proj, cand_cost
                    damping = max(damping / 3.0, 1e-15)
                    accepted = True
                    break
                damping *= 2.0
            step = np.sqrt(np.sum(d_pose**2) + np.sum(d_points**2))
            if not accepted or step < _MIN_STEP:
                break
    return pose.rotation.matrix.copy(), pose.translation.copy(), points