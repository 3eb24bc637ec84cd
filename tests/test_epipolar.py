import numpy as np
import pytest

from slamkit.epipolar import (
    TUM_FOCAL,
    TUM_K,
    TUM_PRINCIPAL_POINT,
    camera_matrix,
    decompose_essential_mat,
    epipolar_constraint,
    find_essential_mat,
    find_fundamental_mat,
    find_homography,
    pixel2cam,
    recover_pose,
    skew,
    triangulate_points,
    triangulation,
)
from slamkit.geometry import AngleAxis


def _scene(n=30, seed=0):
    rng = np.random.default_rng(seed)
    X = np.column_stack(
        [rng.uniform(-2, 2, n), rng.uniform(-2, 2, n), rng.uniform(4, 8, n)]
    )
    R = AngleAxis(0.1, (0.2, 1.0, 0.1)).matrix()
    t = np.array([1.0, 0.1, 0.05])
    X2 = X @ R.T + t
    pp = np.array(TUM_PRINCIPAL_POINT)
    pix1 = X[:, :2] / X[:, 2:] * TUM_FOCAL + pp
    pix2 = X2[:, :2] / X2[:, 2:] * TUM_FOCAL + pp
    return X, R, t, pix1, pix2


def test_camera_matrix_and_pixel2cam():
    K = camera_matrix(TUM_FOCAL, TUM_PRINCIPAL_POINT)
    assert K[0, 0] == TUM_FOCAL and K[1, 1] == TUM_FOCAL
    assert (K[0, 2], K[1, 2]) == TUM_PRINCIPAL_POINT
    assert np.allclose(pixel2cam((325.1, 249.7), TUM_K), [0.0, 0.0])
    p = pixel2cam((325.1 + 520.9, 249.7 + 521.0), TUM_K)
    assert np.allclose(p, [1.0, 1.0])


def test_skew_is_cross_product():
    a, b = np.array([1.0, 2.0, 3.0]), np.array([-0.5, 4.0, 0.25])
    assert np.allclose(skew(a) @ b, np.cross(a, b))
    assert np.allclose(skew(a), -skew(a).T)


def test_fundamental_matrix_satisfies_constraint():
    _, _, _, pix1, pix2 = _scene()
    F = find_fundamental_mat(pix1, pix2)
    h1 = np.column_stack([pix1, np.ones(len(pix1))])
    h2 = np.column_stack([pix2, np.ones(len(pix2))])
    residual = np.einsum("ij,jk,ik->i", h2, F, h1)
    assert np.max(np.abs(residual)) < 1e-6
    assert F[2, 2] == pytest.approx(1.0)
    assert np.linalg.matrix_rank(F, tol=1e-8 * np.abs(F).max()) == 2


def test_fundamental_matrix_needs_eight_points():
    _, _, _, pix1, pix2 = _scene(n=7)
    with pytest.raises(ValueError):
        find_fundamental_mat(pix1, pix2)
    _, _, _, pix1, pix2 = _scene(n=10)
    with pytest.raises(ValueError):
        find_fundamental_mat(pix1, pix2[:9])


def test_essential_matrix_matches_true_motion():
    _, R, t, pix1, pix2 = _scene()
    E = find_essential_mat(pix1, pix2, TUM_FOCAL, TUM_PRINCIPAL_POINT)
    expected = skew(t) @ R
    E_n = E / np.linalg.norm(E)
    exp_n = expected / np.linalg.norm(expected)
    assert min(np.abs(E_n - exp_n).max(), np.abs(E_n + exp_n).max()) < 1e-6


def test_decompose_essential_mat():
    _, R, t, _, _ = _scene()
    R1, R2, t_hat = decompose_essential_mat(skew(t) @ R)
    for rot in (R1, R2):
        assert np.allclose(rot @ rot.T, np.eye(3), atol=1e-9)
        assert np.linalg.det(rot) == pytest.approx(1.0)
    assert np.linalg.norm(t_hat) == pytest.approx(1.0)
    assert np.allclose(R1, R, atol=1e-9) or np.allclose(R2, R, atol=1e-9)
    assert abs(abs(t_hat @ t) / np.linalg.norm(t) - 1.0) < 1e-9


def test_recover_pose_finds_true_motion():
    _, R, t, pix1, pix2 = _scene()
    E = find_essential_mat(pix1, pix2, TUM_FOCAL, TUM_PRINCIPAL_POINT)
    good, R_est, t_est, mask = recover_pose(E, pix1, pix2, TUM_FOCAL, TUM_PRINCIPAL_POINT)
    assert good == len(pix1)
    assert mask.all()
    assert np.allclose(R_est, R, atol=1e-6)
    assert np.allclose(t_est, t / np.linalg.norm(t), atol=1e-6)


def test_recover_pose_respects_input_mask():
    _, R, t, pix1, pix2 = _scene()
    given = np.ones(len(pix1), dtype=np.uint8)
    given[:5] = 0
    good, _, _, mask = recover_pose(skew(t) @ R, pix1, pix2, TUM_FOCAL, TUM_PRINCIPAL_POINT, given)
    assert good == len(pix1) - 5
    assert not mask[:5].any() and mask[5:].all()
    with pytest.raises(ValueError):
        recover_pose(skew(t) @ R, pix1, pix2, TUM_FOCAL, TUM_PRINCIPAL_POINT, given[:3])


def test_epipolar_constraint_vanishes_for_true_correspondences():
    X, R, t, pix1, pix2 = _scene()
    K = camera_matrix(TUM_FOCAL, TUM_PRINCIPAL_POINT)
    E = skew(t) @ R
    for a, b in zip(pix1, pix2):
        assert abs(epipolar_constraint(E, pixel2cam(a, K), pixel2cam(b, K))) < 1e-12
    assert abs(epipolar_constraint(E, pixel2cam(pix1[0], K), pixel2cam(pix2[1], K))) > 1e-6


def test_triangulation_reconstructs_points():
    X, R, t, pix1, pix2 = _scene()
    K = camera_matrix(TUM_FOCAL, TUM_PRINCIPAL_POINT)
    points = triangulation(pix1, pix2, R, t, K)
    assert points.shape == X.shape
    assert np.allclose(points, X, atol=1e-6)


def test_triangulate_points_projects_back():
    X, R, t, pix1, pix2 = _scene(n=5)
    n1 = X[:, :2] / X[:, 2:]
    X2 = X @ R.T + t
    n2 = X2[:, :2] / X2[:, 2:]
    Q = triangulate_points(np.eye(3, 4), np.column_stack([R, t]), n1, n2)
    assert Q.shape == (4, 5)
    assert np.allclose((Q[:3] / Q[3]).T, X, atol=1e-8)
    with pytest.raises(ValueError):
        triangulate_points(np.eye(3), np.eye(3, 4), n1, n2)


def test_find_homography_with_outliers():
    rng = np.random.default_rng(5)
    p1 = np.column_stack([rng.uniform(0, 640, 40), rng.uniform(0, 480, 40)])
    H_true = np.array([[1.1, 0.05, 10.0], [-0.03, 0.95, -5.0], [1e-4, 2e-5, 1.0]])
    proj = np.column_stack([p1, np.ones(40)]) @ H_true.T
    p2 = proj[:, :2] / proj[:, 2:]
    p2[-5:] += 100.0
    H, inliers = find_homography(p1, p2, 3.0, 2000, 1)
    assert np.allclose(H, H_true, rtol=1e-6, atol=1e-9)
    assert inliers[:-5].all()
    assert not inliers[-5:].any()


def test_find_homography_needs_four_points():
    with pytest.raises(ValueError):
        find_homography([[0, 0], [1, 0], [0, 1]], [[0, 0], [1, 0], [0, 1]])