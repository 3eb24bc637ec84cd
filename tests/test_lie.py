import math

import numpy as np
import pytest

from slamkit.geometry import AngleAxis, Quaternion
from slamkit.lie import SE3, SO3, hat, main, se3_hat, se3_vee, vee

V = np.array([0.1, -0.2, 0.3])
XI = np.array([0.4, -1.0, 2.0, 0.3, 0.5, -0.7])


def test_hat_vee_round_trip():
    assert np.allclose(vee(hat(V)), V)


def test_hat_is_antisymmetric_and_cross_product():
    w = np.array([1.0, 2.0, -0.5])
    assert np.allclose(hat(V).T, -hat(V))
    assert np.allclose(hat(V) @ w, np.cross(V, w))


def test_so3_exp_log_round_trip():
    assert np.allclose(SO3.exp(V).log(), V)


def test_so3_exp_matches_angle_axis():
    angle = float(np.linalg.norm(V))
    expected = AngleAxis(angle, V / angle).matrix()
    assert np.allclose(SO3.exp(V).matrix, expected)


def test_so3_constructions_agree():
    rotation = AngleAxis(math.pi / 2, (0, 0, 1)).matrix()
    from_matrix = SO3(rotation)
    from_vector = SO3.exp((0, 0, math.pi / 2))
    from_quaternion = SO3.from_quaternion(Quaternion.from_matrix(rotation))
    assert np.allclose(from_matrix.log(), from_vector.log())
    assert np.allclose(from_matrix.log(), from_quaternion.log())
    assert from_matrix.log()[2] == pytest.approx(math.pi / 2)


def test_so3_small_rotation_log():
    tiny = np.array([1e-12, 0.0, 0.0])
    assert np.allclose(SO3.exp(tiny).log(), tiny)


def test_so3_inverse_composes_to_identity():
    r = SO3.exp(V)
    assert np.allclose((r.inverse() * r).matrix, np.eye(3))


def test_so3_multiplication_is_matrix_product():
    a, b = SO3.exp(V), SO3.exp(-2 * V[::-1])
    assert np.allclose((a * b).matrix, a.matrix @ b.matrix)


def test_so3_rejects_bad_shape():
    with pytest.raises(ValueError):
        SO3(np.eye(2))


def test_so3_multiply_by_number_is_type_error():
    with pytest.raises(TypeError):
        SO3() * 3


def test_se3_exp_log_round_trip():
    assert np.allclose(SE3.exp(XI).log(), XI)


def test_se3_hat_vee_round_trip():
    assert np.allclose(se3_vee(se3_hat(XI)), XI)


def test_se3_translation_comes_first():
    pure = np.array([0.5, -0.25, 2.0, 0.0, 0.0, 0.0])
    g = SE3.exp(pure)
    assert np.allclose(g.translation, pure[:3])
    assert np.allclose(g.rotation.matrix, np.eye(3))


def test_se3_small_update_shifts_translation():
    update = np.zeros(6)
    update[0] = 1e-4
    assert np.allclose(SE3.exp(update).matrix()[:3, 3], update[:3])


def test_se3_composition_and_inverse():
    a = SE3.exp(XI)
    b = SE3.exp(-0.5 * XI[::-1])
    assert np.allclose((a * b).matrix(), a.matrix() @ b.matrix())
    assert np.allclose((a.inverse() * a).matrix(), np.eye(4))


def test_se3_transform_matches_homogeneous_matrix():
    g = SE3.exp(XI)
    p = np.array([1.0, 2.0, 3.0])
    assert np.allclose(g.transform(p), (g.matrix() @ np.append(p, 1.0))[:3])


def test_se3_from_rotation_and_translation():
    rotation = AngleAxis(math.pi / 2, (0, 0, 1)).matrix()
    t = np.array([1.0, 0.0, 0.0])
    from_r = SE3(SO3(rotation), t)
    from_q = SE3(SO3.from_quaternion(Quaternion.from_matrix(rotation)), t)
    assert np.allclose(from_r.matrix(), from_q.matrix())
    assert np.allclose(SE3.exp(from_r.log()).matrix(), from_r.matrix())


def test_main_prints_demo(capsys):
    assert main([]) == 0
    out = capsys.readouterr().out
    assert "SO(3) from matrix: " in out
    assert "SE3 updated = " in out