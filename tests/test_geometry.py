import math

import numpy as np
import pytest

from slamkit.geometry import (
    AngleAxis,
    Isometry,
    Quaternion,
    camera_readouts,
    euler_angles,
    format_quaternion,
    format_rotation,
    format_vector,
    main,
)

Z = (0, 0, 1)


def test_angle_axis_matrix_is_orthonormal():
    r = AngleAxis(0.7, (1, 2, 3)).matrix()
    assert np.allclose(r @ r.T, np.eye(3))


def test_angle_axis_keeps_axis_fixed():
    aa = AngleAxis(1.2, (1, -1, 2))
    assert np.allclose(aa.rotate(aa.axis), aa.axis)


def test_angle_axis_zero_axis_rejected():
    with pytest.raises(ValueError):
        AngleAxis(1.0, (0, 0, 0))


def test_quarter_turn_about_z():
    aa = AngleAxis(math.pi / 4, Z)
    half = math.sqrt(0.5)
    assert np.allclose(aa.rotate((1, 0, 0)), [half, half, 0])


def test_quaternion_from_angle_axis_matches_matrix():
    aa = AngleAxis(0.9, (0.3, -0.5, 0.8))
    q = Quaternion.from_angle_axis(aa)
    assert np.allclose(q.matrix(), aa.matrix())
    assert np.allclose(q.rotate((1, 2, 3)), aa.rotate((1, 2, 3)))


@pytest.mark.parametrize("angle", [0.3, 2.0, math.pi, 3.0])
def test_quaternion_from_matrix_round_trip(angle):
    r = AngleAxis(angle, (1, 0.2, -0.4)).matrix()
    q = Quaternion.from_matrix(r)
    assert np.allclose(q.matrix(), r)
    assert np.linalg.norm(q.coeffs()) == pytest.approx(1.0)


def test_quaternion_coeffs_order_puts_real_part_last():
    q = Quaternion.from_angle_axis(AngleAxis(math.pi / 4, Z))
    assert q.coeffs()[3] == pytest.approx(math.cos(math.pi / 8))


def test_isometry_transform_is_rotation_then_translation():
    aa = AngleAxis(math.pi / 4, Z)
    t = np.array([1.0, 3.0, 4.0])
    iso = Isometry.identity().rotate(aa).pretranslate(t)
    v = np.array([1.0, 0.0, 0.0])
    assert np.allclose(iso.transform(v), aa.rotate(v) + t)
    m = iso.matrix()
    assert np.allclose(m[:3, :3], aa.matrix())
    assert np.allclose(m[:3, 3], t)


def test_isometry_rotate_does_not_move_translation():
    t = np.array([1.0, 3.0, 4.0])
    iso = Isometry.identity().pretranslate(t).rotate(AngleAxis(1.0, (1, 1, 0)))
    assert np.allclose(iso.matrix()[:3, 3], t)


@pytest.mark.parametrize("angles", [(0.3, -0.4, 1.1), (2.5, 0.2, -2.8), (-1.0, 1.2, 0.5)])
def test_euler_zyx_reconstructs_matrix(angles):
    r = (
        AngleAxis(angles[0], (0, 0, 1)).matrix()
        @ AngleAxis(angles[1], (0, 1, 0)).matrix()
        @ AngleAxis(angles[2], (1, 0, 0)).matrix()
    )
    e = euler_angles(r, 2, 1, 0)
    rebuilt = (
        AngleAxis(e[0], (0, 0, 1)).matrix()
        @ AngleAxis(e[1], (0, 1, 0)).matrix()
        @ AngleAxis(e[2], (1, 0, 0)).matrix()
    )
    assert np.allclose(rebuilt, r)
    assert 0.0 <= e[0] <= math.pi


def test_euler_zxz_reconstructs_matrix():
    r = AngleAxis(1.0, (1, 2, 3)).matrix()
    e = euler_angles(r, 2, 0, 2)
    rebuilt = (
        AngleAxis(e[0], (0, 0, 1)).matrix()
        @ AngleAxis(e[1], (1, 0, 0)).matrix()
        @ AngleAxis(e[2], (0, 0, 1)).matrix()
    )
    assert np.allclose(rebuilt, r)


def test_euler_yaw_of_z_rotation():
    e = euler_angles(AngleAxis(math.pi / 4, Z).matrix(), 2, 1, 0)
    assert e[0] == pytest.approx(math.pi / 4)


def test_euler_rejects_repeated_axes():
    with pytest.raises(ValueError):
        euler_angles(np.eye(3), 2, 2, 0)


def test_format_rotation_identity():
    assert format_rotation(np.eye(3)) == "=[1.00,0.00,0.00],[0.00,1.00,0.00],[0.00,0.00,1.00]"


def test_format_vector():
    assert format_vector((1, 2, 3)) == "=[1,2,3]"


def test_format_quaternion_identity():
    assert format_quaternion(Quaternion.from_matrix(np.eye(3))) == "=[0,0,0,1]"


def test_camera_readouts_recover_pose():
    world_to_camera = AngleAxis(0.3, (1, 2, 3)).matrix()
    offset = np.array([0.5, -1.0, 2.0])
    model_view = np.eye(4)
    model_view[:3, :3] = world_to_camera
    model_view[:3, 3] = offset
    out = camera_readouts(model_view)
    assert np.allclose(world_to_camera @ out["t"] + offset, np.zeros(3))
    assert np.allclose(out["R"] @ world_to_camera, np.eye(3))
    assert np.allclose(out["q"].matrix(), out["R"])


def test_camera_readouts_rejects_bad_shape():
    with pytest.raises(ValueError):
        camera_readouts(np.eye(3))


def test_main_prints_demo(capsys):
    assert main([]) == 0
    out = capsys.readouterr().out
    assert "rotation matrix =" in out
    assert "v tranformed = " in out