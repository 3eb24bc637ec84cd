import numpy as np
import pytest
from PIL import Image

from slamkit.imaging import ImageInfo, describe, fill_region, iterate_pixels, main


def test_describe_grey_and_colour():
    assert describe(np.zeros((4, 7), dtype=np.uint8)) == ImageInfo(7, 4, 1, "uint8")
    assert describe(np.zeros((5, 3, 3), dtype=np.uint8)).channels == 3


def test_describe_rejects_bad_shape():
    with pytest.raises(ValueError):
        describe(np.zeros(5))


def test_iterate_pixels_visits_every_pixel_in_order():
    img = np.arange(6, dtype=np.uint8).reshape(2, 3)
    pixels = list(iterate_pixels(img))
    assert len(pixels) == 6
    assert pixels[0] == (0, 0, (0,))
    assert pixels[-1] == (2, 1, (5,))
    assert all(img[y, x] == v[0] for x, y, v in pixels)


def test_iterate_pixels_colour_values():
    img = np.zeros((2, 2, 3), dtype=np.uint8)
    img[1, 0] = (1, 2, 3)
    found = {(x, y): v for x, y, v in iterate_pixels(img)}
    assert found[(0, 1)] == (1, 2, 3)


def test_iterate_pixels_rejects_float_image():
    with pytest.raises(ValueError):
        iterate_pixels(np.zeros((3, 3), dtype=float))


def test_fill_region_is_shared_by_alias_not_by_copy():
    img = np.full((10, 10, 3), 50, dtype=np.uint8)
    alias = img
    clone = img.copy()
    fill_region(alias, 2, 3, 4, 5, 0)
    seen = {(x, y): v for x, y, v in iterate_pixels(img)}
    assert seen[(2, 3)] == (0, 0, 0)
    assert seen[(5, 7)] == (0, 0, 0)
    assert seen[(6, 7)] == (50, 50, 50)
    assert seen[(0, 0)] == (50, 50, 50)
    untouched = {(x, y): v for x, y, v in iterate_pixels(clone)}
    assert untouched[(2, 3)] == (50, 50, 50)
    assert np.all(img[3:8, 2:6] == 0)
    assert np.all(clone == 50)


def test_fill_region_out_of_bounds():
    img = np.zeros((10, 10), dtype=np.uint8)
    with pytest.raises(ValueError):
        fill_region(img, 5, 5, 6, 1, 255)


def test_main_missing_file(tmp_path, capsys):
    assert main([str(tmp_path / "nothing.png")]) == 0
    assert "does not exist" in capsys.readouterr().err


def test_main_saves_alias_and_clone(tmp_path, capsys):
    path = tmp_path / "input.png"
    Image.fromarray(np.full((110, 120, 3), 40, dtype=np.uint8)).save(path)
    out = tmp_path / "out"
    assert main([str(path), "--save-dir", str(out)]) == 0
    assert "120" in capsys.readouterr().out
    original = np.asarray(Image.open(out / "image.png"))
    clone = np.asarray(Image.open(out / "clone.png"))
    assert np.all(original[:100, :100] == 0)
    assert np.all(clone[:100, :100] == 255)
    assert np.all(original[105:, 105:] == 40)