import numpy as np
import pytest

from stack_app.engine.compositing import (
    apply_y_scale,
    chroma_key,
    color_distance,
    crop,
    hex_to_rgb,
    recolor,
    rgb_to_hex,
    sample_color,
    scale_to_match_distance,
    white_to_transparent,
)
from stack_app.engine.errors import GeometryError


def _image(*rgba_pixels):
    return np.array([list(rgba_pixels)], dtype=np.uint8)


def test_hex_round_trip_helpers():
    assert hex_to_rgb("#abc") == (170, 187, 204)
    assert hex_to_rgb("FF8000") == (255, 128, 0)
    assert hex_to_rgb("#12345") is None
    assert hex_to_rgb(None) is None
    assert rgb_to_hex(255, 128, 0) == "#ff8000"
    assert color_distance(0, 0, 0, 255, 255, 255) == pytest.approx((3 * 255 ** 2) ** 0.5)


@pytest.mark.parametrize("tolerance", [0.1, 5.0, 50.0])
def test_chroma_key_clears_exact_match_and_keeps_far_pixels(tolerance):
    pixels = _image((0, 255, 0, 255), (255, 0, 255, 255), (255, 0, 255, 200))
    result = chroma_key(pixels, "#00ff00", tolerance, 20.0)
    assert result is pixels
    assert pixels[0, 0, 3] == 0
    assert pixels[0, 1, 3] == 255
    assert pixels[0, 2, 3] == 200


def test_chroma_key_feathers_alpha_in_band():
    pixels = _image((225, 225, 225, 255), (200, 200, 200, 255))
    chroma_key(pixels, (255, 255, 255), 10.0, 50.0)
    assert 0 < pixels[0, 0, 3] < 255
    assert pixels[0, 1, 3] == 255


def test_chroma_key_without_smoothness_is_a_hard_threshold():
    pixels = _image((225, 225, 225, 255), (250, 250, 250, 255))
    chroma_key(pixels, "#ffffff", 10.0, 0.0)
    assert pixels[0, 0, 3] == 255
    assert pixels[0, 1, 3] == 0


def test_white_to_transparent_threshold():
    pixels = _image((250, 251, 255, 255), (249, 255, 255, 255), (10, 10, 10, 255))
    white_to_transparent(pixels, 250)
    np.testing.assert_array_equal(pixels[0, :, 3], [0, 255, 255])


def test_recolor_paints_visible_pixels_only():
    pixels = _image((10, 20, 30, 255), (10, 20, 30, 0), (1, 2, 3, 128))
    recolor(pixels, "#ff0000")
    np.testing.assert_array_equal(pixels[0, 0], [255, 0, 0, 255])
    np.testing.assert_array_equal(pixels[0, 1], [10, 20, 30, 0])
    np.testing.assert_array_equal(pixels[0, 2], [255, 0, 0, 128])


def test_recolor_falls_back_to_black():
    pixels = _image((10, 20, 30, 255))
    recolor(pixels, "not-a-colour")
    np.testing.assert_array_equal(pixels[0, 0], [0, 0, 0, 255])


def test_pixel_utilities_reject_non_rgba_buffers():
    with pytest.raises(ValueError):
        white_to_transparent(np.zeros((2, 2, 3), dtype=np.uint8))


def test_crop_clamps_to_bounds():
    pixels = np.arange(10 * 10 * 4, dtype=np.uint32).reshape(10, 10, 4).astype(np.uint8)
    out = crop(pixels, 8, 8, 5, 5)
    assert out.shape == (2, 2, 4)
    np.testing.assert_array_equal(out, pixels[8:10, 8:10])
    before = pixels.copy()
    out[...] = 0
    np.testing.assert_array_equal(pixels, before)

    assert crop(pixels, 20, -5, 5, 3).shape == (3, 1, 4)


def test_crop_without_area_raises():
    pixels = np.zeros((10, 10, 4), dtype=np.uint8)
    with pytest.raises(GeometryError):
        crop(pixels, 0, 0, 0, 5)
    with pytest.raises(GeometryError):
        crop(pixels, 2, 2, 5, -1)


def test_sample_color_averages_neighbourhood():
    pixels = np.zeros((20, 20, 4), dtype=np.uint8)
    pixels[..., 0] = 200
    pixels[..., 2] = 51
    assert sample_color(pixels, 10, 10) == "#c80033"
    assert sample_color(pixels, -10, 5) is None


def test_scale_to_match_distance():
    pixels = np.zeros((10, 20, 4), dtype=np.uint8)
    assert scale_to_match_distance(pixels, 100.0, 100.4) is pixels
    assert scale_to_match_distance(pixels, 100.0, 0.0) is pixels
    assert scale_to_match_distance(pixels, 200.0, 100.0).shape == (20, 40, 4)
    assert scale_to_match_distance(pixels, 100.0, 100.0, scale_y=2.0).shape == (20, 20, 4)


def test_apply_y_scale():
    pixels = np.zeros((10, 20, 4), dtype=np.uint8)
    assert apply_y_scale(pixels, 1.0005) is pixels
    assert apply_y_scale(pixels, None) is pixels
    assert apply_y_scale(pixels, 0.01) is pixels
    assert apply_y_scale(pixels, 1.5).shape == (15, 20, 4)
