import numpy as np
import pytest
from PIL import Image

pytest.importorskip("matplotlib")

from stack_app.engine.errors import DecodeError
from stack_app.engine.jcamp_model import format_affn_block, parse_document
from stack_app.engine.model import Spectrum
from stack_app.engine.pipeline import (
    LayerResult,
    apply_image_y_scale,
    build_image_layer,
    build_spectrum_layer,
    crop_image,
    scale_image_to_match_distance,
)
from stack_app.engine.recipe_model import OverlayRecipe
from stack_app.io.raster_io import load_raster, to_data_uri


def _write_png(path, rgba, width=60, height=30):
    arr = np.tile(np.array(rgba, dtype=np.uint8), (height, width, 1))
    Image.fromarray(arr).save(path)
    return path


def _spectrum_document(title="Polystyrene", y_units="TRANSMITTANCE"):
    x = np.linspace(4000.0, 400.0, 181)
    y = 0.6 + 0.3 * np.cos(x / 250.0)
    header = f"##TITLE={title}\n##JCAMP-DX=4.24\n##YUNITS={y_units}\n"
    return parse_document(header + format_affn_block(x, y))


def test_build_image_layer_resamples_uniform_scan(tmp_path):
    src = _write_png(tmp_path / "scan.png", (0, 128, 0, 255))
    recipe = OverlayRecipe(params={"target": {"min": 1000, "max": 3000, "width": 80}})

    layer = build_image_layer(src, [(0, 4000), (59, 400)], recipe)

    assert isinstance(layer, LayerResult)
    assert layer.pixels.shape == (30, 80, 4)
    assert np.all(layer.pixels == np.array([0, 128, 0, 255], dtype=np.uint8))
    assert layer.wavenumber_range == (1000.0, 3000.0)
    assert any(line.startswith("[decode]") for line in layer.audit)
    assert any(line.startswith("[resample]") for line in layer.audit)
    assert layer.meta["kind"] == "image"


def test_build_image_layer_accepts_data_uri_and_range_calibration():
    uri = to_data_uri(np.full((10, 40, 4), 200, dtype=np.uint8))
    recipe = OverlayRecipe(params={"target": {"min": 500, "max": 3500, "width": 25}, "vertical_scale": 2})

    layer = build_image_layer(uri, {"min": 400, "max": 4000}, recipe)

    assert layer.pixels.shape == (20, 25, 4)
    assert np.all(layer.pixels == 200)


def test_build_image_layer_applies_background_and_line_colour(tmp_path):
    arr = np.full((10, 20, 4), 255, dtype=np.uint8)
    arr[4:6, :, :3] = 0
    src = tmp_path / "line.png"
    Image.fromarray(arr).save(src)
    recipe = OverlayRecipe(
        params={
            "target": {"min": 400, "max": 4000, "width": 20},
            "background": {"mode": "white"},
            "line_color": "#0000ff",
        }
    )

    layer = build_image_layer(src, {"min": 400, "max": 4000}, recipe)

    assert np.all(layer.pixels[0, :, 3] == 0)
    np.testing.assert_array_equal(layer.pixels[4, 5], [0, 0, 255, 255])
    assert any(line.startswith("[background]") for line in layer.audit)
    assert any(line.startswith("[recolor]") for line in layer.audit)


def test_build_image_layer_rejects_undecodable_source():
    with pytest.raises(DecodeError):
        build_image_layer(b"definitely not a png", [(0, 4000), (10, 400)])


def test_build_spectrum_layer_renders_onto_target_axis():
    recipe = OverlayRecipe(
        params={
            "target": {"min": 400, "max": 4000, "width": 200},
            "render": {"width": 300, "height": 60},
        }
    )

    layer = build_spectrum_layer(_spectrum_document(), recipe)

    assert layer.pixels.shape == (60, 200, 4)
    assert layer.pixels[..., 3].max() > 0
    assert layer.meta["title"] == "Polystyrene"
    assert layer.meta["data_range"] == pytest.approx((400.0, 4000.0))
    assert any(line.startswith("[render]") for line in layer.audit)


def test_build_spectrum_layer_accepts_text_and_absorbance_display():
    text = _spectrum_document(title="As text").to_text()
    recipe = OverlayRecipe(
        params={
            "display_units": "absorbance",
            "target": {"min": 400, "max": 4000, "width": 50},
            "render": {"width": 120, "height": 40, "ir_piecewise": True},
        }
    )

    layer = build_spectrum_layer(text, recipe)

    assert layer.pixels.shape == (40, 50, 4)
    assert any("target=absorbance" in line for line in layer.audit)
    assert any("piecewise=True" in line for line in layer.audit)


def test_build_spectrum_layer_decoder_outcomes():
    doc = _spectrum_document()

    with pytest.raises(DecodeError):
        build_spectrum_layer(doc, decoder=lambda _text: [])
    with pytest.raises(DecodeError):
        build_spectrum_layer(doc, decoder=lambda _text: [Spectrum([], [])])
    with pytest.raises(DecodeError):
        build_spectrum_layer(doc, decoder=lambda _text: [Spectrum([1.0, 2.0], [1.0])])

    assert build_spectrum_layer(doc, decoder=lambda _text: [Spectrum([np.nan, np.nan], [1.0, 2.0])]) is None


def test_uri_level_geometry_helpers(tmp_path):
    src = _write_png(tmp_path / "block.png", (10, 20, 30, 255), width=40, height=20)

    assert crop_image(src, 5, 5, 10, 4).shape == (4, 10, 4)
    assert scale_image_to_match_distance(src, 50.0, 100.0).shape == (10, 20, 4)
    assert apply_image_y_scale(str(src), 2.0).shape == (40, 40, 4)
    assert load_raster(src).shape == (20, 40, 4)


def test_build_spectrum_layer_range_ignores_samples_with_missing_intensity():
    x = np.linspace(4000.0, 400.0, 37)
    y = 0.5 + 0.2 * np.sin(x / 300.0)
    y[0] = np.nan
    recipe = OverlayRecipe(
        params={
            "target": {"min": 400, "max": 4000, "width": 100},
            "render": {"width": 140, "height": 40},
        }
    )

    layer = build_spectrum_layer(_spectrum_document(), recipe, decoder=lambda _text: [Spectrum(x, y)])

    assert layer.meta["data_range"] == pytest.approx((400.0, 3900.0))
    assert layer.pixels[..., 3].max() > 0
