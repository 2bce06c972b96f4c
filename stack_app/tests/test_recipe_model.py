from __future__ import annotations

import pytest
import yaml

from stack_app.engine.recipe_model import OverlayRecipe, load_recipe, save_recipe


def test_default_recipe_is_valid() -> None:
    recipe = OverlayRecipe()

    assert recipe.validate() == []
    assert recipe.target_axis() == (400.0, 4000.0, 1200)
    assert recipe.vertical_scale == 1.0
    assert recipe.line_color is None
    assert recipe.display_units == "transmittance"
    assert recipe.background()["mode"] == "none"


def test_partial_sections_merge_with_defaults() -> None:
    recipe = OverlayRecipe(params={"target": {"width": 600}, "background": {"mode": "white"}})

    assert recipe.target_axis() == (400.0, 4000.0, 600)
    assert recipe.background() == {
        "mode": "white",
        "white_threshold": 250,
        "chroma_color": "#ffffff",
        "tolerance": 10.0,
        "smoothness": 20.0,
    }


def test_render_options_pick_up_known_keys_only() -> None:
    recipe = OverlayRecipe(params={"render": {"width": 400, "ir_piecewise": True, "bogus": 1}})
    opts = recipe.render_options()

    assert opts.width == 400
    assert opts.height == 120
    assert opts.ir_piecewise is True
    assert not hasattr(opts, "bogus")


@pytest.mark.parametrize(
    "params, fragment",
    [
        ({"target": {"min": 4000, "max": 400}}, "min must be less than max"),
        ({"target": {"width": 0}}, "Target width"),
        ({"target": {"min": "low"}}, "numeric"),
        ({"vertical_scale": 0}, "Vertical scale"),
        ({"background": {"mode": "magic"}}, "Background mode"),
        ({"background": {"mode": "chroma", "chroma_color": "green"}}, "Chroma key colour"),
        ({"background": {"mode": "chroma", "tolerance": 150}}, "between 0 and 100"),
        ({"line_color": "#12"}, "Line colour"),
        ({"display_units": "counts"}, "Display units"),
        ({"render": {"height": -1}}, "Render size"),
    ],
)
def test_validate_reports_problems(params, fragment) -> None:
    errs = OverlayRecipe(params=params).validate()
    assert any(fragment in e for e in errs), errs


def test_recipe_yaml_round_trip(tmp_path) -> None:
    recipe = OverlayRecipe(
        params={
            "target": {"min": 500.0, "max": 3500.0, "width": 900},
            "vertical_scale": 1.5,
            "line_color": "#336699",
            "background": {"mode": "chroma", "chroma_color": "#00ff00"},
        }
    )
    path = tmp_path / "overlay.yaml"
    save_recipe(recipe, path)

    with path.open("r", encoding="utf-8") as handle:
        raw = yaml.safe_load(handle)
    assert list(raw) == ["version", "params"]

    loaded = load_recipe(path)
    assert loaded.params == recipe.params
    assert loaded.version == recipe.version
    assert loaded.target_axis() == (500.0, 3500.0, 900)


def test_load_recipe_accepts_flat_mapping(tmp_path) -> None:
    path = tmp_path / "flat.yaml"
    path.write_text("version: 0.2.0\ndisplay_units: absorbance\n", encoding="utf-8")

    recipe = load_recipe(path)

    assert recipe.version == "0.2.0"
    assert recipe.display_units == "absorbance"
    assert "version" not in recipe.params


def test_load_recipe_errors(tmp_path) -> None:
    with pytest.raises(ValueError, match="Failed to load recipe"):
        load_recipe(tmp_path / "missing.yaml")

    listing = tmp_path / "list.yaml"
    listing.write_text("- a\n- b\n", encoding="utf-8")
    with pytest.raises(ValueError, match="mapping"):
        load_recipe(listing)

    broken = tmp_path / "broken.yaml"
    broken.write_text("target: [unclosed\n", encoding="utf-8")
    with pytest.raises(ValueError, match="Failed to load recipe"):
        load_recipe(broken)
