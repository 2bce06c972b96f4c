from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

import yaml

from stack_app.engine.compositing import hex_to_rgb
from stack_app.engine.renderer import RenderOptions

DEFAULT_TARGET = {"min": 400.0, "max": 4000.0, "width": 1200}
DEFAULT_BACKGROUND = {
    "mode": "none",
    "white_threshold": 250,
    "chroma_color": "#ffffff",
    "tolerance": 10.0,
    "smoothness": 20.0,
}
BACKGROUND_MODES = {"none", "white", "chroma"}
DISPLAY_UNITS = {"transmittance", "absorbance"}


def _section(params: Dict[str, Any], name: str, defaults: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(defaults)
    value = params.get(name)
    if isinstance(value, dict):
        merged.update(value)
    return merged


@dataclass
class OverlayRecipe:
    params: Dict[str, Any] = field(default_factory=dict)
    version: str = "0.1.0"

    def target_axis(self) -> Tuple[float, float, int]:
        target = _section(self.params, "target", DEFAULT_TARGET)
        return float(target["min"]), float(target["max"]), int(target["width"])

    @property
    def vertical_scale(self) -> float:
        return float(self.params.get("vertical_scale", 1.0))

    @property
    def line_color(self) -> Optional[str]:
        return self.params.get("line_color") or None

    @property
    def display_units(self) -> str:
        return str(self.params.get("display_units", "transmittance")).strip().lower()

    def background(self) -> Dict[str, Any]:
        return _section(self.params, "background", DEFAULT_BACKGROUND)

    def render_options(self) -> RenderOptions:
        opts = RenderOptions()
        render = self.params.get("render")
        if isinstance(render, dict):
            for key, value in render.items():
                if hasattr(opts, key):
                    setattr(opts, key, value)
        return opts

    def validate(self) -> list[str]:
        errs = []
        target = _section(self.params, "target", DEFAULT_TARGET)
        try:
            if float(target["min"]) >= float(target["max"]):
                errs.append("Target wavenumber min must be less than max")
            if int(target["width"]) <= 0:
                errs.append("Target width must be positive")
        except (TypeError, ValueError):
            errs.append("Target axis bounds must be numeric")

        try:
            if self.vertical_scale <= 0:
                errs.append("Vertical scale must be positive")
        except (TypeError, ValueError):
            errs.append("Vertical scale must be numeric")

        background = self.background()
        mode = str(background.get("mode", "none")).lower()
        if mode not in BACKGROUND_MODES:
            errs.append(f"Background mode must be one of {', '.join(sorted(BACKGROUND_MODES))}")
        if mode == "chroma":
            if hex_to_rgb(str(background.get("chroma_color", ""))) is None:
                errs.append("Chroma key colour must be a #rgb or #rrggbb value")
            for key in ("tolerance", "smoothness"):
                try:
                    value = float(background.get(key))
                except (TypeError, ValueError):
                    errs.append(f"Chroma key {key} must be numeric")
                    continue
                if not 0 <= value <= 100:
                    errs.append(f"Chroma key {key} must be between 0 and 100")

        if self.line_color is not None and hex_to_rgb(str(self.line_color)) is None:
            errs.append("Line colour must be a #rgb or #rrggbb value")

        if self.display_units not in DISPLAY_UNITS:
            errs.append("Display units must be transmittance or absorbance")

        render = self.render_options()
        try:
            if int(render.width) <= 0 or int(render.height) <= 0:
                errs.append("Render size must be positive")
            if float(render.line_width) <= 0:
                errs.append("Render line width must be positive")
        except (TypeError, ValueError):
            errs.append("Render size and line width must be numeric")
        return errs

    def to_dict(self) -> Dict[str, Any]:
        return {"version": self.version, "params": dict(self.params)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OverlayRecipe":
        params = data.get("params", data)
        if not isinstance(params, dict):
            raise ValueError("Recipe params must be a mapping")
        params = {k: v for k, v in params.items() if k != "version"}
        return cls(params=params, version=str(data.get("version", "0.1.0")))


def load_recipe(path: Union[str, Path]) -> OverlayRecipe:
    path = Path(path)
    try:
        with path.open("r", encoding="utf-8") as handle:
            content = yaml.safe_load(handle) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise ValueError(f"Failed to load recipe {path}: {exc}") from exc
    if not isinstance(content, dict):
        raise ValueError(f"Recipe file {path} must contain a mapping at the top level.")
    return OverlayRecipe.from_dict(content)


def save_recipe(recipe: OverlayRecipe, path: Union[str, Path]) -> None:
    path = Path(path)
    with path.open("w", encoding="utf-8") as handle:
        yaml.safe_dump(recipe.to_dict(), handle, sort_keys=False)
