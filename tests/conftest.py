"""Shared fixtures for comfy_recipes tests."""

import pytest

from comfy_recipes.config import reload_settings
from comfy_recipes.exceptions import set_verbosity
from comfy_recipes.parameters import ParameterDef, ParameterKind, ParameterSpec, ValidatedParams
from comfy_recipes.workflows import RecipeLibrary


@pytest.fixture
def settings_env(monkeypatch):
    """Set COMFY_RECIPES_* variables and reload settings; restored afterwards."""

    def apply(**env):
        for key, value in env.items():
            monkeypatch.setenv(f"COMFY_RECIPES_{key}", value)
        return reload_settings()

    yield apply
    monkeypatch.undo()
    reload_settings()


@pytest.fixture(autouse=True)
def _reset_verbosity():
    yield
    set_verbosity(None)


@pytest.fixture
def library():
    return RecipeLibrary()


@pytest.fixture
def simple_params():
    return ValidatedParams(
        {
            "seed": 42,
            "cfg": 7.0,
            "sampler_name": "euler",
            "scheduler": "normal",
            "lora_name": None,
            "lora_strength": 0.8,
            "upscale_enabled": True,
            "upscale_model": "4x.pth",
            "upscale_factor": 0.5,
        }
    )


@pytest.fixture
def small_spec():
    return ParameterSpec(
        {
            "prompt": ParameterDef(ParameterKind.STRING, "Prompt", required=True),
            "width": ParameterDef(ParameterKind.INT, "Width", default=1024, min=256, max=2048, multiple_of=8),
            "cfg": ParameterDef(ParameterKind.FLOAT, "CFG", default=7.0, min=1.0, max=20.0),
            "enabled": ParameterDef(ParameterKind.BOOL, "Flag", default=False),
            "sampler": ParameterDef(
                ParameterKind.CHOICE, "Sampler", default="euler", choices=("euler", "ddim")
            ),
            "lora_name": ParameterDef(ParameterKind.STRING, "Optional LoRA"),
        }
    )
