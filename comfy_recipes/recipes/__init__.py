"""
Built-in recipes.

Each module defines one WorkflowDescriptor named RECIPE.
"""

from . import (
    flux_depth,
    qwen_image_edit,
    qwen_lightning_edit,
    qwen_txt2img,
    sd_txt2img,
    sdxl_authentic_portraits,
    sdxl_face_detail_upscaler,
)

BUILTIN_RECIPES = (
    sd_txt2img.RECIPE,
    sdxl_authentic_portraits.RECIPE,
    sdxl_face_detail_upscaler.RECIPE,
    qwen_txt2img.RECIPE,
    qwen_image_edit.RECIPE,
    qwen_lightning_edit.RECIPE,
    flux_depth.RECIPE,
)

__all__ = ["BUILTIN_RECIPES"]
