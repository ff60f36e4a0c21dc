"""Qwen Image Edit with the Lightning LoRA always applied."""

from ..parameters import ParameterDef, ParameterKind, ParameterSpec
from ..stages import Stage, always, film_grain_stage, lora_stage
from ..workflows import RecipeCategory, WorkflowDescriptor
from . import _qwen

LIGHTNING_LORA = "Qwen-Image-Lightning-4steps-V1.0.safetensors"

PARAMETERS = ParameterSpec(
    {
        "image": ParameterDef(
            ParameterKind.STRING, "Input image as URL or base64 encoded string", required=True
        ),
        "prompt": ParameterDef(ParameterKind.STRING, "The editing instruction prompt", required=True),
        "negative_prompt": ParameterDef(
            ParameterKind.STRING, "The negative prompt to exclude elements", default=""
        ),
        **_qwen.sampling_fields(
            cfg=2.5,
            scheduler="simple",
            steps_description="Number of sampling steps (Lightning: 20 steps for quality)",
        ),
        **_qwen.edit_fields(),
        **_qwen.post_fields(),
        **_qwen.model_fields(_qwen.UNET_EDIT),
        "lora_strength": ParameterDef(
            ParameterKind.FLOAT, "Lightning LoRA strength", default=1.0, min=0, max=2
        ),
    }
)

RECIPE = WorkflowDescriptor(
    id="qwen_lightning_edit",
    summary="Qwen Lightning LoRA Edit (20-step)",
    description=(
        "Image editing using Qwen Image model with Lightning LoRA for 20-step inference, "
        "including post-processing effects"
    ),
    parameters=PARAMETERS,
    stages=(
        Stage("models", _qwen.load_models),
        lora_stage(lora_name=LIGHTNING_LORA, title="Load Lightning LoRA (Always Enabled)"),
        Stage("model_sampling", _qwen.aura_flow),
        Stage("cfg_norm", _qwen.cfg_norm),
        Stage("edit", _qwen.edit),
        _qwen.sharpen_stage(),
        film_grain_stage(
            kind="FastFilmGrain",
            when=always,
            fields=_qwen.FAST_FILM_GRAIN_FIELDS,
            fixed=_qwen.FAST_FILM_GRAIN_FIXED,
            image_port="images",
            title="Fast Film Grain",
        ),
    ),
    filename_prefix="ComfyUI_Lightning",
    category=RecipeCategory.IMG_TO_IMG,
    tags=("qwen", "edit", "lightning", "lora"),
)
