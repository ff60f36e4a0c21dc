"""Qwen Image Edit with an optional LoRA; the decoded image is saved as is."""

from ..parameters import ParameterDef, ParameterKind, ParameterSpec
from ..stages import Stage, lora_stage
from ..workflows import RecipeCategory, WorkflowDescriptor
from . import _qwen

PARAMETERS = ParameterSpec(
    {
        "image": ParameterDef(
            ParameterKind.STRING, "Input image as URL or base64 encoded string", required=True
        ),
        "prompt": ParameterDef(ParameterKind.STRING, "The editing instruction prompt", required=True),
        "negative_prompt": ParameterDef(
            ParameterKind.STRING, "The negative prompt to exclude elements", default=""
        ),
        # ComfyUI has no "euler" scheduler; "simple" is the Qwen reference default
        **_qwen.sampling_fields(cfg=2.5, scheduler="simple"),
        **_qwen.edit_fields(),
        **_qwen.model_fields(_qwen.UNET_EDIT),
        "lora_name": ParameterDef(ParameterKind.STRING, "Optional LoRA model name"),
        "lora_strength": ParameterDef(
            ParameterKind.FLOAT, "LoRA model strength", default=1, min=0, max=2
        ),
    }
)

RECIPE = WorkflowDescriptor(
    id="qwen_image_edit",
    summary="Qwen Image Edit",
    description=(
        "Edit images using Qwen Image model from an input image and an editing instruction"
    ),
    parameters=PARAMETERS,
    stages=(
        Stage("models", _qwen.load_models),
        lora_stage(title="Load LoRA (Optional)"),
        Stage("model_sampling", _qwen.aura_flow),
        Stage("cfg_norm", _qwen.cfg_norm),
        Stage("edit", _qwen.edit),
    ),
    filename_prefix="ComfyUI",
    category=RecipeCategory.IMG_TO_IMG,
    tags=("qwen", "edit", "img2img"),
)
