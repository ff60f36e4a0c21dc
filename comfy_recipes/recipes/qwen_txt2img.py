"""Qwen Image text-to-image with AuraFlow model sampling."""

from ..graph import Reference
from ..parameters import ParameterDef, ParameterKind, ParameterSpec
from ..stages import PipelineState, Stage
from ..workflows import RecipeCategory, WorkflowDescriptor
from . import _qwen

PARAMETERS = ParameterSpec(
    {
        "prompt": ParameterDef(
            ParameterKind.STRING, "The positive prompt for image generation", required=True
        ),
        "negative_prompt": ParameterDef(
            ParameterKind.STRING, "The negative prompt to exclude elements", default=""
        ),
        "width": ParameterDef(
            ParameterKind.INT, "Width of the generated image", default=1328, min=256, max=2048
        ),
        "height": ParameterDef(
            ParameterKind.INT, "Height of the generated image", default=1328, min=256, max=2048
        ),
        **_qwen.sampling_fields(cfg=4.5, scheduler="simple"),
        "shift": ParameterDef(
            ParameterKind.FLOAT, "ModelSamplingAuraFlow shift parameter", default=3.1, min=0, max=10
        ),
        **_qwen.model_fields("qwen_image_fp8_e4m3fn.safetensors"),
    }
)


def generate(state: PipelineState) -> PipelineState:
    p = state.params
    clip = state.handle("clip")
    state, positive = state.add(
        "CLIPTextEncode", {"text": p.prompt, "clip": clip}, "CLIP Text Encode (Positive Prompt)"
    )
    state, negative = state.add(
        "CLIPTextEncode",
        {"text": p.negative_prompt, "clip": clip},
        "CLIP Text Encode (Negative Prompt)",
    )
    state, latent = state.add(
        "EmptySD3LatentImage",
        {"width": p.width, "height": p.height, "batch_size": 1},
        "EmptySD3LatentImage",
    )
    state, sampler = state.add(
        "KSampler",
        _qwen.sampler_inputs(
            state, Reference(positive, 0), Reference(negative, 0), Reference(latent, 0)
        ),
        "KSampler",
    )
    state, decoded = state.add(
        "VAEDecode", {"samples": Reference(sampler, 0), "vae": state.handle("vae")}, "VAE Decode"
    )
    return state.advance(Reference(decoded, 0))


RECIPE = WorkflowDescriptor(
    id="qwen_txt2img",
    summary="Qwen Image Text to Image",
    description="Generate images using Qwen Image model with AuraFlow sampling",
    parameters=PARAMETERS,
    stages=(
        Stage("models", _qwen.load_models),
        Stage("model_sampling", _qwen.aura_flow),
        Stage("base", generate),
    ),
    filename_prefix="ComfyUI",
    category=RecipeCategory.TEXT_TO_IMAGE,
    tags=("qwen", "txt2img"),
)
