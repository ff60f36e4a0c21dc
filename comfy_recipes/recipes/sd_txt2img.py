"""Standard SD 1.5 / SDXL text-to-image with optional LoRA, hires pass and model upscale."""

from ..graph import Reference
from ..parameters import (
    ParameterDef,
    ParameterKind,
    ParameterSpec,
    sampler_param,
    scheduler_param,
    seed_param,
)
from ..stages import (
    PipelineState,
    Stage,
    lora_stage,
    model_upscale_stage,
    pixel_hires_stage,
)
from ..workflows import PresetDef, RecipeCategory, WorkflowDescriptor

PARAMETERS = ParameterSpec(
    {
        "prompt": ParameterDef(
            ParameterKind.STRING, "What you want to generate", required=True
        ),
        "negative_prompt": ParameterDef(
            ParameterKind.STRING,
            "What to keep out of the image",
            default="ugly, blurry, low quality, distorted, deformed",
        ),
        "checkpoint_name": ParameterDef(
            ParameterKind.STRING, "Checkpoint model name", default="dreamshaper_8.safetensors"
        ),
        "width": ParameterDef(
            ParameterKind.INT, "Width of the generated image", default=1024, min=256, max=2048, multiple_of=8
        ),
        "height": ParameterDef(
            ParameterKind.INT, "Height of the generated image", default=1024, min=256, max=2048, multiple_of=8
        ),
        "seed": seed_param(),
        "steps": ParameterDef(ParameterKind.INT, "Number of sampling steps", default=25, min=1, max=100),
        "cfg": ParameterDef(ParameterKind.FLOAT, "CFG scale", default=7.0, min=1.0, max=20.0),
        "sampler_name": sampler_param("euler_ancestral"),
        "scheduler": scheduler_param("normal"),
        "lora_name": ParameterDef(ParameterKind.STRING, "Optional LoRA model name"),
        "lora_strength": ParameterDef(
            ParameterKind.FLOAT, "LoRA model and clip strength", default=1.0, min=0.0, max=2.0
        ),
        "hires_enabled": ParameterDef(ParameterKind.BOOL, "Enable a second hires pass", default=False),
        "hires_scale": ParameterDef(
            ParameterKind.FLOAT, "Latent upscale factor for the hires pass", default=1.5, min=1.0, max=4.0
        ),
        "hires_steps": ParameterDef(ParameterKind.INT, "Steps for the hires pass", default=15, min=1, max=100),
        "hires_denoise": ParameterDef(
            ParameterKind.FLOAT, "Denoise for the hires pass", default=0.5, min=0.0, max=1.0
        ),
        "upscale_enabled": ParameterDef(ParameterKind.BOOL, "Enable model upscaling", default=False),
        "upscale_model": ParameterDef(
            ParameterKind.STRING, "Upscale model name", default="RealESRGAN_x4plus.pth"
        ),
        "upscale_factor": ParameterDef(
            ParameterKind.FLOAT,
            "Rescale factor applied after the upscale model",
            default=0.5,
            min=0.1,
            max=1.0,
        ),
    }
)


def load_checkpoint(state: PipelineState) -> PipelineState:
    state, ckpt = state.add(
        "CheckpointLoaderSimple", {"ckpt_name": state.params.checkpoint_name}, "Load Checkpoint"
    )
    return state.advance(
        model=Reference(ckpt, 0), clip=Reference(ckpt, 1), vae=Reference(ckpt, 2)
    )


def sample(state: PipelineState) -> PipelineState:
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
        "EmptyLatentImage",
        {"width": p.width, "height": p.height, "batch_size": 1},
        "Empty Latent Image",
    )
    state, sampler = state.add(
        "KSampler",
        {
            "seed": p.seed,
            "steps": p.steps,
            "cfg": p.cfg,
            "sampler_name": p.sampler_name,
            "scheduler": p.scheduler,
            "denoise": 1.0,
            "model": state.handle("model"),
            "positive": Reference(positive, 0),
            "negative": Reference(negative, 0),
            "latent_image": Reference(latent, 0),
        },
        "KSampler",
    )
    state, decoded = state.add(
        "VAEDecode", {"samples": Reference(sampler, 0), "vae": state.handle("vae")}, "VAE Decode"
    )
    return state.advance(
        Reference(decoded, 0), positive=Reference(positive, 0), negative=Reference(negative, 0)
    )


RECIPE = WorkflowDescriptor(
    id="sd_txt2img",
    summary="Text to Image",
    description="Standard text-to-image generation with optional LoRA, hires fix and model upscaling",
    parameters=PARAMETERS,
    stages=(
        Stage("checkpoint", load_checkpoint),
        lora_stage(with_clip=True),
        Stage("sample", sample),
        pixel_hires_stage(),
        model_upscale_stage(),
    ),
    filename_prefix="comfy_recipes",
    category=RecipeCategory.TEXT_TO_IMAGE,
    tags=("basic", "txt2img", "standard"),
    presets={
        "draft": PresetDef(
            "draft", "Quick preview", {"steps": 12, "cfg": 6.0, "width": 512, "height": 512}
        ),
        "fast": PresetDef("fast", "Good balance", {"steps": 20, "cfg": 7.0, "width": 768, "height": 768}),
        "quality": PresetDef(
            "quality",
            "High quality with a hires pass",
            {"steps": 30, "cfg": 7.5, "width": 1024, "height": 1024, "hires_enabled": True},
        ),
        "portrait": PresetDef(
            "portrait", "Portrait ratio", {"steps": 30, "cfg": 7.0, "width": 768, "height": 1152}
        ),
        "landscape": PresetDef(
            "landscape", "Landscape ratio", {"steps": 30, "cfg": 7.0, "width": 1152, "height": 768}
        ),
    },
)
