"""
Flux depth-conditioned generation.

The input image conditions the sampler through InstructPixToPixConditioning,
which also supplies the latent. An optional LoRA adapts both model and clip
before the prompt is encoded.
"""

from ..graph import Reference
from ..parameters import (
    ParameterDef,
    ParameterKind,
    ParameterSpec,
    sampler_param,
    scheduler_param,
    seed_param,
)
from ..stages import PipelineState, Stage, lora_stage
from ..workflows import RecipeCategory, WorkflowDescriptor

PARAMETERS = ParameterSpec(
    {
        "image": ParameterDef(
            ParameterKind.STRING,
            "Input image for depth-based generation as URL or base64 encoded string",
            required=True,
        ),
        "prompt": ParameterDef(
            ParameterKind.STRING, "The positive prompt for image generation", required=True
        ),
        "guidance": ParameterDef(
            ParameterKind.FLOAT, "Flux guidance strength", default=30, min=0, max=100
        ),
        "seed": seed_param(),
        "steps": ParameterDef(ParameterKind.INT, "Number of sampling steps", default=20, min=1, max=100),
        "cfg": ParameterDef(
            ParameterKind.FLOAT, "Classifier-free guidance scale", default=1, min=0, max=20
        ),
        "sampler_name": sampler_param("euler"),
        "scheduler": scheduler_param("simple"),
        "denoise": ParameterDef(ParameterKind.FLOAT, "Denoising strength", default=1, min=0, max=1),
        "width": ParameterDef(
            ParameterKind.INT, "Width used for Flux model sampling", default=1024, min=256, max=2048
        ),
        "height": ParameterDef(
            ParameterKind.INT, "Height used for Flux model sampling", default=1024, min=256, max=2048
        ),
        "unet_name": ParameterDef(
            ParameterKind.STRING, "UNET model name", default="flux1-dev.safetensors"
        ),
        "clip_name1": ParameterDef(
            ParameterKind.STRING, "First CLIP model name", default="clip_l.safetensors"
        ),
        "clip_name2": ParameterDef(
            ParameterKind.STRING, "Second CLIP model name", default="t5xxl_fp8_e4m3fn.safetensors"
        ),
        "vae_name": ParameterDef(ParameterKind.STRING, "VAE model name", default="ae.safetensors"),
        "lora_name": ParameterDef(ParameterKind.STRING, "Optional LoRA model name"),
        "lora_strength": ParameterDef(
            ParameterKind.FLOAT, "LoRA model strength", default=1, min=0, max=2
        ),
    }
)


def load_models(state: PipelineState) -> PipelineState:
    p = state.params
    state, unet = state.add(
        "UNETLoader", {"unet_name": p.unet_name, "weight_dtype": "default"}, "Load Diffusion Model"
    )
    state, clip = state.add(
        "DualCLIPLoader",
        {"clip_name1": p.clip_name1, "clip_name2": p.clip_name2, "type": "flux"},
        "DualCLIPLoader",
    )
    state, vae = state.add("VAELoader", {"vae_name": p.vae_name}, "Load VAE")
    state, sampling = state.add(
        "ModelSamplingFlux",
        {
            "max_shift": 1.15,
            "base_shift": 0.5,
            "width": p.width,
            "height": p.height,
            "model": Reference(unet, 0),
        },
        "ModelSamplingFlux",
    )
    return state.advance(
        model=Reference(sampling, 0), clip=Reference(clip, 0), vae=Reference(vae, 0)
    )


def generate(state: PipelineState) -> PipelineState:
    p = state.params
    vae = state.handle("vae")
    state, loaded = state.add("LoadImage", {"image": p.image, "upload": "image"}, "Load Image")
    state, encoded = state.add(
        "CLIPTextEncode",
        {"text": p.prompt, "clip": state.handle("clip")},
        "CLIP Text Encode (Positive Prompt)",
    )
    state, guided = state.add(
        "FluxGuidance",
        {"guidance": p.guidance, "conditioning": Reference(encoded, 0)},
        "FluxGuidance",
    )
    # Flux ignores the negative; it is the unguided prompt
    state, conditioning = state.add(
        "InstructPixToPixConditioning",
        {
            "positive": Reference(guided, 0),
            "negative": Reference(encoded, 0),
            "vae": vae,
            "pixels": Reference(loaded, 0),
        },
        "InstructPix2Pix Conditioning",
    )
    state, sampler = state.add(
        "KSampler",
        {
            "seed": p.seed,
            "steps": p.steps,
            "cfg": p.cfg,
            "sampler_name": p.sampler_name,
            "scheduler": p.scheduler,
            "denoise": p.denoise,
            "model": state.handle("model"),
            "positive": Reference(conditioning, 0),
            "negative": Reference(conditioning, 1),
            "latent_image": Reference(conditioning, 2),
        },
        "KSampler",
    )
    state, decoded = state.add(
        "VAEDecode", {"samples": Reference(sampler, 0), "vae": vae}, "VAE Decode"
    )
    return state.advance(Reference(decoded, 0))


RECIPE = WorkflowDescriptor(
    id="flux_depth",
    summary="Flux Depth-Based Generation",
    description="Generate images using Flux with depth-based conditioning from an input image",
    parameters=PARAMETERS,
    stages=(
        Stage("models", load_models),
        lora_stage(with_clip=True),
        Stage("base", generate),
    ),
    filename_prefix="ComfyUI",
    category=RecipeCategory.IMG_TO_IMG,
    tags=("flux", "depth", "img2img"),
)
