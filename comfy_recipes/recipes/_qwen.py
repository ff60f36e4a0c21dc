"""Stages and fields shared by the Qwen Image recipes."""

from ..graph import Reference
from ..parameters import ParameterDef, ParameterKind, sampler_param, scheduler_param, seed_param
from ..stages import PipelineState, Stage, image_effect_stage

UNET_EDIT = "qwen_image_edit_fp8_e4m3fn.safetensors"


def model_fields(unet_name: str) -> dict[str, ParameterDef]:
    return {
        "unet_name": ParameterDef(ParameterKind.STRING, "UNET model name", default=unet_name),
        "clip_name": ParameterDef(
            ParameterKind.STRING, "CLIP model name", default="qwen_2.5_vl_7b_fp8_scaled.safetensors"
        ),
        "vae_name": ParameterDef(
            ParameterKind.STRING, "VAE model name", default="qwen_image_vae.safetensors"
        ),
    }


def sampling_fields(cfg: float, scheduler: str, steps_description: str = "Number of sampling steps"):
    return {
        "seed": seed_param(),
        "steps": ParameterDef(ParameterKind.INT, steps_description, default=20, min=1, max=100),
        "cfg": ParameterDef(
            ParameterKind.FLOAT, "Classifier-free guidance scale", default=cfg, min=0, max=20
        ),
        "sampler_name": sampler_param("euler"),
        "scheduler": scheduler_param(scheduler),
        "denoise": ParameterDef(ParameterKind.FLOAT, "Denoising strength", default=1, min=0, max=1),
    }


def edit_fields() -> dict[str, ParameterDef]:
    """Input image and model-sampling fields of the edit recipes."""
    return {
        "upscale_factor": ParameterDef(
            ParameterKind.FLOAT, "Image upscale factor before processing", default=1.25, min=0.5, max=4
        ),
        "shift": ParameterDef(
            ParameterKind.FLOAT, "ModelSamplingAuraFlow shift parameter", default=3.0, min=0, max=10
        ),
        "normalization_level": ParameterDef(
            ParameterKind.FLOAT, "CFG normalization level", default=1, min=0, max=1
        ),
        "strength": ParameterDef(
            ParameterKind.FLOAT, "CFGNorm and FastLaplacianSharpen strength", default=1.0, min=0, max=2
        ),
        "upscale_method": ParameterDef(
            ParameterKind.STRING, "Image upscaling method", default="lanczos"
        ),
    }


def post_fields() -> dict[str, ParameterDef]:
    """Sharpen and film grain fields."""
    return {
        "sharpening_factor": ParameterDef(
            ParameterKind.FLOAT, "Laplacian sharpening factor", default=0.2, min=0, max=1
        ),
        "film_grain": ParameterDef(ParameterKind.FLOAT, "Film grain intensity", default=0.1, min=0, max=1),
        "saturation_mix": ParameterDef(
            ParameterKind.FLOAT, "Film grain saturation mix", default=0.5, min=0, max=1
        ),
        "grain_intensity": ParameterDef(
            ParameterKind.FLOAT, "Film grain intensity parameter", default=0.1, min=0, max=1
        ),
    }


def load_models(state: PipelineState) -> PipelineState:
    p = state.params
    state, unet = state.add(
        "UNETLoader", {"unet_name": p.unet_name, "weight_dtype": "default"}, "Load Diffusion Model"
    )
    state, clip = state.add(
        "CLIPLoader",
        {"clip_name": p.clip_name, "type": "qwen_image", "device": "default"},
        "Load CLIP",
    )
    state, vae = state.add("VAELoader", {"vae_name": p.vae_name}, "Load VAE")
    return state.advance(model=Reference(unet, 0), clip=Reference(clip, 0), vae=Reference(vae, 0))


def aura_flow(state: PipelineState) -> PipelineState:
    state, node = state.add(
        "ModelSamplingAuraFlow",
        {"shift": state.params.shift, "model": state.handle("model")},
        "ModelSamplingAuraFlow",
    )
    return state.advance(model=Reference(node, 0))


def cfg_norm(state: PipelineState) -> PipelineState:
    p = state.params
    state, node = state.add(
        "CFGNorm",
        {
            "normalization_level": p.normalization_level,
            "strength": p.strength,
            "model": state.handle("model"),
        },
        "CFG Normalization",
    )
    return state.advance(model=Reference(node, 0))


def sampler_inputs(state: PipelineState, positive, negative, latent) -> dict:
    p = state.params
    return {
        "seed": p.seed,
        "steps": p.steps,
        "cfg": p.cfg,
        "sampler_name": p.sampler_name,
        "scheduler": p.scheduler,
        "denoise": p.denoise,
        "model": state.handle("model"),
        "positive": positive,
        "negative": negative,
        "latent_image": latent,
    }


def edit(state: PipelineState) -> PipelineState:
    """Load and scale the input image, encode the edit, sample and decode."""
    p = state.params
    clip, vae = state.handle("clip"), state.handle("vae")
    state, loaded = state.add("LoadImage", {"image": p.image, "upload": "image"}, "Load Image")
    state, scaled = state.add(
        "ImageScaleToTotalPixels",
        {
            "upscale_factor": p.upscale_factor,
            "upscale_method": p.upscale_method,
            "megapixels": 1,
            "image": Reference(loaded, 0),
        },
        "Image Scale to Total Pixels",
    )
    image = Reference(scaled, 0)
    state, positive = state.add(
        "TextEncodeQwenImageEdit",
        {"prompt": p.prompt, "clip": clip, "vae": vae, "image": image},
        "Text Encode Qwen Image Edit (Positive)",
    )
    state, negative = state.add(
        "TextEncodeQwenImageEdit",
        {"prompt": p.negative_prompt, "clip": clip, "vae": vae, "image": image},
        "Text Encode Qwen Image Edit (Negative)",
    )
    state, latent = state.add("VAEEncode", {"pixels": image, "vae": vae}, "VAE Encode")
    state, sampler = state.add(
        "KSampler",
        sampler_inputs(state, Reference(positive, 0), Reference(negative, 0), Reference(latent, 0)),
        "KSampler",
    )
    state, decoded = state.add(
        "VAEDecode", {"samples": Reference(sampler, 0), "vae": vae}, "VAE Decode"
    )
    return state.advance(Reference(decoded, 0))


def sharpen_stage() -> Stage:
    return image_effect_stage(
        "sharpen",
        "FastLaplacianSharpen",
        fields={"factor": "sharpening_factor", "strength": "strength"},
        image_port="images",
        title="Fast Laplacian Sharpen",
    )


FAST_FILM_GRAIN_FIELDS = {
    "amount": "film_grain",
    "grain_intensity": "grain_intensity",
    "saturation_mix": "saturation_mix",
}

FAST_FILM_GRAIN_FIXED = {
    "size": 1.5,
    "saturation": 1,
    "tonality": 1,
    "sigma": 1,
    "adaptive": "log",
}
