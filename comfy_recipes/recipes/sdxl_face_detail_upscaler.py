"""
SDXL Face Detail + Upscaler.

HuslyoRealismXL base with a clip-skip, a three-slot LoRA stack and an
efficient sampler, followed by optional face and eye detailing, digital
look and film grain effects, and a model upscale.
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
from ..stages import (
    PipelineState,
    Stage,
    all_of,
    detailer_stage,
    digital_look_stage,
    film_grain_stage,
    flag,
    model_upscale_stage,
)
from ..workflows import RecipeCategory, WorkflowDescriptor

# The rgthree stack has four slots; three are exposed and empty ones take this literal
EMPTY_LORA = "None"
LORA_SLOTS = 4


def _lora_name(default: str, description: str) -> ParameterDef:
    return ParameterDef(ParameterKind.STRING, description, default=default)


def _lora_strength(n: int, default: float) -> ParameterDef:
    return ParameterDef(
        ParameterKind.FLOAT,
        f"LoRA {n} strength (typical range: 0.3-1.0)",
        default=default,
        min=0.1,
        max=1.5,
    )


PARAMETERS = ParameterSpec(
    {
        # Basic generation
        "prompt": ParameterDef(
            ParameterKind.STRING, "The positive prompt for image generation", required=True
        ),
        "negative_prompt": ParameterDef(
            ParameterKind.STRING,
            "The negative prompt to exclude elements",
            default=(
                "cartoon, illustration, anime, painting, CGI, 3D render, low quality, "
                "watermark, logo, label"
            ),
        ),
        # Image dimensions
        "width": ParameterDef(
            ParameterKind.INT,
            "Width of the generated image (must be multiple of 64)",
            default=768,
            min=512,
            max=2048,
            multiple_of=64,
        ),
        "height": ParameterDef(
            ParameterKind.INT,
            "Height of the generated image (must be multiple of 64)",
            default=1152,
            min=512,
            max=2048,
            multiple_of=64,
        ),
        # Sampling
        "seed": seed_param(),
        "steps": ParameterDef(ParameterKind.INT, "Number of sampling steps", default=32, min=1, max=100),
        "cfg": ParameterDef(
            ParameterKind.FLOAT,
            "Classifier-free guidance scale (recommended 3-8 for SDXL)",
            default=4,
            min=1,
            max=20,
        ),
        "sampler_name": sampler_param("dpmpp_2m_sde"),
        "scheduler": scheduler_param("karras"),
        # Models
        "checkpoint_name": ParameterDef(
            ParameterKind.STRING,
            "SDXL checkpoint model name. Compatible: Juggernaut-XL, RealVisXL, etc.",
            default="huslyorealismxl_v10.safetensors",
        ),
        "vae_name": ParameterDef(
            ParameterKind.STRING, "VAE model name for SDXL", default="sdxl_vae.safetensors"
        ),
        # LoRA stack
        "lora1_name": _lora_name(
            "Touch-of-Realism-SDXL-V2.safetensors",
            "First LoRA model name. Set empty to disable",
        ),
        "lora1_strength": _lora_strength(1, 1.0),
        "lora2_name": _lora_name("", "Second LoRA model name. Set empty to disable"),
        "lora2_strength": _lora_strength(2, 0.7),
        "lora3_name": _lora_name("", "Third LoRA model name. Leave empty to disable"),
        "lora3_strength": _lora_strength(3, 1.0),
        # Face enhancement
        "face_enhancement_enabled": ParameterDef(
            ParameterKind.BOOL, "Enable face enhancement processing", default=True
        ),
        "face_resolution": ParameterDef(
            ParameterKind.INT,
            "Resolution for face crop processing",
            default=768,
            min=256,
            max=2048,
            multiple_of=64,
        ),
        "face_detection_confidence": ParameterDef(
            ParameterKind.FLOAT, "Face detection confidence threshold", default=0.5, min=0.1, max=1.0
        ),
        "face_denoise": ParameterDef(
            ParameterKind.FLOAT, "Denoising strength for face enhancement", default=0.5, min=0, max=1
        ),
        # Eye enhancement
        "eye_enhancement_enabled": ParameterDef(
            ParameterKind.BOOL,
            "Enable eye enhancement processing (requires face enhancement)",
            default=True,
        ),
        "eye_resolution": ParameterDef(
            ParameterKind.INT,
            "Resolution for eye crop processing",
            default=1024,
            min=256,
            max=2048,
            multiple_of=64,
        ),
        "eye_denoise": ParameterDef(
            ParameterKind.FLOAT, "Denoising strength for eye enhancement", default=0.5, min=0, max=1
        ),
        # Upscaling
        "upscale_enabled": ParameterDef(ParameterKind.BOOL, "Enable image upscaling", default=True),
        "upscale_model": ParameterDef(
            ParameterKind.STRING, "Upscale model name", default="4x_foolhardy_Remacri.pth"
        ),
        "upscale_factor": ParameterDef(
            ParameterKind.FLOAT,
            "Upscale factor (0.65 = 2.6x effective scaling)",
            default=0.65,
            min=0.1,
            max=1.0,
        ),
        # Post-processing
        "film_grain_enabled": ParameterDef(ParameterKind.BOOL, "Enable film grain effect", default=False),
        "film_grain_type": ParameterDef(ParameterKind.STRING, "Film grain type", default="Fine Simple"),
        "film_grain_intensity": ParameterDef(
            ParameterKind.FLOAT, "Film grain intensity", default=0.1, min=0, max=1
        ),
        "digital_effects_enabled": ParameterDef(
            ParameterKind.BOOL, "Enable digital look effects", default=False
        ),
        "digital_effects_style": ParameterDef(
            ParameterKind.STRING, "Digital effects style", default="Early 2000s Digital"
        ),
        "digital_effects_intensity": ParameterDef(
            ParameterKind.FLOAT, "Digital effects intensity", default=0.2, min=0, max=1
        ),
    }
)

# Tuning shared by the face and eye detailers
DETAILER_FIXED = {
    "guide_size_for": True,
    "max_size": 1024,
    "steps": 20,
    "feather": 5,
    "noise_mask": True,
    "force_inpaint": True,
    "bbox_dilation": 10,
    "bbox_crop_factor": 3,
    "sam_detection_hint": "center-1",
    "sam_dilation": 0,
    "sam_threshold": 0.93,
    "sam_bbox_expansion": 0,
    "sam_mask_hint_threshold": 0.7,
    "sam_mask_hint_use_negative": "False",
    "drop_size": 10,
    "wildcard": "",
    "cycle": 1,
    "inpaint_model": False,
    "noise_mask_feather": 20,
    "separate_clip_skip": False,
    "two_pass_refined_mask": False,
}

SAMPLING_FIELDS = {"cfg": "cfg", "sampler_name": "sampler_name", "scheduler": "scheduler"}

FILM_GRAIN_FIXED = {"enable": True, "contrast": 0.7, "highlights": 0, "saturation": 1, "density": 1}


def lora_stack_inputs(params) -> dict:
    """rgthree stack slots; empty names become the "None" literal at strength 1."""
    inputs = {}
    for n in range(1, LORA_SLOTS + 1):
        name = params.get(f"lora{n}_name")
        if name:
            inputs[f"lora_0{n}"] = name
            inputs[f"strength_0{n}"] = params[f"lora{n}_strength"]
        else:
            inputs[f"lora_0{n}"] = EMPTY_LORA
            inputs[f"strength_0{n}"] = 1
    return inputs


def generate(state: PipelineState) -> PipelineState:
    p = state.params
    state, ckpt = state.add(
        "CheckpointLoaderSimple", {"ckpt_name": p.checkpoint_name}, "Load Checkpoint"
    )
    state, clip_skip = state.add(
        "CLIPSetLastLayer",
        {"clip": Reference(ckpt, 1), "stop_at_clip_layer": -2},
        "CLIP Set Last Layer",
    )
    state, loras = state.add(
        "Lora Loader Stack (rgthree)",
        {**lora_stack_inputs(p), "model": Reference(ckpt, 0), "clip": Reference(clip_skip, 0)},
        "Lora Loader Stack",
    )
    # The negative prompt skips the LoRA stack's clip
    state, positive = state.add(
        "CLIPTextEncode",
        {"text": p.prompt, "clip": Reference(loras, 1)},
        "CLIP Text Encode (Positive Prompt)",
    )
    state, negative = state.add(
        "CLIPTextEncode",
        {"text": p.negative_prompt, "clip": Reference(clip_skip, 0)},
        "CLIP Text Encode (Negative Prompt)",
    )
    state, latent = state.add(
        "EmptyLatentImage",
        {"width": p.width, "height": p.height, "batch_size": 1},
        "Empty Latent Image",
    )
    state, vae = state.add("VAELoader", {"vae_name": p.vae_name}, "Load VAE")
    state, sampler = state.add(
        "KSampler (Efficient)",
        {
            "seed": p.seed,
            "seed_mode": "fixed",
            "steps": p.steps,
            "cfg": p.cfg,
            "sampler_name": p.sampler_name,
            "scheduler": p.scheduler,
            "denoise": 1,
            "preview_method": "auto",
            "vae_decode": "true",
            "model": Reference(loras, 0),
            "positive": Reference(positive, 0),
            "negative": Reference(negative, 0),
            "latent_image": Reference(latent, 0),
            "optional_vae": Reference(vae, 0),
        },
        "KSampler (Efficient)",
    )
    state, decoded = state.add(
        "VAEDecode",
        {"samples": Reference(sampler, 3), "vae": Reference(vae, 0)},
        "VAE Decode",
    )
    # Detailers read the sampler's pass-through outputs
    return state.advance(
        Reference(decoded, 0),
        model=Reference(sampler, 0),
        positive=Reference(sampler, 1),
        negative=Reference(sampler, 2),
        vae=Reference(sampler, 4),
        clip=Reference(loras, 1),
    )


RECIPE = WorkflowDescriptor(
    id="sdxl_face_detail_upscaler",
    summary="SDXL Face Detail + Upscaler (HuslyoRealismXL)",
    description=(
        "SDXL photorealistic workflow with HuslyoRealismXL, a Touch of Realism LoRA stack, "
        "face and eye enhancement, post-processing effects and model upscaling."
    ),
    parameters=PARAMETERS,
    stages=(
        Stage("base", generate),
        detailer_stage(
            "face",
            detector_model="bbox/face_yolov8m.pt",
            when=flag("face_enhancement_enabled"),
            fields={
                **SAMPLING_FIELDS,
                "guide_size": "face_resolution",
                "denoise": "face_denoise",
                "bbox_threshold": "face_detection_confidence",
            },
            fixed=DETAILER_FIXED,
            title="Face Detailer",
        ),
        detailer_stage(
            "eye",
            detector_model="bbox/PitEyeDetailer-v2-seg.pt",
            sam_model="sam_vit_b_01ec64.pth",
            when=all_of(flag("face_enhancement_enabled"), flag("eye_enhancement_enabled")),
            fields={
                **SAMPLING_FIELDS,
                "guide_size": "eye_resolution",
                "denoise": "eye_denoise",
            },
            fixed={**DETAILER_FIXED, "bbox_threshold": 0.5},
            title="Eye Detailer",
        ),
        digital_look_stage(
            fields={"filter_type": "digital_effects_style", "intensity": "digital_effects_intensity"},
        ),
        film_grain_stage(
            fields={
                "grain_type": "film_grain_type",
                "red": "film_grain_intensity",
                "green": "film_grain_intensity",
                "blue": "film_grain_intensity",
                "luminance": "film_grain_intensity",
            },
            fixed=FILM_GRAIN_FIXED,
        ),
        model_upscale_stage(),
    ),
    filename_prefix="ComfyUI_SDXL_FaceDetail",
    category=RecipeCategory.PORTRAIT,
    tags=("sdxl", "portrait", "lora", "face", "eyes", "upscale"),
)
