"""
SDXL Authentic Portraits.

Three stages: base generation, hires refinement through easy hiresFix and
an efficient sampler, then face detailing with a YOLOv11 face detector and
SAM segmentation.
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
from ..stages import PipelineState, Stage, bind, flag, present
from ..workflows import RecipeCategory, WorkflowDescriptor

NEGATIVE_PROMPT = (
    "bad proportions, low resolution, bad, ugly, bad hands, bad teeth, terrible, painting, "
    "3d, render, comic, anime, manga, unrealistic, flat, watermark, signature, worst quality, "
    "low quality, freckles, moled, spot on face"
)

PARAMETERS = ParameterSpec(
    {
        # Basic generation
        "prompt": ParameterDef(
            ParameterKind.STRING, "The positive prompt for image generation", required=True
        ),
        "negative_prompt": ParameterDef(
            ParameterKind.STRING, "The negative prompt to exclude elements", default=NEGATIVE_PROMPT
        ),
        # Image dimensions
        "width": ParameterDef(
            ParameterKind.INT,
            "Width of the generated image (must be multiple of 64)",
            default=832,
            min=512,
            max=2048,
            multiple_of=64,
        ),
        "height": ParameterDef(
            ParameterKind.INT,
            "Height of the generated image (must be multiple of 64)",
            default=1216,
            min=512,
            max=2048,
            multiple_of=64,
        ),
        # Base sampling
        "seed": seed_param(),
        "steps": ParameterDef(
            ParameterKind.INT, "Number of sampling steps for base generation", default=8, min=1, max=100
        ),
        "cfg_scale": ParameterDef(
            ParameterKind.FLOAT, "Classifier-free guidance scale", default=1.5, min=1, max=20
        ),
        "sampler_name": sampler_param("dpmpp_sde"),
        "scheduler": scheduler_param("karras"),
        # Models
        "checkpoint_name": ParameterDef(
            ParameterKind.STRING,
            "SDXL checkpoint model name. Compatible with any SDXL model",
            default="HuslyoRealismXL.safetensors",
        ),
        "vae_name": ParameterDef(
            ParameterKind.STRING,
            "VAE model name for SDXL (empty uses the checkpoint's VAE)",
            default="sdxl_vae.safetensors",
        ),
        # Hires refinement
        "hires_enabled": ParameterDef(ParameterKind.BOOL, "Enable hires refinement stage", default=True),
        "hires_upscale_model": ParameterDef(
            ParameterKind.STRING, "Upscale model for hires stage", default="4x-UltraSharp.pth"
        ),
        "hires_upscale_method": ParameterDef(
            ParameterKind.STRING, "Upscaling interpolation method", default="nearest-exact"
        ),
        "hires_scale_percent": ParameterDef(
            ParameterKind.FLOAT, "Hires upscale percentage", default=50, min=10, max=200
        ),
        "hires_denoise": ParameterDef(
            ParameterKind.FLOAT, "Denoising strength for hires refinement", default=0.3, min=0, max=1
        ),
        "hires_steps": ParameterDef(
            ParameterKind.INT, "Number of sampling steps for hires", default=8, min=1, max=100
        ),
        "hires_cfg": ParameterDef(
            ParameterKind.FLOAT, "CFG scale for hires sampling", default=1.5, min=1, max=20
        ),
        # Face enhancement
        "face_enhancement_enabled": ParameterDef(
            ParameterKind.BOOL, "Enable face enhancement processing", default=True
        ),
        "face_detection_model": ParameterDef(
            ParameterKind.STRING,
            "Face detection model (YOLOv11 for better accuracy)",
            default="bbox/yolov11l-face.pt",
        ),
        "face_sam_model": ParameterDef(
            ParameterKind.STRING, "SAM model for face segmentation", default="sam_vit_l_0b3195.pth"
        ),
        "face_resolution": ParameterDef(
            ParameterKind.INT,
            "Resolution for face crop processing",
            default=1024,
            min=256,
            max=2048,
            multiple_of=64,
        ),
        "face_detection_confidence": ParameterDef(
            ParameterKind.FLOAT, "Face detection confidence threshold", default=0.5, min=0.1, max=1.0
        ),
        "face_denoise": ParameterDef(
            ParameterKind.FLOAT, "Denoising strength for face enhancement", default=0.3, min=0, max=1
        ),
        "face_steps": ParameterDef(
            ParameterKind.INT, "Number of sampling steps for face enhancement", default=8, min=1, max=100
        ),
        "face_cfg": ParameterDef(
            ParameterKind.FLOAT, "CFG scale for face enhancement", default=1.5, min=1, max=20
        ),
        "face_dilation": ParameterDef(
            ParameterKind.INT, "Bbox dilation for better face coverage", default=10, min=0, max=50
        ),
        "face_crop_factor": ParameterDef(
            ParameterKind.FLOAT, "Crop factor around detected face", default=1.5, min=1, max=5
        ),
        # SAM
        "sam_threshold": ParameterDef(
            ParameterKind.FLOAT, "SAM segmentation threshold", default=0.93, min=0, max=1
        ),
        "sam_dilation": ParameterDef(ParameterKind.INT, "SAM mask dilation", default=0, min=0, max=50),
        # Inpainting
        "feather": ParameterDef(
            ParameterKind.INT, "Edge feathering for smooth blending", default=20, min=0, max=100
        ),
        "noise_mask": ParameterDef(ParameterKind.BOOL, "Apply noise only to masked area", default=True),
        "force_inpaint": ParameterDef(ParameterKind.BOOL, "Force inpainting mode", default=True),
    }
)

FACE_FIELDS = {
    "guide_size": "face_resolution",
    "steps": "face_steps",
    "cfg": "face_cfg",
    "sampler_name": "sampler_name",
    "scheduler": "scheduler",
    "denoise": "face_denoise",
    "feather": "feather",
    "noise_mask": "noise_mask",
    "force_inpaint": "force_inpaint",
    "bbox_threshold": "face_detection_confidence",
    "bbox_dilation": "face_dilation",
    "bbox_crop_factor": "face_crop_factor",
    "sam_dilation": "sam_dilation",
    "sam_threshold": "sam_threshold",
}

FACE_FIXED = {
    "guide_size_for": True,
    "max_size": 1024,
    "seed_mode": "randomize",
    "sam_detection_hint": "center-1",
    "sam_bbox_expansion": 0,
    "sam_mask_hint_threshold": 0.7,
    "sam_mask_hint_use_negative": "False",
    "drop_size": 10,
    "refiner_ratio": 0.2,
    "cycle": 1,
    "inpaint_model": False,
    "noise_mask_feather": 20,
}


def load_models(state: PipelineState) -> PipelineState:
    state, ckpt = state.add(
        "CheckpointLoaderSimple", {"ckpt_name": state.params.checkpoint_name}, "Load Checkpoint"
    )
    return state.advance(
        model=Reference(ckpt, 0), clip=Reference(ckpt, 1), vae=Reference(ckpt, 2)
    )


def load_vae(state: PipelineState) -> PipelineState:
    state, vae = state.add("VAELoader", {"vae_name": state.params.vae_name}, "Load VAE")
    return state.advance(vae=Reference(vae, 0))


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
        "SDXL Empty Latent Image (rgthree)",
        {
            "dimensions": f"{p.width} x {p.height}",
            "clip_width": p.width,
            "clip_height": p.height,
            "batch_size": 1,
        },
        "SDXL Empty Latent Image",
    )
    state, sampler = state.add(
        "KSampler",
        {
            "seed": p.seed,
            "seed_mode": "fixed",
            "steps": p.steps,
            "cfg": p.cfg_scale,
            "sampler_name": p.sampler_name,
            "scheduler": p.scheduler,
            "denoise": 1,
            "model": state.handle("model"),
            "positive": Reference(positive, 0),
            "negative": Reference(negative, 0),
            "latent_image": Reference(latent, 0),
        },
        "KSampler (Base)",
    )
    state, decoded = state.add(
        "VAEDecode",
        {"samples": Reference(sampler, 0), "vae": state.handle("vae")},
        "VAE Decode (Base)",
    )
    return state.advance(
        Reference(decoded, 0), positive=Reference(positive, 0), negative=Reference(negative, 0)
    )


def hires_fix(state: PipelineState) -> PipelineState:
    p = state.params
    vae = state.handle("vae")
    state, hires = state.add(
        "easy hiresFix",
        {
            "upscale_model": p.hires_upscale_model,
            "rescale_after_model": True,
            "rescale_method": p.hires_upscale_method,
            "rescale": "by percentage",
            "percent": p.hires_scale_percent,
            "width": 1024,
            "height": 1024,
            "longer_side": 1024,
            "crop": "disabled",
            "image_output": "Preview",
            "save_prefix": "ComfyUI",
            "link_id": 0,
            "image": state.image(),
            "vae": vae,
        },
        "Hires Fix",
    )
    state, sampler = state.add(
        "KSampler (Efficient)",
        {
            "seed": p.seed,
            "seed_mode": "fixed",
            "steps": p.hires_steps,
            "cfg": p.hires_cfg,
            "sampler_name": p.sampler_name,
            "scheduler": p.scheduler,
            "denoise": p.hires_denoise,
            "preview_method": "auto",
            "vae_decode": "true",
            "model": state.handle("model"),
            "positive": state.handle("positive"),
            "negative": state.handle("negative"),
            "latent_image": Reference(hires, 2),
            "optional_vae": vae,
        },
        "KSampler (Hires)",
    )
    # The efficient sampler passes the model through and decodes to slot 5
    return state.advance(Reference(sampler, 5), model=Reference(sampler, 0))


def face_detail(state: PipelineState) -> PipelineState:
    p = state.params
    state, sam = state.add(
        "SAMLoader", {"model_name": p.face_sam_model, "device_mode": "AUTO"}, "SAM Loader"
    )
    state, detector = state.add(
        "UltralyticsDetectorProvider",
        {"model_name": p.face_detection_model},
        "Face Detector Provider (YOLOv11)",
    )
    state, pipe = state.add(
        "ToDetailerPipe",
        {
            "model": state.handle("model"),
            "clip": state.handle("clip"),
            "vae": state.handle("vae"),
            "positive": state.handle("positive"),
            "negative": state.handle("negative"),
            "bbox_detector": Reference(detector, 0),
            "sam_model_opt": Reference(sam, 0),
            "segm_detector_opt": Reference(detector, 1),
            "wildcard": "",
            "Select_to_add_LoRA": "Select the LoRA to add to the text",
            "Select_to_add_Wildcard": "Select the Wildcard to add to the text",
        },
        "To Detailer Pipe",
    )
    inputs = {"seed": p.seed, **bind(p, FACE_FIELDS), **FACE_FIXED}
    inputs["image"] = state.image()
    inputs["detailer_pipe"] = Reference(pipe, 0)
    state, detailer = state.add("FaceDetailerPipe", inputs, "Face Detailer")
    return state.advance(Reference(detailer, 0))


RECIPE = WorkflowDescriptor(
    id="sdxl_authentic_portraits",
    summary="SDXL Authentic Portraits (YOLOv11)",
    description=(
        "SDXL workflow with three-stage processing: base generation, hires refinement and "
        "face detailing using YOLOv11 detection. Produces realistic portraits with accurate faces."
    ),
    parameters=PARAMETERS,
    stages=(
        Stage("checkpoint", load_models),
        Stage("vae", load_vae, present("vae_name")),
        Stage("base", generate),
        Stage("hires", hires_fix, flag("hires_enabled")),
        Stage("face", face_detail, flag("face_enhancement_enabled")),
    ),
    filename_prefix="SDXL_Authentic",
    category=RecipeCategory.PORTRAIT,
    tags=("sdxl", "portrait", "hires", "face"),
)
