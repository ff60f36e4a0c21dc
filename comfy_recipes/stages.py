"""
Comfy Recipes - Stage Pipeline
==============================

Conditional pipeline stages threaded over an immutable PipelineState.

A recipe is an ordered tuple of Stage objects. Each stage has an enablement
predicate over the validated parameters and a body that appends nodes and
returns the next state. Disabled stages return the state unchanged, so the
image pointer after the last stage is simply the output of the last stage
that ran.

Handles are the other references stages share: the current model, clip,
vae and conditioning. Model adaptation stages advance them the same way
image stages advance the pointer.

Usage:
    pipeline = StagePipeline([
        Stage("base", build_base),
        lora_stage(),
        pixel_hires_stage(),
        save_stage("ComfyUI"),
    ])
    state = pipeline.run(PipelineState.start(params))
"""

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any

from .catalog import DEFAULT_CATALOG, NodeCatalog
from .config import get_settings
from .exceptions import WorkflowError
from .graph import Graph, Reference
from .logging_config import get_logger
from .parameters import ValidatedParams

logger = get_logger(__name__)

__all__ = [
    "PipelineState",
    "Stage",
    "StagePipeline",
    "bind",
    # Predicates
    "always",
    "flag",
    "present",
    "all_of",
    # Generic stages
    "lora_stage",
    "model_upscale_stage",
    "pixel_hires_stage",
    "detailer_stage",
    "image_effect_stage",
    "film_grain_stage",
    "digital_look_stage",
    "save_stage",
]

Predicate = Callable[[ValidatedParams], bool]


# =============================================================================
# STATE
# =============================================================================


@dataclass(frozen=True)
class PipelineState:
    """
    The value threaded through a pipeline.

    Attributes:
        graph: Graph built so far
        pointer: Reference to the running image (None until decoded)
        handles: Named shared references (model, clip, vae, positive, ...)
        params: Validated parameters for this build
        terminal: Id of the save node, once appended
    """

    graph: Graph
    params: ValidatedParams
    pointer: Reference | None = None
    handles: Mapping[str, Reference] = field(default_factory=dict)
    terminal: str | None = None

    def __post_init__(self):
        object.__setattr__(self, "handles", MappingProxyType(dict(self.handles)))

    @classmethod
    def start(
        cls, params: ValidatedParams, catalog: NodeCatalog | None = DEFAULT_CATALOG
    ) -> "PipelineState":
        return cls(graph=Graph.empty(catalog), params=params)

    def add(
        self, kind: str, inputs: Mapping[str, Any], title: str | None = None
    ) -> tuple["PipelineState", str]:
        """Append one node; returns the new state and the node id."""
        graph, node_id = self.graph.append(kind, inputs, title)
        return replace(self, graph=graph), node_id

    def advance(self, pointer: Reference | None = None, **handles: Reference) -> "PipelineState":
        """Move the pointer and/or rebind handles."""
        merged = {**self.handles, **handles}
        return replace(self, pointer=pointer or self.pointer, handles=merged)

    def handle(self, name: str) -> Reference:
        try:
            return self.handles[name]
        except KeyError:
            raise WorkflowError(
                f"No '{name}' handle established before it was needed",
                details={"handles": sorted(self.handles)},
            ) from None

    def image(self) -> Reference:
        if self.pointer is None:
            raise WorkflowError("No image produced before an image stage ran")
        return self.pointer


def bind(params: Mapping[str, Any], fields: Mapping[str, str]) -> dict[str, Any]:
    """Map node ports to parameter values: ``{port: params[field]}``."""
    return {port: params[name] for port, name in fields.items()}


# =============================================================================
# PREDICATES
# =============================================================================


def always(params: ValidatedParams) -> bool:
    return True


def flag(name: str) -> Predicate:
    """Enabled when boolean parameter ``name`` is true."""

    def predicate(params: ValidatedParams) -> bool:
        return bool(params.get(name))

    predicate.__name__ = f"flag({name})"
    return predicate


def present(name: str) -> Predicate:
    """Enabled when parameter ``name`` is neither None nor an empty string."""

    def predicate(params: ValidatedParams) -> bool:
        value = params.get(name)
        return value is not None and value != ""

    predicate.__name__ = f"present({name})"
    return predicate


def all_of(*predicates: Predicate) -> Predicate:
    def predicate(params: ValidatedParams) -> bool:
        return all(p(params) for p in predicates)

    predicate.__name__ = "all_of(" + ", ".join(p.__name__ for p in predicates) + ")"
    return predicate


# =============================================================================
# STAGES
# =============================================================================


@dataclass(frozen=True)
class Stage:
    """One optional (or mandatory) step of a recipe."""

    name: str
    apply: Callable[[PipelineState], PipelineState]
    when: Predicate = always

    def enabled(self, params: ValidatedParams) -> bool:
        return self.when(params)

    def run(self, state: PipelineState) -> PipelineState:
        if not self.enabled(state.params):
            logger.debug(f"Stage '{self.name}' skipped", extra={"stage": self.name})
            return state
        before = len(state.graph)
        state = self.apply(state)
        logger.debug(
            f"Stage '{self.name}' appended {len(state.graph) - before} node(s)",
            extra={"stage": self.name},
        )
        return state


class StagePipeline:
    """Ordered, immutable sequence of stages."""

    def __init__(self, stages: Iterable[Stage]):
        self._stages: tuple[Stage, ...] = tuple(stages)
        names = [s.name for s in self._stages]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate stage names: {names}")

    @property
    def stages(self) -> tuple[Stage, ...]:
        return self._stages

    def stage_names(self) -> list[str]:
        return [s.name for s in self._stages]

    def enabled_stages(self, params: ValidatedParams) -> list[str]:
        return [s.name for s in self._stages if s.enabled(params)]

    def run(self, state: PipelineState) -> PipelineState:
        for stage in self._stages:
            state = stage.run(state)
        return state

    def __len__(self) -> int:
        return len(self._stages)

    def __repr__(self) -> str:
        return f"StagePipeline({self.stage_names()})"


# =============================================================================
# GENERIC STAGE FACTORIES
# =============================================================================


def lora_stage(
    name_field: str = "lora_name",
    strength_field: str = "lora_strength",
    *,
    lora_name: str | None = None,
    with_clip: bool = False,
    when: Predicate | None = None,
    title: str = "Load LoRA",
    name: str = "lora",
) -> Stage:
    """
    LoRA model adaptation.

    Uses LoraLoaderModelOnly, or LoraLoader when ``with_clip`` is set (which
    also advances the clip handle). A fixed ``lora_name`` makes the stage
    always-on unless ``when`` says otherwise.
    """
    if when is None:
        when = always if lora_name else present(name_field)

    def apply(state: PipelineState) -> PipelineState:
        p = state.params
        inputs: dict[str, Any] = {
            "lora_name": lora_name or p[name_field],
            "strength_model": p[strength_field],
        }
        if with_clip:
            inputs["strength_clip"] = p[strength_field]
            inputs["model"] = state.handle("model")
            inputs["clip"] = state.handle("clip")
            state, node = state.add("LoraLoader", inputs, title)
            return state.advance(model=Reference(node, 0), clip=Reference(node, 1))

        inputs["model"] = state.handle("model")
        state, node = state.add("LoraLoaderModelOnly", inputs, title)
        return state.advance(model=Reference(node, 0))

    return Stage(name, apply, when)


def model_upscale_stage(
    model_field: str = "upscale_model",
    factor_field: str = "upscale_factor",
    *,
    when: Predicate | None = None,
    method: str = "lanczos",
    name: str = "upscale",
) -> Stage:
    """Upscale the running image with a model, then rescale by a factor."""

    def apply(state: PipelineState) -> PipelineState:
        p = state.params
        state, loader = state.add(
            "UpscaleModelLoader", {"model_name": p[model_field]}, "Load Upscale Model"
        )
        state, upscaled = state.add(
            "ImageUpscaleWithModel",
            {"upscale_model": Reference(loader, 0), "image": state.image()},
            "Upscale Image",
        )
        state, scaled = state.add(
            "ImageScaleBy",
            {
                "upscale_method": method,
                "scale_by": p[factor_field],
                "image": Reference(upscaled, 0),
            },
            "Scale Image",
        )
        return state.advance(Reference(scaled, 0))

    return Stage(name, apply, when or flag("upscale_enabled"))


def pixel_hires_stage(
    *,
    when: Predicate | None = None,
    scale_field: str = "hires_scale",
    steps_field: str = "hires_steps",
    denoise_field: str = "hires_denoise",
    upscale_method: str = "nearest-exact",
    name: str = "hires",
) -> Stage:
    """Second sampling pass: encode, upscale the latent, resample, decode."""

    def apply(state: PipelineState) -> PipelineState:
        p = state.params
        vae = state.handle("vae")
        state, encoded = state.add(
            "VAEEncode", {"pixels": state.image(), "vae": vae}, "VAE Encode (Hires)"
        )
        state, latent = state.add(
            "LatentUpscaleBy",
            {
                "upscale_method": upscale_method,
                "scale_by": p[scale_field],
                "samples": Reference(encoded, 0),
            },
            "Upscale Latent",
        )
        state, sampled = state.add(
            "KSampler",
            {
                "seed": p["seed"],
                "steps": p[steps_field],
                "cfg": p["cfg"],
                "sampler_name": p["sampler_name"],
                "scheduler": p["scheduler"],
                "denoise": p[denoise_field],
                "model": state.handle("model"),
                "positive": state.handle("positive"),
                "negative": state.handle("negative"),
                "latent_image": Reference(latent, 0),
            },
            "KSampler (Hires)",
        )
        state, decoded = state.add(
            "VAEDecode", {"samples": Reference(sampled, 0), "vae": vae}, "VAE Decode (Hires)"
        )
        return state.advance(Reference(decoded, 0))

    return Stage(name, apply, when or flag("hires_enabled"))


def detailer_stage(
    name: str,
    *,
    detector_model: str,
    when: Predicate,
    fields: Mapping[str, str],
    fixed: Mapping[str, Any],
    sam_model: str | None = None,
    title: str = "Face Detailer",
    detector_title: str | None = None,
) -> Stage:
    """
    FaceDetailer pass over the running image.

    ``fields`` maps detailer ports to parameter names and ``fixed`` holds
    the recipe's literal tuning values. The seed is always the validated
    seed. With ``sam_model`` the detector's segmentation output and a SAM
    loader are wired in as well. The detector is titled after the detailer
    ("Face Detailer" gives "Face Detector Provider") unless ``detector_title``
    is given.
    """
    detector_title = detector_title or title.replace("Detailer", "Detector Provider")

    def apply(state: PipelineState) -> PipelineState:
        state, detector = state.add(
            "UltralyticsDetectorProvider",
            {"model_name": detector_model},
            detector_title,
        )
        sam = None
        if sam_model:
            state, sam = state.add(
                "SAMLoader", {"model_name": sam_model, "device_mode": "AUTO"}, "SAM Loader"
            )

        inputs: dict[str, Any] = {"seed": state.params["seed"]}
        inputs.update(bind(state.params, fields))
        inputs.update(fixed)
        inputs.update(
            {
                "image": state.image(),
                "model": state.handle("model"),
                "clip": state.handle("clip"),
                "vae": state.handle("vae"),
                "positive": state.handle("positive"),
                "negative": state.handle("negative"),
                "bbox_detector": Reference(detector, 0),
            }
        )
        if sam is not None:
            inputs["sam_model_opt"] = Reference(sam, 0)
            inputs["segm_detector_opt"] = Reference(detector, 1)

        state, detailed = state.add("FaceDetailer", inputs, title)
        return state.advance(Reference(detailed, 0))

    return Stage(name, apply, when)


def image_effect_stage(
    name: str,
    kind: str,
    *,
    when: Predicate = always,
    fields: Mapping[str, str] | None = None,
    fixed: Mapping[str, Any] | None = None,
    image_port: str = "image",
    use_seed: bool = False,
    title: str | None = None,
) -> Stage:
    """A single node taking the running image and producing a new one."""

    def apply(state: PipelineState) -> PipelineState:
        inputs = bind(state.params, fields or {})
        inputs.update(fixed or {})
        if use_seed:
            inputs["seed"] = state.params["seed"]
        inputs[image_port] = state.image()
        state, node = state.add(kind, inputs, title)
        return state.advance(Reference(node, 0))

    return Stage(name, apply, when)


def film_grain_stage(
    *,
    kind: str = "ProPostFilmGrain",
    when: Predicate | None = None,
    fields: Mapping[str, str] | None = None,
    fixed: Mapping[str, Any] | None = None,
    image_port: str = "image",
    name: str = "film_grain",
    title: str = "Film Grain",
) -> Stage:
    """Film grain over the running image, reusing the validated seed."""
    return image_effect_stage(
        name,
        kind,
        when=when or flag("film_grain_enabled"),
        fields=fields,
        fixed=fixed,
        image_port=image_port,
        use_seed=True,
        title=title,
    )


def digital_look_stage(
    *,
    when: Predicate | None = None,
    fields: Mapping[str, str] | None = None,
    fixed: Mapping[str, Any] | None = None,
    name: str = "digital_look",
) -> Stage:
    """LowQualityDigitalLook effect, reusing the validated seed."""
    return image_effect_stage(
        name,
        "LowQualityDigitalLook",
        when=when or flag("digital_effects_enabled"),
        fields=fields,
        fixed=fixed,
        use_seed=True,
        title="Digital Effects",
    )


def save_stage(filename_prefix: str | None = None) -> Stage:
    """The terminal SaveImage node, bound to the final pointer."""

    def apply(state: PipelineState) -> PipelineState:
        prefix = filename_prefix or get_settings().build.default_filename_prefix
        state, node = state.add(
            "SaveImage", {"filename_prefix": prefix, "images": state.image()}, "Save Image"
        )
        return replace(state, terminal=node)

    return Stage("save", apply)

