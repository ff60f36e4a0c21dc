"""
Comfy Recipes - Node Catalog
============================

The vocabulary of operation kinds the execution engine understands, with the
output types each kind produces. The graph builder uses it to reject unknown
kinds and the reference resolver uses the output arity to reject references
to output slots that do not exist.

The built-in DEFAULT_CATALOG covers every kind used by the bundled recipes.
A live engine's catalog can be read from ComfyUI's /object_info endpoint
with fetch_remote_catalog().
"""

from collections.abc import Iterator, Mapping
from types import MappingProxyType

import requests

from .config import get_settings
from .exceptions import CatalogFetchError
from .logging_config import get_logger

logger = get_logger(__name__)

__all__ = [
    "NodeCatalog",
    "DEFAULT_CATALOG",
    "fetch_remote_catalog",
]


class NodeCatalog(Mapping):
    """Immutable mapping of operation kind to its output types."""

    def __init__(self, outputs: Mapping[str, tuple[str, ...] | list[str]]):
        self._outputs = MappingProxyType({kind: tuple(out) for kind, out in outputs.items()})

    def __getitem__(self, kind: str) -> tuple[str, ...]:
        return self._outputs[kind]

    def __iter__(self) -> Iterator[str]:
        return iter(self._outputs)

    def __len__(self) -> int:
        return len(self._outputs)

    def __repr__(self) -> str:
        return f"NodeCatalog({len(self._outputs)} kinds)"

    def output_count(self, kind: str) -> int | None:
        """Number of outputs for ``kind``, or None if the kind is unknown."""
        if not isinstance(kind, str):
            return None
        outputs = self._outputs.get(kind)
        return None if outputs is None else len(outputs)

    def merged(self, other: Mapping[str, tuple[str, ...]]) -> "NodeCatalog":
        """Return a new catalog with ``other``'s entries layered on top."""
        return NodeCatalog({**self._outputs, **dict(other)})


DEFAULT_CATALOG = NodeCatalog(
    {
        # Loaders
        "CheckpointLoaderSimple": ("MODEL", "CLIP", "VAE"),
        "VAELoader": ("VAE",),
        "UNETLoader": ("MODEL",),
        "CLIPLoader": ("CLIP",),
        "DualCLIPLoader": ("CLIP",),
        "LoraLoader": ("MODEL", "CLIP"),
        "LoraLoaderModelOnly": ("MODEL",),
        "Lora Loader Stack (rgthree)": ("MODEL", "CLIP"),
        "UpscaleModelLoader": ("UPSCALE_MODEL",),
        "SAMLoader": ("SAM_MODEL",),
        "UltralyticsDetectorProvider": ("BBOX_DETECTOR", "SEGM_DETECTOR"),
        "LoadImage": ("IMAGE", "MASK"),
        # Conditioning and model patches
        "CLIPTextEncode": ("CONDITIONING",),
        "CLIPSetLastLayer": ("CLIP",),
        "TextEncodeQwenImageEdit": ("CONDITIONING",),
        "FluxGuidance": ("CONDITIONING",),
        "InstructPixToPixConditioning": ("CONDITIONING", "CONDITIONING", "LATENT"),
        "ModelSamplingAuraFlow": ("MODEL",),
        "ModelSamplingFlux": ("MODEL",),
        "CFGNorm": ("MODEL",),
        # Latents and sampling
        "EmptyLatentImage": ("LATENT",),
        "EmptySD3LatentImage": ("LATENT",),
        "SDXL Empty Latent Image (rgthree)": ("LATENT", "INT", "INT"),
        "LatentUpscaleBy": ("LATENT",),
        "KSampler": ("LATENT",),
        "KSampler (Efficient)": (
            "MODEL",
            "CONDITIONING",
            "CONDITIONING",
            "LATENT",
            "VAE",
            "IMAGE",
        ),
        "VAEEncode": ("LATENT",),
        "VAEDecode": ("IMAGE",),
        # Resolution
        "easy hiresFix": ("PIPE_LINE", "IMAGE", "LATENT"),
        "ImageUpscaleWithModel": ("IMAGE",),
        "ImageScaleBy": ("IMAGE",),
        "ImageScale": ("IMAGE",),
        "ImageScaleToTotalPixels": ("IMAGE",),
        # Detail repair
        "ToDetailerPipe": ("DETAILER_PIPE",),
        "FaceDetailer": ("IMAGE", "IMAGE", "IMAGE", "MASK", "DETAILER_PIPE", "IMAGE"),
        "FaceDetailerPipe": ("IMAGE", "IMAGE", "IMAGE", "MASK", "DETAILER_PIPE", "IMAGE"),
        # Post-processing
        "FastLaplacianSharpen": ("IMAGE",),
        "FastFilmGrain": ("IMAGE",),
        "ProPostFilmGrain": ("IMAGE",),
        "LowQualityDigitalLook": ("IMAGE",),
        # Output
        "SaveImage": (),
    }
)


def fetch_remote_catalog(url: str | None = None, timeout: float | None = None) -> NodeCatalog:
    """
    Fetch the node catalog from a running ComfyUI server.

    Args:
        url: Server base URL (defaults to settings.catalog.comfyui_url)
        timeout: Request timeout in seconds (defaults to settings.catalog.timeout)

    Returns:
        NodeCatalog built from /object_info

    Raises:
        CatalogFetchError: If no URL is configured or the request fails
    """
    config = get_settings().catalog
    url = (url or config.comfyui_url or "").rstrip("/")
    if not url:
        raise CatalogFetchError("<unset>", "No ComfyUI URL configured for the node catalog")

    endpoint = f"{url}/object_info"
    try:
        response = requests.get(endpoint, timeout=timeout or config.timeout)
        response.raise_for_status()
        data = response.json()
    except (requests.RequestException, ValueError) as e:
        raise CatalogFetchError(endpoint, cause=e) from e

    outputs: dict[str, tuple[str, ...]] = {}
    for kind, info in data.items():
        output_info = info.get("output", []) if isinstance(info, dict) else []
        outputs[kind] = tuple(output_info) if isinstance(output_info, list) else ()

    logger.debug("Fetched node catalog from ComfyUI", extra={"node_count": len(outputs)})
    return NodeCatalog(outputs)
