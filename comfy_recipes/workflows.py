"""
Comfy Recipes - Workflow System
===============================

Recipe descriptors and the graph documents they produce.

A WorkflowDescriptor pairs a parameter specification with an ordered stage
pipeline. build() validates raw input, threads a PipelineState through the
stages, appends the terminal save node, checks the finished graph and
returns an immutable GraphDocument ready to queue on a ComfyUI server.

Features:
- Parameter validation with every field error reported at once
- Optional stages switched on and off by parameters
- Named presets layered under user input
- Hash-based change detection
- Integrity check of every reference before a document is emitted
"""

import hashlib
import json
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any

from .catalog import DEFAULT_CATALOG, NodeCatalog
from .exceptions import (
    FieldError,
    RecipeNotFoundError,
    ReferentialIntegrityError,
    Result,
    ValidationError,
    WorkflowError,
)
from .logging_config import LogContext, get_logger, log_timing
from .parameters import ParameterSpec, ValidatedParams
from .resolver import check_integrity
from .stages import PipelineState, Stage, StagePipeline, save_stage

logger = get_logger(__name__)

__all__ = [
    # Enums
    "RecipeCategory",
    # Data classes
    "PresetDef",
    "WorkflowDescriptor",
    "GraphDocument",
    # Hashing
    "compute_document_hash",
    # Library
    "RecipeLibrary",
    "get_library",
    # Convenience functions
    "build_workflow",
]


# =============================================================================
# ENUMS
# =============================================================================


class RecipeCategory(str, Enum):
    TEXT_TO_IMAGE = "text-to-image"
    IMG_TO_IMG = "img-to-img"
    PORTRAIT = "portrait"


# =============================================================================
# HASHING
# =============================================================================


def compute_document_hash(document: Mapping[str, Any]) -> str:
    """
    Compute a deterministic hash for a graph document.

    Used for change detection and caching.
    """
    # Sort keys for deterministic serialization
    serialized = json.dumps(document, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(serialized.encode()).hexdigest()[:16]


# =============================================================================
# DATA CLASSES
# =============================================================================


@dataclass(frozen=True)
class PresetDef:
    """Named parameter overrides applied beneath user input."""

    name: str
    description: str
    parameters: Mapping[str, Any]


@dataclass(frozen=True)
class GraphDocument:
    """A built graph ready for execution."""

    recipe_id: str
    nodes: Mapping[str, Any]
    params: Mapping[str, Any]
    terminal_id: str
    document_hash: str = ""

    def __post_init__(self):
        if not self.document_hash:
            object.__setattr__(self, "document_hash", compute_document_hash(self.nodes))

    def to_json(self, indent: int | None = None) -> str:
        """The API prompt document as JSON (node insertion order)."""
        return json.dumps(self.nodes, indent=indent)

    def to_dict(self) -> dict[str, Any]:
        return {
            "recipe_id": self.recipe_id,
            "document_hash": self.document_hash,
            "terminal_id": self.terminal_id,
            "params": dict(self.params),
            "prompt": self.nodes,
        }


@dataclass(frozen=True)
class WorkflowDescriptor:
    """
    A recipe: parameter specification, stage order and metadata.

    ``stages`` excludes the terminal save stage, which is always appended
    last with ``filename_prefix``.
    """

    id: str
    summary: str
    description: str
    parameters: ParameterSpec
    stages: tuple[Stage, ...]
    filename_prefix: str | None = None
    category: RecipeCategory = RecipeCategory.TEXT_TO_IMAGE
    tags: tuple[str, ...] = ()
    presets: Mapping[str, PresetDef] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "stages", tuple(self.stages))
        object.__setattr__(self, "tags", tuple(self.tags))
        object.__setattr__(self, "presets", MappingProxyType(dict(self.presets)))
        pipeline = StagePipeline([*self.stages, save_stage(self.filename_prefix)])
        object.__setattr__(self, "_pipeline", pipeline)
        for preset in self.presets.values():
            unknown = set(preset.parameters) - set(self.parameters)
            if unknown:
                raise ValueError(f"Preset '{preset.name}' sets unknown parameters: {unknown}")

    @property
    def pipeline(self) -> StagePipeline:
        return self._pipeline

    def stage_names(self) -> list[str]:
        return self._pipeline.stage_names()

    def validate(
        self, raw: Mapping[str, Any] | None = None, preset: str | None = None
    ) -> ValidatedParams:
        """Validate raw input, with preset values filling unset fields."""
        if preset is not None and (raw is None or isinstance(raw, Mapping)):
            if preset not in self.presets:
                error = FieldError(
                    "<preset>",
                    "choice",
                    preset,
                    "is not a known preset",
                    allowed_values=tuple(self.presets) or None,
                )
                raise ValidationError([error], recipe_id=self.id)
            raw = {**self.presets[preset].parameters, **(raw or {})}
        return self.parameters.validate(raw, recipe_id=self.id)

    def build(
        self,
        raw: Mapping[str, Any] | None = None,
        *,
        preset: str | None = None,
        catalog: NodeCatalog | None = DEFAULT_CATALOG,
    ) -> GraphDocument:
        """
        Build the graph document for raw input.

        Raises:
            ValidationError: If the input does not satisfy the parameters
            ReferentialIntegrityError: If stage wiring produced a bad reference
            UnsupportedOperationError: If a stage uses a kind missing from the catalog
        """
        params = self.validate(raw, preset)
        build_id = f"{self.id}-{uuid.uuid4().hex[:8]}"

        with LogContext(build_id, recipe_id=self.id), log_timing(logger, f"build {self.id}"):
            state = self._pipeline.run(PipelineState.start(params, catalog))
            check_integrity(state.graph, catalog)
            self._check_terminal(state)

            logger.info(
                f"Built {self.id}: {len(state.graph)} nodes",
                extra={
                    "recipe_id": self.id,
                    "stages": self._pipeline.enabled_stages(params),
                },
            )
            return GraphDocument(
                recipe_id=self.id,
                nodes=state.graph.to_document(),
                params=params.to_dict(),
                terminal_id=state.terminal,
            )

    def try_build(
        self,
        raw: Mapping[str, Any] | None = None,
        *,
        preset: str | None = None,
        catalog: NodeCatalog | None = DEFAULT_CATALOG,
    ) -> Result:
        """
        Build, returning validation failures as a failed Result.

        Wiring and catalog errors are defects and still raise.
        """
        try:
            return Result.success(self.build(raw, preset=preset, catalog=catalog))
        except ValidationError as e:
            return Result.failure(e)

    def _check_terminal(self, state: PipelineState):
        saves = state.graph.find("SaveImage")
        if len(saves) != 1 or state.terminal is None:
            raise WorkflowError(
                f"Expected exactly one save node, found {len(saves)}",
                details={"recipe_id": self.id},
            )
        images = saves[0].inputs.get("images")
        if images != state.pointer:
            raise ReferentialIntegrityError(
                saves[0].id,
                str(images[0]) if images else "<none>",
                "images",
                message=f"Save node '{saves[0].id}' is not bound to the final image",
            )

    def describe(self) -> dict[str, Any]:
        """Metadata and input contract (JSON-serialisable)."""
        return {
            "id": self.id,
            "summary": self.summary,
            "description": self.description,
            "category": self.category.value,
            "tags": list(self.tags),
            "stages": self.stage_names(),
            "presets": {
                name: {"description": p.description, "parameters": dict(p.parameters)}
                for name, p in self.presets.items()
            },
            "parameters": self.parameters.describe(),
        }


# =============================================================================
# LIBRARY
# =============================================================================


class RecipeLibrary:
    """
    Registry of available recipes.

    This makes it easy to add new recipes without touching the CLI.
    """

    def __init__(self, load_builtin: bool = True):
        self._recipes: dict[str, WorkflowDescriptor] = {}
        if load_builtin:
            self._load_builtin()

    def _load_builtin(self):
        """Load built-in recipes."""
        from .recipes import BUILTIN_RECIPES

        for recipe in BUILTIN_RECIPES:
            self._recipes[recipe.id] = recipe

    def get(self, recipe_id: str) -> WorkflowDescriptor:
        """Get a recipe by ID."""
        try:
            return self._recipes[recipe_id]
        except KeyError:
            raise RecipeNotFoundError(recipe_id, available=self.ids()) from None

    def __contains__(self, recipe_id: str) -> bool:
        return recipe_id in self._recipes

    def ids(self) -> list[str]:
        return sorted(self._recipes)

    def list_all(self, category: RecipeCategory | None = None) -> list[WorkflowDescriptor]:
        """List all recipes, optionally filtered by category."""
        recipes = list(self._recipes.values())
        if category:
            recipes = [r for r in recipes if r.category == category]
        return sorted(recipes, key=lambda r: r.id)

    def add(self, recipe: WorkflowDescriptor):
        """Add a custom recipe."""
        if recipe.id in self._recipes:
            raise ValueError(f"Recipe already registered: {recipe.id}")
        self._recipes[recipe.id] = recipe


# =============================================================================
# SINGLETON INSTANCES
# =============================================================================

_library: RecipeLibrary | None = None


def get_library() -> RecipeLibrary:
    """Get the recipe library."""
    global _library
    if _library is None:
        _library = RecipeLibrary()
    return _library


def build_workflow(
    recipe_id: str,
    params: Mapping[str, Any] | None = None,
    *,
    preset: str | None = None,
    catalog: NodeCatalog | None = DEFAULT_CATALOG,
) -> GraphDocument:
    """
    Build a built-in recipe.

    Example:
        document = build_workflow("sd_txt2img", {"prompt": "a cat"})
    """
    return get_library().get(recipe_id).build(params, preset=preset, catalog=catalog)
