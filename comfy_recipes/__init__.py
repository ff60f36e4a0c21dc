"""
Comfy Recipes - Workflow Graph Assembly for ComfyUI
===================================================

Turns a small set of validated parameters into a complete, internally
consistent ComfyUI API prompt document. Recipes are data: a parameter
specification plus an ordered list of optional stages.

Installation:
    pip install comfy-recipes
    pip install comfy-recipes[test]   # + pytest

Features:
- Parameter validation with every field error reported at once
- Immutable graph builder with per-append reference checks
- Optional stages (LoRA, hires, detailers, post-processing, upscale)
- Reference resolver for stored or remote-checked documents
- Structured logging
- CLI: python -m comfy_recipes {list,describe,build,check,settings}

Usage:
    from comfy_recipes import build_workflow

    document = build_workflow("sd_txt2img", {"prompt": "a cat", "width": 512, "height": 512})
    print(document.to_json(indent=2))
"""

__version__ = "1.0.0"

# Configuration (import first - other modules depend on it)
from .config import (
    Settings,
    settings,
    get_settings,
    reload_settings,
)

# Exceptions (with verbosity levels)
from .exceptions import (
    ComfyRecipesError,
    ValidationError,
    FieldError,
    WorkflowError,
    ReferentialIntegrityError,
    UnsupportedOperationError,
    RecipeNotFoundError,
    CatalogFetchError,
    Result,
    VerbosityLevel,
    format_error_for_user,
    set_verbosity,
    get_verbosity,
)

# Logging
from .logging_config import (
    get_logger,
    set_log_level,
    set_build_id,
    clear_build_id,
    LogContext,
    log_timing,
)

# Parameters
from .parameters import (
    ParameterKind,
    ParameterDef,
    ParameterSpec,
    ValidatedParams,
    validate_params,
    random_seed,
    SAMPLERS,
    SCHEDULERS,
)

# Graph
from .catalog import NodeCatalog, DEFAULT_CATALOG, fetch_remote_catalog
from .graph import Reference, Node, Graph
from .resolver import check_integrity, find_dangling_references, find_cycle

# Stages
from .stages import (
    PipelineState,
    Stage,
    StagePipeline,
    always,
    flag,
    present,
    all_of,
)

# Workflows
from .workflows import (
    RecipeCategory,
    PresetDef,
    WorkflowDescriptor,
    GraphDocument,
    RecipeLibrary,
    get_library,
    build_workflow,
    compute_document_hash,
)

__all__ = [
    "__version__",
    # Config
    "Settings",
    "settings",
    "get_settings",
    "reload_settings",
    # Exceptions
    "ComfyRecipesError",
    "ValidationError",
    "FieldError",
    "WorkflowError",
    "ReferentialIntegrityError",
    "UnsupportedOperationError",
    "RecipeNotFoundError",
    "CatalogFetchError",
    "Result",
    "VerbosityLevel",
    "format_error_for_user",
    "set_verbosity",
    "get_verbosity",
    # Logging
    "get_logger",
    "set_log_level",
    "set_build_id",
    "clear_build_id",
    "LogContext",
    "log_timing",
    # Parameters
    "ParameterKind",
    "ParameterDef",
    "ParameterSpec",
    "ValidatedParams",
    "validate_params",
    "random_seed",
    "SAMPLERS",
    "SCHEDULERS",
    # Graph
    "NodeCatalog",
    "DEFAULT_CATALOG",
    "fetch_remote_catalog",
    "Reference",
    "Node",
    "Graph",
    "check_integrity",
    "find_dangling_references",
    "find_cycle",
    # Stages
    "PipelineState",
    "Stage",
    "StagePipeline",
    "always",
    "flag",
    "present",
    "all_of",
    # Workflows
    "RecipeCategory",
    "PresetDef",
    "WorkflowDescriptor",
    "GraphDocument",
    "RecipeLibrary",
    "get_library",
    "build_workflow",
    "compute_document_hash",
]
