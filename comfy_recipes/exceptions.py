"""
Comfy Recipes - Errors
======================

Every error raised by the package derives from ComfyRecipesError and carries
two messages: ``user_message`` for whoever supplied the recipe input, and
``developer_message`` (code, details, cause) for logs. Which one ``str()``
and format_error_for_user() show depends on COMFY_RECIPES_ENV and
COMFY_RECIPES_VERBOSITY.

Taxonomy:
    ValidationError             user input problem, reported to the caller
    ReferentialIntegrityError   defect in a recipe's stage wiring, fatal
    UnsupportedOperationError   operation kind unknown to the node catalog
    RecipeNotFoundError         unknown recipe id
    CatalogFetchError           engine node catalog could not be read

Usage:
    from comfy_recipes.exceptions import ValidationError

    try:
        document = recipe.build(raw)
    except ValidationError as e:
        for error in e.errors:
            print(error.field, error.constraint)
"""

import os
from dataclasses import dataclass
from enum import Enum
from typing import Any

__all__ = [
    "VerbosityLevel",
    "set_verbosity",
    "get_verbosity",
    "Result",
    "ComfyRecipesError",
    # Validation
    "FieldError",
    "ValidationError",
    # Build
    "WorkflowError",
    "ReferentialIntegrityError",
    "UnsupportedOperationError",
    "RecipeNotFoundError",
    "CatalogFetchError",
    # Utilities
    "format_error_for_user",
]


VERBOSITY_ENV = "COMFY_RECIPES_VERBOSITY"
ENVIRONMENT_ENV = "COMFY_RECIPES_ENV"


class VerbosityLevel(Enum):
    """Who reads the message: CASUAL gets user_message, DEVELOPER the full one."""

    CASUAL = "casual"
    DEVELOPER = "developer"


_verbosity_override: VerbosityLevel | None = None


def set_verbosity(level: VerbosityLevel | None):
    """Force a verbosity; None falls back to COMFY_RECIPES_VERBOSITY."""
    global _verbosity_override
    _verbosity_override = level


def get_verbosity() -> VerbosityLevel:
    if _verbosity_override is not None:
        return _verbosity_override
    try:
        return VerbosityLevel(os.environ.get(VERBOSITY_ENV, "casual").lower())
    except ValueError:
        return VerbosityLevel.CASUAL


def _in_production() -> bool:
    return os.environ.get(ENVIRONMENT_ENV, "").lower() == "production"


class ComfyRecipesError(Exception):
    """
    Base error for the package.

    Subclasses set ``_default_user_message`` and ``_default_suggestions``;
    callers may override either per instance. ``details`` is free-form
    context (node ids, recipe id, URL) and stays out of ``user_message``.
    """

    _default_user_message = "Something went wrong while preparing the workflow"
    _default_suggestions: list[str] = []

    def __init__(
        self,
        message: str,
        *,
        user_message: str | None = None,
        code: str | None = None,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
        suggestions: list[str] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.user_message = user_message or self._default_user_message
        self.code = code or type(self).__name__
        self.details = dict(details or {})
        self.cause = cause
        self.suggestions = list(suggestions or self._default_suggestions)
        if cause is not None:
            self.__cause__ = cause

    @property
    def developer_message(self) -> str:
        parts = [f"[{self.code}] {self.message}"]
        if self.details:
            parts.append("(" + ", ".join(f"{k}={v}" for k, v in self.details.items()) + ")")
        if self.cause is not None:
            parts.append(f"[caused by: {type(self.cause).__name__}: {self.cause}]")
        return " ".join(parts)

    def get_message(self, verbosity: VerbosityLevel | None = None) -> str:
        if (verbosity or get_verbosity()) == VerbosityLevel.CASUAL:
            return self.user_message
        return self.developer_message

    def add_context(self, key: str, value: Any) -> "ComfyRecipesError":
        """Record one more detail; returns self so calls chain."""
        self.details[key] = value
        return self

    def to_dict(self, include_internal: bool = False) -> dict[str, Any]:
        """
        JSON view of the error. Details, the developer message and the cause
        are left out in production unless ``include_internal`` is set.
        """
        data: dict[str, Any] = {
            "error": True,
            "code": self.code,
            "message": self.user_message,
            "suggestions": self.suggestions,
        }
        if include_internal or not _in_production():
            data["details"] = self.details
            data["developer_message"] = self.developer_message
            if self.cause is not None:
                data["cause"] = str(self.cause)
        return data

    def __str__(self) -> str:
        return self.user_message if _in_production() else self.developer_message


@dataclass(frozen=True)
class FieldError:
    """One field's validation failure."""

    field: str
    reason: str
    value: Any = None
    constraint: str | None = None
    allowed_values: tuple[str, ...] | None = None

    def describe(self) -> str:
        if self.reason == "missing":
            return f"{self.field}: required field is missing"
        msg = f"{self.field}: {self.value!r} {self.constraint or self.reason}"
        if self.allowed_values:
            msg += f" (allowed: {', '.join(self.allowed_values)})"
        return msg

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"field": self.field, "reason": self.reason}
        if self.reason != "missing":
            data["value"] = self.value
        if self.constraint:
            data["constraint"] = self.constraint
        if self.allowed_values:
            data["allowed_values"] = list(self.allowed_values)
        return data


class ValidationError(ComfyRecipesError):
    """
    Raw input does not satisfy a recipe's parameter specification.

    Every failing field is collected in one pass; ``errors`` holds one
    FieldError per field. No graph is produced.
    """

    _default_user_message = "Some settings are invalid"
    _default_suggestions = ["Check the highlighted fields against the recipe's inputs"]

    def __init__(self, errors: list[FieldError], recipe_id: str | None = None, **kwargs):
        self.errors = list(errors)
        fields = ", ".join(e.field for e in self.errors)
        msg = f"Invalid parameters: {fields}" if fields else "Invalid parameters"
        details = kwargs.pop("details", {})
        if recipe_id:
            details["recipe_id"] = recipe_id
        details["errors"] = [e.describe() for e in self.errors]
        user_msg = "; ".join(e.describe() for e in self.errors) or None
        super().__init__(
            msg,
            code="VALIDATION_ERROR",
            user_message=user_msg,
            details=details,
            **kwargs,
        )

    @property
    def fields(self) -> list[str]:
        return [e.field for e in self.errors]

    def for_field(self, name: str) -> FieldError | None:
        """Return the error reported for ``name``, if any."""
        for error in self.errors:
            if error.field == name:
                return error
        return None

    def to_dict(self, include_internal: bool = False) -> dict[str, Any]:
        result = super().to_dict(include_internal)
        result["errors"] = [e.to_dict() for e in self.errors]
        return result


class WorkflowError(ComfyRecipesError):
    """Base class for graph assembly errors."""

    _default_user_message = "Unable to prepare the workflow"


class ReferentialIntegrityError(WorkflowError):
    """
    A node input references a node (or output slot) missing from the graph.

    Always a defect in stage wiring, never a user input problem.
    """

    _default_user_message = "The workflow could not be assembled"
    _default_suggestions = ["Report this recipe; its stage wiring is broken"]

    def __init__(
        self,
        from_node: str,
        to_node: str,
        port: str,
        message: str | None = None,
        **kwargs,
    ):
        self.from_node = from_node
        self.to_node = to_node
        self.port = port
        msg = message or (
            f"Node '{from_node}' input '{port}' references non-existent node '{to_node}'"
        )
        details = kwargs.pop("details", {})
        details.update({"from_node": from_node, "to_node": to_node, "port": port})
        super().__init__(
            msg,
            code="REFERENTIAL_INTEGRITY_ERROR",
            details=details,
            **kwargs,
        )


class UnsupportedOperationError(WorkflowError):
    """Operation kind is not in the execution engine's node catalog."""

    _default_user_message = "The workflow uses an unsupported node"
    _default_suggestions = [
        "Install the custom node pack that provides this node",
        "Refresh the node catalog from the running engine",
    ]

    def __init__(self, operation_kind: str, message: str | None = None, **kwargs):
        self.operation_kind = operation_kind
        msg = message or f"Unsupported operation kind: {operation_kind}"
        details = kwargs.pop("details", {})
        details["operation_kind"] = operation_kind
        super().__init__(msg, code="UNSUPPORTED_OPERATION", details=details, **kwargs)


class RecipeNotFoundError(WorkflowError):
    """Requested recipe is not registered."""

    _default_user_message = "Recipe not found"

    def __init__(self, recipe_id: str, available: list[str] | None = None, **kwargs):
        self.recipe_id = recipe_id
        details = kwargs.pop("details", {})
        details["recipe_id"] = recipe_id
        suggestions = None
        if available:
            suggestions = [f"Available recipes: {', '.join(available)}"]
        super().__init__(
            f"Recipe not found: {recipe_id}",
            code="RECIPE_NOT_FOUND",
            details=details,
            suggestions=suggestions,
            **kwargs,
        )


class CatalogFetchError(ComfyRecipesError):
    """The execution engine's node catalog could not be fetched."""

    _default_user_message = "Unable to read the node catalog from ComfyUI"
    _default_suggestions = [
        "Check if ComfyUI is running",
        "Verify the catalog URL in settings",
    ]

    def __init__(self, url: str, message: str | None = None, **kwargs):
        details = kwargs.pop("details", {})
        details["url"] = url
        super().__init__(
            message or f"Failed to fetch node catalog from {url}",
            code="CATALOG_FETCH_ERROR",
            details=details,
            **kwargs,
        )


class Result:
    """
    Success value or ComfyRecipesError, for callers that branch instead of catching.

        result = recipe.try_build(raw)
        if result.failed:
            show(result.error.user_message)
        else:
            submit(result.value.nodes)
    """

    __slots__ = ("_value", "_error")

    def __init__(self, value: Any = None, error: ComfyRecipesError | None = None):
        self._value = value
        self._error = error

    @classmethod
    def success(cls, value: Any) -> "Result":
        return cls(value=value)

    @classmethod
    def failure(cls, error: ComfyRecipesError) -> "Result":
        return cls(error=error)

    @property
    def ok(self) -> bool:
        return self._error is None

    @property
    def failed(self) -> bool:
        return not self.ok

    @property
    def error(self) -> ComfyRecipesError | None:
        return self._error

    @property
    def value(self) -> Any:
        """The success value; re-raises the stored error on a failed result."""
        if self._error is not None:
            raise self._error
        return self._value

    def to_dict(self, include_internal: bool = False) -> dict[str, Any]:
        if self.failed:
            return {"success": False, **self._error.to_dict(include_internal)}
        value = self._value.to_dict() if hasattr(self._value, "to_dict") else self._value
        return {"success": True, "value": value}

    def __repr__(self) -> str:
        if self.failed:
            return f"Result.failure({self._error!r})"
        return f"Result.success({self._value!r})"


def format_error_for_user(error: Exception, verbosity: VerbosityLevel | None = None) -> str:
    """
    Message for ``error`` at the given (or current) verbosity.

    Exceptions from outside the package show only their type to casual readers.
    """
    level = verbosity or get_verbosity()
    if isinstance(error, ComfyRecipesError):
        return error.get_message(level)
    if level == VerbosityLevel.CASUAL:
        return f"Error: {type(error).__name__}"
    return f"{type(error).__name__}: {error}"
