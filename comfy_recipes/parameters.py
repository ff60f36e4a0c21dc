"""
Comfy Recipes - Parameter Specifications
========================================

Declared recipe inputs and their validation.

A recipe declares an ordered ParameterSpec of ParameterDef entries. Raw input
(typically parsed JSON) is checked against it by validate_params(), which
applies defaults, evaluates default factories such as random_seed() exactly
once, and returns an immutable ValidatedParams. Every failing field is
collected and raised together in one ValidationError.

Usage:
    from comfy_recipes.parameters import ParameterDef, ParameterKind, ParameterSpec

    spec = ParameterSpec({
        "prompt": ParameterDef(ParameterKind.STRING, required=True),
        "width": ParameterDef(ParameterKind.INT, default=1024, min=256, max=2048, multiple_of=8),
    })
    params = spec.validate({"prompt": "a cat", "width": 512})
    params.width  # 512
"""

import math
import random
from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any

from .config import get_settings
from .exceptions import FieldError, ValidationError
from .logging_config import get_logger

logger = get_logger(__name__)

__all__ = [
    "ParameterKind",
    "ParameterDef",
    "ParameterSpec",
    "ValidatedParams",
    "validate_params",
    "random_seed",
    # Shared field definitions
    "seed_param",
    "sampler_param",
    "scheduler_param",
    # Enumerations
    "SAMPLERS",
    "SCHEDULERS",
]


# =============================================================================
# ENUMERATIONS
# =============================================================================

# KSampler sampler names accepted by ComfyUI
SAMPLERS: tuple[str, ...] = (
    "euler",
    "euler_cfg_pp",
    "euler_ancestral",
    "euler_ancestral_cfg_pp",
    "heun",
    "heunpp2",
    "dpm_2",
    "dpm_2_ancestral",
    "lms",
    "dpm_fast",
    "dpm_adaptive",
    "dpmpp_2s_ancestral",
    "dpmpp_2s_ancestral_cfg_pp",
    "dpmpp_sde",
    "dpmpp_sde_gpu",
    "dpmpp_2m",
    "dpmpp_2m_cfg_pp",
    "dpmpp_2m_sde",
    "dpmpp_2m_sde_gpu",
    "dpmpp_3m_sde",
    "dpmpp_3m_sde_gpu",
    "ddpm",
    "lcm",
    "ipndm",
    "ipndm_v",
    "deis",
    "res_multistep",
    "res_multistep_cfg_pp",
    "res_multistep_ancestral",
    "res_multistep_ancestral_cfg_pp",
    "gradient_estimation",
    "er_sde",
    "seeds_2",
    "seeds_3",
    "ddim",
    "uni_pc",
    "uni_pc_bh2",
)

# KSampler scheduler names accepted by ComfyUI
SCHEDULERS: tuple[str, ...] = (
    "simple",
    "sgm_uniform",
    "karras",
    "exponential",
    "ddim_uniform",
    "beta",
    "normal",
    "linear_quadratic",
    "kl_optimal",
)


class ParameterKind(str, Enum):
    STRING = "string"
    INT = "int"
    FLOAT = "float"
    BOOL = "bool"
    CHOICE = "choice"


def random_seed() -> int:
    """Draw a fresh seed in [0, seed_max)."""
    return random.randrange(get_settings().build.seed_max)


def _fmt(number: float) -> str:
    if isinstance(number, float) and number.is_integer():
        return str(int(number))
    return str(number)


# =============================================================================
# PARAMETER DEFINITION
# =============================================================================


@dataclass(frozen=True)
class ParameterDef:
    """
    Definition of one recipe input.

    ``default`` is used when the field is absent; ``default_factory`` (a
    zero-argument callable) takes precedence and is evaluated once per
    validation. Bounds are inclusive. ``multiple_of`` applies to numeric
    kinds. Declared defaults must satisfy the field's own constraints.
    """

    kind: ParameterKind
    description: str = ""
    required: bool = False
    default: Any = None
    default_factory: Callable[[], Any] | None = None
    min: float | None = None
    max: float | None = None
    multiple_of: float | None = None
    choices: tuple[str, ...] | None = None

    def __post_init__(self):
        if self.choices is not None:
            object.__setattr__(self, "choices", tuple(self.choices))
        if self.kind == ParameterKind.CHOICE and not self.choices:
            raise ValueError("choice parameters need a non-empty choices list")
        if self.required and (self.default is not None or self.default_factory is not None):
            raise ValueError("required parameters cannot declare a default")
        if self.multiple_of is not None and self.multiple_of <= 0:
            raise ValueError("multiple_of must be positive")
        if self.default is not None:
            default, error = self.check("default", self.default)
            if error:
                raise ValueError(f"invalid default: {error.describe()}")
            object.__setattr__(self, "default", default)

    @property
    def is_numeric(self) -> bool:
        return self.kind in (ParameterKind.INT, ParameterKind.FLOAT)

    def resolve_default(self) -> Any:
        if self.default_factory is not None:
            return self.default_factory()
        return self.default

    def check(self, name: str, value: Any) -> tuple[Any, FieldError | None]:
        """Coerce ``value`` to this kind and check its constraints."""
        value, error = self._coerce(name, value)
        if error:
            return value, error

        if self.kind == ParameterKind.CHOICE and value not in self.choices:
            return value, FieldError(
                name,
                "choice",
                value,
                "is not an allowed value",
                allowed_values=self.choices,
            )

        if self.is_numeric:
            if self.min is not None and value < self.min:
                return value, FieldError(name, "min", value, f"must be >= {_fmt(self.min)}")
            if self.max is not None and value > self.max:
                return value, FieldError(name, "max", value, f"must be <= {_fmt(self.max)}")
            if self.multiple_of is not None and not _is_multiple(value, self.multiple_of):
                return value, FieldError(
                    name, "multiple_of", value, f"must be a multiple of {_fmt(self.multiple_of)}"
                )

        return value, None

    def _coerce(self, name: str, value: Any) -> tuple[Any, FieldError | None]:
        kind = self.kind

        if kind == ParameterKind.BOOL:
            if isinstance(value, bool):
                return value, None
            return value, FieldError(name, "type", value, "must be a boolean")

        if kind == ParameterKind.INT:
            # bool is an int subclass; never accept it as a number
            if isinstance(value, bool):
                return value, FieldError(name, "type", value, "must be an integer")
            if isinstance(value, int):
                return value, None
            if isinstance(value, float) and value.is_integer():
                return int(value), None
            return value, FieldError(name, "type", value, "must be an integer")

        if kind == ParameterKind.FLOAT:
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                return value, FieldError(name, "type", value, "must be a number")
            if not math.isfinite(value):
                return value, FieldError(name, "type", value, "must be a finite number")
            return float(value), None

        # STRING and CHOICE
        if not isinstance(value, str):
            return value, FieldError(name, "type", value, "must be a string")
        return value, None

    def describe(self, name: str) -> dict[str, Any]:
        """Introspectable description of this field (JSON-serialisable)."""
        info: dict[str, Any] = {
            "name": name,
            "kind": self.kind.value,
            "required": self.required,
            "description": self.description,
        }
        if self.default_factory is not None:
            info["generated"] = True
        elif not self.required:
            info["default"] = self.default
        if self.min is not None:
            info["min"] = self.min
        if self.max is not None:
            info["max"] = self.max
        if self.multiple_of is not None:
            info["multiple_of"] = self.multiple_of
        if self.choices is not None:
            info["choices"] = list(self.choices)
        return info


def _is_multiple(value: float, step: float) -> bool:
    if isinstance(value, int) and isinstance(step, int):
        return value % step == 0
    quotient = value / step
    return math.isclose(quotient, round(quotient), rel_tol=0.0, abs_tol=1e-9)


# =============================================================================
# SHARED FIELD DEFINITIONS
# =============================================================================


def seed_param() -> ParameterDef:
    return ParameterDef(
        ParameterKind.INT,
        description="Seed for random number generation",
        default_factory=random_seed,
        min=0,
    )


def sampler_param(default: str) -> ParameterDef:
    return ParameterDef(
        ParameterKind.CHOICE,
        description="Name of the sampler to use",
        default=default,
        choices=SAMPLERS,
    )


def scheduler_param(default: str) -> ParameterDef:
    return ParameterDef(
        ParameterKind.CHOICE,
        description="Type of scheduler to use",
        default=default,
        choices=SCHEDULERS,
    )


# =============================================================================
# SPECIFICATION AND VALIDATED SET
# =============================================================================


class ParameterSpec(Mapping):
    """Ordered, immutable mapping of field name to ParameterDef."""

    def __init__(self, fields: Mapping[str, ParameterDef]):
        self._fields = MappingProxyType(dict(fields))

    def __getitem__(self, name: str) -> ParameterDef:
        return self._fields[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._fields)

    def __len__(self) -> int:
        return len(self._fields)

    def __repr__(self) -> str:
        return f"ParameterSpec({list(self._fields)})"

    @property
    def required_fields(self) -> list[str]:
        return [name for name, p in self._fields.items() if p.required]

    def describe(self) -> list[dict[str, Any]]:
        """Describe every field in declaration order."""
        return [param.describe(name) for name, param in self._fields.items()]

    def validate(self, raw: Mapping[str, Any] | None, recipe_id: str | None = None):
        return validate_params(raw, self, recipe_id=recipe_id)


class ValidatedParams(Mapping):
    """
    Immutable validated parameter set.

    Values are reachable by key or attribute: ``params["seed"]`` or
    ``params.seed``.
    """

    __slots__ = ("_values",)

    def __init__(self, values: Mapping[str, Any]):
        object.__setattr__(self, "_values", MappingProxyType(dict(values)))

    def __getitem__(self, name: str) -> Any:
        return self._values[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __getattr__(self, name: str) -> Any:
        try:
            return self._values[name]
        except KeyError:
            raise AttributeError(f"No parameter named '{name}'") from None

    def __setattr__(self, name: str, value: Any):
        raise AttributeError("ValidatedParams is immutable")

    def __repr__(self) -> str:
        return f"ValidatedParams({dict(self._values)!r})"

    def to_dict(self) -> dict[str, Any]:
        return dict(self._values)


def validate_params(
    raw: Mapping[str, Any] | None,
    spec: ParameterSpec,
    recipe_id: str | None = None,
) -> ValidatedParams:
    """
    Validate raw input against a specification.

    Args:
        raw: Mapping of field name to value (None is treated as empty)
        spec: The declared specification
        recipe_id: Optional recipe id, recorded on the error

    Returns:
        ValidatedParams with one value per declared field

    Raises:
        ValidationError: With one FieldError per failing field
    """
    if raw is None:
        raw = {}
    if not isinstance(raw, Mapping):
        raise ValidationError(
            [FieldError("<input>", "type", type(raw).__name__, "must be an object")],
            recipe_id=recipe_id,
        )

    errors: list[FieldError] = []
    values: dict[str, Any] = {}

    for name, param in spec.items():
        value = raw.get(name)
        if value is None:
            if param.required:
                errors.append(FieldError(name, "missing"))
            else:
                values[name] = param.resolve_default()
            continue

        coerced, error = param.check(name, value)
        if error:
            errors.append(error)
        else:
            values[name] = coerced

    unknown = [key for key in raw if key not in spec]
    if unknown:
        logger.debug("Ignoring unknown parameters", extra={"unknown": unknown})

    if errors:
        logger.info(
            f"Parameter validation failed for {len(errors)} field(s)",
            extra={"recipe_id": recipe_id, "fields": [e.field for e in errors]},
        )
        raise ValidationError(errors, recipe_id=recipe_id)

    return ValidatedParams(values)
