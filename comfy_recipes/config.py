"""
Comfy Recipes - Settings
========================

pydantic-settings models for everything that changes how a recipe is
assembled rather than what it produces. Each section reads its own
``COMFY_RECIPES_<SECTION>__`` variables, and the top-level ``Settings`` also
accepts the nested form through the ``__`` delimiter or a ``.env`` file:

    COMFY_RECIPES_LOGGING__LEVEL=DEBUG
    COMFY_RECIPES_BUILD__CHECK_EACH_APPEND=false
    COMFY_RECIPES_BUILD__SEED_MAX=4294967296
    COMFY_RECIPES_CATALOG__COMFYUI_URL=http://192.168.1.100:8188

Settings are read once and cached; tests and long-lived processes call
reload_settings() after changing the environment.
"""

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

__all__ = [
    "Settings",
    "settings",
    "get_settings",
    "reload_settings",
    "LoggingConfig",
    "BuildConfig",
    "CatalogConfig",
]

ENV_PREFIX = "COMFY_RECIPES_"

_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _section(name: str) -> SettingsConfigDict:
    return SettingsConfigDict(env_prefix=f"{ENV_PREFIX}{name}__", env_ignore_empty=True)


class LoggingConfig(BaseSettings):
    """Console/file output of the ``comfy_recipes`` loggers."""

    model_config = _section("LOGGING")

    level: str = "INFO"
    format: str = "%(asctime)s %(levelname)-7s [%(build_id)s] %(name)s: %(message)s"
    date_format: str = "%H:%M:%S"
    file: str | None = None
    json_output: bool = False

    @field_validator("level")
    @classmethod
    def known_level(cls, value: str) -> str:
        if value.upper() not in _LEVELS:
            raise ValueError(f"log level must be one of {', '.join(_LEVELS)}, got {value!r}")
        return value.upper()


class BuildConfig(BaseSettings):
    """Graph assembly switches."""

    model_config = _section("BUILD")

    # False defers reference checks to the whole-graph pass at the end of a build
    check_each_append: bool = True
    # False lets kinds missing from the node catalog through unchecked
    strict_catalog: bool = True
    # Generated seeds are drawn from [0, seed_max)
    seed_max: int = Field(default=10**15, gt=0)
    default_filename_prefix: str = Field(default="ComfyUI", min_length=1)


class CatalogConfig(BaseSettings):
    """Optional live ComfyUI server whose /object_info replaces the built-in catalog."""

    model_config = _section("CATALOG")

    comfyui_url: str | None = None
    timeout: float = Field(default=5.0, gt=0)

    @field_validator("comfyui_url")
    @classmethod
    def base_url(cls, value: str | None) -> str | None:
        if not value:
            return None
        return value.rstrip("/")


class Settings(BaseSettings):
    """
    All settings sections.

        from comfy_recipes.config import get_settings

        if get_settings().build.strict_catalog:
            ...
    """

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_nested_delimiter="__",
        env_ignore_empty=True,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    name: str = "comfy_recipes"
    version: str = "1.0.0"

    logging: LoggingConfig = LoggingConfig()
    build: BuildConfig = BuildConfig()
    catalog: CatalogConfig = CatalogConfig()

    def to_dict(self) -> dict:
        """JSON-friendly view, as printed by ``comfy-recipes settings``."""
        return self.model_dump(
            include={
                "version": True,
                "logging": {"level", "json_output"},
                "build": True,
                "catalog": True,
            }
        )


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()


def reload_settings() -> Settings:
    """Drop the cached settings and read the environment again."""
    global settings
    get_settings.cache_clear()
    settings = get_settings()
    return settings
