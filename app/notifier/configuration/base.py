"""Shared base classes for settings modules."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class PipelineSectionSettings(BaseSettings):
    """Base class for pipeline component settings.

    All component settings inherit from this class to ensure consistent
    configuration behavior (env file loading, case sensitivity, field-name
    overrides in tests).
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
        populate_by_name=True,
        frozen=True,
    )
