"""Pipeline facade settings."""

from typing import Optional

from pydantic import Field

from notifier.configuration.base import PipelineSectionSettings


class PipelineSettings(PipelineSectionSettings):
    """Pipeline facade configuration.

    Environment Variables:
        PIPELINE_PROVIDER_NAME: Name recorded in history entries
            (default: the provider's own name)
        PIPELINE_HEALTH_CHECK_INTERVAL_MS: Health tick, 0 disables (default: 60000)
    """

    provider_name: Optional[str] = Field(default=None, alias="PIPELINE_PROVIDER_NAME")
    health_check_interval_ms: int = Field(
        default=60000, alias="PIPELINE_HEALTH_CHECK_INTERVAL_MS"
    )
