"""Configuration models."""

from pydantic import BaseModel, ConfigDict, Field, field_validator


class AgentConfig(BaseModel):
    """Agent configuration."""
    reconciliation_interval: int = Field(default=30, ge=5)
    log_level: str = Field(default="INFO")
    state_dir: str = Field(default="./state")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}")
        return v.upper()


class RuntimeConfig(BaseModel):
    """Runtime adapter configuration."""
    adapter: str = Field(default="simulated", description="Registered adapter name")
    query_timeout: float = Field(default=10.0, gt=0)
    max_pending_attempts: int = Field(default=10, ge=1)
    image_cache_dir: str = Field(default="./state/images")


class MicrovmConfig(BaseModel):
    """Main configuration model."""
    model_config = ConfigDict(extra="ignore")

    agent: AgentConfig = Field(default_factory=AgentConfig)
    runtime: RuntimeConfig = Field(default_factory=RuntimeConfig)
