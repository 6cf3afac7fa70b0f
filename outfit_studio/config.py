"""Configuration management for the outfit editing pipeline."""

from pathlib import Path
from pydantic import BaseModel, Field, SecretStr
from pydantic_settings import BaseSettings

from .models.job import ModelTier


class ModelConfig(BaseModel):
    """Gemini model names per tier."""
    pro_analysis: str = "gemini-2.5-pro"
    pro_verification: str = "gemini-2.5-pro"
    flash_analysis: str = "gemini-2.5-flash"
    flash_verification: str = "gemini-2.5-flash"

    # The edit model is fixed regardless of tier
    image_edit: str = "gemini-3-pro-image-preview"
    image_size: str = "2K"

    def analysis_model(self, tier: ModelTier) -> str:
        return self.pro_analysis if tier == ModelTier.PRO else self.flash_analysis

    def verification_model(self, tier: ModelTier) -> str:
        return self.pro_verification if tier == ModelTier.PRO else self.flash_verification


class RetryConfig(BaseModel):
    """Backoff settings for model calls."""
    max_attempts: int = Field(default=3, ge=1)
    base_delay_seconds: float = Field(default=1.0, ge=0.0)  # 1s, 2s, 4s


class StudioConfig(BaseSettings):
    """Main pipeline configuration."""

    # Paths
    credentials_path: Path = Path.home() / ".outfit_studio" / "credentials.json"

    # Sub-configs
    models: ModelConfig = Field(default_factory=ModelConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)

    default_model_tier: ModelTier = ModelTier.PRO
    log_level: str = "INFO"

    # Gemini key (loaded from .env / GEMINI_API_KEY); only read by credential resolution
    gemini_api_key: SecretStr | None = None

    class Config:
        env_file = ".env"
        env_prefix = ""
        env_nested_delimiter = "__"
        extra = "ignore"


def load_config() -> StudioConfig:
    """Load configuration from environment and defaults."""
    return StudioConfig()
