"""Configuration management with YAML and environment variable support."""

from pathlib import Path
from typing import ClassVar, Literal

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)


class YamlConfigSettingsSource(PydanticBaseSettingsSource):
    """Custom settings source that loads configuration from YAML file."""

    def __init__(self, settings_cls: type[BaseSettings], yaml_path: Path | None = None):
        super().__init__(settings_cls)
        self.yaml_path = yaml_path or Path("config.yaml")

    def get_field_value(self, field, field_name: str):
        # Not used with __call__
        pass

    def prepare_field_value(self, field_name: str, field, value, value_is_complex: bool):
        return value

    def __call__(self):
        if not self.yaml_path.exists():
            return {}

        with open(self.yaml_path) as f:
            data = yaml.safe_load(f) or {}

        return data


class TextProviderConfig(BaseModel):
    """LLM used to break a story into scenes.

    provider selects the adapter: "gemini" uses the google-genai SDK,
    "chat" targets any OpenAI-compatible /chat/completions endpoint.
    """

    provider: Literal["gemini", "chat"] = "chat"
    api_key: str = ""
    base_url: str = "https://open.bigmodel.cn/api/paas/v4"
    model: str = "glm-4-flash"
    request_timeout: float = 60.0


class GenerationProviderConfig(BaseModel):
    """Asynchronous task API used for image or video generation."""

    api_key: str = ""
    base_url: str = "https://api.xskill.ai"
    model: str = ""
    # Vendor sub-model passed inside params, if the task API needs one
    variant: str | None = None
    channel: str | None = None
    request_timeout: float = 60.0


class ProvidersConfig(BaseModel):
    """External generative providers."""

    text: TextProviderConfig = Field(default_factory=TextProviderConfig)
    image: GenerationProviderConfig = Field(
        default_factory=lambda: GenerationProviderConfig(
            model="fal-ai/bytedance/seedream/v4.5/text-to-image"
        )
    )
    video: GenerationProviderConfig = Field(
        default_factory=lambda: GenerationProviderConfig(
            model="st-ai/super-seed2", variant="seedance_2.0_fast"
        )
    )


class PipelineConfig(BaseModel):
    """Pipeline execution parameters."""

    poll_interval: float = 5.0
    poll_max_attempts: int = 120
    retry_max_attempts: int = 3
    retry_base_delay: float = 2.0
    default_video_duration: int = 5
    default_image_size: str = "2K"
    default_aspect_ratio: str = "16:9"
    purge_superseded_artifacts: bool = False
    stale_task_seconds: int = 1800
    ffmpeg_timeout: int = 60


class StorageConfig(BaseModel):
    """Storage and database configuration."""

    database_url: str = "sqlite+aiosqlite:///storyreel.db"
    media_dir: Path = Path("media")
    public_base_url: str = "/media"

    @field_validator("media_dir", mode="before")
    @classmethod
    def convert_media_dir_to_path(cls, v):
        """Convert string to Path object."""
        if isinstance(v, str):
            return Path(v)
        return v


class ServerConfig(BaseModel):
    """Server configuration."""

    host: str = "0.0.0.0"
    port: int = 8000
    cors_origins: list[str] = Field(default_factory=lambda: ["http://localhost:3000"])
    log_level: str = "INFO"


class Settings(BaseSettings):
    """Main application settings with YAML and environment variable support.

    Configuration sources (in priority order):
    1. Environment variables (prefix: STORYREEL_, delimiter: __)
    2. .env file
    3. YAML file (config.yaml)
    4. Field defaults
    """

    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_nested_delimiter="__",
        env_prefix="STORYREEL_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    providers: ProvidersConfig = Field(default_factory=ProvidersConfig)
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ):
        """Customize settings sources to include YAML configuration.

        Priority order (highest to lowest):
        1. Init settings (explicit keyword arguments, used by tests)
        2. Environment variables
        3. .env file
        4. YAML file
        """
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            YamlConfigSettingsSource(settings_cls),
        )


# Singleton instance
settings = Settings()
