"""Settings for the ledger service, layered from YAML, .env and environment."""

import os
from pathlib import Path
from typing import ClassVar

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

CONFIG_PATH_ENV = "FACTORYDASH_CONFIG"


class YamlConfigSettingsSource(PydanticBaseSettingsSource):
    """Reads ``config.yaml`` (or the file named by ``FACTORYDASH_CONFIG``)."""

    def get_field_value(self, field, field_name: str):
        # Whole document is returned from __call__
        return None, field_name, False

    def __call__(self):
        yaml_path = Path(os.environ.get(CONFIG_PATH_ENV, "config.yaml"))
        if not yaml_path.is_file():
            return {}

        document = yaml.safe_load(yaml_path.read_text(encoding="utf-8")) or {}
        if not isinstance(document, dict):
            raise ValueError(f"{yaml_path} must contain a mapping of config sections")
        return document


class DatabaseConfig(BaseModel):
    """Relational store connection."""

    url: str = "sqlite+aiosqlite:///factorydash.db"
    echo: bool = False


class WorkflowEngineConfig(BaseModel):
    """External workflow engine (n8n-style webhooks).

    ``start_path`` and ``publish_path`` are joined to ``base_url``; resume
    calls go to the absolute URL the engine registered on the session.
    """

    base_url: str = "http://n8n:5678"
    start_path: str = "/webhook/master-pipeline"
    publish_path: str = "/webhook/publisher"
    health_path: str = "/healthz"
    timeout_seconds: float = 10.0
    publish_timeout_seconds: float = 60.0

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


class AuthConfig(BaseModel):
    """Access-token verification parameters."""

    jwt_secret: str = "content-factory-jwt-secret-change-me"
    jwt_algorithm: str = "HS256"


class ServerConfig(BaseModel):
    """Server configuration."""

    host: str = "0.0.0.0"
    port: int = 3001
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])


class FanoutConfig(BaseModel):
    """Push channel tuning."""

    queue_size: int = 256


class LoggingConfig(BaseModel):
    level: str = "INFO"


class Settings(BaseSettings):
    """All service settings. Every field has a default, so no file is required.

    Environment variables use the FACTORYDASH_ prefix and "__" between
    section and field, e.g. FACTORYDASH_WORKFLOW_ENGINE__BASE_URL.
    """

    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_nested_delimiter="__",
        env_prefix="FACTORYDASH_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    workflow_engine: WorkflowEngineConfig = Field(default_factory=WorkflowEngineConfig)
    auth: AuthConfig = Field(default_factory=AuthConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    fanout: FanoutConfig = Field(default_factory=FanoutConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ):
        """Keyword overrides, then environment, then .env, then YAML."""
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            YamlConfigSettingsSource(settings_cls),
        )


settings = Settings()
