"""Configuration models.

Every section forbids unknown keys, so a misspelled setting in a YAML file
fails at load time instead of silently falling back to a default.

Precedence, lowest first:
1. Field defaults below
2. defaults.yaml, then config.yaml
3. Environment variables (see config_loader.ENV_VAR_MAPPINGS)
"""

from __future__ import annotations

import contextlib
from collections.abc import Iterator
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from .config_sources import DeepMergedYamlSource

DEFAULT_AUTO_ACCEPT_COMMENT = "قبلت المهمة وسأعمل عليها"


class FirebaseConfig(BaseModel):
    """Credentials and deployment settings for the Firebase project."""

    model_config = ConfigDict(extra="forbid")

    credentials_path: str | None = None
    credentials_json: str | None = None  # Inline service account JSON
    project_id: str | None = None
    region: str = "europe-west1"


class StoreConfig(BaseModel):
    """Collection and field names in the document store."""

    model_config = ConfigDict(extra="forbid")

    users_collection: str = "users"
    notifications_subcollection: str = "notifications"
    service_requests_collection: str = "serviceRequests"
    announcements_collection: str = "announcements"
    auth_id_field: str = "authId"
    push_tokens_field: str = "pushTokens"
    # Firestore rejects "in" filters with more values than this
    in_query_limit: int = Field(default=30, ge=1)


class PushConfig(BaseModel):
    """Push delivery gateway settings.

    Chunk sizes mirror the gateway's documented request limits: at most 100
    messages per send request and 300 ids per receipt request.
    """

    model_config = ConfigDict(extra="forbid")

    base_url: str = "https://exp.host/--/api/v2"
    access_token: str | None = None
    send_chunk_size: int = Field(default=100, ge=1)
    receipt_chunk_size: int = Field(default=300, ge=1)
    max_attempts: int = Field(default=3, ge=1)
    base_delay_seconds: float = 1.0
    timeout_seconds: float = 30.0
    receipt_delay_seconds: float = 5.0
    sound: str | None = "default"


class TemplateConfig(BaseModel):
    """Notification text settings."""

    model_config = ConfigDict(extra="forbid")

    auto_accept_comments: list[str] = Field(
        default_factory=lambda: [DEFAULT_AUTO_ACCEPT_COMMENT]
    )
    comment_max_length: int = Field(default=100, ge=4)


class AppConfig(BaseSettings):
    """Root of the configuration: one field per section."""

    model_config = SettingsConfigDict(extra="forbid")

    _yaml_files: ClassVar[list[str]] = []

    firebase: FirebaseConfig = Field(default_factory=FirebaseConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    push: PushConfig = Field(default_factory=PushConfig)
    templates: TemplateConfig = Field(default_factory=TemplateConfig)

    @classmethod
    @contextlib.contextmanager
    def yaml_source_context(cls, yaml_files: list[str]) -> Iterator[None]:
        """Temporarily point the YAML settings source at the given files."""
        previous = cls._yaml_files
        cls._yaml_files = list(yaml_files)
        try:
            yield
        finally:
            cls._yaml_files = previous

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # Environment variables are applied explicitly by config_loader
        return (init_settings, DeepMergedYamlSource(settings_cls, cls._yaml_files))

    def loggable_dict(self) -> dict[str, Any]:
        """Dump the configuration with secrets removed."""
        data = self.model_dump()
        data["firebase"].pop("credentials_json", None)
        data["push"].pop("access_token", None)
        return data
