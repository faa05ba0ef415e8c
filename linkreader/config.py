from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATHS = ("config.production.json", "config.json")
DEFAULT_QWEN_BASE_URL = "https://dashscope.aliyuncs.com/compatible-mode/v1"
DEFAULT_MAX_FILE_SIZE = 10 * 1024 * 1024


class ProviderSettings(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    api_key: str = Field(default="", alias="apiKey")
    base_url: str = Field(default="", alias="baseUrl")
    model: str = ""

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key.strip())


class FallbackSettings(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    use_ocr: bool = Field(default=True, alias="useOCR")
    max_file_size: int = Field(default=DEFAULT_MAX_FILE_SIZE, alias="maxFileSize", gt=0)


class TimeoutSettings(BaseModel):
    """Per-step budgets in seconds."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    download: float = 120.0
    webpage_download: float = Field(default=60.0, alias="webpageDownload")
    short_video_page: float = Field(default=30.0, alias="shortVideoPage")
    extraction: float = 60.0
    provider_call: float = Field(default=90.0, alias="providerCall")
    upload_submit: float = Field(default=60.0, alias="uploadSubmit")
    upload_poll_interval: float = Field(default=5.0, alias="uploadPollInterval")
    upload_max_polls: int = Field(default=10, alias="uploadMaxPolls", ge=0)
    upload_poll_timeout: float = Field(default=30.0, alias="uploadPollTimeout")
    request_deadline: float = Field(default=170.0, alias="requestDeadline")
    response_deadline: float = Field(default=180.0, alias="responseDeadline")
    keepalive_interval: float = Field(default=30.0, alias="keepaliveInterval")


class ServiceConfig(BaseModel):
    """Immutable service configuration handed to the gateway, orchestrator and app."""

    model_config = ConfigDict(frozen=True)

    providers: dict[str, ProviderSettings] = Field(default_factory=dict)
    fallback: FallbackSettings = Field(default_factory=FallbackSettings)
    timeouts: TimeoutSettings = Field(default_factory=TimeoutSettings)
    source: str = "default"

    def provider(self, name: str) -> ProviderSettings:
        return self.providers.get(name) or ProviderSettings()

    def configured_providers(self) -> list[str]:
        return sorted(name for name, settings in self.providers.items() if settings.is_configured)


def default_service_config() -> ServiceConfig:
    return ServiceConfig(
        providers={"qwen": ProviderSettings(base_url=DEFAULT_QWEN_BASE_URL, model="qwen-vl-plus")},
    )


def parse_service_config(raw: dict[str, Any], source: str = "inline") -> ServiceConfig:
    providers: dict[str, ProviderSettings] = {}
    for key, value in raw.items():
        if key in {"fallback", "timeouts"} or not isinstance(value, dict):
            continue
        providers[key] = ProviderSettings.model_validate(value)

    return ServiceConfig(
        providers=providers,
        fallback=FallbackSettings.model_validate(raw.get("fallback") or {}),
        timeouts=TimeoutSettings.model_validate(raw.get("timeouts") or {}),
        source=source,
    )


def _candidate_paths(path: str | None) -> list[Path]:
    if path:
        return [Path(path)]
    configured = os.getenv("LINKREADER_CONFIG")
    if configured:
        return [Path(configured)]
    return [Path(item) for item in DEFAULT_CONFIG_PATHS]


def load_service_config(path: str | None = None) -> ServiceConfig:
    for file_path in _candidate_paths(path):
        if not file_path.exists():
            continue

        try:
            raw = json.loads(file_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Config file %s could not be read, using defaults: %s", file_path, exc)
            return default_service_config()

        if not isinstance(raw, dict):
            logger.warning("Config file %s must contain a JSON object, using defaults.", file_path)
            return default_service_config()

        try:
            config = parse_service_config(raw, source=str(file_path))
        except ValidationError as exc:
            logger.warning("Config file %s is invalid, using defaults: %s", file_path, exc)
            return default_service_config()

        logger.info(
            "Loaded config from %s (configured providers: %s)",
            file_path,
            ", ".join(config.configured_providers()) or "none",
        )
        return config

    logger.warning("No config file found, using defaults.")
    return default_service_config()
