"""Configuration management using pydantic-settings.

**Not a singleton**: each call to ``get_app_config()`` re-reads config
from disk so that ConfigMap updates are picked up by the next component
built from it.

Priority order (highest first):

1. Init kwargs (embedding applications and tests)
2. ConfigMap YAML (path from ``CHATGATE_CONFIGMAP_FILE`` env var)
3. Environment variables (``CHATGATE_`` prefix, ``__`` nesting)
4. ``.env`` dotenv file
5. Static YAML (``configs/config.yaml``)
6. File secrets, then field defaults

Caveat: the file paths are resolved at import time; pointing the env var
at a new file after startup requires a process restart.
"""

import os
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

from .system import (
    DebounceConfig,
    LoggingConfig,
    ProviderLimitsConfig,
    ResponseLimitConfig,
    SchedulerConfig,
    SuppressionConfig,
    TracingConfig,
    TypingConfig,
)

# ---------------------------------------------------------------------------
# Path constants
# ---------------------------------------------------------------------------

CONFIG_PY_PATH = Path(__file__).resolve()
PROJECT_ROOT = CONFIG_PY_PATH.parent.parent.parent.parent
CONFIG_DIR = PROJECT_ROOT / "configs"

STATIC_CONFIG_FILE = CONFIG_DIR / "config.yaml"

_configmap_env = os.environ.get("CHATGATE_CONFIGMAP_FILE")
CONFIGMAP_CONFIG_FILE: Optional[Path] = Path(_configmap_env) if _configmap_env else None

DOTENV_FILE_PATH = PROJECT_ROOT / ".env"
ENV_DELIMITER = "__"
ENV_PREFIX = "CHATGATE_"

DEFAULT_ENCODING = "utf-8"


# ---------------------------------------------------------------------------
# Application config (re-created on every call: not a singleton)
# ---------------------------------------------------------------------------


class AppConfig(BaseSettings):
    """Application configuration."""

    model_config = SettingsConfigDict(
        env_file=DOTENV_FILE_PATH,
        env_file_encoding=DEFAULT_ENCODING,
        env_nested_delimiter=ENV_DELIMITER,
        env_prefix=ENV_PREFIX,
        case_sensitive=False,
        extra="ignore",
        yaml_file=STATIC_CONFIG_FILE,
        yaml_file_encoding=DEFAULT_ENCODING,
    )

    provider: ProviderLimitsConfig = Field(
        default_factory=ProviderLimitsConfig,
        description="Upstream provider quotas",
    )

    scheduler: SchedulerConfig = Field(
        default_factory=SchedulerConfig,
        description="Request scheduler concurrency and retry settings",
    )

    debounce: DebounceConfig = Field(
        default_factory=DebounceConfig,
        description="Inbound burst coalescing",
    )

    suppression: SuppressionConfig = Field(
        default_factory=SuppressionConfig,
        description="Duplicate, echo and backlog suppression",
    )

    response_limit: ResponseLimitConfig = Field(
        default_factory=ResponseLimitConfig,
        description="Per-conversation response circuit breaker",
    )

    typing: TypingConfig = Field(
        default_factory=TypingConfig,
        description="Typing indicator settings",
    )

    logging: LoggingConfig = Field(
        default_factory=LoggingConfig,
        description="Logging bootstrap settings",
    )

    tracing: TracingConfig = Field(
        default_factory=TracingConfig,
        description="OpenTelemetry settings",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # 1. Explicit kwargs win
        sources: list[PydanticBaseSettingsSource] = [init_settings]

        # 2. ConfigMap YAML
        if CONFIGMAP_CONFIG_FILE is not None and CONFIGMAP_CONFIG_FILE.is_file():
            sources.append(
                YamlConfigSettingsSource(
                    settings_cls,
                    yaml_file=CONFIGMAP_CONFIG_FILE,
                )
            )

        # 3-4. Env vars and dotenv
        sources.append(env_settings)
        sources.append(dotenv_settings)

        # 5. Static YAML
        sources.append(YamlConfigSettingsSource(settings_cls))

        # 6. File secrets
        sources.append(file_secret_settings)

        return tuple(sources)


def get_app_config() -> AppConfig:
    """Get the application configuration.

    Re-reads ``configs/config.yaml`` (and the ConfigMap override when
    present) on every call.
    """
    return AppConfig()
