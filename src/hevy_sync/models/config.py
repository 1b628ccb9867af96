"""Configuration management for the sync core."""

import os
import uuid
from pathlib import Path
from typing import Dict, Optional

import yaml
from pydantic import BaseModel, Field, field_validator


class EndpointConfig(BaseModel):
    """Paginated collection endpoint and the JSON key holding its items."""
    path: str = Field(description="Path relative to base_url, e.g. /workouts")
    data_key: str = Field(description="Response key holding the page items")
    page_size: int = Field(default=10, description="Items requested per page")

    @field_validator('path')
    @classmethod
    def validate_path(cls, v: str) -> str:
        if not v.startswith('/'):
            raise ValueError(f"Endpoint path must start with '/', got: {v}")
        return v

    @field_validator('page_size')
    @classmethod
    def validate_page_size(cls, v: int) -> int:
        if v <= 0:
            raise ValueError(f"page_size must be positive, got: {v}")
        return v


def _default_endpoints() -> Dict[str, EndpointConfig]:
    return {
        "exercises": EndpointConfig(path="/exercise_templates", data_key="exercise_templates", page_size=100),
        "routineFolders": EndpointConfig(path="/routine_folders", data_key="routine_folders", page_size=10),
        "routines": EndpointConfig(path="/routines", data_key="routines", page_size=10),
        "workouts": EndpointConfig(path="/workouts", data_key="workouts", page_size=10),
        "workoutEvents": EndpointConfig(path="/workouts/events", data_key="events", page_size=10),
    }


class SyncConfig(BaseModel):
    """Sync core configuration."""

    # API access
    base_url: str = Field(default="https://api.hevyapp.com/v1", description="Hevy API base URL")
    api_key: Optional[str] = Field(default=None, description="Hevy API key (UUID)")

    # Timeouts
    connect_timeout: float = Field(default=5.0, description="HTTP connect timeout in seconds")
    read_timeout: float = Field(default=30.0, description="HTTP read timeout in seconds")
    validation_timeout: float = Field(default=15.0, description="Timeout for API key validation requests")

    # Retry
    max_retries: int = Field(default=3, description="Retries per request after the first attempt")
    retry_base_delay: float = Field(default=1.0, description="Base delay for exponential backoff")
    retry_max_delay: float = Field(default=10.0, description="Maximum retry delay")

    # Circuit breaker
    circuit_breaker_failure_threshold: float = Field(default=5.0, description="Failure weight that opens the circuit")
    circuit_breaker_reset_timeout: float = Field(default=60.0, description="Seconds before a half-open probe")

    # Rate limiting
    api_delay: float = Field(default=0.05, description="Default delay between page requests")
    throttle_delay: float = Field(default=0.1, description="Delay between requests when the budget runs low")
    rate_limit_pause: float = Field(default=1.0, description="Pause before retrying a page rejected with 429")
    rate_limit_cache_ttl: float = Field(default=600.0, description="Seconds a rate-limit budget stays valid")

    # Pagination
    page_concurrency: int = Field(default=4, description="Pages fetched together per batch")
    max_pages: int = Field(default=10000, description="Hard ceiling on pages per walk")

    # Batch fetch
    batch_size: int = Field(default=100, description="Entities fetched concurrently per round")
    batch_retry_attempts: int = Field(default=2, description="Retries per failed entity")
    batch_failure_threshold: float = Field(default=0.5, description="Failure ratio that aborts a batch")
    batch_min_success_count: int = Field(default=1, description="Minimum fetched entities for a batch to count")

    # Checkpointing
    state_path: str = Field(default=".state/hevy_sync.json", description="Durable key-value store file")
    lock_timeout: float = Field(default=30.0, description="Seconds to wait for the import lock")
    stale_after: float = Field(default=600.0, description="Seconds without heartbeat before an import is abandoned")
    heartbeat_interval: float = Field(default=120.0, description="Seconds between checkpoint heartbeats")
    execution_budget: Optional[float] = Field(default=330.0, description="Wall-clock budget per execution in seconds")

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")

    # Output
    output_directory: str = Field(default="out", description="Directory for sink JSON files")

    endpoints: Dict[str, EndpointConfig] = Field(
        default_factory=_default_endpoints,
        description="Collection endpoints keyed by import step name"
    )

    @field_validator('base_url')
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        if not v.startswith(('http://', 'https://')):
            raise ValueError(f"URL must start with http:// or https://, got: {v}")
        return v.rstrip('/')

    @field_validator('api_key')
    @classmethod
    def validate_api_key(cls, v: Optional[str]) -> Optional[str]:
        """API keys are 36-character UUIDs."""
        if v is None or v == "":
            return None
        v = v.strip()
        try:
            uuid.UUID(v)
        except ValueError:
            raise ValueError("api_key must be a 36-character UUID")
        if len(v) != 36:
            raise ValueError("api_key must be a 36-character UUID")
        return v

    @field_validator('page_concurrency', 'max_pages', 'batch_size')
    @classmethod
    def validate_positive_int(cls, v: int) -> int:
        if v <= 0:
            raise ValueError(f"value must be positive, got: {v}")
        return v

    @field_validator('batch_failure_threshold')
    @classmethod
    def validate_ratio(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError(f"batch_failure_threshold must be within [0, 1], got: {v}")
        return v

    @field_validator('connect_timeout', 'read_timeout', 'lock_timeout', 'circuit_breaker_failure_threshold')
    @classmethod
    def validate_positive_float(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"value must be positive, got: {v}")
        return v

    @property
    def state_file(self) -> Path:
        return Path(self.state_path)

    @property
    def output_path(self) -> Path:
        return Path(self.output_directory)

    @classmethod
    def env_overrides(cls) -> Dict[str, object]:
        """Collect overrides from environment variables."""
        env_mappings = {
            "HEVY_API_KEY": "api_key",
            "HEVY_SYNC_BASE_URL": "base_url",
            "HEVY_SYNC_LOG_LEVEL": "log_level",
            "HEVY_SYNC_STATE_PATH": "state_path",
            "HEVY_SYNC_OUTPUT_DIR": "output_directory",
            "HEVY_SYNC_MAX_RETRIES": "max_retries",
            "HEVY_SYNC_PAGE_CONCURRENCY": "page_concurrency",
            "HEVY_SYNC_EXECUTION_BUDGET": "execution_budget",
        }

        overrides: Dict[str, object] = {}
        for env_var, field_name in env_mappings.items():
            if env_var in os.environ:
                # pydantic coerces the string to the field type
                overrides[field_name] = os.environ[env_var]
        return overrides


class ConfigManager:
    """Manages configuration loading with override precedence."""

    def __init__(self, config_file: Optional[Path] = None):
        self.config_file = config_file or Path("config/config.yaml")
        self._config: Optional[SyncConfig] = None

    def load_config(self, cli_overrides: Optional[Dict] = None) -> SyncConfig:
        """
        Load configuration with override precedence: CLI > ENV > YAML.

        Args:
            cli_overrides: Optional dictionary of CLI flag overrides

        Returns:
            Fully merged SyncConfig instance

        Raises:
            pydantic.ValidationError: If configuration validation fails
        """
        config_dict: Dict = {}

        if self.config_file.exists():
            with open(self.config_file, 'r') as f:
                yaml_config = yaml.safe_load(f)
                if yaml_config:
                    config_dict.update(yaml_config)

        config_dict.update(SyncConfig.env_overrides())

        if cli_overrides:
            config_dict.update({k: v for k, v in cli_overrides.items() if v is not None})

        self._config = SyncConfig(**config_dict)
        return self._config

    @property
    def config(self) -> SyncConfig:
        """Get the loaded configuration."""
        if self._config is None:
            self._config = self.load_config()
        return self._config
