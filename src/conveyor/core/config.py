"""
Configuration schema and loading for conveyor runs.

Uses Pydantic for validation and Dynaconf for multi-source loading.
Settings are frozen (immutable) after construction.
"""

import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator

from conveyor.contracts import OutcomeKind, PipelineStep
from conveyor.engine.scheduler import SchedulerConfig

DEFAULT_SOURCE_FIELDS: tuple[str, ...] = ("db_name", "video_id", "site_id", "webroot", "bc_id")
DEFAULT_LEDGER_COLUMNS: tuple[str, ...] = ("db_name", "video_id", "site_id", "webroot", "bc_id", "fileName")


class SourceSettings(BaseModel):
    """Input CSV describing the items to migrate."""

    model_config = {"frozen": True, "extra": "forbid"}

    path: Path = Field(description="Input CSV file with a header row")
    id_field: str = Field(default="bc_id", description="Column holding the remote identifier")
    target_field: str = Field(default="webroot", description="Column holding the routing key")
    fields: tuple[str, ...] = Field(
        default=DEFAULT_SOURCE_FIELDS,
        description="Columns carried through to the ledger",
    )
    encoding: str = "utf-8"
    delimiter: str = ","


class LedgerSettings(BaseModel):
    """Append-only result ledger written by the video step."""

    model_config = {"frozen": True, "extra": "forbid"}

    path: Path = Field(default=Path("output-bc-migration.csv"), description="Ledger CSV path")
    columns: tuple[str, ...] = Field(default=DEFAULT_LEDGER_COLUMNS, description="Header and row layout")

    @field_validator("columns")
    @classmethod
    def validate_columns(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        if not v:
            raise ValueError("ledger columns cannot be empty")
        if len(set(v)) != len(v):
            raise ValueError(f"ledger columns must be unique, got {list(v)}")
        return v


class OutputSettings(BaseModel):
    """Where migrated files land: <base_path>/<target_key>/<suffix>/."""

    model_config = {"frozen": True, "extra": "forbid"}

    base_path: Path = Field(description="Root directory of the migrated asset tree")
    suffix: str = Field(default="assets/video", description="Subdirectory under each routing key")
    skip_existing: bool = Field(default=True, description="Skip outputs that already exist")


class BrightcoveSettings(BaseModel):
    """Brightcove OAuth and CMS API access."""

    model_config = {"frozen": True, "extra": "forbid"}

    account_id: str = Field(description="Brightcove account (publisher) ID")
    client_id: str = Field(description="OAuth client ID")
    client_secret: SecretStr = Field(description="OAuth client secret")
    oauth_url: str = "https://oauth.brightcove.com/v4/access_token"
    cms_url: str = "https://cms.api.brightcove.com/v1"
    timeout_seconds: float = Field(default=30.0, gt=0, description="Timeout for API calls")
    download_timeout_seconds: float = Field(default=300.0, gt=0, description="Read timeout for payload streams")


class RetrySettings(BaseModel):
    """Backoff for transient remote errors (429, 5xx, network)."""

    model_config = {"frozen": True}

    max_attempts: int = Field(default=3, gt=0, description="Total attempts per request")
    initial_delay_seconds: float = Field(default=1.0, gt=0, description="Initial backoff delay")
    max_delay_seconds: float = Field(default=30.0, gt=0, description="Maximum backoff delay")
    exponential_base: float = Field(default=2.0, gt=1.0, description="Exponential backoff base")
    jitter_seconds: float = Field(default=1.0, ge=0, description="Random jitter added to each delay")


class StepSettings(BaseModel):
    """Scheduler limits for each pipeline step."""

    model_config = {"frozen": True, "extra": "forbid"}

    video: SchedulerConfig = Field(default_factory=lambda: SchedulerConfig(concurrency=120, deadline_seconds=600))
    poster: SchedulerConfig = Field(default_factory=lambda: SchedulerConfig(concurrency=120, deadline_seconds=300))
    thumbnail: SchedulerConfig = Field(default_factory=lambda: SchedulerConfig(concurrency=120, deadline_seconds=300))

    def for_step(self, step: PipelineStep) -> SchedulerConfig:
        if step is PipelineStep.ALL:
            raise ValueError("PipelineStep.ALL has no scheduler settings; expand it first")
        config: SchedulerConfig = getattr(self, step.value)
        return config


class ConveyorSettings(BaseModel):
    """Top-level run configuration.

    This is the single source of truth for a migration run. All settings
    are validated and frozen after construction.
    """

    model_config = {"frozen": True, "extra": "forbid"}

    source: SourceSettings
    output: OutputSettings
    brightcove: BrightcoveSettings
    ledger: LedgerSettings = Field(default_factory=LedgerSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    steps: StepSettings = Field(default_factory=StepSettings)

    @model_validator(mode="after")
    def validate_ledger_columns_resolvable(self) -> "ConveyorSettings":
        """Every ledger column must come from the source or the video step's details."""
        known = {*self.source.fields, self.source.id_field, self.source.target_field, *_VIDEO_DETAIL_FIELDS}
        unknown = [c for c in self.ledger.columns if c not in known]
        if unknown:
            raise ValueError(f"ledger columns {unknown} are neither source fields nor video outcome fields")
        return self

    @model_validator(mode="after")
    def validate_video_persists_success(self) -> "ConveyorSettings":
        if OutcomeKind.SUCCESS not in self.steps.video.persist_outcomes:
            raise ValueError("steps.video.persist_outcomes must include 'success'")
        return self


# Detail keys produced by the video processor's SUCCESS outcomes
_VIDEO_DETAIL_FIELDS = frozenset({"fileName", "outputDir", "container", "videoSkipped", "metadataSkipped"})

# Regex pattern for ${VAR} or ${VAR:-default} syntax
_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Z_][A-Z0-9_]*)(?::-([^}]*))?\}")


def _expand_env_vars(config: dict[str, Any]) -> dict[str, Any]:
    """Recursively expand ${VAR} and ${VAR:-default} patterns in config values.

    Unset variables without a default are left as written, so validation
    reports them instead of silently substituting an empty string.
    """
    import os

    def _expand_string(value: str) -> str:
        def replacer(match: re.Match[str]) -> str:
            env_value = os.environ.get(match.group(1))
            if env_value is not None:
                return env_value
            if match.group(2) is not None:
                return match.group(2)
            return match.group(0)

        return _ENV_VAR_PATTERN.sub(replacer, value)

    def _expand_value(value: Any) -> Any:
        if isinstance(value, str):
            return _expand_string(value)
        if isinstance(value, dict):
            return {k: _expand_value(v) for k, v in value.items()}
        if isinstance(value, list):
            return [_expand_value(item) for item in value]
        return value

    return {k: _expand_value(v) for k, v in config.items()}


def _lowercase_keys(value: Any) -> Any:
    """Lower-case mapping keys at every depth.

    Dynaconf upper-cases keys that arrive through nested environment
    overrides (CONVEYOR_OUTPUT__SUFFIX becomes output.SUFFIX). No settings
    field is a free-form mapping, so every key is a field name.
    """
    if isinstance(value, dict):
        return {str(k).lower(): _lowercase_keys(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_lowercase_keys(item) for item in value]
    return value


def _find_unexpanded(config: Any, path: str = "") -> list[str]:
    """Locate values still holding a ${VAR} reference after expansion."""
    if isinstance(config, str):
        return [f"{path} references unset environment variable '{m.group(1)}'" for m in _ENV_VAR_PATTERN.finditer(config)]
    if isinstance(config, dict):
        return [msg for k, v in config.items() for msg in _find_unexpanded(v, f"{path}.{k}" if path else str(k))]
    if isinstance(config, list):
        return [msg for i, v in enumerate(config) for msg in _find_unexpanded(v, f"{path}[{i}]")]
    return []


def load_settings(config_path: Path) -> ConveyorSettings:
    """Load settings from a YAML file with environment variable overrides.

    Precedence:
    1. Environment variables (CONVEYOR_*), e.g. CONVEYOR_STEPS__VIDEO__CONCURRENCY
    2. Config file
    3. Pydantic defaults

    Raises:
        FileNotFoundError: If the config file doesn't exist
        ValueError: If a ${VAR} reference has no value and no default
        ValidationError: If the configuration fails validation
    """
    from dynaconf import Dynaconf

    # Dynaconf silently accepts missing files
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    dynaconf_settings = Dynaconf(
        envvar_prefix="CONVEYOR",
        settings_files=[str(config_path)],
        environments=False,
        load_dotenv=False,
        merge_enabled=True,
    )

    # Dynaconf upper-cases keys and mixes in its own settings
    internal_keys = {"LOAD_DOTENV", "ENVIRONMENTS", "SETTINGS_FILES"}
    raw_config = {
        k.lower(): _lowercase_keys(v) for k, v in dynaconf_settings.as_dict().items() if k not in internal_keys
    }

    raw_config = _expand_env_vars(raw_config)
    missing = _find_unexpanded(raw_config)
    if missing:
        raise ValueError("; ".join(missing))

    return ConveyorSettings(**raw_config)


def resolve_config(settings: ConveyorSettings) -> str:
    """Render validated settings as YAML with secrets masked."""
    return yaml.safe_dump(settings.model_dump(mode="json"), sort_keys=False)
