"""Configuration loader for the prompt flow alignment backend."""
from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

LOGGER = logging.getLogger(__name__)

REPO_ROOT = Path(__file__).resolve().parents[2]
DEFAULT_ENV_FILE = REPO_ROOT / ".env"

DATABASE_URL_ENV_VAR = "PROMPTFLOW_DATABASE_URL"
ENV_FILE_OVERRIDE_VAR = "PROMPTFLOW_ENV_FILE"


class ConfigError(RuntimeError):
    """Raised when configuration cannot be loaded."""


class _FrozenModel(BaseModel):
    """Base model enforcing immutability for config sections."""

    model_config = ConfigDict(frozen=True)


class PipelineConfig(_FrozenModel):
    """Pipeline-level configuration."""

    version: str = Field(..., min_length=1)


class TextConfig(_FrozenModel):
    """Tokenization settings shared by the builder and the scorer."""

    stop_words: List[str] = Field(default_factory=list)

    @field_validator("stop_words")
    @classmethod
    def _normalize_stop_words(cls, values: List[str]) -> List[str]:
        normalized: List[str] = []
        for value in values:
            cleaned = value.strip().lower()
            if cleaned and cleaned not in normalized:
                normalized.append(cleaned)
        return normalized

    def stop_word_set(self) -> frozenset[str]:
        """Return the stop words as an immutable set."""

        return frozenset(self.stop_words)


class CanonicalizationConfig(_FrozenModel):
    """Defaults applied while folding transcript flows into a canonical graph."""

    default_type: str = Field("custom", min_length=1)
    default_icon: str = Field("widgets", min_length=1)
    fallback_label: str = Field("N/A", min_length=1)
    generated_by: str = Field("prompt-flow-alignment", min_length=1)


class ScoringConfig(_FrozenModel):
    """Weights and constants for prompt node to canonical node similarity."""

    token_weight: float = Field(..., ge=0.0, le=1.0)
    label_weight: float = Field(..., ge=0.0, le=1.0)
    type_weight: float = Field(..., ge=0.0, le=1.0)
    support_weight: float = Field(..., ge=0.0, le=1.0)
    support_log_divisor: float = Field(..., gt=0)
    substring_label_score: float = Field(..., ge=0.0, le=1.0)
    family_type_score: float = Field(..., ge=0.0, le=1.0)
    mismatch_type_score: float = Field(..., ge=0.0, le=1.0)
    type_families: Dict[str, List[str]] = Field(default_factory=dict)

    @field_validator("type_families")
    @classmethod
    def _validate_families(cls, values: Dict[str, List[str]]) -> Dict[str, List[str]]:
        """Reject node types that are listed under more than one family."""

        seen: Dict[str, str] = {}
        normalized: Dict[str, List[str]] = {}
        for family, members in values.items():
            cleaned_members: List[str] = []
            for member in members:
                cleaned = " ".join(member.replace("_", " ").replace("-", " ").split()).lower()
                if not cleaned:
                    continue
                previous = seen.get(cleaned)
                if previous is not None and previous != family:
                    msg = f"node type '{cleaned}' is assigned to both '{previous}' and '{family}'"
                    raise ValueError(msg)
                seen[cleaned] = family
                cleaned_members.append(cleaned)
            normalized[family] = cleaned_members
        return normalized

    def family_lookup(self) -> Dict[str, str]:
        """Return a mapping of normalized node type to its family name."""

        return {
            member: family
            for family, members in self.type_families.items()
            for member in members
        }


class AlignmentConfig(_FrozenModel):
    """Coverage classification thresholds."""

    covered_threshold: float = Field(..., ge=0.0, le=1.0)
    floor_threshold: float = Field(..., ge=0.0, le=1.0)
    collision_note: str = Field(..., min_length=1)

    @model_validator(mode="after")
    def _validate_thresholds(self) -> "AlignmentConfig":
        if self.floor_threshold > self.covered_threshold:
            msg = "alignment.floor_threshold cannot exceed alignment.covered_threshold"
            raise ValueError(msg)
        return self


class StorageConfig(_FrozenModel):
    """Relational storage settings."""

    database_url: str = Field(..., min_length=1)
    echo: bool = False


class APIConfig(_FrozenModel):
    """HTTP surface settings."""

    allowed_origins: List[str] = Field(default_factory=list)
    transcript_set_list_limit: int = Field(100, ge=1)


class AppConfig(_FrozenModel):
    """Top-level application configuration composed from config.yaml."""

    pipeline: PipelineConfig
    text: TextConfig
    canonicalization: CanonicalizationConfig
    scoring: ScoringConfig
    alignment: AlignmentConfig
    storage: StorageConfig
    api: APIConfig

    @staticmethod
    def default_path() -> Path:
        """Return the default location of the configuration file.

        Returns:
            Path: Absolute path to config.yaml at the repository root.
        """
        return REPO_ROOT / "config.yaml"


def _determine_env_file_path() -> Optional[Path]:
    """Return the path to the environment file if one should be loaded."""

    override = os.getenv(ENV_FILE_OVERRIDE_VAR)
    if override:
        candidate = Path(override).expanduser()
        if candidate.exists():
            return candidate
        LOGGER.warning("Configured environment file override does not exist: %s", candidate)
        return None
    if DEFAULT_ENV_FILE.exists():
        return DEFAULT_ENV_FILE
    return None


def _strip_inline_comment(value: str) -> str:
    """Remove inline comments from an environment value when unquoted."""

    comment_index = value.find("#")
    if comment_index == -1:
        return value
    return value[:comment_index].rstrip()


def _load_env_file(path: Path) -> None:
    """Populate ``os.environ`` with values read from a ``.env`` file."""

    try:
        with path.open("r", encoding="utf-8") as handle:
            for raw_line in handle:
                line = raw_line.strip()
                if not line or line.startswith("#"):
                    continue
                if line.lower().startswith("export "):
                    line = line[7:].lstrip()
                if "=" not in line:
                    continue
                key, raw_value = line.split("=", 1)
                key = key.strip()
                if not key:
                    continue
                existing_value = os.environ.get(key)
                if existing_value is not None and existing_value.strip() != "":
                    continue
                value = raw_value.strip()
                if not value:
                    os.environ[key] = ""
                    continue
                if value[0] in {'"', "'"} and value[-1] == value[0]:
                    os.environ[key] = value[1:-1]
                    continue
                os.environ[key] = _strip_inline_comment(value)
    except OSError:
        LOGGER.warning("Unable to read environment file at %s", path)


def _apply_environment_overrides(raw_content: Dict[str, Any]) -> Dict[str, Any]:
    """Merge environment-based overrides into the raw configuration mapping.

    Args:
        raw_content: Parsed YAML configuration prior to Pydantic validation.

    Returns:
        Dict[str, Any]: Configuration mapping with environment overrides applied.
    """

    env_file_path = _determine_env_file_path()
    if env_file_path is not None:
        _load_env_file(env_file_path)

    database_url = os.getenv(DATABASE_URL_ENV_VAR)
    if database_url and database_url.strip():
        storage_section = raw_content.setdefault("storage", {})
        storage_section["database_url"] = database_url.strip()
        LOGGER.info("Storage database URL overridden from environment")
    return raw_content


def _read_yaml(path: Path) -> Dict[str, Any]:
    """Read YAML content from disk.

    Args:
        path: Location of the YAML file.

    Returns:
        Dict[str, Any]: Parsed YAML content.

    Raises:
        ConfigError: If the file cannot be read or parsed.
    """
    try:
        with path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle)
    except FileNotFoundError as exc:
        LOGGER.error("Configuration file missing at %s", path)
        raise ConfigError("Configuration file not found") from exc
    except yaml.YAMLError as exc:
        LOGGER.error("Invalid YAML syntax in %s", path)
        raise ConfigError("Invalid YAML syntax") from exc
    if not isinstance(data, dict):
        LOGGER.error("Configuration root must be a mapping: %s", path)
        raise ConfigError("Configuration root must be a mapping")
    return data


@lru_cache(maxsize=1)
def load_config(path: Optional[Path] = None) -> AppConfig:
    """Load application configuration from YAML.

    Args:
        path: Optional override path to the YAML file.

    Returns:
        AppConfig: Parsed configuration object.

    Raises:
        ConfigError: If the configuration cannot be loaded or validated.
    """
    config_path = path or AppConfig.default_path()
    raw_content = _read_yaml(config_path)
    raw_content = _apply_environment_overrides(raw_content)
    try:
        return AppConfig(**raw_content)
    except ValidationError as exc:
        LOGGER.error("Invalid configuration values: %s", exc)
        raise ConfigError("Configuration validation failed") from exc
