"""Tests for configuration loading and validation."""
from __future__ import annotations

from pathlib import Path
from typing import Iterator

import pytest
import yaml
from pydantic import ValidationError

from backend.app.config import (
    AlignmentConfig,
    AppConfig,
    ConfigError,
    ScoringConfig,
    TextConfig,
    load_config,
)


def _write(tmp_path: Path, content: str) -> Path:
    path = tmp_path / "config.yaml"
    path.write_text(content, encoding="utf-8")
    return path


def _default_raw() -> dict:
    with AppConfig.default_path().open("r", encoding="utf-8") as handle:
        return yaml.safe_load(handle)


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Iterator[None]:
    monkeypatch.delenv("PROMPTFLOW_DATABASE_URL", raising=False)
    monkeypatch.setenv("PROMPTFLOW_ENV_FILE", str(tmp_path / "absent.env"))
    load_config.cache_clear()
    yield
    load_config.cache_clear()


def test_config_loads_expected_structure() -> None:
    config = load_config()

    assert isinstance(config, AppConfig)
    assert config.pipeline.version == "1.0.0"
    assert len(config.text.stop_words) == 36
    assert "the" in config.text.stop_word_set()
    assert {"on", "or", "in"} <= config.text.stop_word_set()
    assert config.canonicalization.default_type == "custom"
    assert config.canonicalization.default_icon == "widgets"
    assert config.canonicalization.fallback_label == "N/A"
    assert config.canonicalization.generated_by == "prompt-flow-alignment"
    assert config.scoring.token_weight == 0.56
    assert config.scoring.label_weight == 0.22
    assert config.scoring.type_weight == 0.17
    assert config.scoring.support_weight == 0.05
    assert config.scoring.support_log_divisor == 4.0
    assert config.scoring.family_lookup()["vector db"] == "knowledge"
    assert config.alignment.covered_threshold == 0.58
    assert config.alignment.floor_threshold == 0.35
    assert config.alignment.collision_note == "Multiple prompt sections map to the same canonical step."
    assert config.api.transcript_set_list_limit == 100


def test_database_url_environment_override(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PROMPTFLOW_DATABASE_URL", "sqlite+aiosqlite:///:memory:")

    config = load_config()

    assert config.storage.database_url == "sqlite+aiosqlite:///:memory:"


def test_env_file_supplies_database_url(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    env_file = tmp_path / "alignment.env"
    env_file.write_text('export PROMPTFLOW_DATABASE_URL="sqlite+aiosqlite:///./from-env.db"\n', encoding="utf-8")
    monkeypatch.setenv("PROMPTFLOW_ENV_FILE", str(env_file))
    # registered with monkeypatch so the value loaded from the file is undone
    monkeypatch.setenv("PROMPTFLOW_DATABASE_URL", "")

    config = load_config()

    assert config.storage.database_url == "sqlite+aiosqlite:///./from-env.db"


def test_missing_file_raises_config_error(tmp_path: Path) -> None:
    with pytest.raises(ConfigError):
        load_config(tmp_path / "missing.yaml")


def test_invalid_yaml_raises_config_error(tmp_path: Path) -> None:
    with pytest.raises(ConfigError):
        load_config(_write(tmp_path, "pipeline: [unterminated"))


def test_invalid_thresholds_raise_config_error(tmp_path: Path) -> None:
    raw = _default_raw()
    raw["alignment"]["floor_threshold"] = 0.9

    with pytest.raises(ConfigError):
        load_config(_write(tmp_path, yaml.safe_dump(raw)))


def test_alignment_floor_cannot_exceed_covered() -> None:
    with pytest.raises(ValidationError):
        AlignmentConfig(covered_threshold=0.4, floor_threshold=0.5, collision_note="note")


def test_type_families_reject_shared_members() -> None:
    with pytest.raises(ValidationError):
        ScoringConfig(
            token_weight=0.56,
            label_weight=0.22,
            type_weight=0.17,
            support_weight=0.05,
            support_log_divisor=4.0,
            substring_label_score=0.7,
            family_type_score=0.65,
            mismatch_type_score=0.15,
            type_families={"knowledge": ["vector_db"], "integration": ["Vector DB"]},
        )


def test_stop_words_are_normalized() -> None:
    text = TextConfig(stop_words=[" The ", "the", "AND", ""])

    assert text.stop_words == ["the", "and"]
