"""Factory configuration.

Every numeric constant of the orchestration core lives here so callers can
override it per deployment. Defaults come from environment variables and
fall back to the values the pipeline has always run with:

- 3 attempts per stage call, backoff 1s doubling up to 10s
- 2 extra build attempts when output validation fails
- 3 QA revisions
- QA pass threshold 6/8

A YAML file with the same keys can be loaded with FactoryConfig.from_yaml().
"""

import logging
import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Ignoring non-integer {name}={raw!r}, using {default}")
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"Ignoring non-numeric {name}={raw!r}, using {default}")
        return default


class FactoryConfig(BaseModel):
    """Tunable limits for one ToolFactory instance."""

    max_revisions: int = Field(
        default_factory=lambda: _env_int("FACTORY_MAX_REVISIONS", 3),
        ge=0,
        description="QA revision budget per run",
    )
    max_retries: int = Field(
        default_factory=lambda: _env_int("FACTORY_MAX_RETRIES", 3),
        ge=1,
        description="Total attempts per stage call (first call included)",
    )
    retry_base_delay: float = Field(
        default_factory=lambda: _env_float("FACTORY_RETRY_BASE_DELAY", 1.0),
        ge=0,
        description="Backoff base in seconds",
    )
    retry_max_delay: float = Field(
        default_factory=lambda: _env_float("FACTORY_RETRY_MAX_DELAY", 10.0),
        ge=0,
        description="Backoff cap in seconds",
    )
    max_output_validation_retries: int = Field(
        default_factory=lambda: _env_int("FACTORY_MAX_OUTPUT_VALIDATION_RETRIES", 2),
        ge=0,
        description="Extra build attempts when the artifact misses required content",
    )
    qa_pass_score: int = Field(
        default_factory=lambda: _env_int("FACTORY_QA_PASS_SCORE", 6),
        ge=0,
        le=8,
        description="Minimum QA score (out of 8) that counts as a pass",
    )
    max_free_form_chars: int = Field(default=10_000, gt=0)
    max_structured_chars: int = Field(default=100_000, gt=0)
    summarize_threshold_chars: int = Field(
        default=8_000,
        description="Structured sources longer than this are summarized first",
    )
    chunk_threshold_chars: int = Field(
        default=50_000,
        description="Structured sources longer than this are summarized per section",
    )
    content_summary_chars: int = Field(
        default=2_000,
        description="How much source text the audience profiler sees",
    )

    @classmethod
    def from_yaml(cls, path: Path) -> "FactoryConfig":
        """Load overrides from a YAML mapping. Missing keys keep their defaults."""
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Config file {path} must contain a mapping")
        logger.info(f"Loaded factory config overrides from {path}: {sorted(data)}")
        return cls.model_validate(data)


def load_config(path: Optional[Path] = None) -> FactoryConfig:
    """Build a config from an optional YAML file, else from the environment."""
    if path is None:
        env_path = os.environ.get("FACTORY_CONFIG")
        path = Path(env_path) if env_path else None
    if path is not None:
        return FactoryConfig.from_yaml(path)
    return FactoryConfig()
