"""Runtime configuration read from the environment.

Credentials and tunables are read lazily (at call time) so that tests can
monkeypatch the environment.  ``main.py`` loads ``.env`` with python-dotenv
before anything here is consulted.
"""

from __future__ import annotations

import logging
import os
from typing import Optional

from pydantic import BaseModel, Field

from .constants import (
    DEFAULT_BRANCH_TIMEOUT_SECONDS,
    INSIGHT_CONFIG,
    INTENSITY_WEIGHTS,
    SOURCE_WEIGHTS,
)
from .errors import ConfigurationError

logger = logging.getLogger(__name__)

_REQUIRED_CREDENTIALS = ("OPENAI_API_KEY", "TAVILY_API_KEY")


def env_float(key: str, default: float) -> float:
    try:
        return float(os.getenv(key, str(default)))
    except ValueError:
        return default


def env_int(key: str, default: int) -> int:
    try:
        return int(os.getenv(key, str(default)))
    except ValueError:
        return default


# ===================================================================== #
#  Scoring configuration                                                  #
# ===================================================================== #

class SourceWeights(BaseModel):
    reddit: float = Field(SOURCE_WEIGHTS["reddit"], ge=0.0)
    competitors: float = Field(SOURCE_WEIGHTS["competitors"], ge=0.0)
    industry_trends: float = Field(SOURCE_WEIGHTS["industry_trends"], ge=0.0)

    @property
    def total(self) -> float:
        return self.reddit + self.competitors + self.industry_trends


class IntensityWeights(BaseModel):
    low: float = INTENSITY_WEIGHTS["low"]
    medium: float = INTENSITY_WEIGHTS["medium"]
    high: float = INTENSITY_WEIGHTS["high"]


class InsightConfig(BaseModel):
    top_insights_for_viability: int = Field(int(INSIGHT_CONFIG["top_insights_for_viability"]), ge=1)
    min_insights: int = Field(int(INSIGHT_CONFIG["min_insights"]), ge=0)
    max_insights: int = Field(int(INSIGHT_CONFIG["max_insights"]), ge=1)
    min_score_threshold: float = Field(INSIGHT_CONFIG["min_score_threshold"], ge=0.0, le=1.0)


class ScoringConfig(BaseModel):
    """Read-only inputs to the Scoring Engine."""

    source_weights: SourceWeights = Field(default_factory=SourceWeights)
    intensity_weights: IntensityWeights = Field(default_factory=IntensityWeights)
    insights: InsightConfig = Field(default_factory=InsightConfig)

    model_config = {"frozen": True}


def get_scoring_config() -> ScoringConfig:
    """Build the scoring configuration from constants plus env overrides.

    Recognised overrides: SOURCE_WEIGHT_REDDIT, SOURCE_WEIGHT_COMPETITORS,
    SOURCE_WEIGHT_TRENDS, TOP_INSIGHTS_FOR_VIABILITY.
    """
    weights = SourceWeights(
        reddit=env_float("SOURCE_WEIGHT_REDDIT", SOURCE_WEIGHTS["reddit"]),
        competitors=env_float("SOURCE_WEIGHT_COMPETITORS", SOURCE_WEIGHTS["competitors"]),
        industry_trends=env_float("SOURCE_WEIGHT_TRENDS", SOURCE_WEIGHTS["industry_trends"]),
    )
    insights = InsightConfig(
        top_insights_for_viability=env_int(
            "TOP_INSIGHTS_FOR_VIABILITY",
            int(INSIGHT_CONFIG["top_insights_for_viability"]),
        ),
    )
    config = ScoringConfig(source_weights=weights, insights=insights)

    if abs(weights.total - 1.0) > 0.001:
        logger.warning(
            "Source weights sum to %.3f (expected 1.0); insight scores will be clamped",
            weights.total,
        )
    return config


# ===================================================================== #
#  Pipeline configuration                                                 #
# ===================================================================== #

def get_branch_timeout() -> float:
    """Per-branch deadline in seconds (BRANCH_TIMEOUT_SECONDS)."""
    return env_float("BRANCH_TIMEOUT_SECONDS", DEFAULT_BRANCH_TIMEOUT_SECONDS)


def get_okr_document_path() -> Optional[str]:
    """Path of the OKR reference document, or None when not configured."""
    path = os.getenv("OKR_DOCUMENT_PATH", "").strip()
    return path or None


def validate_config(config: Optional[ScoringConfig] = None) -> list[str]:
    """Return a list of human-readable configuration problems."""
    problems: list[str] = []
    for key in _REQUIRED_CREDENTIALS:
        if not os.getenv(key, "").strip():
            problems.append(f"{key} is required but not set")

    weights = (config or get_scoring_config()).source_weights
    if abs(weights.total - 1.0) > 0.001:
        problems.append(f"Source weights must sum to 1.0, but sum to {weights.total:.3f}")
    return problems


def require_credentials() -> None:
    """Raise ConfigurationError when any capability credential is missing."""
    missing = [key for key in _REQUIRED_CREDENTIALS if not os.getenv(key, "").strip()]
    if missing:
        print(f"❌ [CONFIG] Missing credentials: {missing}")
        raise ConfigurationError(
            f"Missing required configuration: {', '.join(missing)}",
            missing_keys=missing,
        )
